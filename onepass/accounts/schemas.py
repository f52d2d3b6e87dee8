"""
schemas.py - Account Pydantic v2 data contracts.

Login and register fields default to "" so a missing field reaches the route,
which answers with the CMS's 400 message instead of a 422 envelope.
UserOut never carries password_hash.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, coerce_numbers_to_str=True)

    username: str = ""
    password: str = ""

    def is_complete(self) -> bool:
        return bool(self.username and self.password)


class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, coerce_numbers_to_str=True)

    username: str = Field(default="", max_length=100)
    email: str = Field(default="", max_length=255)
    password: str = ""
    role: str = Field(default="user", max_length=50)

    def is_complete(self) -> bool:
        return bool(self.username and self.email and self.password)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: Optional[str] = None
    username: str
    email: str
    role: str = "user"
    is_admin: bool = False
    avatar: Optional[str] = None
