"""
schemas.py - Service request (YeuCau) Pydantic v2 data contracts.

Defines:
  - ContactMethod        (how a consultation customer wants to be reached)
  - ConsultationCreate   (public web form, POST /api/tuvan)
  - ServiceRequestCreate (CMS create, POST /api/yeucau)
  - ServiceRequestUpdate (CMS edit, PUT /api/yeucau/{id})
  - HandlerOut, ServiceRequestOut
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ContactMethod(str, Enum):
    in_person = "Trực tiếp"
    email = "Email"
    phone = "Gọi điện"


def _blank_to_none(value):
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


class ConsultationCreate(BaseModel):
    """Public consultation form. Required: service, contact method, name, area code, phone."""
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    category: str = Field(..., min_length=1, max_length=200)
    contact_method: str = Field(..., min_length=1, max_length=50)
    full_name: str = Field(..., min_length=1, max_length=200)
    area_code: str = Field(..., min_length=1, max_length=10)
    phone: str = Field(..., min_length=1, max_length=50)
    email: Optional[str] = Field(default=None, max_length=255)
    title: Optional[str] = Field(default=None, max_length=255)
    content: Optional[str] = None
    preferred_date: Optional[str] = Field(default=None, max_length=20)
    preferred_time: Optional[str] = Field(default=None, max_length=20)

    @field_validator("email", "title", "content", "preferred_date", "preferred_time", mode="before")
    @classmethod
    def _optional_blank(cls, value):
        return _blank_to_none(value)


class ServiceRequestCreate(BaseModel):
    """
    CMS create. Blank strings become null; a handler id that is not an
    integer is dropped; an unparseable created_at is replaced with now.
    """
    model_config = ConfigDict(extra="ignore")

    company_id: Optional[int] = None
    handler_id: Optional[int] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    area_code: Optional[str] = None
    phone: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None
    contact_method: Optional[str] = None
    preferred_date: Optional[str] = None
    preferred_time: Optional[str] = None
    status: Optional[str] = None
    category: Optional[str] = None
    sub_category: Optional[str] = None
    invoice_requested: Optional[str] = None
    amount: Optional[int] = Field(default=None, ge=0)
    wallet_deduction: Optional[int] = Field(default=None, ge=0)
    discount_override: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("*", mode="before")
    @classmethod
    def _blank_fields(cls, value):
        return _blank_to_none(value)

    @field_validator("handler_id", "company_id", mode="before")
    @classmethod
    def _coerce_int(cls, value):
        if value is None:
            return None
        try:
            return int(str(value).strip())
        except ValueError:
            return None

    @field_validator("invoice_requested", "discount_override", mode="before")
    @classmethod
    def _stringify(cls, value):
        return None if value is None else str(value)

    @field_validator("created_at", mode="wrap")
    @classmethod
    def _lenient_created_at(cls, value, handler):
        try:
            return handler(value)
        except ValueError:
            return None


class ServiceRequestUpdate(ServiceRequestCreate):
    """
    Same fields as create; only the fields present in the body are applied.
    code is accepted only so that an attempt to set it is reported, never stored.
    """
    code: Optional[str] = None


class HandlerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: Optional[str] = None
    username: str
    email: str


class ServiceRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    company_id: Optional[int] = None
    handler_id: Optional[int] = None
    handler: Optional[HandlerOut] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    area_code: Optional[str] = None
    phone: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None
    contact_method: Optional[str] = None
    preferred_date: Optional[str] = None
    preferred_time: Optional[str] = None
    status: str
    category: Optional[str] = None
    sub_category: Optional[str] = None
    invoice_requested: Optional[str] = None
    amount: Optional[int] = None
    wallet_deduction: int = 0
    discount_override: Optional[str] = None
    discount_percent: Optional[int] = None
    discount_amount: Optional[int] = None
    post_discount_amount: Optional[int] = None
    code: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
