"""
schemas.py - Billing Pydantic v2 data contracts.

Defines:
  - ApprovalRequest    (optional overrides sent with POST /api/yeucau/{id}/approve)
  - CompanyCreate      (partner registration form)
  - CompanyOut         (partner account as returned by the API)
  - WalletTopUp        (POST /api/b2b/companies/{id}/wallet)
  - ApprovalResult     (approve endpoint response)
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from onepass.intake.schemas import ServiceRequestOut


class ApprovalRequest(BaseModel):
    """
    Fields that may be supplied (or corrected) at approval time. Anything
    omitted falls back to the value stored on the request.
    """
    model_config = ConfigDict(extra="forbid")

    category: Optional[str] = None
    sub_category: Optional[str] = None
    invoice_requested: Optional[Union[str, bool]] = None
    amount: Optional[int] = Field(default=None, ge=0)
    wallet_deduction: Optional[int] = Field(default=None, ge=0)
    discount_override: Optional[Union[str, int, float]] = None
    handler_id: Optional[int] = None


class CompanyCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    tax_code: Optional[str] = Field(default=None, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=50)
    contact_name: Optional[str] = Field(default=None, max_length=200)


class CompanyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    tax_code: Optional[str] = None
    phone: Optional[str] = None
    contact_name: Optional[str] = None
    cumulative_revenue: int
    tier: str
    wallet_balance: int
    created_at: datetime


class WalletTopUp(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: int = Field(..., gt=0)


class ApprovalResult(BaseModel):
    request: ServiceRequestOut
    company: Optional[CompanyOut] = None
    tier_applied: Optional[str] = None
    already_approved: bool = False
