"""
models/service_request.py - SQLAlchemy ORM model for service requests (YeuCau).

Table: service_requests
One row per unit of billable work. Rows start pending without a code; the
code and the financial columns are written once, in a single transaction,
when the request is approved (billing/approval.py).

company_id is set for B2B partner work and null for walk-in / web-form
customers. handler_id is the staff member in charge.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from onepass.database import Base
from onepass.models.user import UserORM


class ServiceRequestORM(Base):
    __tablename__ = "service_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("b2b_companies.id"), nullable=True, index=True
    )
    handler_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"), nullable=True, index=True
    )

    # --- Customer / consultation fields ---
    full_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    area_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    contact_method: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Trực tiếp / Email / Gọi điện",
    )
    preferred_date: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    preferred_time: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Tư vấn")

    # --- Service / billing fields ---
    category: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    sub_category: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    invoice_requested: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    amount: Mapped[Optional[int]] = mapped_column(
        BigInteger, nullable=True, comment="Amount before discount (VND)"
    )
    wallet_deduction: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    discount_override: Mapped[Optional[str]] = mapped_column(
        String(10),
        nullable=True,
        comment="Explicit discount percent; wins over the company tier when non-empty",
    )
    discount_percent: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    discount_amount: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    post_discount_amount: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    code: Mapped[Optional[str]] = mapped_column(
        String(40),
        nullable=True,
        unique=True,
        index=True,
        comment="{PREFIX}-{YYMMDD}-{Y|N}-{SEQ3}; immutable once assigned",
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    handler: Mapped[Optional[UserORM]] = relationship(lazy="selectin")
