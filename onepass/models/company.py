"""
models/company.py - SQLAlchemy ORM model for B2B partner companies.

Table: b2b_companies
cumulative_revenue, tier and wallet_balance are maintained by the approval
flow (billing/approval.py). tier is always tier_of(cumulative_revenue).name
after an approval; wallet_balance never goes negative.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from onepass.database import Base


class CompanyORM(Base):
    __tablename__ = "b2b_companies"
    __table_args__ = (
        CheckConstraint("wallet_balance >= 0", name="ck_b2b_companies_wallet_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    tax_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, unique=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    contact_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    cumulative_revenue: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Sum of post-discount amounts of approved service requests (VND)",
    )
    tier: Mapped[str] = mapped_column(String(20), nullable=False, default="Standard")
    wallet_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
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
