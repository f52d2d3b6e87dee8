"""
store.py - Data access facade for OnePass.

All routes and business functions use these functions - no route builds
SQLAlchemy queries directly.

Design principles:
  - All functions are async and accept an AsyncSession parameter
  - ORM-only queries
  - flush(), never commit(): the get_db() dependency (or the approval flow,
    which must commit inside its sequence lock) owns the transaction
  - Logs ids only - never passwords, hashes or customer contact details
  - Returns ORM instances; routes convert them with the Pydantic schemas
"""
import logging
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from onepass.billing.codes import has_code
from onepass.errors import ConflictError, NotFoundError, ValidationError
from onepass.models.company import CompanyORM
from onepass.models.service_request import ServiceRequestORM
from onepass.models.user import UserORM

logger = logging.getLogger(__name__)


async def _flush_unique(db: AsyncSession, what: str) -> None:
    try:
        await db.flush()
    except IntegrityError as exc:
        raise ConflictError(f"{what} already exists") from exc


# ---------------------------------------------------------------------------
# User operations
# ---------------------------------------------------------------------------

async def list_users(db: AsyncSession) -> Sequence[UserORM]:
    result = await db.execute(select(UserORM).order_by(UserORM.id.asc()))
    return result.scalars().all()


async def get_user(db: AsyncSession, user_id: int) -> Optional[UserORM]:
    return await db.get(UserORM, user_id)


async def get_user_by_username(db: AsyncSession, username: str) -> Optional[UserORM]:
    result = await db.execute(select(UserORM).where(UserORM.username == username).limit(1))
    return result.scalar_one_or_none()


async def create_user(
    db: AsyncSession,
    username: str,
    email: str,
    password_hash: str,
    role: str = "user",
    name: Optional[str] = None,
) -> UserORM:
    orm = UserORM(
        username=username,
        email=email,
        password_hash=password_hash,
        role=role,
        name=name or username,
    )
    db.add(orm)
    await _flush_unique(db, f"Username '{username}'")
    logger.info("Created user user_id=%s role=%s", orm.id, role)
    return orm


async def update_user(db: AsyncSession, user_id: int, changes: dict[str, Any]) -> UserORM:
    orm = await get_user(db, user_id)
    if orm is None:
        raise NotFoundError(f"User '{user_id}' not found")
    for field, value in changes.items():
        setattr(orm, field, value)
    await _flush_unique(db, "Username")
    logger.info("Updated user user_id=%s fields=%s", user_id, sorted(changes))
    return orm


# ---------------------------------------------------------------------------
# Service request (YeuCau) operations
# ---------------------------------------------------------------------------

async def list_requests(db: AsyncSession) -> Sequence[ServiceRequestORM]:
    result = await db.execute(select(ServiceRequestORM).order_by(ServiceRequestORM.id.asc()))
    return result.scalars().all()


async def get_request(
    db: AsyncSession,
    request_id: int,
    for_update: bool = False,
) -> Optional[ServiceRequestORM]:
    stmt = select(ServiceRequestORM).where(ServiceRequestORM.id == request_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def create_request(db: AsyncSession, fields: dict[str, Any]) -> ServiceRequestORM:
    if fields.get("company_id") is not None and await get_company(db, fields["company_id"]) is None:
        raise NotFoundError(f"Company '{fields['company_id']}' not found")
    orm = ServiceRequestORM(**fields)
    db.add(orm)
    await _flush_unique(db, "Service code")
    await db.refresh(orm, attribute_names=["handler"])
    logger.info("Created service request request_id=%s company_id=%s", orm.id, orm.company_id)
    return orm


# Inputs of the approval calculation; frozen once a request carries a code
BILLING_FIELDS = (
    "category",
    "sub_category",
    "invoice_requested",
    "amount",
    "wallet_deduction",
    "discount_override",
    "company_id",
)


async def update_request(
    db: AsyncSession,
    request_id: int,
    changes: dict[str, Any],
) -> ServiceRequestORM:
    """
    Patch a request.

    Codes are only ever assigned by approval: writing a different code is
    rejected, pending or not. Once approved, the billing inputs the code and
    financial breakdown were computed from are frozen too. Re-sending the
    stored value of a field is accepted.
    """
    orm = await get_request(db, request_id)
    if orm is None:
        raise NotFoundError(f"Service request '{request_id}' not found")

    details = []
    if "code" in changes and changes["code"] != orm.code:
        details.append({"field": "code", "issue": "Service code is assigned on approval and cannot be edited"})
    if has_code(orm.code):
        details.extend(
            {"field": name, "issue": "Cannot be changed after approval"}
            for name in BILLING_FIELDS
            if name in changes and changes[name] != getattr(orm, name)
        )
    if details:
        raise ValidationError("Service request cannot be updated", details=details)

    for field, value in changes.items():
        setattr(orm, field, value)
    await _flush_unique(db, "Service code")
    await db.refresh(orm, attribute_names=["handler"])
    logger.info("Updated service request request_id=%s fields=%s", request_id, sorted(changes))
    return orm


async def sum_post_discount(
    db: AsyncSession,
    company_id: int,
    exclude_request_id: Optional[int] = None,
) -> int:
    """Sum of post-discount amounts of the company's approved requests."""
    stmt = select(func.coalesce(func.sum(ServiceRequestORM.post_discount_amount), 0)).where(
        ServiceRequestORM.company_id == company_id,
        ServiceRequestORM.code.is_not(None),
    )
    if exclude_request_id is not None:
        stmt = stmt.where(ServiceRequestORM.id != exclude_request_id)
    result = await db.execute(stmt)
    return int(result.scalar_one())


# ---------------------------------------------------------------------------
# B2B company operations
# ---------------------------------------------------------------------------

async def list_companies(db: AsyncSession) -> Sequence[CompanyORM]:
    result = await db.execute(select(CompanyORM).order_by(CompanyORM.id.asc()))
    return result.scalars().all()


async def get_company(
    db: AsyncSession,
    company_id: int,
    for_update: bool = False,
) -> Optional[CompanyORM]:
    stmt = select(CompanyORM).where(CompanyORM.id == company_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def create_company(db: AsyncSession, fields: dict[str, Any]) -> CompanyORM:
    orm = CompanyORM(**fields)
    db.add(orm)
    await _flush_unique(db, "Company tax code")
    logger.info("Created company company_id=%s", orm.id)
    return orm


async def top_up_wallet(db: AsyncSession, company_id: int, amount: int) -> CompanyORM:
    if amount <= 0:
        raise ValidationError.for_field("amount", "Top-up amount must be positive")
    orm = await get_company(db, company_id, for_update=True)
    if orm is None:
        raise NotFoundError(f"Company '{company_id}' not found")
    orm.wallet_balance += amount
    await db.flush()
    logger.info("Wallet topped up company_id=%s amount=%d balance=%d", company_id, amount, orm.wallet_balance)
    return orm
