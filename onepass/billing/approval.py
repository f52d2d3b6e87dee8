"""
approval.py - Approve a service request: code, discount tier, financials.

Computation sequence (order matters):
  1. Load request; already coded -> return unchanged (idempotent)
  2. Merge approval overrides; require category and amount
  3. Resolve prefix + approval date, take the (prefix, date) lock
  4. Partner: lock company row, check wallet >= deduction (409, no mutation)
  5. Tier from the company's approved revenue BEFORE this request
  6. Discount percent: explicit override wins over the tier
  7. Financials, next sequence, code
  8. Write request + company, commit once (still holding the lock)
  9. Return side-effect commands for the route to dispatch

Code assignment and the financial columns are written in the same
transaction, so a failure leaves the request pending rather than half-approved.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from onepass.billing.codes import (
    SequenceLocks,
    date_segment,
    format_code,
    has_code,
    invoice_flag,
    next_sequence,
    resolve_prefix,
)
from onepass.billing.schemas import ApprovalRequest
from onepass.billing.tiers import BASE_TIER, Tier, compute_financials, resolve_discount_percent, tier_of
from onepass.commands import BroadcastCommand, Command, EmailCommand
from onepass.errors import ConflictError, NotFoundError, ValidationError
from onepass.intake.schemas import ServiceRequestOut
from onepass.models.company import CompanyORM
from onepass.models.service_request import ServiceRequestORM
from onepass.realtime.schemas import REQUEST_APPROVED
from onepass.store import get_company, get_request, get_user, sum_post_discount
from onepass.templates import service_approved

logger = logging.getLogger(__name__)

APPROVED_STATUS = "Đã duyệt"


@dataclass
class ApprovalOutcome:
    request: ServiceRequestORM
    company: Optional[CompanyORM] = None
    tier_applied: Optional[Tier] = None
    already_approved: bool = False
    commands: list[Command] = field(default_factory=list)


def _require_fields(category: Optional[str], amount: Optional[int]) -> None:
    details = []
    if not category or not category.strip():
        details.append({"field": "category", "issue": "Service category is required for approval"})
    if amount is None:
        details.append({"field": "amount", "issue": "Amount is required for approval"})
    if details:
        raise ValidationError("Service request cannot be approved", details=details)


def _build_commands(
    record: ServiceRequestORM,
    company: Optional[CompanyORM],
) -> list[Command]:
    commands: list[Command] = []
    recipient = record.email or (company.email if company else None)
    if recipient:
        subject, html = service_approved(
            recipient_name=company.name if company else (record.full_name or "Quý khách"),
            code=record.code or "",
            service=" - ".join(filter(None, [record.category, record.sub_category])),
            amount=record.amount or 0,
            discount_percent=record.discount_percent or 0,
            discount_amount=record.discount_amount or 0,
            wallet_deduction=record.wallet_deduction,
            post_discount_amount=record.post_discount_amount or 0,
            tier=company.tier if company else None,
        )
        commands.append(EmailCommand(recipient=recipient, subject=subject, html=html))
    payload = ServiceRequestOut.model_validate(record).model_dump(mode="json")
    commands.append(BroadcastCommand(event=REQUEST_APPROVED, payload=payload))
    return commands


async def approve_service_request(
    db: AsyncSession,
    request_id: int,
    payload: ApprovalRequest,
    locks: SequenceLocks,
    now: Optional[datetime] = None,
) -> ApprovalOutcome:
    """
    Approve request_id and freeze its code and financial breakdown.

    Raises:
        NotFoundError:   request or its company does not exist
        ValidationError: category / amount missing, bad discount override,
                         wallet deduction without a partner company
        ConflictError:   wallet balance below the deduction, or a code
                         collision with another replica
    """
    record = await get_request(db, request_id)
    if record is None:
        raise NotFoundError(f"Service request '{request_id}' not found")
    if has_code(record.code):
        logger.info("Request already approved request_id=%s code=%s", request_id, record.code)
        return ApprovalOutcome(request=record, already_approved=True)

    category = payload.category if payload.category is not None else record.category
    sub_category = payload.sub_category if payload.sub_category is not None else record.sub_category
    amount = payload.amount if payload.amount is not None else record.amount
    wallet = payload.wallet_deduction if payload.wallet_deduction is not None else (record.wallet_deduction or 0)
    override = payload.discount_override if payload.discount_override is not None else record.discount_override
    invoice = payload.invoice_requested if payload.invoice_requested is not None else record.invoice_requested
    _require_fields(category, amount)
    if payload.handler_id is not None and await get_user(db, payload.handler_id) is None:
        raise NotFoundError(f"User '{payload.handler_id}' not found")

    moment = now or datetime.now(timezone.utc)
    prefix = resolve_prefix(category, sub_category)
    date = date_segment(moment)
    locks.prune(keep_date=date)

    async with locks.hold(prefix, date):
        try:
            # Another approval of this same request may have won while we waited
            await db.refresh(record)
            if has_code(record.code):
                return ApprovalOutcome(request=record, already_approved=True)

            company: Optional[CompanyORM] = None
            prior_revenue = 0
            if record.company_id is not None:
                company = await get_company(db, record.company_id, for_update=True)
                if company is None:
                    raise NotFoundError(f"Company '{record.company_id}' not found")
                if wallet > company.wallet_balance:
                    raise ConflictError(
                        "Insufficient wallet balance",
                        details=[{
                            "field": "wallet_deduction",
                            "issue": f"Requested {wallet}, available {company.wallet_balance}",
                        }],
                    )
                prior_revenue = await sum_post_discount(db, company.id, exclude_request_id=record.id)
            elif wallet:
                raise ValidationError.for_field(
                    "wallet_deduction", "Wallet deduction requires a partner company"
                )

            tier = tier_of(prior_revenue) if company is not None else BASE_TIER
            percent = resolve_discount_percent(tier, override)
            financials = compute_financials(amount, percent, wallet)

            sequence = await next_sequence(db, prefix, date)
            code = format_code(prefix, date, invoice_flag(invoice), sequence)

            record.category = category
            record.sub_category = sub_category
            record.amount = amount
            record.invoice_requested = None if invoice is None else str(invoice)
            record.discount_override = None if override is None else str(override)
            record.wallet_deduction = financials.wallet_deduction
            record.discount_percent = financials.discount_percent
            record.discount_amount = financials.discount_amount
            record.post_discount_amount = financials.post_discount_amount
            record.code = code
            record.status = APPROVED_STATUS
            record.approved_at = moment
            if payload.handler_id is not None:
                record.handler_id = payload.handler_id

            if company is not None:
                company.wallet_balance -= financials.wallet_deduction
                company.cumulative_revenue = prior_revenue + financials.post_discount_amount
                company.tier = tier_of(company.cumulative_revenue).name

            try:
                await db.flush()
            except IntegrityError as exc:
                raise ConflictError(f"Service code '{code}' was taken concurrently, retry") from exc
            # Commit inside the lock: the next approval for this key must see our code
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    await db.refresh(record, attribute_names=["handler"])
    logger.info(
        "Approved request_id=%s code=%s tier=%s discount=%d%% post_discount=%d",
        record.id,
        record.code,
        tier.name,
        financials.discount_percent,
        financials.post_discount_amount,
    )
    return ApprovalOutcome(
        request=record,
        company=company,
        tier_applied=tier,
        commands=_build_commands(record, company),
    )
