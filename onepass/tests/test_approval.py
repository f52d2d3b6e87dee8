"""
Tests for approve_service_request - code assignment, tier discount, wallet
deduction, idempotence and all-or-nothing failure.

Runs against the in-memory SQLite database from conftest.py.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from onepass.billing.approval import APPROVED_STATUS, approve_service_request
from onepass.billing.codes import SequenceLocks
from onepass.billing.schemas import ApprovalRequest
from onepass.commands import BroadcastCommand, EmailCommand
from onepass.database import Base
from onepass.errors import ConflictError, NotFoundError, ValidationError
from onepass.models.company import CompanyORM
from onepass.models.service_request import ServiceRequestORM
from onepass.realtime.schemas import REQUEST_APPROVED

# 2026-10-18 09:00 in Asia/Ho_Chi_Minh
NOW = datetime(2026, 10, 18, 2, 0, tzinfo=timezone.utc)


async def _request(db: AsyncSession, **fields) -> ServiceRequestORM:
    fields.setdefault("full_name", "Nguyễn Văn A")
    fields.setdefault("status", "Tư vấn")
    record = ServiceRequestORM(**fields)
    db.add(record)
    await db.commit()
    return record


async def _company(db: AsyncSession, **fields) -> CompanyORM:
    fields.setdefault("name", "Công ty TNHH Minh Phát")
    fields.setdefault("email", "ketoan@minhphat.vn")
    company = CompanyORM(**fields)
    db.add(company)
    await db.commit()
    return company


# ---------------------------------------------------------------------------
# Codes
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sequential_approvals_number_from_one(db: AsyncSession, locks: SequenceLocks) -> None:
    codes = []
    for invoice in ["Có", "Không", "yes"]:
        record = await _request(
            db, category="Kết hôn", sub_category="Đăng ký kết hôn", amount=1_000_000, invoice_requested=invoice
        )
        outcome = await approve_service_request(db, record.id, ApprovalRequest(), locks, now=NOW)
        codes.append(outcome.request.code)

    assert codes == ["KH-261018-Y-001", "KH-261018-N-002", "KH-261018-Y-003"]


@pytest.mark.asyncio
async def test_sequence_is_per_prefix(db: AsyncSession, locks: SequenceLocks) -> None:
    kh = await _request(db, category="Kết hôn", sub_category="Đăng ký kết hôn", amount=1)
    visa = await _request(db, category="Visa", sub_category="Du lịch", amount=1)
    other = await _request(db, category="Tư vấn pháp lý", amount=1)

    assert (await approve_service_request(db, kh.id, ApprovalRequest(), locks, now=NOW)).request.code == "KH-261018-N-001"
    assert (await approve_service_request(db, visa.id, ApprovalRequest(), locks, now=NOW)).request.code == "VDL-261018-N-001"
    assert (await approve_service_request(db, other.id, ApprovalRequest(), locks, now=NOW)).request.code == "TVPL-261018-N-001"


@pytest.mark.asyncio
async def test_payload_overrides_stored_fields(db: AsyncSession, locks: SequenceLocks) -> None:
    record = await _request(db)
    payload = ApprovalRequest(category="Visa", sub_category="Công tác", amount=2_000_000, invoice_requested=True)

    outcome = await approve_service_request(db, record.id, payload, locks, now=NOW)

    assert outcome.request.code == "VCT-261018-Y-001"
    assert outcome.request.amount == 2_000_000
    assert outcome.request.status == APPROVED_STATUS
    assert outcome.request.approved_at is not None


# ---------------------------------------------------------------------------
# Idempotence
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_reapproval_returns_existing_code(db: AsyncSession, locks: SequenceLocks) -> None:
    record = await _request(db, category="Visa", sub_category="Du lịch", amount=500_000)
    first = await approve_service_request(db, record.id, ApprovalRequest(), locks, now=NOW)
    second = await approve_service_request(
        db, record.id, ApprovalRequest(amount=9_999_999), locks, now=NOW
    )

    assert second.already_approved is True
    assert second.request.code == first.request.code
    assert second.request.amount == 500_000
    assert second.commands == []


@pytest.mark.asyncio
async def test_short_legacy_code_is_treated_as_absent(db: AsyncSession, locks: SequenceLocks) -> None:
    record = await _request(db, category="Visa", sub_category="Du lịch", amount=1, code="X1")
    outcome = await approve_service_request(db, record.id, ApprovalRequest(), locks, now=NOW)
    assert outcome.already_approved is False
    assert outcome.request.code == "VDL-261018-N-001"


# ---------------------------------------------------------------------------
# Tier discount and wallet
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_tier_uses_revenue_before_this_request(db: AsyncSession, locks: SequenceLocks) -> None:
    company = await _company(db, wallet_balance=0, cumulative_revenue=95_000_000, tier="Silver")
    await _request(
        db,
        company_id=company.id,
        category="Visa",
        amount=95_000_000,
        post_discount_amount=95_000_000,
        code="V-261001-N-001",
        status=APPROVED_STATUS,
    )
    record = await _request(db, company_id=company.id, category="Visa", sub_category="Du lịch", amount=10_000_000)

    outcome = await approve_service_request(db, record.id, ApprovalRequest(), locks, now=NOW)

    assert outcome.tier_applied.name == "Silver"
    assert outcome.request.discount_percent == 5
    assert outcome.request.discount_amount == 500_000
    assert outcome.request.post_discount_amount == 9_500_000
    assert outcome.company.cumulative_revenue == 104_500_000
    assert outcome.company.tier == "Gold"


@pytest.mark.asyncio
async def test_wallet_deduction_is_debited(db: AsyncSession, locks: SequenceLocks) -> None:
    company = await _company(db, wallet_balance=200_000)
    record = await _request(db, company_id=company.id, category="Visa", sub_category="Du lịch", amount=1_000_000)

    outcome = await approve_service_request(
        db, record.id, ApprovalRequest(wallet_deduction=50_000, discount_override="10"), locks, now=NOW
    )

    r = outcome.request
    assert (r.discount_amount, r.wallet_deduction, r.post_discount_amount) == (100_000, 50_000, 850_000)
    assert r.discount_amount + r.wallet_deduction + r.post_discount_amount == r.amount
    assert outcome.company.wallet_balance == 150_000


@pytest.mark.asyncio
async def test_insufficient_wallet_changes_nothing(db: AsyncSession, locks: SequenceLocks) -> None:
    company = await _company(db, wallet_balance=10_000)
    record = await _request(db, company_id=company.id, category="Visa", sub_category="Du lịch", amount=1_000_000)

    with pytest.raises(ConflictError):
        await approve_service_request(db, record.id, ApprovalRequest(wallet_deduction=50_000), locks, now=NOW)

    await db.refresh(company)
    await db.refresh(record)
    assert company.wallet_balance == 10_000
    assert company.cumulative_revenue == 0
    assert record.code is None
    assert record.post_discount_amount is None


@pytest.mark.asyncio
async def test_individual_customer_gets_no_tier_discount(db: AsyncSession, locks: SequenceLocks) -> None:
    record = await _request(db, category="Visa", sub_category="Du lịch", amount=1_000_000)
    outcome = await approve_service_request(db, record.id, ApprovalRequest(), locks, now=NOW)
    assert outcome.company is None
    assert outcome.tier_applied.name == "Standard"
    assert outcome.request.discount_amount == 0
    assert outcome.request.post_discount_amount == 1_000_000


@pytest.mark.asyncio
async def test_wallet_without_company_rejected(db: AsyncSession, locks: SequenceLocks) -> None:
    record = await _request(db, category="Visa", amount=1_000_000)
    with pytest.raises(ValidationError):
        await approve_service_request(db, record.id, ApprovalRequest(wallet_deduction=1), locks, now=NOW)
    await db.refresh(record)
    assert record.code is None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_missing_category_and_amount(db: AsyncSession, locks: SequenceLocks) -> None:
    record = await _request(db)
    with pytest.raises(ValidationError) as exc_info:
        await approve_service_request(db, record.id, ApprovalRequest(), locks, now=NOW)
    fields = {d["field"] for d in exc_info.value.details}
    assert fields == {"category", "amount"}


@pytest.mark.asyncio
async def test_bad_discount_override_leaves_request_pending(db: AsyncSession, locks: SequenceLocks) -> None:
    record = await _request(db, category="Visa", amount=1_000)
    with pytest.raises(ValidationError):
        await approve_service_request(db, record.id, ApprovalRequest(discount_override="lots"), locks, now=NOW)
    await db.refresh(record)
    assert record.code is None


@pytest.mark.asyncio
async def test_unknown_request(db: AsyncSession, locks: SequenceLocks) -> None:
    with pytest.raises(NotFoundError):
        await approve_service_request(db, 404, ApprovalRequest(), locks, now=NOW)


@pytest.mark.asyncio
async def test_unknown_handler(db: AsyncSession, locks: SequenceLocks) -> None:
    record = await _request(db, category="Visa", amount=1)
    with pytest.raises(NotFoundError):
        await approve_service_request(db, record.id, ApprovalRequest(handler_id=999), locks, now=NOW)


# ---------------------------------------------------------------------------
# Side effects
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_commands_email_customer_and_announce(db: AsyncSession, locks: SequenceLocks) -> None:
    record = await _request(db, category="Visa", sub_category="Du lịch", amount=1_000, email="a@example.com")
    outcome = await approve_service_request(db, record.id, ApprovalRequest(), locks, now=NOW)

    emails = [c for c in outcome.commands if isinstance(c, EmailCommand)]
    broadcasts = [c for c in outcome.commands if isinstance(c, BroadcastCommand)]
    assert [e.recipient for e in emails] == ["a@example.com"]
    assert "VDL-261018-N-001" in emails[0].html
    assert broadcasts[0].event == REQUEST_APPROVED
    assert broadcasts[0].payload["code"] == "VDL-261018-N-001"


@pytest.mark.asyncio
async def test_partner_email_falls_back_to_company(db: AsyncSession, locks: SequenceLocks) -> None:
    company = await _company(db)
    record = await _request(db, company_id=company.id, category="Visa", amount=1_000)
    outcome = await approve_service_request(db, record.id, ApprovalRequest(), locks, now=NOW)
    emails = [c for c in outcome.commands if isinstance(c, EmailCommand)]
    assert [e.recipient for e in emails] == ["ketoan@minhphat.vn"]


# ---------------------------------------------------------------------------
# Overlapping approvals
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_concurrent_approvals_get_distinct_sequences(tmp_path) -> None:
    # File database: every session gets its own connection, as with postgres
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'approvals.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    locks = SequenceLocks()

    async with factory() as setup:
        ids = [
            (await _request(setup, category="Kết hôn", sub_category="Đăng ký kết hôn", amount=100_000)).id
            for _ in range(5)
        ]

    async def approve(request_id: int) -> str:
        async with factory() as session:
            outcome = await approve_service_request(session, request_id, ApprovalRequest(), locks, now=NOW)
            return outcome.request.code

    try:
        codes = await asyncio.gather(*(approve(i) for i in ids))
    finally:
        await engine.dispose()

    assert sorted(codes) == [f"KH-261018-N-{n:03d}" for n in range(1, 6)]
    assert locks.in_use("KH", "261018") == 0
