"""
Tests for onepass.billing.codes - prefix resolution, code segments,
sequence allocation and per-key locks.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from onepass.billing.codes import (
    DEFAULT_PREFIX,
    SequenceLocks,
    date_segment,
    format_code,
    has_code,
    initials_of,
    invoice_flag,
    next_sequence,
    parse_sequence,
    resolve_prefix,
    strip_diacritics,
)
from onepass.models.service_request import ServiceRequestORM


# ---------------------------------------------------------------------------
# Prefix
# ---------------------------------------------------------------------------

def test_table_lookup() -> None:
    assert resolve_prefix("Kết hôn", "Đăng ký kết hôn") == "KH"
    assert resolve_prefix("Chứng thực", "Chứng thực bản sao") == "CTBS"
    assert resolve_prefix(" Visa ", " Du lịch ") == "VDL"


def test_unknown_sub_category_falls_back_to_initials() -> None:
    assert resolve_prefix("Hộ chiếu", "Không có") == "HC"
    assert resolve_prefix("Giấy phép lao động") == "GPLD"


def test_empty_category_uses_default() -> None:
    assert resolve_prefix(None) == DEFAULT_PREFIX
    assert resolve_prefix("   ") == DEFAULT_PREFIX
    assert resolve_prefix("---") == DEFAULT_PREFIX


def test_strip_diacritics_handles_d_stroke() -> None:
    assert strip_diacritics("Đăng ký đổi") == "Dang ky doi"


def test_initials_are_capped() -> None:
    assert initials_of("một hai ba bốn năm sáu bảy") == "MHBBN"
    assert initials_of("dịch-thuật/công chứng") == "DTCC"


# ---------------------------------------------------------------------------
# Segments
# ---------------------------------------------------------------------------

def test_date_segment_uses_business_timezone() -> None:
    # 18:30 UTC on Oct 17 is already Oct 18 in Asia/Ho_Chi_Minh (UTC+7)
    assert date_segment(datetime(2026, 10, 17, 18, 30, tzinfo=timezone.utc)) == "261018"
    assert date_segment(datetime(2026, 10, 17, 16, 59, tzinfo=timezone.utc)) == "261017"


def test_naive_datetime_taken_as_utc() -> None:
    assert date_segment(datetime(2026, 10, 17, 18, 30)) == "261018"


@pytest.mark.parametrize("value", [True, "Có", "co", "YES", "y", "true", "1", "x", " có "])
def test_invoice_truthy(value) -> None:
    assert invoice_flag(value) == "Y"


@pytest.mark.parametrize("value", [None, False, "", "Không", "no", "0", "maybe"])
def test_invoice_falsy(value) -> None:
    assert invoice_flag(value) == "N"


def test_format_and_parse() -> None:
    code = format_code("KH", "261018", "Y", 4)
    assert code == "KH-261018-Y-004"
    assert parse_sequence(code) == 4
    assert parse_sequence("KH-261018-N-1234") == 1234
    assert parse_sequence("KH-261018-N-abc") is None
    assert parse_sequence(None) is None


def test_has_code_threshold() -> None:
    assert has_code("KH-261018-Y-004")
    assert has_code("ABCDEFGH")
    assert not has_code("ABC")
    assert not has_code("  ABCDEF  ")
    assert not has_code(None)


# ---------------------------------------------------------------------------
# Sequence allocation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_next_sequence_starts_at_one(db) -> None:
    assert await next_sequence(db, "KH", "261018") == 1


@pytest.mark.asyncio
async def test_next_sequence_uses_highest_existing(db) -> None:
    for code in ["KH-261018-Y-002", "KH-261018-N-010", "KH-261018-Y-003", "KH-261017-Y-050", "KHX-261018-Y-099"]:
        db.add(ServiceRequestORM(code=code, status="Đã duyệt"))
    await db.flush()

    # Shared across Y/N, isolated per day and per prefix
    assert await next_sequence(db, "KH", "261018") == 11
    assert await next_sequence(db, "KH", "261017") == 51
    assert await next_sequence(db, "KH", "261019") == 1


@pytest.mark.asyncio
async def test_next_sequence_past_999(db) -> None:
    db.add(ServiceRequestORM(code="DV-261018-N-999", status="Đã duyệt"))
    db.add(ServiceRequestORM(code="DV-261018-N-1000", status="Đã duyệt"))
    await db.flush()
    assert await next_sequence(db, "DV", "261018") == 1001


# ---------------------------------------------------------------------------
# Locks
# ---------------------------------------------------------------------------

def test_same_key_same_lock() -> None:
    locks = SequenceLocks()
    assert locks.for_key("KH", "261018") is locks.for_key("KH", "261018")
    assert locks.for_key("KH", "261018") is not locks.for_key("KH", "261019")
    assert locks.for_key("KH", "261018") is not locks.for_key("DV", "261018")


def test_prune_keeps_current_day() -> None:
    locks = SequenceLocks()
    today = locks.for_key("KH", "261018")
    yesterday = locks.for_key("KH", "261017")
    locks.prune(keep_date="261018")
    assert locks.for_key("KH", "261018") is today
    assert locks.for_key("KH", "261017") is not yesterday


@pytest.mark.asyncio
async def test_prune_keeps_held_lock() -> None:
    locks = SequenceLocks()
    held = locks.for_key("KH", "261017")
    async with held:
        locks.prune(keep_date="261018")
        assert locks.for_key("KH", "261017") is held


@pytest.mark.asyncio
async def test_prune_keeps_lock_with_pending_waiter() -> None:
    locks = SequenceLocks()
    lock = locks.for_key("KH", "261017")
    entered = []

    async def second_approval() -> None:
        async with locks.hold("KH", "261017"):
            entered.append(locks.for_key("KH", "261017") is lock)

    async with locks.hold("KH", "261017"):
        waiter = asyncio.create_task(second_approval())
        await asyncio.sleep(0)
        assert locks.in_use("KH", "261017") == 2

    # Released, but the woken waiter has not acquired it yet
    assert not lock.locked()
    locks.prune(keep_date="261018")
    assert locks.for_key("KH", "261017") is lock

    await waiter
    assert entered == [True]
    assert locks.in_use("KH", "261017") == 0
    locks.prune(keep_date="261018")
    assert locks.for_key("KH", "261017") is not lock
