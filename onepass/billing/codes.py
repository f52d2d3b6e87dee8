"""
codes.py - Business code generation for approved service requests.

Format:  {PREFIX}-{YYMMDD}-{Y|N}-{SEQ3}      e.g. KH-261018-Y-004

  PREFIX  (category, sub_category) table lookup, else initials of the
          category name, else DEFAULT_PREFIX
  YYMMDD  approval date in settings.business_timezone (not the request date)
  Y|N     invoice requested
  SEQ3    per (PREFIX, YYMMDD) counter, zero-padded to 3 digits; the sequence
          is shared by Y and N codes of the same prefix and day

Sequence allocation reads existing codes and writes the next one, so two
approvals for the same key must not interleave. SequenceLocks serializes them
within one process; across replicas the unique index on service_requests.code
rejects a colliding write instead of storing a duplicate.
"""
from __future__ import annotations

import asyncio
import logging
import re
import unicodedata
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from onepass.config import settings
from onepass.models.service_request import ServiceRequestORM

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_PREFIX = "DV"
MAX_PREFIX_LENGTH = 5
MIN_CODE_LENGTH = 8          # shorter stored codes are treated as absent
SEQUENCE_WIDTH = 3

INVOICE_TRUTHY_WORDS = frozenset({"có", "co", "yes", "y", "true", "1", "x"})

# (category -> sub_category -> prefix)
SERVICE_CODE_TABLE: dict[str, dict[str, str]] = {
    "Chứng thực": {
        "Chứng thực bản sao": "CTBS",
        "Chứng thực chữ ký": "CTCK",
        "Chứng thực hợp đồng": "CTHD",
    },
    "Hợp pháp hóa lãnh sự": {
        "Hợp pháp hóa": "HPH",
        "Chứng nhận lãnh sự": "CNLS",
    },
    "Kết hôn": {
        "Đăng ký kết hôn": "KH",
        "Ghi chú kết hôn": "GCKH",
        "Xác nhận tình trạng hôn nhân": "XNHN",
    },
    "Khai sinh": {
        "Đăng ký khai sinh": "KS",
        "Trích lục khai sinh": "TLKS",
    },
    "Hộ chiếu": {
        "Cấp mới": "HCCM",
        "Gia hạn": "HCGH",
    },
    "Quốc tịch": {
        "Thôi quốc tịch": "TQT",
        "Nhập quốc tịch": "NQT",
    },
    "Visa": {
        "Du lịch": "VDL",
        "Công tác": "VCT",
        "Thăm thân": "VTT",
    },
    "Dịch thuật": {
        "Dịch công chứng": "DTCC",
        "Dịch thuật thường": "DT",
    },
}

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")


# ---------------------------------------------------------------------------
# Prefix
# ---------------------------------------------------------------------------

def strip_diacritics(text: str) -> str:
    """Remove Vietnamese tone marks and map đ/Đ, which NFD does not decompose."""
    text = text.replace("đ", "d").replace("Đ", "D")
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def initials_of(name: str) -> str:
    """Uppercase leading character of each alphanumeric word, at most MAX_PREFIX_LENGTH."""
    words = _NON_ALNUM.sub(" ", strip_diacritics(name)).split()
    return "".join(word[0] for word in words).upper()[:MAX_PREFIX_LENGTH]


def resolve_prefix(category: Optional[str], sub_category: Optional[str] = None) -> str:
    category = (category or "").strip()
    sub_category = (sub_category or "").strip()

    mapped = SERVICE_CODE_TABLE.get(category, {}).get(sub_category)
    if mapped:
        return mapped
    return initials_of(category) or DEFAULT_PREFIX


# ---------------------------------------------------------------------------
# Date / invoice segments
# ---------------------------------------------------------------------------

def date_segment(moment: datetime) -> str:
    """YYMMDD of the moment in the business timezone (naive datetimes are taken as UTC)."""
    tz = ZoneInfo(settings.business_timezone)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=ZoneInfo("UTC"))
    return moment.astimezone(tz).strftime("%y%m%d")


def invoice_flag(value: Any) -> str:
    if value is True:
        return "Y"
    if value is None or value is False:
        return "N"
    return "Y" if str(value).strip().casefold() in INVOICE_TRUTHY_WORDS else "N"


# ---------------------------------------------------------------------------
# Code assembly / parsing
# ---------------------------------------------------------------------------

def format_code(prefix: str, date: str, flag: str, sequence: int) -> str:
    return f"{prefix}-{date}-{flag}-{sequence:0{SEQUENCE_WIDTH}d}"


def parse_sequence(code: Optional[str]) -> Optional[int]:
    """Trailing numeric segment of a code, or None when it is not a number."""
    if not code:
        return None
    tail = code.rsplit("-", 1)[-1].strip()
    if not tail.isdigit():
        return None
    return int(tail)


def has_code(code: Optional[str]) -> bool:
    """True when a stored code is long enough to be a real one; generation is then skipped."""
    return code is not None and len(code.strip()) >= MIN_CODE_LENGTH


async def next_sequence(db: AsyncSession, prefix: str, date: str) -> int:
    """
    Next sequence for (prefix, date): highest existing sequence + 1, or 1.

    Every code of the key is scanned instead of only the newest row: codes
    of one day can be approved in any order relative to row creation, and
    zero-padded text ordering breaks once a day passes 999.
    """
    pattern = f"{prefix}-{date}-%"
    result = await db.execute(
        select(ServiceRequestORM.code).where(ServiceRequestORM.code.like(pattern))
    )
    sequences = [seq for seq in (parse_sequence(code) for code in result.scalars()) if seq is not None]
    return max(sequences, default=0) + 1


# ---------------------------------------------------------------------------
# Per-key serialization
# ---------------------------------------------------------------------------

class SequenceLocks:
    """
    One asyncio.Lock per (prefix, date). Stored on app.state.sequence_locks.

    hold() counts holders and waiters per key; prune() only forgets keys
    nobody is using, so a waiter woken after release() keeps its lock.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._users: dict[tuple[str, str], int] = {}

    def for_key(self, prefix: str, date: str) -> asyncio.Lock:
        key = (prefix, date)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, prefix: str, date: str) -> AsyncIterator[None]:
        key = (prefix, date)
        lock = self.for_key(prefix, date)
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]

    def in_use(self, prefix: str, date: str) -> int:
        return self._users.get((prefix, date), 0)

    def prune(self, keep_date: str) -> None:
        """Forget unused keys of other days so the map does not grow forever."""
        stale = [
            key for key, lock in self._locks.items()
            if key[1] != keep_date and not lock.locked() and not self._users.get(key)
        ]
        for key in stale:
            del self._locks[key]
