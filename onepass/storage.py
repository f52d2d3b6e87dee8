"""
storage.py - File upload storage.

upload(bucket, key, data, content_type) -> public URL

Files are written under settings.upload_dir/{bucket}/{key} and served by the
StaticFiles mount at /uploads (see main.py). Keys are flattened to a single
path segment so a crafted key cannot escape its bucket.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from onepass.config import Settings, settings
from onepass.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

PUBLIC_MOUNT = "/uploads"

ALLOWED_IMAGE_MIMES = {"image/jpeg", "image/png", "image/webp", "image/gif"}


def _safe_segment(value: str) -> str:
    segment = Path(value).name.strip()
    if not segment or segment in {".", ".."}:
        raise ValidationError.for_field("key", f"Invalid storage key '{value}'")
    return segment


class LocalStorage:
    def __init__(self, config: Settings = settings) -> None:
        self._config = config
        self.root = Path(config.upload_dir)

    def public_url(self, bucket: str, key: str) -> str:
        base = self._config.public_base_url.rstrip("/")
        return f"{base}{PUBLIC_MOUNT}/{bucket}/{key}"

    async def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        bucket = _safe_segment(bucket)
        key = _safe_segment(key)
        target = self.root / bucket / key

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)   # upsert: overwrite an existing object

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            logger.error("Storage write failed bucket=%s key=%s: %s", bucket, key, exc)
            raise UpstreamError("Could not store uploaded file") from exc

        logger.info(
            "Stored object bucket=%s key=%s size=%d content_type=%s",
            bucket,
            key,
            len(data),
            content_type,
        )
        return self.public_url(bucket, key)
