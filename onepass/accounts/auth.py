"""
auth.py - Password hashing (bcrypt) and credential checks.

bcrypt is CPU-bound, so the async helpers run it in a worker thread.
"""
from __future__ import annotations

import asyncio
import logging

import bcrypt
from sqlalchemy.ext.asyncio import AsyncSession

from onepass.config import settings
from onepass.models.user import UserORM
from onepass.store import get_user_by_username

logger = logging.getLogger(__name__)


def _to_bcrypt_secret(password: str) -> bytes:
    """
    bcrypt only uses the first 72 BYTES of the password.
    We truncate to 72 bytes to avoid ValueError and to make behavior explicit.
    """
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(_to_bcrypt_secret(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_to_bcrypt_secret(password), password_hash.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


async def hash_password_async(password: str) -> str:
    return await asyncio.to_thread(hash_password, password)


async def authenticate(db: AsyncSession, username: str, password: str) -> tuple[UserORM | None, str]:
    """
    Check credentials. Returns (user, "") on success or (None, reason) where
    reason distinguishes an unknown account from a wrong password, as the
    CMS login screen shows different messages for each.
    """
    user = await get_user_by_username(db, username)
    if user is None:
        return None, "Tài khoản không tồn tại"
    if not await asyncio.to_thread(verify_password, password, user.password_hash):
        logger.info("Failed login user_id=%s", user.id)
        return None, "Sai mật khẩu"
    logger.info("Login user_id=%s", user.id)
    return user, ""
