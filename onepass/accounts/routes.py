"""
CMS account HTTP routes - GET  /api/User
                          PUT  /api/User/{id}   (multipart, optional avatar)
                          POST /api/login
                          POST /api/register
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from onepass.accounts.auth import authenticate, hash_password_async
from onepass.accounts.schemas import LoginRequest, RegisterRequest, UserOut
from onepass.config import settings
from onepass.database import get_db
from onepass.dependencies import get_storage
from onepass.store import create_user, get_user, list_users, update_user
from onepass.storage import ALLOWED_IMAGE_MIMES, LocalStorage

router = APIRouter(prefix="/api", tags=["accounts"])
logger = logging.getLogger(__name__)

MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


def _user_json(user) -> dict:
    return UserOut.model_validate(user).model_dump(mode="json")


@router.get("/User")
async def get_users(db: AsyncSession = Depends(get_db)) -> JSONResponse:
    rows = await list_users(db)
    return JSONResponse(status_code=200, content={"success": True, "data": [_user_json(u) for u in rows]})


@router.put("/User/{user_id}")
async def edit_user(
    user_id: int,
    username: Optional[str] = Form(default=None),
    email: Optional[str] = Form(default=None),
    password: Optional[str] = Form(default=None),
    avatar: Optional[UploadFile] = File(default=None),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
) -> JSONResponse:
    """
    Update profile fields sent by the CMS settings page.

    Blank fields are left unchanged. A new password is re-hashed; an avatar
    is stored under the avatars bucket and its public URL saved on the user.
    """
    if await get_user(db, user_id) is None:
        raise HTTPException(status_code=404, detail=f"User '{user_id}' not found")

    changes: dict = {}
    if username and username.strip():
        changes["username"] = username.strip()
    if email and email.strip():
        changes["email"] = email.strip()
    if password and password.strip():
        changes["password_hash"] = await hash_password_async(password)

    if avatar is not None and avatar.filename:
        # Read all bytes first, validate, only then hand them to storage
        data = await avatar.read()
        if len(data) > settings.max_upload_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"Avatar exceeds {settings.max_upload_bytes} bytes",
            )
        if avatar.content_type not in ALLOWED_IMAGE_MIMES:
            raise HTTPException(
                status_code=415,
                detail=f"Unsupported avatar type '{avatar.content_type}'",
            )
        ext = MIME_EXTENSIONS[avatar.content_type]
        stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
        key = f"avatar_{user_id}_{stamp}.{ext}"
        changes["avatar"] = await storage.upload(settings.avatar_bucket, key, data, avatar.content_type)
        logger.info("Avatar updated user_id=%s key=%s", user_id, key)

    user = await update_user(db, user_id, changes)
    return JSONResponse(
        status_code=200,
        content={"success": True, "data": _user_json(user), "message": "Cập nhật thông tin thành công"},
    )


@router.post("/login")
async def login(creds: LoginRequest, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    if not creds.is_complete():
        raise HTTPException(status_code=400, detail="Thiếu tên đăng nhập hoặc mật khẩu")

    user, reason = await authenticate(db, creds.username, creds.password)
    if user is None:
        raise HTTPException(status_code=401, detail=reason)
    return JSONResponse(status_code=200, content={"success": True, "user": _user_json(user)})


@router.post("/register")
async def register(form: RegisterRequest, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    if not form.is_complete():
        raise HTTPException(status_code=400, detail="Vui lòng nhập đầy đủ thông tin")

    user = await create_user(
        db,
        username=form.username,
        email=form.email,
        password_hash=await hash_password_async(form.password),
        role=form.role,
    )
    return JSONResponse(status_code=200, content={"success": True, "user": _user_json(user)})
