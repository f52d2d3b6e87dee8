"""
Service request (YeuCau) HTTP routes - GET  /api/yeucau
                                       POST /api/yeucau
                                       PUT  /api/yeucau/{id}
                                       POST /api/tuvan
                                       POST /api/yeucau/{id}/approve

Paths and the {success, data, message} response shape are the ones the CMS
and the public website already call.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from onepass.billing.approval import approve_service_request
from onepass.billing.codes import SequenceLocks
from onepass.billing.schemas import ApprovalRequest, ApprovalResult, CompanyOut
from onepass.commands import dispatch
from onepass.database import get_db
from onepass.dependencies import get_mailer, get_registry, get_sequence_locks
from onepass.intake.schemas import (
    ConsultationCreate,
    ServiceRequestCreate,
    ServiceRequestOut,
    ServiceRequestUpdate,
)
from onepass.intake.service import create_cms_request, create_consultation
from onepass.mailer import Mailer
from onepass.realtime.registry import SessionRegistry
from onepass.store import list_requests, update_request

router = APIRouter(prefix="/api", tags=["service_requests"])
logger = logging.getLogger(__name__)


def _ok(data, message: Optional[str] = None) -> JSONResponse:
    content = {"success": True, "data": data}
    if message:
        content["message"] = message
    return JSONResponse(status_code=200, content=content)


@router.get("/yeucau")
async def get_requests(db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """All service requests with the handler's public fields, oldest first."""
    rows = await list_requests(db)
    return _ok([ServiceRequestOut.model_validate(r).model_dump(mode="json") for r in rows])


@router.post("/yeucau")
async def create_request_from_cms(
    body: ServiceRequestCreate,
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    record = await create_cms_request(db, body)
    return _ok(ServiceRequestOut.model_validate(record).model_dump(mode="json"), "Thêm yêu cầu thành công")


@router.put("/yeucau/{request_id}")
async def edit_request(
    request_id: int,
    body: ServiceRequestUpdate,
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Apply only the fields present in the body. Codes and approved billing inputs are read-only."""
    changes = body.model_dump(include=body.model_fields_set)
    changes.pop("created_at", None)
    record = await update_request(db, request_id, changes)
    return _ok(ServiceRequestOut.model_validate(record).model_dump(mode="json"))


@router.post("/tuvan")
async def submit_consultation(
    form: ConsultationCreate,
    db: AsyncSession = Depends(get_db),
    registry: SessionRegistry = Depends(get_registry),
    mailer: Mailer = Depends(get_mailer),
) -> JSONResponse:
    record, commands = await create_consultation(db, form)
    # Commit before announcing: CMS clients refetch the list on new_request
    await db.commit()
    await dispatch(commands, registry, mailer)
    return _ok(ServiceRequestOut.model_validate(record).model_dump(mode="json"), "Thêm yêu cầu thành công")


@router.post("/yeucau/{request_id}/approve")
async def approve_request(
    request_id: int,
    payload: Optional[ApprovalRequest] = None,
    db: AsyncSession = Depends(get_db),
    registry: SessionRegistry = Depends(get_registry),
    mailer: Mailer = Depends(get_mailer),
    locks: SequenceLocks = Depends(get_sequence_locks),
) -> JSONResponse:
    """
    Assign the service code and freeze the financial breakdown.
    Re-approving an already coded request returns it unchanged.
    """
    outcome = await approve_service_request(db, request_id, payload or ApprovalRequest(), locks)
    await dispatch(outcome.commands, registry, mailer)

    result = ApprovalResult(
        request=ServiceRequestOut.model_validate(outcome.request),
        company=CompanyOut.model_validate(outcome.company) if outcome.company else None,
        tier_applied=outcome.tier_applied.name if outcome.tier_applied else None,
        already_approved=outcome.already_approved,
    )
    message = "Yêu cầu đã được duyệt trước đó" if outcome.already_approved else "Duyệt yêu cầu thành công"
    return _ok(result.model_dump(mode="json"), message)
