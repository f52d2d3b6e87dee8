"""
B2B partner HTTP routes - POST /api/b2b/register
                          GET  /api/b2b/companies
                          GET  /api/b2b/companies/{id}
                          POST /api/b2b/companies/{id}/wallet
                          GET  /api/b2b/tiers
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from onepass.billing.schemas import CompanyCreate, CompanyOut, WalletTopUp
from onepass.billing.tiers import BASE_TIER, TIERS
from onepass.commands import BroadcastCommand, EmailCommand, dispatch
from onepass.database import get_db
from onepass.dependencies import get_mailer, get_registry
from onepass.errors import NotFoundError
from onepass.mailer import Mailer
from onepass.realtime.registry import SessionRegistry
from onepass.realtime.schemas import NEW_REQUEST
from onepass.store import create_company, get_company, list_companies, top_up_wallet
from onepass.templates import partner_registration_received

router = APIRouter(prefix="/api/b2b", tags=["b2b"])
logger = logging.getLogger(__name__)


@router.post("/register")
async def register_partner(
    form: CompanyCreate,
    db: AsyncSession = Depends(get_db),
    registry: SessionRegistry = Depends(get_registry),
    mailer: Mailer = Depends(get_mailer),
) -> JSONResponse:
    """Partner registration from the B2B portal. Announced to CMS clients as new_request."""
    company = await create_company(
        db,
        {**form.model_dump(), "tier": BASE_TIER.name, "cumulative_revenue": 0, "wallet_balance": 0},
    )
    await db.commit()

    data = CompanyOut.model_validate(company).model_dump(mode="json")
    subject, html = partner_registration_received(company.name)
    await dispatch(
        [
            BroadcastCommand(event=NEW_REQUEST, payload={"type": "b2b_registration", **data}),
            EmailCommand(recipient=company.email, subject=subject, html=html),
        ],
        registry,
        mailer,
    )
    return JSONResponse(
        status_code=200,
        content={"success": True, "data": data, "message": "Đăng ký đối tác thành công"},
    )


@router.get("/companies")
async def get_companies(db: AsyncSession = Depends(get_db)) -> JSONResponse:
    rows = await list_companies(db)
    return JSONResponse(
        status_code=200,
        content={"success": True, "data": [CompanyOut.model_validate(r).model_dump(mode="json") for r in rows]},
    )


@router.get("/companies/{company_id}")
async def get_company_by_id(company_id: int, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    company = await get_company(db, company_id)
    if company is None:
        raise NotFoundError(f"Company '{company_id}' not found")
    return JSONResponse(
        status_code=200,
        content={"success": True, "data": CompanyOut.model_validate(company).model_dump(mode="json")},
    )


@router.post("/companies/{company_id}/wallet")
async def top_up_company_wallet(
    company_id: int,
    body: WalletTopUp,
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    company = await top_up_wallet(db, company_id, body.amount)
    return JSONResponse(
        status_code=200,
        content={"success": True, "data": CompanyOut.model_validate(company).model_dump(mode="json")},
    )


@router.get("/tiers")
async def get_tiers() -> dict:
    """Discount tiers, lowest first."""
    return {
        "success": True,
        "data": [
            {"name": t.name, "threshold": t.threshold, "discount_percent": t.discount_percent}
            for t in TIERS
        ],
    }
