"""
service.py - Service request intake rules.

Two ways a request enters the system:
  - the public consultation form (create_consultation): announced to every
    connected CMS client with new_request and acknowledged by email
  - staff entering it in the CMS (create_cms_request): no broadcast
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from onepass.commands import BroadcastCommand, Command, EmailCommand
from onepass.errors import NotFoundError, ValidationError
from onepass.intake.schemas import (
    ConsultationCreate,
    ContactMethod,
    ServiceRequestCreate,
    ServiceRequestOut,
)
from onepass.models.service_request import ServiceRequestORM
from onepass.realtime.schemas import NEW_REQUEST
from onepass.store import create_request, get_user
from onepass.templates import consultation_received

logger = logging.getLogger(__name__)

CONSULTATION_STATUS = "Tư vấn"


async def create_consultation(
    db: AsyncSession,
    form: ConsultationCreate,
) -> tuple[ServiceRequestORM, list[Command]]:
    """
    Persist a consultation request.

    Contact method rules:
      Trực tiếp -> keep the preferred date and time
      Email     -> email is required
      other     -> date and time are dropped
    """
    fields = form.model_dump()
    if form.contact_method == ContactMethod.email.value and not form.email:
        raise ValidationError.for_field("email", "Email là bắt buộc")
    if form.contact_method != ContactMethod.in_person.value:
        fields["preferred_date"] = None
        fields["preferred_time"] = None

    fields["status"] = CONSULTATION_STATUS
    fields["created_at"] = datetime.now(timezone.utc)
    record = await create_request(db, fields)
    logger.info("Consultation received request_id=%s contact_method=%s", record.id, form.contact_method)

    commands: list[Command] = [
        BroadcastCommand(
            event=NEW_REQUEST,
            payload=ServiceRequestOut.model_validate(record).model_dump(mode="json"),
        )
    ]
    if record.email:
        subject, html = consultation_received(record.full_name or "", record.category or "")
        commands.append(EmailCommand(recipient=record.email, subject=subject, html=html))
    return record, commands


async def create_cms_request(db: AsyncSession, body: ServiceRequestCreate) -> ServiceRequestORM:
    fields = body.model_dump(exclude_none=True)
    if body.handler_id is not None and await get_user(db, body.handler_id) is None:
        raise NotFoundError(f"User '{body.handler_id}' not found")
    fields.setdefault("created_at", datetime.now(timezone.utc))
    fields.setdefault("status", CONSULTATION_STATUS)
    record = await create_request(db, fields)
    logger.info("CMS request created request_id=%s", record.id)
    return record
