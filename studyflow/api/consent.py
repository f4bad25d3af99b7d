"""Consent endpoints.

POST /v1/consent records a ConsentRecord for the ACTIVE version and, the
first time round, completes the consent module.  After a version
rollover the consent module is already COMPLETED, so only the new record
is written.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from studyflow.api.dependencies import Services, get_services, require_participant
from studyflow.api.errors import to_http_exception
from studyflow.api.modules import invalidate_navigation
from studyflow.core.errors import StudyError
from studyflow.models.audit import AuditEventType
from studyflow.models.consent import ConsentRecord, ConsentVersion
from studyflow.models.principal import Principal
from studyflow.services.module_graph import CONSENT_MODULE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/consent", tags=["consent"])


class ConsentVersionOut(BaseModel):
    version: str
    title: str
    status: str
    content_text: str | None
    effective_at: int | None
    retired_at: int | None

    @staticmethod
    def from_version(v: ConsentVersion) -> ConsentVersionOut:
        return ConsentVersionOut(
            version=v.version,
            title=v.title,
            status=v.status.value,
            content_text=v.content_text,
            effective_at=v.effective_at,
            retired_at=v.retired_at,
        )


class ConsentRecordOut(BaseModel):
    id: str
    version: str
    consented_at: int
    content: str | None

    @staticmethod
    def from_record(r: ConsentRecord) -> ConsentRecordOut:
        return ConsentRecordOut(
            id=str(r.id), version=r.version, consented_at=r.consented_at, content=r.content
        )


class ConsentStatusOut(BaseModel):
    has_valid_consent: bool
    active_version: ConsentVersionOut | None
    latest: ConsentRecordOut | None
    needs_reconsent: bool


class ConsentIn(BaseModel):
    version: str = Field(min_length=1, max_length=64)
    content: str | None = Field(default=None, max_length=10000)


class ConsentOut(BaseModel):
    record: ConsentRecordOut
    module_completed: bool
    next_module: str | None


Participant = Annotated[Principal, Depends(require_participant)]
ServicesDep = Annotated[Services, Depends(get_services)]


@router.get("/version", response_model=ConsentVersionOut)
async def get_active_version(principal: Participant, services: ServicesDep) -> ConsentVersionOut:
    try:
        active = await services.consent.active_version()
    except StudyError as e:
        raise to_http_exception(e) from None
    return ConsentVersionOut.from_version(active)


@router.get("/status", response_model=ConsentStatusOut)
async def get_consent_status(principal: Participant, services: ServicesDep) -> ConsentStatusOut:
    try:
        state = await services.consent.consent_status(principal.user_id)
    except StudyError as e:
        raise to_http_exception(e) from None
    return ConsentStatusOut(
        has_valid_consent=state.has_valid_consent,
        active_version=(
            ConsentVersionOut.from_version(state.active_version)
            if state.active_version
            else None
        ),
        latest=ConsentRecordOut.from_record(state.latest) if state.latest else None,
        needs_reconsent=state.latest is not None and not state.has_valid_consent,
    )


@router.get("/history", response_model=list[ConsentRecordOut])
async def get_consent_history(
    principal: Participant, services: ServicesDep
) -> list[ConsentRecordOut]:
    try:
        history = await services.consent.consent_history(principal.user_id)
    except StudyError as e:
        raise to_http_exception(e) from None
    return [ConsentRecordOut.from_record(r) for r in history]


@router.post("", response_model=ConsentOut, status_code=status.HTTP_201_CREATED)
async def submit_consent(
    body: ConsentIn, principal: Participant, services: ServicesDep
) -> ConsentOut:
    user_id = principal.user_id
    try:
        before = await services.paths.unlocked_path_names(user_id)
        record = await services.consent.record_consent(user_id, body.version, body.content)
        await services.audit.record(
            user_id,
            AuditEventType.CONSENT,
            {"version": record.version, "consent_id": str(record.id)},
        )

        module_completed = False
        next_module: str | None = None
        progress = await services.machine.find_progress(user_id, CONSENT_MODULE)
        if progress is None or not progress.is_completed:
            result = await services.access.complete_module(
                user_id,
                CONSENT_MODULE,
                {"agreed": True},
                {"consent_version": record.version},
            )
            module_completed = True
            next_module = result.next_module
        else:
            current = await services.access.get_next_accessible_module(user_id)
            next_module = current.name if current else None
        await services.paths.record_new_unlocks(user_id, before)
    except StudyError as e:
        raise to_http_exception(e) from None

    await invalidate_navigation(user_id)
    return ConsentOut(
        record=ConsentRecordOut.from_record(record),
        module_completed=module_completed,
        next_module=next_module,
    )
