"""Operator endpoints: participant provisioning and consent version lifecycle."""

from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from studyflow.api.consent import ConsentVersionOut
from studyflow.api.dependencies import (
    Services,
    get_identity_provider,
    get_services,
    require_role,
)
from studyflow.api.errors import to_http_exception
from studyflow.core.errors import StudyError
from studyflow.models.identity import Identity
from studyflow.models.principal import Principal
from studyflow.repos.identity_repo import ALIAS_ATTRIBUTE, InMemoryIdentityProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

Admin = Annotated[Principal, Depends(require_role("admin"))]
ServicesDep = Annotated[Services, Depends(get_services)]
Identities = Annotated[InMemoryIdentityProvider, Depends(get_identity_provider)]


class ParticipantIn(BaseModel):
    alias: str = Field(min_length=1, max_length=100)
    secret: str | None = Field(default=None, min_length=8, max_length=200)


class ParticipantOut(BaseModel):
    id: str
    alias: str | None
    created_at: int
    # Only set on creation when the secret was generated server-side
    secret: str | None = None
    current_module: str | None = None

    @staticmethod
    def from_identity(identity: Identity, **extra) -> ParticipantOut:
        return ParticipantOut(
            id=str(identity.id),
            alias=identity.attributes.get(ALIAS_ATTRIBUTE),
            created_at=identity.created_at,
            **extra,
        )


class ParticipantPageOut(BaseModel):
    items: list[ParticipantOut]
    next_cursor: str | None


class ConsentVersionIn(BaseModel):
    version: str = Field(min_length=1, max_length=64)
    title: str = Field(min_length=1, max_length=255)
    content_text: str | None = None


@router.post("/participants", response_model=ParticipantOut, status_code=status.HTTP_201_CREATED)
async def create_participant(
    body: ParticipantIn,
    principal: Admin,
    services: ServicesDep,
    identities: Identities,
) -> ParticipantOut:
    generated = body.secret is None
    secret = body.secret or secrets.token_urlsafe(12)
    try:
        identity = await identities.create_identity(
            {ALIAS_ATTRIBUTE: body.alias, "role": "participant"}, secret=secret
        )
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Alias already exists"
        ) from None

    try:
        transition = await services.access.initialize_participant(str(identity.id))
    except StudyError as e:
        raise to_http_exception(e) from None

    logger.info(
        "Participant created id=%s by admin=%s", identity.id, principal.user_id
    )
    return ParticipantOut.from_identity(
        identity,
        secret=secret if generated else None,
        current_module=transition.record.module_name,
    )


@router.get("/participants", response_model=ParticipantPageOut)
async def list_participants(
    principal: Admin,
    identities: Identities,
    alias: str | None = None,
    cursor: str | None = None,
    page_size: Annotated[int, Query(ge=1, le=100)] = 50,
) -> ParticipantPageOut:
    try:
        if alias is not None:
            page = await identities.find_by_attribute(
                ALIAS_ATTRIBUTE, alias, page_size=page_size, cursor=cursor
            )
        else:
            page = await identities.list_identities(page_size=page_size, cursor=cursor)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from None
    return ParticipantPageOut(
        items=[ParticipantOut.from_identity(i) for i in page.items],
        next_cursor=page.next_cursor,
    )


@router.get("/consent-versions", response_model=list[ConsentVersionOut])
async def list_consent_versions(principal: Admin, services: ServicesDep) -> list[ConsentVersionOut]:
    try:
        versions = await services.consent.list_versions()
    except StudyError as e:
        raise to_http_exception(e) from None
    return [ConsentVersionOut.from_version(v) for v in versions]


@router.post(
    "/consent-versions",
    response_model=ConsentVersionOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_consent_version(
    body: ConsentVersionIn, principal: Admin, services: ServicesDep
) -> ConsentVersionOut:
    try:
        created = await services.consent.create_version(
            body.version, body.title, body.content_text
        )
    except StudyError as e:
        raise to_http_exception(e) from None
    return ConsentVersionOut.from_version(created)


@router.post("/consent-versions/{version}/activate", response_model=ConsentVersionOut)
async def activate_consent_version(
    version: str, principal: Admin, services: ServicesDep
) -> ConsentVersionOut:
    try:
        activated = await services.consent.activate_version(version)
    except StudyError as e:
        raise to_http_exception(e) from None
    # Cached navigation of other participants catches up within NAVIGATION_CACHE_TTL
    logger.info("Consent version %s activated by admin=%s", version, principal.user_id)
    return ConsentVersionOut.from_version(activated)


@router.post("/consent-versions/{version}/retire", response_model=ConsentVersionOut)
async def retire_consent_version(
    version: str, principal: Admin, services: ServicesDep
) -> ConsentVersionOut:
    try:
        retired = await services.consent.retire_version(version)
    except StudyError as e:
        raise to_http_exception(e) from None
    logger.info("Consent version %s retired by admin=%s", version, principal.user_id)
    return ConsentVersionOut.from_version(retired)
