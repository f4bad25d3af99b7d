"""Module navigation and progress endpoints.

GET /v1/modules is served read-through from the navigation cache; every
successful write below deletes the caller's cache entry before returning.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from studyflow.api.dependencies import Services, get_services, require_participant
from studyflow.api.errors import to_http_exception
from studyflow.api.schemas import CompleteIn, CompletionOut, ProgressOut, SaveIn
from studyflow.core.config import SETTINGS
from studyflow.core.errors import StudyError
from studyflow.models.principal import Principal
from studyflow.services.cache import cache_service, navigation_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/modules", tags=["modules"])


class NavigationOut(BaseModel):
    current_module: str | None
    active_module: str | None
    next_module: str | None
    completed: list[str]
    available: list[str]
    total_modules: int
    percentage: int
    study_complete: bool
    blocked_reason: str | None


class ModuleStatsOut(BaseModel):
    total_modules: int
    completed_modules: int
    in_progress_modules: int
    percentage: int
    modules: list[dict[str, Any]]


class ModuleOut(BaseModel):
    name: str
    title: str
    description: str
    sequence_order: int
    requires_consent: bool
    accessible: bool
    is_completed: bool
    can_review: bool
    progress: ProgressOut | None


Participant = Annotated[Principal, Depends(require_participant)]
ServicesDep = Annotated[Services, Depends(get_services)]


async def invalidate_navigation(user_id: str) -> None:
    await cache_service.delete(navigation_key(user_id))


@router.get("", response_model=NavigationOut)
async def get_navigation(principal: Participant, services: ServicesDep) -> NavigationOut:
    key = navigation_key(principal.user_id)
    cached = await cache_service.get(key)
    if cached is not None:
        return NavigationOut(**json.loads(cached))

    try:
        state = await services.access.navigation_state(principal.user_id)
    except StudyError as e:
        raise to_http_exception(e) from None

    out = NavigationOut(**dataclasses.asdict(state))
    await cache_service.set(key, out.model_dump_json(), SETTINGS.navigation_cache_ttl)
    return out


@router.get("/progress", response_model=ModuleStatsOut)
async def get_completion_stats(principal: Participant, services: ServicesDep) -> ModuleStatsOut:
    try:
        stats = await services.access.completion_stats(principal.user_id)
    except StudyError as e:
        raise to_http_exception(e) from None
    return ModuleStatsOut(**dataclasses.asdict(stats))


@router.get("/{name}", response_model=ModuleOut)
async def get_module(name: str, principal: Participant, services: ServicesDep) -> ModuleOut:
    try:
        view = await services.access.get_module_for_user(principal.user_id, name)
    except StudyError as e:
        raise to_http_exception(e) from None
    return ModuleOut(
        name=view.module.name,
        title=view.module.title,
        description=view.module.description,
        sequence_order=view.module.sequence_order,
        requires_consent=view.module.requires_consent,
        accessible=view.accessible,
        is_completed=view.is_completed,
        can_review=view.can_review,
        progress=ProgressOut.from_record(view.progress) if view.progress else None,
    )


@router.post("/{name}/start", response_model=ProgressOut)
async def start_module(name: str, principal: Participant, services: ServicesDep) -> ProgressOut:
    try:
        transition = await services.access.start_module(principal.user_id, name)
    except StudyError as e:
        raise to_http_exception(e) from None
    await invalidate_navigation(principal.user_id)
    return ProgressOut.from_record(transition.record)


@router.post("/{name}/save", response_model=ProgressOut)
async def save_module(
    name: str, body: SaveIn, principal: Participant, services: ServicesDep
) -> ProgressOut:
    try:
        transition = await services.access.save_module(principal.user_id, name, body.responses)
    except StudyError as e:
        raise to_http_exception(e) from None
    await invalidate_navigation(principal.user_id)
    return ProgressOut.from_record(transition.record)


@router.post("/{name}/complete", response_model=CompletionOut)
async def complete_module(
    name: str, body: CompleteIn, principal: Participant, services: ServicesDep
) -> CompletionOut:
    try:
        before = await services.paths.unlocked_path_names(principal.user_id)
        result = await services.access.complete_module(
            principal.user_id, name, body.responses, body.metadata
        )
        unlocked = await services.paths.record_new_unlocks(principal.user_id, before)
    except StudyError as e:
        raise to_http_exception(e) from None
    await invalidate_navigation(principal.user_id)
    return CompletionOut(
        progress=ProgressOut.from_record(result.record),
        next_module=result.next_module,
        unlocked_paths=[p.name for p in unlocked],
    )
