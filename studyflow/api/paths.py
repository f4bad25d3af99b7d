from __future__ import annotations

import dataclasses
import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from studyflow.api.dependencies import Services, get_services, require_participant
from studyflow.api.errors import to_http_exception
from studyflow.api.modules import invalidate_navigation
from studyflow.api.schemas import CompleteIn, CompletionOut, ProgressOut, SaveIn
from studyflow.core.errors import StudyError
from studyflow.models.principal import Principal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/paths", tags=["paths"])


class PathSummaryOut(BaseModel):
    name: str
    title: str
    module_name: str | None
    parent_path: str | None
    is_common: bool
    accessible: bool
    status: str
    reason: str | None


class PathOut(BaseModel):
    name: str
    title: str
    description: str
    module_name: str | None
    parent_path: str | None
    accessible: bool
    is_completed: bool
    can_review: bool
    progress: ProgressOut | None
    children: list[str]


Participant = Annotated[Principal, Depends(require_participant)]
ServicesDep = Annotated[Services, Depends(get_services)]


@router.get("", response_model=list[PathSummaryOut])
async def list_paths(principal: Participant, services: ServicesDep) -> list[PathSummaryOut]:
    try:
        overview = await services.paths.path_overview(principal.user_id)
    except StudyError as e:
        raise to_http_exception(e) from None
    return [PathSummaryOut(**dataclasses.asdict(p)) for p in overview]


@router.get("/{name}", response_model=PathOut)
async def get_path(name: str, principal: Participant, services: ServicesDep) -> PathOut:
    try:
        view = await services.paths.path_for_user(principal.user_id, name)
    except StudyError as e:
        raise to_http_exception(e) from None
    return PathOut(
        name=view.path.name,
        title=view.path.title,
        description=view.path.description,
        module_name=view.path.module_name,
        parent_path=view.path.parent_path,
        accessible=view.accessible,
        is_completed=view.is_completed,
        can_review=view.can_review,
        progress=ProgressOut.from_record(view.progress) if view.progress else None,
        children=[c.name for c in view.children],
    )


@router.post("/{name}/start", response_model=ProgressOut)
async def start_path(name: str, principal: Participant, services: ServicesDep) -> ProgressOut:
    try:
        transition = await services.paths.start_path(principal.user_id, name)
    except StudyError as e:
        raise to_http_exception(e) from None
    await invalidate_navigation(principal.user_id)
    return ProgressOut.from_record(transition.record)


@router.post("/{name}/save", response_model=ProgressOut)
async def save_path(
    name: str, body: SaveIn, principal: Participant, services: ServicesDep
) -> ProgressOut:
    try:
        transition = await services.paths.save_path(principal.user_id, name, body.responses)
    except StudyError as e:
        raise to_http_exception(e) from None
    await invalidate_navigation(principal.user_id)
    return ProgressOut.from_record(transition.record)


@router.post("/{name}/complete", response_model=CompletionOut)
async def complete_path(
    name: str, body: CompleteIn, principal: Participant, services: ServicesDep
) -> CompletionOut:
    try:
        result = await services.paths.complete_path(
            principal.user_id, name, body.responses, body.metadata
        )
    except StudyError as e:
        raise to_http_exception(e) from None
    await invalidate_navigation(principal.user_id)
    return CompletionOut(
        progress=ProgressOut.from_record(result.record),
        next_module=result.next_module,
        unlocked_paths=list(result.unlocked_paths),
    )
