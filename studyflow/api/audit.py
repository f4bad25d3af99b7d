from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel

from studyflow.api.dependencies import Services, get_services, require_participant
from studyflow.api.errors import to_http_exception
from studyflow.core.errors import StudyError
from studyflow.models.audit import AuditEventType
from studyflow.models.principal import Principal

router = APIRouter(prefix="/v1/audit", tags=["audit"])


class AuditEventOut(BaseModel):
    id: str
    event_type: str
    occurred_at: int
    payload: dict[str, Any]


@router.get("/me", response_model=list[AuditEventOut])
async def my_audit_history(
    response: Response,
    principal: Annotated[Principal, Depends(require_participant)],
    services: Annotated[Services, Depends(get_services)],
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    event_type: AuditEventType | None = None,
) -> list[AuditEventOut]:
    try:
        events = await services.audit.history(
            principal.user_id, limit=limit, offset=offset, event_type=event_type
        )
        total = await services.audit.count(principal.user_id)
    except StudyError as e:
        raise to_http_exception(e) from None
    response.headers["X-Total-Count"] = str(total)
    return [
        AuditEventOut(
            id=str(e.id),
            event_type=e.event_type.value,
            occurred_at=e.occurred_at,
            payload=e.payload,
        )
        for e in events
    ]
