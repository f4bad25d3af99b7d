"""FastAPI dependencies: bearer-token principals and the per-request service bundle.

When DATABASE_URL is configured every request gets services wired to
Postgres repos sharing one request-scoped session (commit on success,
rollback on error); audit rows go through their own sessions.  Without
DATABASE_URL a process-wide in-memory bundle is used, which is what the
test suite runs against.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Annotated
from uuid import UUID, uuid4

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from studyflow.core.config import SETTINGS
from studyflow.db.engine import async_session_factory
from studyflow.models.consent import ConsentVersion, ConsentVersionStatus
from studyflow.models.identity import Identity
from studyflow.models.principal import Principal
from studyflow.models.progress import now_ts
from studyflow.repos.audit_repo import AuditRepo, InMemoryAuditRepo
from studyflow.repos.consent_repo import (
    ConsentRepo,
    ConsentVersionRepo,
    InMemoryConsentRepo,
    InMemoryConsentVersionRepo,
)
from studyflow.repos.identity_repo import InMemoryIdentityProvider, hash_secret
from studyflow.repos.participant_repo import (
    InMemoryParticipantStateRepo,
    ParticipantStateRepo,
)
from studyflow.repos.pg_audit_repo import PgAuditRepo
from studyflow.repos.pg_consent_repo import PgConsentRepo, PgConsentVersionRepo
from studyflow.repos.pg_participant_repo import PgParticipantStateRepo
from studyflow.repos.pg_progress_repo import PgProgressRepo
from studyflow.repos.progress_repo import InMemoryProgressRepo, ProgressRepo
from studyflow.services import token_service
from studyflow.services.access_controller import AccessController
from studyflow.services.audit_trail import AuditTrail
from studyflow.services.consent_gate import ConsentGate
from studyflow.services.module_graph import ModuleGraph
from studyflow.services.path_access import PathAccessEvaluator
from studyflow.services.progress_machine import ProgressStateMachine

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/v1/auth/login")

MODULE_GRAPH = ModuleGraph.default()
DEFAULT_CONSENT_VERSION = "1.0"


@dataclass(frozen=True, slots=True)
class Services:
    graph: ModuleGraph
    consent: ConsentGate
    machine: ProgressStateMachine
    access: AccessController
    paths: PathAccessEvaluator
    audit: AuditTrail


def build_services(
    *,
    progress: ProgressRepo,
    consents: ConsentRepo,
    versions: ConsentVersionRepo,
    participants: ParticipantStateRepo,
    audit: AuditRepo,
    graph: ModuleGraph = MODULE_GRAPH,
) -> Services:
    trail = AuditTrail(audit)
    gate = ConsentGate(consents, versions)
    machine = ProgressStateMachine(progress, max_payload_bytes=SETTINGS.max_payload_bytes)
    access = AccessController(graph, gate, machine, participants, trail)
    return Services(
        graph=graph,
        consent=gate,
        machine=machine,
        access=access,
        paths=PathAccessEvaluator(access, trail),
        audit=trail,
    )


def _default_consent_version() -> ConsentVersion:
    return ConsentVersion(
        version=DEFAULT_CONSENT_VERSION,
        title="Study participation agreement",
        status=ConsentVersionStatus.ACTIVE,
        effective_at=now_ts(),
    )


def build_memory_services() -> Services:
    """Fresh in-memory bundle with the default consent version already ACTIVE."""
    return build_services(
        progress=InMemoryProgressRepo(),
        consents=InMemoryConsentRepo(),
        versions=InMemoryConsentVersionRepo([_default_consent_version()]),
        participants=InMemoryParticipantStateRepo(),
        audit=InMemoryAuditRepo(),
    )


def build_pg_services(session: AsyncSession) -> Services:
    return build_services(
        progress=PgProgressRepo(session),
        consents=PgConsentRepo(session),
        versions=PgConsentVersionRepo(session),
        participants=PgParticipantStateRepo(session),
        audit=PgAuditRepo(async_session_factory),
    )


# ---------------------------------------------------------------------------
# Module-level singletons (replaced by the test suite between tests)
# ---------------------------------------------------------------------------
memory_services = build_memory_services()
identity_provider = InMemoryIdentityProvider()


def reset_memory_state() -> None:
    """Swap in empty in-memory stores.  Used by the test suite."""
    global memory_services, identity_provider
    memory_services = build_memory_services()
    identity_provider = InMemoryIdentityProvider()


def _seed_dev_admin(provider: InMemoryIdentityProvider) -> None:
    """Dev only: an admin identity so the admin API is reachable locally."""
    provider.seed(
        Identity(
            id=uuid4(),
            created_at=now_ts(),
            attributes={"alias": "admin", "role": "admin"},
            secret_hash=hash_secret("admin-dev-secret"),
        )
    )


if SETTINGS.is_dev:
    _seed_dev_admin(identity_provider)


async def get_services() -> AsyncGenerator[Services, None]:
    if async_session_factory is None:
        yield memory_services
        return
    async with async_session_factory() as session:
        try:
            yield build_pg_services(session)
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_identity_provider() -> InMemoryIdentityProvider:
    return identity_provider


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------


def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Extract and validate the JWT bearer token. Returns a Principal."""
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    principal = Principal(
        user_id=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
    )
    logger.debug(
        "Token validated for user=%s roles=%s",
        principal.user_id,
        principal.roles,
    )
    return principal


async def require_participant(
    principal: Annotated[Principal, Depends(require_user)],
    identities: Annotated[InMemoryIdentityProvider, Depends(get_identity_provider)],
) -> Principal:
    """A valid token whose subject the identity provider still knows."""
    try:
        identity_id = UUID(principal.user_id)
    except ValueError:
        logger.warning("Token subject is not an identity id: %s", principal.user_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    if await identities.get(identity_id) is None:
        logger.warning("Unknown participant user=%s", principal.user_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Participant not found",
        )
    return principal


def require_role(role: str):
    """Dependency factory: demand a specific role.

    Usage: Depends(require_role("admin"))
    Returns the Principal if the role is present, else 403.
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_role(role):
            logger.warning(
                "Access denied: user=%s missing role=%s",
                principal.user_id,
                role,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard
