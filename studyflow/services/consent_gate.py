"""Consent as a version-pinned prerequisite.

A participant has valid consent only while a ConsentRecord exists for the
version that is ACTIVE right now.  Consenting to v1 says nothing about v2:
the moment v1 is retired and v2 activated, every consent-gated module is
locked again until the participant accepts v2.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from studyflow.core.errors import (
    ConsentVersionNotFound,
    NoActiveVersion,
    VersionNotActive,
)
from studyflow.models.consent import ConsentRecord, ConsentVersion
from studyflow.models.progress import now_ts
from studyflow.repos.consent_repo import ConsentRepo, ConsentVersionRepo

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConsentStatus:
    has_valid_consent: bool
    active_version: ConsentVersion | None
    latest: ConsentRecord | None


class ConsentGate:
    def __init__(self, consents: ConsentRepo, versions: ConsentVersionRepo) -> None:
        self._consents = consents
        self._versions = versions

    async def active_version(self) -> ConsentVersion:
        active = await self._versions.get_active()
        if active is None:
            raise NoActiveVersion()
        return active

    async def has_valid_consent(self, user_id: str) -> bool:
        active = await self.active_version()
        return await self._consents.find(user_id, active.version) is not None

    async def record_consent(
        self, user_id: str, version: str, content: str | None = None
    ) -> ConsentRecord:
        target = await self._versions.get(version)
        if target is None:
            raise ConsentVersionNotFound(version)
        if not target.is_active:
            raise VersionNotActive(version, target.status.value)

        record = ConsentRecord.new(
            user_id=user_id, version=version, consented_at=now_ts(), content=content
        )
        # AlreadyConsented comes from the store so concurrent duplicates lose too
        await self._consents.add(record)
        logger.info("Consent recorded user=%s version=%s", user_id, version)
        return record

    async def latest_consent(self, user_id: str) -> ConsentRecord | None:
        history = await self._consents.list_for_user(user_id)
        return history[0] if history else None

    async def consent_history(self, user_id: str) -> list[ConsentRecord]:
        return await self._consents.list_for_user(user_id)

    async def consent_status(self, user_id: str) -> ConsentStatus:
        active = await self._versions.get_active()
        latest = await self.latest_consent(user_id)
        valid = False
        if active is not None:
            valid = await self._consents.find(user_id, active.version) is not None
        return ConsentStatus(has_valid_consent=valid, active_version=active, latest=latest)

    # --- Version management (admin) ---

    async def list_versions(self) -> list[ConsentVersion]:
        return await self._versions.list_all()

    async def create_version(
        self, version: str, title: str, content_text: str | None = None
    ) -> ConsentVersion:
        draft = ConsentVersion(version=version, title=title, content_text=content_text)
        await self._versions.add(draft)
        logger.info("Consent version created version=%s", version)
        return draft

    async def activate_version(self, version: str) -> ConsentVersion:
        activated = await self._versions.activate(version, at=now_ts())
        logger.warning(
            "Consent version %s activated; participants must re-consent", version
        )
        return activated

    async def retire_version(self, version: str) -> ConsentVersion:
        retired = await self._versions.retire(version, at=now_ts())
        logger.warning("Consent version %s retired", version)
        return retired
