"""Pydantic response/request bodies shared by the progression routers."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from studyflow.models.progress import ProgressRecord


class ProgressOut(BaseModel):
    module_name: str
    status: str
    responses: dict[str, Any]
    metadata: dict[str, Any]
    started_at: int | None
    last_saved_at: int | None
    completed_at: int | None

    @staticmethod
    def from_record(record: ProgressRecord) -> ProgressOut:
        return ProgressOut(
            module_name=record.module_name,
            status=record.status.value,
            responses=record.responses,
            metadata=record.metadata,
            started_at=record.started_at,
            last_saved_at=record.last_saved_at,
            completed_at=record.completed_at,
        )


class SaveIn(BaseModel):
    responses: dict[str, Any] = Field(default_factory=dict)


class CompleteIn(BaseModel):
    responses: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class CompletionOut(BaseModel):
    progress: ProgressOut
    next_module: str | None
    unlocked_paths: list[str] = Field(default_factory=list)
