"""Pipeline message contracts, one tagged variant per message type.

Bodies travel as JSON with camelCase keys; `type` selects the variant.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

START_FETCH = "start-fetch"
RAW_CONTENT = "raw-content"
SNAPSHOT_READY = "snapshot-ready"


class _Message(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    job_id: int = Field(gt=0)
    run_id: int = Field(gt=0)
    url: str = Field(min_length=1)

    def to_body(self) -> dict[str, Any]:
        """Serialize to the JSON wire shape."""
        return self.model_dump(mode="json", by_alias=True)


class StartFetchMessage(_Message):
    """Orchestrator -> Fetch Stage."""

    type: Literal["start-fetch"] = START_FETCH


class RawContentMessage(_Message):
    """Fetch Stage -> Parse Stage, on success only."""

    type: Literal["raw-content"] = RAW_CONTENT
    content: str


class SnapshotReadyMessage(_Message):
    """Parse Stage -> Change-Detection Stage, after the snapshot is committed."""

    type: Literal["snapshot-ready"] = SNAPSHOT_READY
    version: int = Field(gt=0)
    snapshot_id: int = Field(gt=0)


PipelineMessage = Annotated[
    StartFetchMessage | RawContentMessage | SnapshotReadyMessage,
    Field(discriminator="type"),
]

_message_adapter: TypeAdapter[PipelineMessage] = TypeAdapter(PipelineMessage)


def parse_message(body: dict[str, Any] | str | bytes) -> PipelineMessage:
    """Validate a raw body into its message variant.

    Raises pydantic.ValidationError for unknown types or missing fields.
    """
    if isinstance(body, str | bytes):
        return _message_adapter.validate_json(body)
    return _message_adapter.validate_python(body)


def _recover_id(body: Any, alias: str, field: str) -> int | None:
    if not isinstance(body, dict):
        return None
    value = body.get(alias, body.get(field))
    if isinstance(value, bool):
        return None
    try:
        identifier = int(value)
    except (TypeError, ValueError):
        return None
    return identifier if identifier > 0 else None


def recover_run_id(body: Any) -> int | None:
    """Best-effort run id from a payload that failed validation."""
    return _recover_id(body, "runId", "run_id")


def recover_job_id(body: Any) -> int | None:
    """Best-effort job id from a payload that failed validation."""
    return _recover_id(body, "jobId", "job_id")


__all__ = [
    "RAW_CONTENT",
    "SNAPSHOT_READY",
    "START_FETCH",
    "PipelineMessage",
    "RawContentMessage",
    "SnapshotReadyMessage",
    "StartFetchMessage",
    "parse_message",
    "recover_job_id",
    "recover_run_id",
]
