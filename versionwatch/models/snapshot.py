"""Snapshot model: one immutable version of a tracked page."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class Link(BaseModel):
    """An outbound link as it appeared in the page."""

    href: str = ""
    text: str = ""


class Facets(BaseModel):
    """Structured fields extracted from raw content."""

    title: str = ""
    description: str | None = None
    text: str = ""
    links: list[Link] = Field(default_factory=list)

    @property
    def link_targets(self) -> set[str]:
        """Distinct non-empty hrefs."""
        return {link.href for link in self.links if link.href}


class Snapshot(BaseModel):
    """A versioned capture of a URL for a job. Never mutated after creation."""

    model_config = ConfigDict(strict=True)

    id: int | None = None
    job_id: int
    url: str
    run_id: int | None = None
    version: int
    raw_content: str
    facets: Facets
    created_at: datetime = Field(default_factory=_utc_now)

    @field_validator("version")
    @classmethod
    def validate_version(cls, value: int) -> int:
        """Versions start at 1."""
        if value <= 0:
            msg = "version must be a positive integer"
            raise ValueError(msg)
        return value

    @field_validator("raw_content")
    @classmethod
    def validate_raw_content(cls, value: str) -> str:
        """Raw content must not exceed 10MB."""
        if len(value) > 10_000_000:
            msg = "raw_content must not exceed 10,000,000 characters"
            raise ValueError(msg)
        return value
