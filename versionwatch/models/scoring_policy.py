"""Versioned scoring policy: weights, sampling limits and label thresholds."""

from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MULTI_FACTOR_V1 = "multi-factor-v1"

DEFAULT_WEIGHTS: dict[str, float] = {
    "character": 0.50,
    "word": 0.20,
    "title": 0.15,
    "description": 0.10,
    "link": 0.05,
}

# Ordered upper bounds. Scores above the last bound get OVERFLOW_LABEL.
DEFAULT_LABEL_THRESHOLDS: list[tuple[str, float]] = [
    ("negligible", 0.05),
    ("low", 0.15),
    ("medium", 0.35),
    ("high", 0.70),
]
OVERFLOW_LABEL = "significant"


class ScoringPolicy(BaseModel):
    """The single authoritative scoring formula and threshold table.

    Change records store `version` so a label is never read against the
    output range of a different formula.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: str = MULTI_FACTOR_V1
    weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    label_thresholds: list[tuple[str, float]] = Field(
        default_factory=lambda: list(DEFAULT_LABEL_THRESHOLDS)
    )
    overflow_label: str = OVERFLOW_LABEL
    exact_limit: int = 5_000
    window_count: int = 16
    window_size: int = 500

    @field_validator("weights")
    @classmethod
    def validate_weights(cls, value: dict[str, float]) -> dict[str, float]:
        """All five factors are weighted, non-negative, and sum to 1."""
        expected = set(DEFAULT_WEIGHTS)
        if set(value) != expected:
            msg = f"weights must have exactly the keys {sorted(expected)}"
            raise ValueError(msg)
        if any(weight < 0 for weight in value.values()):
            msg = "weights must be non-negative"
            raise ValueError(msg)
        if not math.isclose(sum(value.values()), 1.0, abs_tol=1e-9):
            msg = "weights must sum to 1.0"
            raise ValueError(msg)
        return value

    @field_validator("label_thresholds")
    @classmethod
    def validate_label_thresholds(cls, value: list[tuple[str, float]]) -> list[tuple[str, float]]:
        """Bounds are strictly increasing within [0, 1] and labels are unique."""
        if not value:
            msg = "label_thresholds must not be empty"
            raise ValueError(msg)
        bounds = [bound for _, bound in value]
        if any(bound < 0.0 or bound > 1.0 for bound in bounds):
            msg = "label threshold bounds must be between 0.0 and 1.0"
            raise ValueError(msg)
        if any(later <= earlier for earlier, later in zip(bounds, bounds[1:], strict=False)):
            msg = "label threshold bounds must be strictly increasing"
            raise ValueError(msg)
        labels = [label for label, _ in value]
        if len(set(labels)) != len(labels):
            msg = "label names must be unique"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def validate_sampling(self) -> ScoringPolicy:
        """Sampling parameters must describe at least one non-empty window."""
        if self.window_count < 1 or self.window_size < 1 or self.exact_limit < 1:
            msg = "exact_limit, window_count and window_size must be positive"
            raise ValueError(msg)
        if self.overflow_label in {label for label, _ in self.label_thresholds}:
            msg = "overflow_label must differ from the bounded labels"
            raise ValueError(msg)
        return self

    @property
    def labels(self) -> list[str]:
        """All labels in ascending order of change."""
        return [label for label, _ in self.label_thresholds] + [self.overflow_label]

    def label_for(self, score: float) -> str:
        """Map a score onto its ordinal bucket."""
        for label, upper_bound in self.label_thresholds:
            if score <= upper_bound:
                return label
        return self.overflow_label
