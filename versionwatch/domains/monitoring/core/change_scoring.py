"""Multi-factor change scoring between two facet sets."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from versionwatch.domains.monitoring.core.similarity import (
    character_similarity,
    link_similarity,
    word_similarity,
)
from versionwatch.models.scoring_policy import ScoringPolicy

if TYPE_CHECKING:
    from versionwatch.models.snapshot import Facets

DEFAULT_POLICY = ScoringPolicy()


@dataclass(frozen=True)
class SimilarityBreakdown:
    """Per-facet similarities, each in [0, 1]."""

    character: float
    word: float
    title: float
    description: float
    link: float

    def weighted(self, weights: dict[str, float]) -> float:
        """Combine the factors with the policy weights."""
        return sum(weights[name] * value for name, value in asdict(self).items())


@dataclass(frozen=True)
class ChangeScore:
    """Result of scoring one version against its predecessor."""

    score: float
    label: str
    similarity: float
    breakdown: SimilarityBreakdown
    policy_version: str


def compute_breakdown(
    previous: Facets,
    current: Facets,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> SimilarityBreakdown:
    """Compute each sub-similarity. Only the body text uses windowed sampling."""
    return SimilarityBreakdown(
        character=character_similarity(
            previous.text,
            current.text,
            exact_limit=policy.exact_limit,
            window_count=policy.window_count,
            window_size=policy.window_size,
        ),
        word=word_similarity(previous.text, current.text),
        title=character_similarity(previous.title, current.title),
        description=character_similarity(previous.description, current.description),
        link=link_similarity(previous.link_targets, current.link_targets),
    )


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Limit value to [low, high]."""
    return max(low, min(high, value))


def score_from_similarity(similarity: float) -> float:
    """score = clamp(1 - similarity), rounded to 4 places to absorb float noise."""
    return round(clamp(1.0 - similarity), 4)


def score_change(
    previous: Facets | None,
    current: Facets,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> ChangeScore:
    """Score how much `current` differs from `previous`.

    Scoring is undefined without a previous version; callers must skip it
    for a job's first snapshot.
    """
    if previous is None:
        msg = "cannot score a change without a previous version"
        raise ValueError(msg)

    breakdown = compute_breakdown(previous, current, policy)
    similarity = clamp(breakdown.weighted(policy.weights))
    score = score_from_similarity(similarity)
    return ChangeScore(
        score=score,
        label=policy.label_for(score),
        similarity=similarity,
        breakdown=breakdown,
        policy_version=policy.version,
    )
