"""Word and link level comparison of any two snapshot versions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from versionwatch.domains.monitoring.core.change_scoring import DEFAULT_POLICY, score_change
from versionwatch.domains.monitoring.core.similarity import tokenize_words

if TYPE_CHECKING:
    from versionwatch.models.scoring_policy import ScoringPolicy
    from versionwatch.models.snapshot import Facets


@dataclass
class SnapshotComparison:
    """What changed from one version to another."""

    base_version: int
    target_version: int
    added_words: list[str]
    removed_words: list[str]
    added_links: list[str]
    removed_links: list[str]
    score: float
    label: str
    title_changed: bool = False
    description_changed: bool = False
    modified_links: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict for JSON output."""
        return {
            "base_version": self.base_version,
            "target_version": self.target_version,
            "added_words": self.added_words,
            "removed_words": self.removed_words,
            "added_links": self.added_links,
            "removed_links": self.removed_links,
            "modified_links": self.modified_links,
            "title_changed": self.title_changed,
            "description_changed": self.description_changed,
            "score": self.score,
            "label": self.label,
        }


def _ordered_difference(items: list[str], exclude: set[str]) -> list[str]:
    """Items not in `exclude`, first occurrence only, original order kept."""
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        if item in exclude or item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result


def _first_link_texts(facets: Facets) -> dict[str, str]:
    """href -> anchor text of its first occurrence."""
    texts: dict[str, str] = {}
    for link in facets.links:
        if link.href and link.href not in texts:
            texts[link.href] = link.text
    return texts


def compare_facets(
    base: Facets,
    target: Facets,
    base_version: int,
    target_version: int,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> SnapshotComparison:
    """Diff two facet sets with the same primitives the change scorer uses.

    Works for any pair of versions, in either order.
    """
    base_words = tokenize_words(base.text)
    target_words = tokenize_words(target.text)
    base_links = [link.href for link in base.links if link.href]
    target_links = [link.href for link in target.links if link.href]

    base_texts = _first_link_texts(base)
    target_texts = _first_link_texts(target)
    modified_links = [
        {"href": href, "before_text": base_texts[href], "after_text": text}
        for href, text in target_texts.items()
        if href in base_texts and base_texts[href].strip() != text.strip()
    ]

    result = score_change(base, target, policy)

    return SnapshotComparison(
        base_version=base_version,
        target_version=target_version,
        added_words=_ordered_difference(target_words, set(base_words)),
        removed_words=_ordered_difference(base_words, set(target_words)),
        added_links=_ordered_difference(target_links, set(base_links)),
        removed_links=_ordered_difference(base_links, set(target_links)),
        score=result.score,
        label=result.label,
        title_changed=(base.title or "").strip() != (target.title or "").strip(),
        description_changed=(base.description or "").strip()
        != (target.description or "").strip(),
        modified_links=modified_links,
    )
