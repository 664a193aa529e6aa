"""Monitoring domain core -- pure functions for versioned snapshots and change scoring."""

from __future__ import annotations

from versionwatch.domains.monitoring.core.change_scoring import (
    ChangeScore,
    SimilarityBreakdown,
    compute_breakdown,
    score_change,
)
from versionwatch.domains.monitoring.core.facet_extraction import extract_facets
from versionwatch.domains.monitoring.core.run_lifecycle import (
    complete_scored,
    complete_skipped,
    describe_failure,
    fail,
    guard_active,
)
from versionwatch.domains.monitoring.core.similarity import (
    character_similarity,
    jaccard_index,
    link_similarity,
    tokenize_words,
    word_similarity,
)
from versionwatch.domains.monitoring.core.snapshot_comparison import (
    SnapshotComparison,
    compare_facets,
)

__all__ = [
    # change_scoring
    "ChangeScore",
    "SimilarityBreakdown",
    "compute_breakdown",
    "score_change",
    # facet_extraction
    "extract_facets",
    # run_lifecycle
    "complete_scored",
    "complete_skipped",
    "describe_failure",
    "fail",
    "guard_active",
    # similarity
    "character_similarity",
    "jaccard_index",
    "link_similarity",
    "tokenize_words",
    "word_similarity",
    # snapshot_comparison
    "SnapshotComparison",
    "compare_facets",
]
