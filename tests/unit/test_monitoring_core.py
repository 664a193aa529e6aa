"""Unit tests for the monitoring domain core modules.

Tests cover: similarity, change_scoring, facet_extraction, run_lifecycle,
snapshot_comparison. All modules contain pure functions -- no mocking or I/O
required.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from versionwatch.domains.monitoring.core.change_scoring import (
    DEFAULT_POLICY,
    SimilarityBreakdown,
    clamp,
    compute_breakdown,
    score_change,
    score_from_similarity,
)
from versionwatch.domains.monitoring.core.errors import (
    AlreadyFinalizedError,
    ContentParseError,
    InvalidTransitionError,
    RunTimeoutError,
)
from versionwatch.domains.monitoring.core.facet_extraction import extract_facets
from versionwatch.domains.monitoring.core.run_lifecycle import (
    complete_scored,
    complete_skipped,
    describe_failure,
    ensure_pending,
    ensure_within_deadline,
    fail,
    guard_active,
)
from versionwatch.domains.monitoring.core.similarity import (
    _window_starts,
    character_similarity,
    exact_character_similarity,
    jaccard_index,
    link_similarity,
    sampled_character_similarity,
    tokenize_words,
    word_similarity,
)
from versionwatch.domains.monitoring.core.snapshot_comparison import compare_facets
from versionwatch.models.run import AnalysisStatus, FailureReason, Run, RunStatus
from versionwatch.models.scoring_policy import ScoringPolicy
from versionwatch.models.snapshot import Facets, Link


def _text(text: str) -> Facets:
    return Facets(text=text)


def _run(minutes: int = 5) -> Run:
    started = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    return Run(id=7, job_id=1, started_at=started, timeout_at=started + timedelta(minutes=minutes))


# ---------------------------------------------------------------------------
# 1. similarity.py tests
# ---------------------------------------------------------------------------


class TestExactCharacterSimilarity:
    """Tests for exact_character_similarity."""

    def test_identical(self) -> None:
        assert exact_character_similarity("abc", "abc") == 1.0

    def test_both_empty(self) -> None:
        assert exact_character_similarity("", "") == 1.0

    def test_one_empty(self) -> None:
        assert exact_character_similarity("", "Hello world") == 0.0
        assert exact_character_similarity("Hello world", "") == 0.0

    def test_insertion_distance_normalized_by_total_length(self) -> None:
        # "brown " inserted: distance 6 over 13 + 19 characters
        assert exact_character_similarity("The quick fox", "The quick brown fox") == (
            pytest.approx(1 - 6 / 32)
        )

    def test_kitten_sitting(self) -> None:
        # longest common subsequence "ittn" -> distance 6 + 7 - 2 * 4 = 5
        assert exact_character_similarity("kitten", "sitting") == pytest.approx(1 - 5 / 13)

    def test_symmetric(self) -> None:
        a, b = "monitoring pipeline", "monitored pipelines"
        assert exact_character_similarity(a, b) == exact_character_similarity(b, a)


class TestWindowStarts:
    """Tests for _window_starts."""

    def test_evenly_spread(self) -> None:
        assert _window_starts(100, 10, 4) == [0, 30, 60, 90]

    def test_single_window(self) -> None:
        assert _window_starts(100, 10, 1) == [0]

    def test_short_input_all_windows_at_start(self) -> None:
        assert _window_starts(5, 5, 3) == [0, 0, 0]


class TestCharacterSimilarity:
    """Tests for character_similarity and its sampled mode."""

    def test_none_treated_as_empty(self) -> None:
        assert character_similarity(None, None) == 1.0
        assert character_similarity(None, "x") == 0.0

    def test_short_strings_use_exact_similarity(self) -> None:
        assert character_similarity("kitten", "sitting") == exact_character_similarity(
            "kitten", "sitting"
        )

    def test_long_strings_use_sampling(self) -> None:
        a = "abcdefghijkl"
        b = "abcdefghijkX"
        # windows of 5 at offsets 0 and 7: "abcde" identical, "hijkl" vs "hijkX" -> 0.8
        sampled = character_similarity(a, b, exact_limit=10, window_count=2, window_size=5)
        assert sampled == pytest.approx(0.9)
        assert sampled == sampled_character_similarity(a, b, window_count=2, window_size=5)

    def test_identical_long_strings(self) -> None:
        text = "lorem ipsum dolor sit amet " * 1000
        assert character_similarity(text, text) == 1.0

    def test_long_disjoint_strings(self) -> None:
        assert character_similarity("a" * 6000, "b" * 6000) == 0.0

    def test_long_nearly_identical_strings_score_high(self) -> None:
        base = "".join(f"sentence number {i} of the document. " for i in range(400))
        edited = base.replace("number 200 ", "number two hundred ")
        assert len(base) > 5000
        assert character_similarity(base, edited) > 0.9

    def test_result_in_unit_interval(self) -> None:
        pairs = [("", "abc"), ("abc", "xyz"), ("a" * 7000, "a" * 3000 + "b" * 4000)]
        for a, b in pairs:
            assert 0.0 <= character_similarity(a, b) <= 1.0


class TestTokenizeWords:
    """Tests for tokenize_words."""

    def test_case_folded_in_order(self) -> None:
        assert tokenize_words("Hello, World! hello") == ["hello", "world", "hello"]

    def test_none(self) -> None:
        assert tokenize_words(None) == []

    def test_underscore_and_digits_are_word_characters(self) -> None:
        assert tokenize_words("v2_release 2026") == ["v2_release", "2026"]


class TestJaccardIndex:
    """Tests for jaccard_index, word_similarity and link_similarity."""

    def test_both_empty(self) -> None:
        assert jaccard_index([], []) == 1.0

    def test_one_empty(self) -> None:
        assert jaccard_index(["a"], []) == 0.0

    def test_partial_overlap(self) -> None:
        assert jaccard_index(["a", "b"], ["b", "c"]) == pytest.approx(1 / 3)

    def test_duplicates_ignored(self) -> None:
        assert jaccard_index(["a", "a", "b"], ["a", "b", "b"]) == 1.0

    def test_word_similarity_quick_fox(self) -> None:
        assert word_similarity("The quick fox", "The quick brown fox") == 0.75

    def test_word_similarity_ignores_case_and_punctuation(self) -> None:
        assert word_similarity("Hello, world!", "hello WORLD") == 1.0

    def test_link_similarity_ignores_empty_hrefs(self) -> None:
        assert link_similarity(["", "https://a.com"], ["https://a.com"]) == 1.0

    def test_link_similarity_disjoint(self) -> None:
        assert link_similarity(["https://a.com"], ["https://b.com"]) == 0.0


# ---------------------------------------------------------------------------
# 2. change_scoring.py tests
# ---------------------------------------------------------------------------


class TestScoreChange:
    """Tests for score_change and its helpers."""

    def test_identical_facets_score_zero(self) -> None:
        facets = Facets(
            title="Home",
            description="Welcome",
            text="Some body text",
            links=[Link(href="https://a.com", text="A")],
        )
        result = score_change(facets, facets)
        assert result.score == 0.0
        assert result.label == "negligible"

    def test_both_empty_minimal_score(self) -> None:
        result = score_change(_text(""), _text(""))
        assert result.breakdown.character == 1.0
        assert result.score == 0.0
        assert result.label == "negligible"

    def test_empty_to_hello_world(self) -> None:
        result = score_change(_text(""), _text("Hello world"))
        assert result.breakdown.character == 0.0
        assert result.breakdown.word == 0.0
        assert result.score == pytest.approx(0.7)
        assert result.label in ("high", "significant")

    def test_quick_fox_insertion(self) -> None:
        result = score_change(_text("The quick fox"), _text("The quick brown fox"))
        assert result.breakdown.character == pytest.approx(0.8125)
        assert result.breakdown.word == 0.75
        assert result.score == pytest.approx(0.14375, abs=1e-4)
        assert result.label in ("negligible", "low")

    def test_requires_previous_version(self) -> None:
        with pytest.raises(ValueError, match="previous version"):
            score_change(None, _text("first"))

    def test_carries_policy_version(self) -> None:
        result = score_change(_text("a"), _text("b"))
        assert result.policy_version == "multi-factor-v1"

    def test_title_change_alone_is_weighted(self) -> None:
        before = Facets(title="Pricing", text="same body")
        after = Facets(title="", text="same body")
        result = score_change(before, after)
        assert result.breakdown.title == 0.0
        assert result.score == pytest.approx(0.15)
        assert result.label == "low"

    def test_custom_threshold_table(self) -> None:
        policy = ScoringPolicy(
            version="strict-v1",
            label_thresholds=[("same", 0.0), ("changed", 0.5)],
            overflow_label="rewritten",
        )
        assert score_change(_text("x"), _text("x"), policy).label == "same"
        assert score_change(_text("The quick fox"), _text("The quick brown fox"), policy).label == (
            "changed"
        )
        assert score_change(_text(""), _text("Hello world"), policy).label == "rewritten"

    def test_score_is_bounded(self) -> None:
        samples = ["", "a", "Hello world", "The quick brown fox", "x" * 6000]
        for previous in samples:
            for current in samples:
                score = score_change(_text(previous), _text(current)).score
                assert 0.0 <= score <= 1.0

    def test_compute_breakdown_uses_link_targets(self) -> None:
        before = Facets(links=[Link(href="https://a.com"), Link(href="https://b.com")])
        after = Facets(links=[Link(href="https://b.com"), Link(href="")])
        assert compute_breakdown(before, after, DEFAULT_POLICY).link == 0.5

    def test_weighted_sum(self) -> None:
        breakdown = SimilarityBreakdown(character=1, word=0, title=1, description=0, link=1)
        assert breakdown.weighted(DEFAULT_POLICY.weights) == pytest.approx(0.7)

    def test_clamp_and_rounding(self) -> None:
        assert clamp(1.2) == 1.0
        assert clamp(-0.1) == 0.0
        assert score_from_similarity(1.0000000000000002) == 0.0
        assert score_from_similarity(0.123456) == 0.8765


# ---------------------------------------------------------------------------
# 3. facet_extraction.py tests
# ---------------------------------------------------------------------------


class TestExtractFacets:
    """Tests for extract_facets."""

    def test_title_description_text(self) -> None:
        html = (
            "<html><head><title> Acme  Home </title>"
            '<meta name="Description" content="We build  things"></head>'
            "<body><h1>Welcome</h1><p>to Acme</p></body></html>"
        )
        facets = extract_facets(html)
        assert facets.title == "Acme Home"
        assert facets.description == "We build things"
        assert facets.text == "Welcome to Acme"

    def test_links_keep_order_and_duplicates(self) -> None:
        html = (
            '<body><a href="/a">First</a><a href="/b">Second</a>'
            '<a href="/a">Again</a><a name="anchor">No href</a></body>'
        )
        facets = extract_facets(html)
        assert [(link.href, link.text) for link in facets.links] == [
            ("/a", "First"),
            ("/b", "Second"),
            ("/a", "Again"),
            ("", "No href"),
        ]
        assert facets.link_targets == {"/a", "/b"}

    def test_scripts_and_styles_excluded_from_text(self) -> None:
        html = (
            "<body><script>var x = 1;</script><style>p {color: red}</style>"
            "<noscript>enable js</noscript><p>Visible</p></body>"
        )
        assert extract_facets(html).text == "Visible"

    def test_missing_head_fields(self) -> None:
        facets = extract_facets("<p>Just a paragraph</p>")
        assert facets.title == ""
        assert facets.description is None
        assert facets.text == "Just a paragraph"

    def test_plain_text(self) -> None:
        assert extract_facets("Hello world").text == "Hello world"

    @pytest.mark.parametrize("content", ["", "   \n\t"])
    def test_empty_content_raises(self, content: str) -> None:
        with pytest.raises(ContentParseError):
            extract_facets(content)

    def test_oversized_content_raises(self) -> None:
        with pytest.raises(ContentParseError, match="exceeds"):
            extract_facets("x" * 10_000_001)

    def test_parse_error_reason(self) -> None:
        assert ContentParseError.reason == FailureReason.PARSE_ERROR


# ---------------------------------------------------------------------------
# 4. run_lifecycle.py tests
# ---------------------------------------------------------------------------


class TestRunLifecycle:
    """Tests for run state transitions."""

    def test_fail(self) -> None:
        now = datetime(2026, 1, 1, 12, 1, tzinfo=UTC)
        failed = fail(_run(), FailureReason.FETCH_ERROR, "HTTP 404", now)
        assert failed.status == RunStatus.FAILED
        assert failed.failure_reason == FailureReason.FETCH_ERROR
        assert failed.failure_detail == "Fetching the page failed: HTTP 404"
        assert failed.finished_at == now

    def test_complete_skipped(self) -> None:
        completed = complete_skipped(_run(), version=1)
        assert completed.status == RunStatus.COMPLETED
        assert completed.analysis_status == AnalysisStatus.SKIPPED
        assert completed.analysis_score is None
        assert completed.snapshot_version == 1

    def test_complete_scored(self) -> None:
        completed = complete_scored(_run(), version=3, score=0.42, label="high")
        assert completed.status == RunStatus.COMPLETED
        assert completed.analysis_status == AnalysisStatus.DONE
        assert completed.analysis_score == 0.42
        assert completed.analysis_label == "high"
        assert completed.snapshot_version == 3

    def test_no_transition_out_of_terminal_state(self) -> None:
        failed = fail(_run(), FailureReason.PARSE_ERROR)
        with pytest.raises(InvalidTransitionError):
            complete_skipped(failed, version=1)
        with pytest.raises(InvalidTransitionError):
            fail(failed, FailureReason.TIMEOUT)
        completed = complete_skipped(_run(), version=1)
        with pytest.raises(InvalidTransitionError):
            complete_scored(completed, version=2, score=0.1, label="low")

    def test_transitions_do_not_mutate_input(self) -> None:
        run = _run()
        fail(run, FailureReason.TIMEOUT)
        assert run.status == RunStatus.PENDING

    def test_ensure_pending(self) -> None:
        ensure_pending(_run())
        with pytest.raises(AlreadyFinalizedError):
            ensure_pending(complete_skipped(_run(), version=1))

    def test_ensure_within_deadline(self) -> None:
        run = _run(minutes=5)
        ensure_within_deadline(run, run.started_at + timedelta(minutes=4))
        with pytest.raises(RunTimeoutError) as exc_info:
            ensure_within_deadline(run, run.started_at + timedelta(minutes=6))
        assert exc_info.value.reason == FailureReason.TIMEOUT

    def test_guard_active_checks_terminal_before_deadline(self) -> None:
        completed = complete_skipped(_run(minutes=1), version=1)
        with pytest.raises(AlreadyFinalizedError):
            guard_active(completed, completed.started_at + timedelta(hours=1))

    def test_describe_failure_without_detail(self) -> None:
        assert describe_failure(FailureReason.TIMEOUT) == "Run exceeded its deadline"

    def test_describe_failure_truncates_long_detail(self) -> None:
        text = describe_failure(FailureReason.PARSE_ERROR, "x" * 5000)
        assert len(text) == 2000
        assert text.startswith("Parsing the page failed: xxx")

    def test_fail_stores_truncated_detail(self) -> None:
        failed = fail(_run(), FailureReason.FETCH_ERROR, "traceback line\n" * 500)
        assert failed.failure_detail is not None
        assert len(failed.failure_detail) == 2000

    def test_every_failure_reason_has_a_message(self) -> None:
        for reason in FailureReason:
            assert describe_failure(reason)

    def test_analysis_error_is_distinct_from_missing_snapshot(self) -> None:
        assert describe_failure(FailureReason.ANALYSIS_ERROR) == "Scoring the change failed"
        assert FailureReason.ANALYSIS_ERROR != FailureReason.SNAPSHOT_MISSING


# ---------------------------------------------------------------------------
# 5. snapshot_comparison.py tests
# ---------------------------------------------------------------------------


class TestCompareFacets:
    """Tests for compare_facets."""

    def test_words_and_links(self) -> None:
        base = Facets(
            title="Home",
            text="The quick fox",
            links=[Link(href="https://a.com", text="A"), Link(href="https://b.com", text="B")],
        )
        target = Facets(
            title="Home page",
            text="The quick brown fox jumps",
            links=[Link(href="https://b.com", text="Bee"), Link(href="https://c.com", text="C")],
        )
        comparison = compare_facets(base, target, 1, 2)
        assert comparison.added_words == ["brown", "jumps"]
        assert comparison.removed_words == []
        assert comparison.added_links == ["https://c.com"]
        assert comparison.removed_links == ["https://a.com"]
        assert comparison.title_changed is True
        assert comparison.description_changed is False
        assert comparison.modified_links == [
            {"href": "https://b.com", "before_text": "B", "after_text": "Bee"}
        ]
        assert comparison.score == score_change(base, target).score

    def test_reverse_order_swaps_added_and_removed(self) -> None:
        base = _text("alpha beta")
        target = _text("beta gamma")
        forward = compare_facets(base, target, 1, 2)
        backward = compare_facets(target, base, 2, 1)
        assert forward.added_words == backward.removed_words == ["gamma"]
        assert forward.removed_words == backward.added_words == ["alpha"]

    def test_identical_versions(self) -> None:
        comparison = compare_facets(_text("same"), _text("same"), 3, 3)
        assert comparison.score == 0.0
        assert comparison.label == "negligible"
        assert comparison.to_dict()["added_words"] == []
