"""Unit tests for pydantic models: validation rules and wire formats."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from versionwatch.models.change_record import ChangeRecord
from versionwatch.models.config import Config
from versionwatch.models.job import Job, JobStatus
from versionwatch.models.messages import (
    RawContentMessage,
    SnapshotReadyMessage,
    StartFetchMessage,
    parse_message,
    recover_job_id,
    recover_run_id,
)
from versionwatch.models.run import DEFAULT_RUN_TIMEOUT, FailureReason, Run, RunStatus
from versionwatch.models.scoring_policy import MULTI_FACTOR_V1, ScoringPolicy
from versionwatch.models.snapshot import Facets, Link, Snapshot


class TestJob:
    """Tests for the Job model."""

    def test_defaults(self) -> None:
        job = Job(name="  Example   site ", url=" https://example.com ")
        assert job.name == "Example site"
        assert job.url == "https://example.com"
        assert job.schedule == "manual"
        assert job.status == JobStatus.ACTIVE
        assert job.created_at.tzinfo is not None

    @pytest.mark.parametrize("url", ["ftp://example.com", "example.com", "https://", ""])
    def test_rejects_non_http_urls(self, url: str) -> None:
        with pytest.raises(ValidationError):
            Job(name="Bad", url=url)

    def test_rejects_empty_name(self) -> None:
        with pytest.raises(ValidationError, match="Name must not be empty"):
            Job(name="   ", url="https://example.com")

    def test_rejects_unknown_fields(self) -> None:
        with pytest.raises(ValidationError):
            Job.model_validate(
                {"name": "Example", "url": "https://example.com", "owner": "someone"}
            )


class TestRun:
    """Tests for the Run model."""

    def test_start_sets_deadline(self) -> None:
        run = Run.start(job_id=3, timeout=timedelta(seconds=90))
        assert run.status == RunStatus.PENDING
        assert run.timeout_at - run.started_at == timedelta(seconds=90)
        assert not run.is_terminal

    def test_default_timeout(self) -> None:
        run = Run.start(job_id=3)
        assert run.timeout_at - run.started_at == DEFAULT_RUN_TIMEOUT

    def test_is_expired(self) -> None:
        run = Run.start(job_id=3, timeout=timedelta(minutes=1))
        assert not run.is_expired(run.started_at + timedelta(seconds=30))
        assert run.is_expired(run.started_at + timedelta(minutes=2))

    def test_deadline_before_start_rejected(self) -> None:
        now = datetime.now(UTC)
        with pytest.raises(ValidationError, match="timeout_at"):
            Run(job_id=1, started_at=now, timeout_at=now - timedelta(seconds=1))

    def test_failed_requires_reason(self) -> None:
        now = datetime.now(UTC)
        with pytest.raises(ValidationError, match="failure_reason is required"):
            Run(job_id=1, started_at=now, timeout_at=now, status=RunStatus.FAILED)

    def test_reason_only_when_failed(self) -> None:
        now = datetime.now(UTC)
        with pytest.raises(ValidationError, match="only allowed"):
            Run(
                job_id=1,
                started_at=now,
                timeout_at=now,
                failure_reason=FailureReason.TIMEOUT,
            )

    def test_score_bounds(self) -> None:
        now = datetime.now(UTC)
        with pytest.raises(ValidationError):
            Run(job_id=1, started_at=now, timeout_at=now, analysis_score=1.5)

    def test_failure_detail_truncated(self) -> None:
        now = datetime.now(UTC)
        run = Run(
            job_id=1,
            started_at=now,
            timeout_at=now,
            status=RunStatus.FAILED,
            failure_reason=FailureReason.FETCH_ERROR,
            failure_detail="x" * 5000,
        )
        assert len(run.failure_detail or "") == 2000


class TestSnapshot:
    """Tests for the Snapshot and Facets models."""

    def test_valid(self) -> None:
        snapshot = Snapshot(
            job_id=1,
            url="https://example.com",
            version=1,
            raw_content="<p>hi</p>",
            facets=Facets(text="hi"),
        )
        assert snapshot.id is None
        assert snapshot.facets.links == []

    @pytest.mark.parametrize("version", [0, -1])
    def test_version_must_be_positive(self, version: int) -> None:
        with pytest.raises(ValidationError, match="positive"):
            Snapshot(
                job_id=1,
                url="https://example.com",
                version=version,
                raw_content="",
                facets=Facets(),
            )

    def test_link_targets_skip_empty(self) -> None:
        facets = Facets(links=[Link(href=""), Link(href="/a"), Link(href="/a")])
        assert facets.link_targets == {"/a"}


class TestChangeRecord:
    """Tests for the ChangeRecord model."""

    def _record(self, **overrides: object) -> ChangeRecord:
        data: dict[str, object] = {
            "job_id": 1,
            "url": "https://example.com",
            "previous_version": 1,
            "current_version": 2,
            "change_score": 0.2,
            "change_label": "medium",
            "scoring_policy": MULTI_FACTOR_V1,
        }
        data.update(overrides)
        return ChangeRecord(**data)  # type: ignore[arg-type]

    def test_valid(self) -> None:
        assert self._record().current_version == 2

    def test_score_bounds(self) -> None:
        with pytest.raises(ValidationError):
            self._record(change_score=1.01)

    @pytest.mark.parametrize(("previous", "current"), [(0, 1), (2, 2), (3, 2)])
    def test_versions_must_increase(self, previous: int, current: int) -> None:
        with pytest.raises(ValidationError, match="previous_version"):
            self._record(previous_version=previous, current_version=current)


class TestScoringPolicy:
    """Tests for ScoringPolicy validation and labelling."""

    def test_defaults(self) -> None:
        policy = ScoringPolicy()
        assert policy.version == MULTI_FACTOR_V1
        assert policy.labels == ["negligible", "low", "medium", "high", "significant"]

    @pytest.mark.parametrize(
        ("score", "label"),
        [
            (0.0, "negligible"),
            (0.05, "negligible"),
            (0.06, "low"),
            (0.15, "low"),
            (0.35, "medium"),
            (0.7, "high"),
            (0.71, "significant"),
            (1.0, "significant"),
        ],
    )
    def test_label_for(self, score: float, label: str) -> None:
        assert ScoringPolicy().label_for(score) == label

    def test_weights_must_sum_to_one(self) -> None:
        weights = {"character": 0.5, "word": 0.5, "title": 0.5, "description": 0, "link": 0}
        with pytest.raises(ValidationError, match="sum to 1"):
            ScoringPolicy(weights=weights)

    def test_weights_need_every_factor(self) -> None:
        with pytest.raises(ValidationError, match="keys"):
            ScoringPolicy(weights={"character": 1.0})

    def test_thresholds_strictly_increasing(self) -> None:
        with pytest.raises(ValidationError, match="strictly increasing"):
            ScoringPolicy(label_thresholds=[("a", 0.3), ("b", 0.3)])

    def test_thresholds_within_unit_interval(self) -> None:
        with pytest.raises(ValidationError, match="between 0.0 and 1.0"):
            ScoringPolicy(label_thresholds=[("a", 0.5), ("b", 1.5)])

    def test_overflow_label_distinct(self) -> None:
        with pytest.raises(ValidationError, match="overflow_label"):
            ScoringPolicy(label_thresholds=[("high", 0.5)], overflow_label="high")

    def test_frozen(self) -> None:
        policy = ScoringPolicy()
        with pytest.raises(ValidationError):
            policy.version = "other"  # type: ignore[misc]


class TestMessages:
    """Tests for message contracts."""

    def test_start_fetch_wire_shape(self) -> None:
        body = StartFetchMessage(job_id=1, run_id=2, url="https://example.com").to_body()
        assert body == {
            "jobId": 1,
            "runId": 2,
            "url": "https://example.com",
            "type": "start-fetch",
        }

    def test_parse_each_variant(self) -> None:
        base = {"jobId": 1, "runId": 2, "url": "https://example.com"}
        assert isinstance(parse_message({**base, "type": "start-fetch"}), StartFetchMessage)
        raw = parse_message({**base, "type": "raw-content", "content": "<p>x</p>"})
        assert isinstance(raw, RawContentMessage)
        assert raw.content == "<p>x</p>"
        ready = parse_message({**base, "type": "snapshot-ready", "version": 3, "snapshotId": 9})
        assert isinstance(ready, SnapshotReadyMessage)
        assert (ready.version, ready.snapshot_id) == (3, 9)

    def test_parse_json_text(self) -> None:
        text = json.dumps({"type": "start-fetch", "jobId": 1, "runId": 2, "url": "https://a.com"})
        assert parse_message(text).run_id == 2

    def test_round_trip(self) -> None:
        message = SnapshotReadyMessage(
            job_id=1, run_id=2, url="https://a.com", version=4, snapshot_id=5
        )
        assert parse_message(message.to_body()) == message

    @pytest.mark.parametrize(
        "body",
        [
            {"type": "unknown", "jobId": 1, "runId": 2, "url": "https://a.com"},
            {"jobId": 1, "runId": 2, "url": "https://a.com"},
            {"type": "raw-content", "jobId": 1, "runId": 2, "url": "https://a.com"},
            {"type": "snapshot-ready", "jobId": 1, "runId": 2, "url": "x", "version": 0,
             "snapshotId": 1},
            {"type": "start-fetch", "jobId": 0, "runId": 2, "url": "https://a.com"},
        ],
    )
    def test_malformed_rejected(self, body: dict[str, object]) -> None:
        with pytest.raises(ValidationError):
            parse_message(body)

    @pytest.mark.parametrize(
        ("body", "expected"),
        [
            ({"runId": 5}, 5),
            ({"run_id": "6"}, 6),
            ({"runId": "abc"}, None),
            ({"runId": 0}, None),
            ({"runId": True}, None),
            ({}, None),
            ("not a dict", None),
        ],
    )
    def test_recover_run_id(self, body: object, expected: int | None) -> None:
        assert recover_run_id(body) == expected

    @pytest.mark.parametrize(
        ("body", "expected"),
        [({"jobId": 3, "runId": 5}, 3), ({"job_id": "4"}, 4), ({"jobId": -1}, None), ({}, None)],
    )
    def test_recover_job_id(self, body: object, expected: int | None) -> None:
        assert recover_job_id(body) == expected


class TestConfig:
    """Tests for application settings."""

    def test_defaults(self, tmp_path: Path) -> None:
        config = Config(database_path=f"{tmp_path}/vw.db")
        assert config.run_timeout == timedelta(seconds=300)
        assert config.resolved_broker_path == config.database_path
        assert config.scoring_policy() == ScoringPolicy()

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("VERSIONWATCH_MAX_DELIVERY_ATTEMPTS", "5")
        monkeypatch.setenv("VERSIONWATCH_LABEL_THRESHOLDS", '[["same", 0.1], ["changed", 0.9]]')
        config = Config(database_path=f"{tmp_path}/vw.db")
        assert config.max_delivery_attempts == 5
        assert config.scoring_policy().label_for(0.5) == "changed"

    def test_invalid_log_level(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError, match="log_level"):
            Config(database_path=f"{tmp_path}/vw.db", log_level="LOUD")

    def test_delivery_attempts_bounded(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            Config(database_path=f"{tmp_path}/vw.db", max_delivery_attempts=0)
