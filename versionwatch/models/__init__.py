"""Pydantic data models for versionwatch."""

from versionwatch.models.change_record import ChangeRecord
from versionwatch.models.config import Config
from versionwatch.models.job import Job, JobStatus
from versionwatch.models.messages import (
    PipelineMessage,
    RawContentMessage,
    SnapshotReadyMessage,
    StartFetchMessage,
    parse_message,
)
from versionwatch.models.run import AnalysisStatus, FailureReason, Run, RunStatus
from versionwatch.models.scoring_policy import ScoringPolicy
from versionwatch.models.snapshot import Facets, Link, Snapshot

__all__ = [
    "AnalysisStatus",
    "ChangeRecord",
    "Config",
    "Facets",
    "FailureReason",
    "Job",
    "JobStatus",
    "Link",
    "PipelineMessage",
    "RawContentMessage",
    "Run",
    "RunStatus",
    "ScoringPolicy",
    "Snapshot",
    "SnapshotReadyMessage",
    "StartFetchMessage",
    "parse_message",
]
