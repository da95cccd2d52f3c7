"""
TranscodeJob: one ingestion attempt for one uploaded source file.

Lifecycle:  PENDING → RUNNING → SUCCEEDED | FAILED

There is no retrying state: FAILED is terminal and a retry is a new job with
a new asset_id.  Jobs are held in memory only; nothing about them survives a
process restart except the media on disk and (on success) the catalog line.
"""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Job-terminal error kinds surfaced to the caller."""
    ENGINE_UNAVAILABLE = "EngineUnavailable"
    ENGINE_FAILURE = "EngineFailure"
    ENGINE_TIMEOUT = "EngineTimeout"
    CATALOG_WRITE_FAILURE = "CatalogWriteFailure"


class TranscodeJob(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    asset_id: str
    source_path: Path
    output_dir: Path
    original_filename: Optional[str] = None
    state: JobState = JobState.PENDING
    duration: Optional[float] = None        # seconds; None when the probe failed
    public_url: Optional[str] = None        # set once the catalog line is written
    failure_kind: Optional[FailureKind] = None
    failure_detail: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (JobState.SUCCEEDED, JobState.FAILED)

    def fail(self, kind: FailureKind, detail: str) -> "TranscodeJob":
        self.state = JobState.FAILED
        self.failure_kind = kind
        self.failure_detail = detail
        return self
