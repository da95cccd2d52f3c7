"""
IngestService: the surface an upload front-end calls.

  submit_job(source, original_filename)  → asset_id   (background or blocking)
  wait(asset_id)                         → terminal TranscodeJob
  list_catalog()                         → catalog records, oldest first
  audit_now(repair=True)                 → AuditReport

Jobs run on a bounded thread pool; each gets a fresh uuid4 asset id, so
their output directories never collide.  A job is forgotten once wait() has
handed its terminal state back.  Audit sweeps are serialised: a second
audit_now() call blocks until the running one finishes.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from auditor.consistency import ConsistencyAuditor
from catalog.store import CatalogStore
from schemas.audit_report import AuditReport
from schemas.catalog_record import AnyCatalogRecord
from schemas.job import TranscodeJob
from schemas.ladder import DEFAULT_LADDER, RenditionLadder
from schemas.settings import PipelineSettings
from transcoder.orchestrator import TranscodeOrchestrator

logger = logging.getLogger(__name__)


class IngestService:

    def __init__(
        self,
        settings: PipelineSettings,
        ladder: RenditionLadder = DEFAULT_LADDER,
        catalog: Optional[CatalogStore] = None,
        orchestrator: Optional[TranscodeOrchestrator] = None,
        auditor: Optional[ConsistencyAuditor] = None,
    ) -> None:
        self.settings = settings
        self.ladder = ladder
        self.catalog = catalog or CatalogStore(settings.catalog_path, ladder.master_filename)
        self.orchestrator = orchestrator or TranscodeOrchestrator(settings, self.catalog, ladder)
        self.auditor = auditor or ConsistencyAuditor(ladder)
        self._pool = ThreadPoolExecutor(
            max_workers=settings.max_workers, thread_name_prefix="transcode"
        )
        self._jobs: dict[str, Future] = {}
        self._jobs_lock = threading.Lock()
        self._audit_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def submit_job(
        self,
        source_path: Path,
        original_filename: Optional[str] = None,
        wait: bool = False,
    ) -> str:
        """
        Queue one transcode and return its asset id.

        With wait=True the call blocks until the job is terminal; fetch the
        outcome with wait(asset_id) either way.
        """
        job = self.orchestrator.new_job(Path(source_path), original_filename)
        future = self._pool.submit(self.orchestrator.run, job)
        with self._jobs_lock:
            self._jobs[job.asset_id] = future
        logger.info("Submitted job %s for %s", job.asset_id, source_path)
        if wait:
            future.result()
        return job.asset_id

    def wait(self, asset_id: str, timeout: Optional[float] = None) -> TranscodeJob:
        """
        Block until job *asset_id* is terminal and return it.

        Raises:
            KeyError: unknown id, or the outcome was already collected.
            concurrent.futures.TimeoutError: *timeout* elapsed first.
        """
        with self._jobs_lock:
            future = self._jobs[asset_id]
        job = future.result(timeout=timeout)
        with self._jobs_lock:
            self._jobs.pop(asset_id, None)
        return job

    def pending(self) -> list[str]:
        """Asset ids whose outcome has not been collected yet."""
        with self._jobs_lock:
            return list(self._jobs)

    # ------------------------------------------------------------------
    # Catalog / audit
    # ------------------------------------------------------------------

    def list_catalog(self) -> list[AnyCatalogRecord]:
        return self.catalog.read_all()

    def audit_now(self, repair: bool = True) -> AuditReport:
        with self._audit_lock:
            if repair:
                return self.auditor.repair(self.settings.published_root, self.catalog)
            return self.auditor.scan(self.settings.published_root, self.catalog)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> "IngestService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown(wait=True)
