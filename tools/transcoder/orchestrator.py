"""
Transcode Orchestrator: one uploaded source in, one published asset out.

run(job) walks a TranscodeJob through:

  PENDING → RUNNING → SUCCEEDED | FAILED

  1. Resolve the encoder binary (EngineUnavailable before any filesystem work).
  2. Create <published_root>/<asset_id>/ (pre-existing is fine).
  3. Probe the source duration (failure → duration stays None).
  4. One ffmpeg invocation encodes every ladder tier: a scale/bitrate/HLS
     output group per tier, sharing a single decode of the source.
  5. Copy the master template into the output directory; ffmpeg does not
     write a master itself.
  6. Append the catalog record.  Only after this succeeds is the job
     SUCCEEDED, so no asset is advertised before its catalog line exists.

Failures are terminal and recorded on the job (failure_kind/failure_detail);
run() does not raise for them.  Partial outputs of a failed encode stay on
disk for the Consistency Auditor.

The orchestrator keeps no per-job state on itself, so several run() calls may
proceed concurrently as long as their asset ids differ.  The catalog store
serialises its own appends.
"""
from __future__ import annotations

import datetime
import logging
from pathlib import Path
from typing import Optional
from uuid import uuid4

from catalog.store import CatalogStore, CatalogWriteFailure
from manifests.assembler import variant_tiers_on_disk, write_master_template
from schemas.catalog_record import CatalogRecord, build_public_url
from schemas.job import FailureKind, JobState, TranscodeJob
from schemas.ladder import DEFAULT_LADDER, RenditionLadder
from schemas.settings import PipelineSettings
from transcoder.ffmpeg_runner import (
    EngineFailure,
    EngineTimeout,
    EngineUnavailable,
    resolve_ffmpeg,
    run_ffmpeg,
)
from transcoder.probe import DurationProbe, FFmpegDurationProbe

logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024

# Encoder constants shared by every tier's output group.
_AUDIO_SAMPLE_RATE = "48000"
_VIDEO_PROFILE = "main"
_CRF = "20"
_GOP = "48"


def build_transcode_command(
    ffmpeg: str,
    source: Path,
    output_dir: Path,
    ladder: RenditionLadder = DEFAULT_LADDER,
) -> list[str]:
    """
    Single ffmpeg command producing every tier of *ladder*.

    Per tier the command emits ``<tier>_%03d.<ext>`` segments and a
    ``<tier>.m3u8`` VOD playlist into *output_dir*.
    """
    output_dir = Path(output_dir)
    cmd: list[str] = [ffmpeg, "-hide_banner", "-y", "-i", str(source)]
    for tier in ladder.tiers:
        cmd += [
            "-vf", f"scale=w={tier.width}:h={tier.height}:force_original_aspect_ratio=decrease",
            "-c:a", "aac",
            "-ar", _AUDIO_SAMPLE_RATE,
            "-c:v", "h264",
            "-profile:v", _VIDEO_PROFILE,
            "-crf", _CRF,
            "-sc_threshold", "0",
            "-g", _GOP,
            "-keyint_min", _GOP,
            "-hls_time", str(tier.segment_duration),
            "-hls_playlist_type", "vod",
            "-b:v", f"{tier.video_bitrate_kbps}k",
            "-maxrate", f"{tier.max_bitrate_kbps}k",
            "-bufsize", f"{tier.buffer_size_kbps}k",
            "-b:a", f"{tier.audio_bitrate_kbps}k",
            "-hls_segment_filename", str(output_dir / tier.segment_template(ladder.segment_ext)),
            str(output_dir / tier.variant_filename),
        ]
    return cmd


class TranscodeOrchestrator:
    """
    Usage::

        orchestrator = TranscodeOrchestrator(settings, CatalogStore(settings.catalog_path))
        job = orchestrator.new_job(Path("uploads/file-123.mp4"), "holiday.mp4")
        orchestrator.run(job)
        if job.state is JobState.SUCCEEDED:
            print(job.public_url)
    """

    def __init__(
        self,
        settings: PipelineSettings,
        catalog: CatalogStore,
        ladder: RenditionLadder = DEFAULT_LADDER,
        probe: Optional[DurationProbe] = None,
    ) -> None:
        self.settings = settings
        self.catalog = catalog
        self.ladder = ladder
        self._probe = probe

    def new_job(
        self,
        source_path: Path,
        original_filename: Optional[str] = None,
        asset_id: Optional[str] = None,
    ) -> TranscodeJob:
        asset_id = asset_id or str(uuid4())
        return TranscodeJob(
            asset_id=asset_id,
            source_path=Path(source_path),
            output_dir=self.settings.output_dir_for(asset_id),
            original_filename=original_filename,
        )

    def run(self, job: TranscodeJob, timeout: Optional[float] = None) -> TranscodeJob:
        """
        Drive *job* to a terminal state and return it.

        *timeout* overrides settings.encode_timeout for the encoder call.
        """
        if job.state is not JobState.PENDING:
            raise ValueError(f"job {job.asset_id} is {job.state.value}, expected pending")

        try:
            ffmpeg = resolve_ffmpeg(self.settings.ffmpeg_bin)
        except EngineUnavailable as exc:
            logger.error("Job %s: %s", job.asset_id, exc)
            return job.fail(FailureKind.ENGINE_UNAVAILABLE, str(exc))

        job.state = JobState.RUNNING
        logger.info("Job %s | source=%s | tiers=%s",
                    job.asset_id, job.source_path, self.ladder.names)

        if not job.source_path.is_file():
            detail = f"source file not found: {job.source_path}"
            logger.error("Job %s: %s", job.asset_id, detail)
            return job.fail(FailureKind.ENGINE_FAILURE, detail)

        try:
            job.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            detail = f"cannot create output directory {job.output_dir}: {exc}"
            logger.error("Job %s: %s", job.asset_id, detail)
            return job.fail(FailureKind.ENGINE_FAILURE, detail)
        job.duration = self._probe_duration(ffmpeg, job.source_path)

        cmd = build_transcode_command(ffmpeg, job.source_path, job.output_dir, self.ladder)
        try:
            run_ffmpeg(
                cmd,
                timeout=timeout if timeout is not None else self.settings.encode_timeout,
            )
        except EngineTimeout as exc:
            logger.error("Job %s timed out: %s", job.asset_id, exc)
            return job.fail(FailureKind.ENGINE_TIMEOUT, str(exc))
        except EngineUnavailable as exc:
            logger.error("Job %s: %s", job.asset_id, exc)
            return job.fail(FailureKind.ENGINE_UNAVAILABLE, str(exc))
        except EngineFailure as exc:
            logger.error("Job %s encoder failed (rc=%s)", job.asset_id, exc.returncode)
            return job.fail(FailureKind.ENGINE_FAILURE, str(exc))

        produced = variant_tiers_on_disk(job.output_dir, self.ladder)
        if not produced:
            detail = "encoder exited 0 but wrote no variant playlists"
            logger.error("Job %s: %s", job.asset_id, detail)
            return job.fail(FailureKind.ENGINE_FAILURE, detail)
        if len(produced) < len(self.ladder.tiers):
            logger.warning(
                "Job %s: only %s of %s variants written",
                job.asset_id, [t.name for t in produced], self.ladder.names,
            )

        try:
            write_master_template(job.output_dir, self.ladder)
        except OSError as exc:
            detail = f"cannot write master manifest in {job.output_dir}: {exc}"
            logger.error("Job %s: %s", job.asset_id, detail)
            return job.fail(FailureKind.ENGINE_FAILURE, detail)

        url = build_public_url(
            self.settings.public_base_url,
            self.settings.published_prefix,
            job.asset_id,
            self.ladder.master_filename,
        )
        record = CatalogRecord(
            url=url,
            id=job.asset_id,
            upload_date=datetime.datetime.now(datetime.timezone.utc).isoformat(),
            file_size=_file_size_mb(job.source_path),
            duration=job.duration,
            original_name=job.original_filename,
        )
        try:
            self.catalog.append(record)
        except CatalogWriteFailure as exc:
            logger.error("Job %s: media published but catalog append failed: %s",
                         job.asset_id, exc)
            return job.fail(FailureKind.CATALOG_WRITE_FAILURE, str(exc))

        job.public_url = url
        job.state = JobState.SUCCEEDED
        logger.info("Job %s succeeded → %s", job.asset_id, url)
        return job

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _probe_duration(self, ffmpeg: str, source: Path) -> Optional[float]:
        probe = self._probe or FFmpegDurationProbe(ffmpeg, timeout=self.settings.probe_timeout)
        try:
            return probe.probe(source)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Duration probe raised for %s: %s", source, exc)
            return None


def _file_size_mb(path: Path) -> Optional[float]:
    try:
        return round(path.stat().st_size / _BYTES_PER_MB, 2)
    except OSError:
        return None
