"""
Unit tests for transcoder.orchestrator.

The encoder is replaced by tests._fixture_builders.fake_encoder, which writes
segments and variant playlists where the real command would, so every path
through run() is covered without ffmpeg.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import pytest

import transcoder.orchestrator as orch_mod
from catalog.store import CatalogStore, CatalogWriteFailure
from manifests.assembler import master_template
from schemas.job import FailureKind, JobState
from schemas.ladder import DEFAULT_LADDER
from schemas.settings import PipelineSettings
from tests._fixture_builders import fake_encoder
from transcoder.ffmpeg_runner import EngineFailure, EngineTimeout, EngineUnavailable
from transcoder.orchestrator import TranscodeOrchestrator, build_transcode_command


class _FixedProbe:
    def __init__(self, value: Optional[float] = 42.0, exc: Optional[Exception] = None):
        self.value = value
        self.exc = exc
        self.calls: list[Path] = []

    def probe(self, source: Path) -> Optional[float]:
        self.calls.append(source)
        if self.exc:
            raise self.exc
        return self.value


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "upload-1234.mp4"
    path.write_bytes(b"\x00" * (3 * 1024 * 1024 + 512 * 1024))   # 3.5 MB
    return path


@pytest.fixture
def encoder(monkeypatch):
    run = fake_encoder(segments=2)
    monkeypatch.setattr(orch_mod, "resolve_ffmpeg", lambda name: "/usr/bin/ffmpeg")
    monkeypatch.setattr(orch_mod, "run_ffmpeg", run)
    return run


@pytest.fixture
def orchestrator(settings: PipelineSettings, catalog_store: CatalogStore) -> TranscodeOrchestrator:
    return TranscodeOrchestrator(settings, catalog_store, probe=_FixedProbe())


def _raise(exc: Exception):
    def run(cmd, timeout=None):
        raise exc
    return run


# ===========================================================================
# Command construction
# ===========================================================================

class TestBuildCommand:

    def test_single_invocation_all_tiers(self, tmp_path: Path):
        cmd = build_transcode_command("ffmpeg", Path("in.mp4"), tmp_path)
        assert cmd[:5] == ["ffmpeg", "-hide_banner", "-y", "-i", "in.mp4"]
        assert cmd.count("-i") == 1
        assert cmd.count("-hls_segment_filename") == len(DEFAULT_LADDER.tiers)

    def test_per_tier_parameters(self, tmp_path: Path):
        cmd = build_transcode_command("ffmpeg", Path("in.mp4"), tmp_path)
        i = cmd.index("scale=w=1280:h=720:force_original_aspect_ratio=decrease")
        group = cmd[i:cmd.index(str(tmp_path / "720p.m3u8")) + 1]
        assert group[group.index("-b:v") + 1] == "2800k"
        assert group[group.index("-maxrate") + 1] == "2996k"
        assert group[group.index("-bufsize") + 1] == "4200k"
        assert group[group.index("-b:a") + 1] == "128k"
        assert group[group.index("-hls_time") + 1] == "4"
        assert group[group.index("-hls_playlist_type") + 1] == "vod"
        assert group[group.index("-hls_segment_filename") + 1] == str(tmp_path / "720p_%03d.ts")

    def test_outputs_follow_ladder_order(self, tmp_path: Path):
        cmd = build_transcode_command("ffmpeg", Path("in.mp4"), tmp_path)
        outputs = [a for a in cmd if a.endswith(".m3u8")]
        assert outputs == [str(tmp_path / f"{n}.m3u8") for n in DEFAULT_LADDER.names]


# ===========================================================================
# run(): success
# ===========================================================================

class TestRunSuccess:

    def test_publishes_and_catalogs(self, orchestrator, encoder, source, settings, catalog_store):
        job = orchestrator.new_job(source, "holiday.mp4", asset_id="asset-1")
        result = orchestrator.run(job)

        assert result is job
        assert job.state is JobState.SUCCEEDED
        assert job.failure_kind is None
        assert job.duration == 42.0
        assert job.public_url == "http://media.test/uploads/hls-videos/asset-1/playlist.m3u8"

        out = settings.published_root / "asset-1"
        assert job.output_dir == out
        assert (out / "playlist.m3u8").read_text() == master_template()
        for name in DEFAULT_LADDER.names:
            assert (out / f"{name}.m3u8").is_file()
            assert (out / f"{name}_000.ts").is_file()
            assert (out / f"{name}_001.ts").is_file()
        assert len(encoder.calls) == 1

        record = catalog_store.find_by_asset_id("asset-1")
        assert record.kind == "structured"
        assert record.url == job.public_url
        assert record.file_size == 3.5
        assert record.duration == 42.0
        assert record.original_name == "holiday.mp4"
        assert record.upload_date

    def test_generated_ids_are_unique(self, orchestrator, source):
        a = orchestrator.new_job(source)
        b = orchestrator.new_job(source)
        assert a.asset_id != b.asset_id
        assert a.output_dir.name == a.asset_id

    def test_existing_output_dir_is_fine(self, orchestrator, encoder, source, settings):
        (settings.published_root / "asset-2").mkdir()
        job = orchestrator.run(orchestrator.new_job(source, asset_id="asset-2"))
        assert job.state is JobState.SUCCEEDED

    def test_probe_failure_does_not_fail_job(self, settings, catalog_store, encoder, source):
        orch = TranscodeOrchestrator(settings, catalog_store, probe=_FixedProbe(None))
        job = orch.run(orch.new_job(source))
        assert job.state is JobState.SUCCEEDED
        assert job.duration is None
        line = json.loads(settings.catalog_path.read_text().splitlines()[0])
        assert line["duration"] is None

    def test_probe_exception_does_not_fail_job(self, settings, catalog_store, encoder, source):
        orch = TranscodeOrchestrator(settings, catalog_store,
                                     probe=_FixedProbe(exc=RuntimeError("probe broke")))
        job = orch.run(orch.new_job(source))
        assert job.state is JobState.SUCCEEDED
        assert job.duration is None

    def test_partial_tiers_still_publish(self, orchestrator, monkeypatch, source, settings):
        monkeypatch.setattr(orch_mod, "resolve_ffmpeg", lambda name: "ffmpeg")
        monkeypatch.setattr(orch_mod, "run_ffmpeg", fake_encoder(skip_tiers=("480p", "1080p")))
        job = orchestrator.run(orchestrator.new_job(source, asset_id="partial"))
        assert job.state is JobState.SUCCEEDED
        assert not (settings.published_root / "partial" / "480p.m3u8").exists()

    def test_timeout_override(self, orchestrator, monkeypatch, source):
        seen = {}

        def run(cmd, timeout=None):
            seen["timeout"] = timeout
            return fake_encoder()(cmd, timeout)

        monkeypatch.setattr(orch_mod, "resolve_ffmpeg", lambda name: "ffmpeg")
        monkeypatch.setattr(orch_mod, "run_ffmpeg", run)
        orchestrator.run(orchestrator.new_job(source), timeout=5)
        assert seen["timeout"] == 5


# ===========================================================================
# run(): failures
# ===========================================================================

class TestRunFailures:

    def test_engine_unavailable_before_filesystem(self, orchestrator, monkeypatch, source, settings):
        def missing(name):
            raise EngineUnavailable("'ffmpeg' not found on PATH.")

        monkeypatch.setattr(orch_mod, "resolve_ffmpeg", missing)
        job = orchestrator.run(orchestrator.new_job(source, asset_id="nope"))

        assert job.state is JobState.FAILED
        assert job.failure_kind is FailureKind.ENGINE_UNAVAILABLE
        assert not (settings.published_root / "nope").exists()
        assert not settings.catalog_path.exists()

    def test_engine_failure_keeps_partial_output(self, orchestrator, monkeypatch, source, settings):
        def crash(cmd, timeout=None):
            fake_encoder(skip_tiers=("720p", "1080p"))(cmd, timeout)
            raise EngineFailure("FFmpeg exited 1.", returncode=1, stderr="Conversion failed!")

        monkeypatch.setattr(orch_mod, "resolve_ffmpeg", lambda name: "ffmpeg")
        monkeypatch.setattr(orch_mod, "run_ffmpeg", crash)
        job = orchestrator.run(orchestrator.new_job(source, asset_id="broken"))

        assert job.state is JobState.FAILED
        assert job.failure_kind is FailureKind.ENGINE_FAILURE
        assert "exited 1" in job.failure_detail
        out = settings.published_root / "broken"
        assert (out / "360p.m3u8").is_file()                 # left for the auditor
        assert not (out / "playlist.m3u8").exists()
        assert not settings.catalog_path.exists()

    def test_engine_timeout(self, orchestrator, monkeypatch, source, settings):
        monkeypatch.setattr(orch_mod, "resolve_ffmpeg", lambda name: "ffmpeg")
        monkeypatch.setattr(orch_mod, "run_ffmpeg", _raise(EngineTimeout("exceeded 1s")))
        job = orchestrator.run(orchestrator.new_job(source))
        assert job.failure_kind is FailureKind.ENGINE_TIMEOUT
        assert not settings.catalog_path.exists()

    def test_engine_vanishes_mid_job(self, orchestrator, monkeypatch, source):
        monkeypatch.setattr(orch_mod, "resolve_ffmpeg", lambda name: "ffmpeg")
        monkeypatch.setattr(orch_mod, "run_ffmpeg", _raise(EngineUnavailable("could not start")))
        job = orchestrator.run(orchestrator.new_job(source))
        assert job.failure_kind is FailureKind.ENGINE_UNAVAILABLE

    def test_exit_zero_without_outputs(self, orchestrator, monkeypatch, source):
        monkeypatch.setattr(orch_mod, "resolve_ffmpeg", lambda name: "ffmpeg")
        monkeypatch.setattr(orch_mod, "run_ffmpeg", lambda cmd, timeout=None: "")
        job = orchestrator.run(orchestrator.new_job(source))
        assert job.failure_kind is FailureKind.ENGINE_FAILURE
        assert "no variant playlists" in job.failure_detail

    def test_missing_source(self, orchestrator, encoder, tmp_path):
        job = orchestrator.run(orchestrator.new_job(tmp_path / "gone.mp4"))
        assert job.failure_kind is FailureKind.ENGINE_FAILURE
        assert "not found" in job.failure_detail
        assert encoder.calls == []

    def test_catalog_failure_fails_job(self, settings, encoder, source):
        class BrokenStore(CatalogStore):
            def append(self, record):
                raise CatalogWriteFailure("disk full")

        orch = TranscodeOrchestrator(settings, BrokenStore(settings.catalog_path),
                                     probe=_FixedProbe())
        job = orch.run(orch.new_job(source, asset_id="orphan"))

        assert job.state is JobState.FAILED
        assert job.failure_kind is FailureKind.CATALOG_WRITE_FAILURE
        assert job.public_url is None
        # Media is complete on disk; only the catalog step is missing.
        assert (settings.published_root / "orphan" / "playlist.m3u8").is_file()

    def test_run_twice_rejected(self, orchestrator, encoder, source):
        job = orchestrator.run(orchestrator.new_job(source))
        with pytest.raises(ValueError, match="expected pending"):
            orchestrator.run(job)


# ===========================================================================
# run(): filesystem errors end the job
# ===========================================================================

class TestRunFilesystemErrors:

    def test_output_dir_cannot_be_created(self, tmp_path, catalog_store, encoder, source):
        blocker = tmp_path / "published-is-a-file"
        blocker.write_text("")
        settings = PipelineSettings(published_root=blocker, catalog_path=catalog_store.path)
        orch = TranscodeOrchestrator(settings, catalog_store, probe=_FixedProbe())

        job = orch.run(orch.new_job(source))

        assert job.state is JobState.FAILED
        assert job.is_terminal
        assert job.failure_kind is FailureKind.ENGINE_FAILURE
        assert "cannot create output directory" in job.failure_detail
        assert encoder.calls == []
        assert not catalog_store.path.exists()

    def test_master_write_fails(self, orchestrator, encoder, monkeypatch, source, settings):
        def refuse(output_dir, ladder):
            raise PermissionError(13, "Permission denied")

        monkeypatch.setattr(orch_mod, "write_master_template", refuse)
        job = orchestrator.run(orchestrator.new_job(source, asset_id="ro"))

        assert job.state is JobState.FAILED
        assert job.failure_kind is FailureKind.ENGINE_FAILURE
        assert "cannot write master manifest" in job.failure_detail
        assert job.public_url is None
        assert not settings.catalog_path.exists()

    def test_service_surfaces_failed_job(self, tmp_path, encoder, source):
        from service.ingest import IngestService

        blocker = tmp_path / "root-file"
        blocker.write_text("")
        settings = PipelineSettings(published_root=blocker, catalog_path=tmp_path / "c.txt")
        with IngestService(settings) as service:
            job = service.wait(service.submit_job(source, wait=True))
        assert job.failure_kind is FailureKind.ENGINE_FAILURE


class TestTimeoutArgument:

    def test_explicit_zero_is_passed_through(self, orchestrator, monkeypatch, source):
        seen = {}

        def run(cmd, timeout=None):
            seen["timeout"] = timeout
            raise EngineTimeout("exceeded 0s")

        monkeypatch.setattr(orch_mod, "resolve_ffmpeg", lambda name: "ffmpeg")
        monkeypatch.setattr(orch_mod, "run_ffmpeg", run)
        job = orchestrator.run(orchestrator.new_job(source), timeout=0)

        assert seen["timeout"] == 0
        assert job.failure_kind is FailureKind.ENGINE_TIMEOUT

    def test_default_from_settings(self, orchestrator, monkeypatch, source, settings):
        seen = {}

        def run(cmd, timeout=None):
            seen["timeout"] = timeout
            return fake_encoder()(cmd, timeout)

        monkeypatch.setattr(orch_mod, "resolve_ffmpeg", lambda name: "ffmpeg")
        monkeypatch.setattr(orch_mod, "run_ffmpeg", run)
        orchestrator.run(orchestrator.new_job(source))
        assert seen["timeout"] == settings.encode_timeout
