"""
Shared pytest fixtures for tools/tests/.

Provides:
  - settings / catalog_store / published_root rooted in a per-test tmp dir
  - a deterministic still image (generated with Pillow, not a committed binary)
  - source_clip: a short H.264/AAC clip built from that still with ffmpeg
  - require_ffmpeg: skip-marker for tests that need the ffmpeg binary
"""
from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from catalog.store import CatalogStore
from schemas.ladder import DEFAULT_LADDER, RenditionLadder
from schemas.settings import PipelineSettings

# ---- optional Pillow import ----
try:
    from PIL import Image, ImageDraw
    _PIL_AVAILABLE = True
except ImportError:
    _PIL_AVAILABLE = False


_CLIP_W, _CLIP_H = 640, 360
_CLIP_SECONDS = 6           # two 4 s segments per tier
_CLIP_COLOR = (40, 90, 160)


# ---------------------------------------------------------------------------
# Pipeline fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def ladder() -> RenditionLadder:
    return DEFAULT_LADDER


@pytest.fixture
def published_root(tmp_path: Path) -> Path:
    root = tmp_path / "hls-videos"
    root.mkdir()
    return root


@pytest.fixture
def catalog_path(tmp_path: Path) -> Path:
    return tmp_path / "videoLinks.txt"


@pytest.fixture
def catalog_store(catalog_path: Path) -> CatalogStore:
    return CatalogStore(catalog_path)


@pytest.fixture
def settings(published_root: Path, catalog_path: Path) -> PipelineSettings:
    return PipelineSettings(
        published_root=published_root,
        catalog_path=catalog_path,
        public_base_url="http://media.test",
        public_path="uploads/hls-videos",
        encode_timeout=120,
    )


# ---------------------------------------------------------------------------
# Test media (deterministic with Pillow)
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def still_image(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """Solid-colour PNG with a white frame; bit-stable across Pillow versions."""
    if not _PIL_AVAILABLE:
        pytest.skip("Pillow not installed; cannot generate test media.")

    path = tmp_path_factory.mktemp("media") / "still.png"
    img = Image.new("RGB", (_CLIP_W, _CLIP_H), color=_CLIP_COLOR)
    ImageDraw.Draw(img).rectangle(
        (8, 8, _CLIP_W - 9, _CLIP_H - 9), outline=(255, 255, 255), width=4
    )
    img.save(str(path), format="PNG", compress_level=9, optimize=False)
    return path


@pytest.fixture(scope="session")
def source_clip(require_ffmpeg, still_image: Path) -> Path:
    """Loop the still for a few seconds over a sine tone → clip.mp4."""
    path = still_image.parent / "clip.mp4"
    cmd = [
        "ffmpeg", "-hide_banner", "-y",
        "-loop", "1", "-i", str(still_image),
        "-f", "lavfi", "-i", "sine=frequency=440:sample_rate=48000",
        "-t", str(_CLIP_SECONDS),
        "-r", "24",
        "-c:v", "libx264", "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-shortest",
        str(path),
    ]
    result = subprocess.run(cmd, capture_output=True, text=True, timeout=120)
    if result.returncode != 0:
        pytest.skip(f"ffmpeg could not build the source clip:\n{result.stderr[-1000:]}")
    return path


# ---------------------------------------------------------------------------
# FFmpeg availability check
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def require_ffmpeg():
    """Skip the test if ffmpeg is not available on PATH."""
    if shutil.which("ffmpeg") is None:
        pytest.skip("ffmpeg not available; skipping encode test.")
    result = subprocess.run(["ffmpeg", "-version"], capture_output=True, timeout=5)
    if result.returncode != 0:
        pytest.skip("ffmpeg not available; skipping encode test.")
