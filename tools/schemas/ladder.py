"""
RenditionLadder: the fixed adaptive-bitrate quality ladder.

Each RenditionTier names one output rendition: scale target, video bitrate
cap, VBV buffer size, audio bitrate and HLS segment duration.  The ladder
is ordered by ascending video bitrate; that order is the order tiers appear
in every master manifest and the order the Auditor visits them.

Tier names double as output basenames:
  <tier>.m3u8          variant playlist
  <tier>_%03d.<ext>    segment files
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

MASTER_PLAYLIST_NAME = "playlist.m3u8"


class RenditionTier(BaseModel):
    """One quality level.  Bitrates are in kbit/s, segment_duration in seconds."""
    model_config = ConfigDict(frozen=True)

    name: str
    width: int
    height: int
    video_bitrate_kbps: int
    max_bitrate_kbps: int
    buffer_size_kbps: int
    audio_bitrate_kbps: int
    segment_duration: int = 4

    @property
    def bandwidth(self) -> int:
        """BANDWIDTH attribute advertised in the master manifest (bit/s)."""
        return self.video_bitrate_kbps * 1000

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def variant_filename(self) -> str:
        return f"{self.name}.m3u8"

    def segment_template(self, ext: str = "ts") -> str:
        """ffmpeg -hls_segment_filename basename, e.g. ``720p_%03d.ts``."""
        return f"{self.name}_%03d.{ext}"

    def segment_filename(self, index: int, ext: str = "ts") -> str:
        return f"{self.name}_{index:03d}.{ext}"


class RenditionLadder(BaseModel):
    """
    Ordered, immutable set of tiers.

    Validation at construction:
      - at least one tier
      - tier names unique (they map 1:1 to output basenames)
      - video bitrate strictly ascending
    """
    model_config = ConfigDict(frozen=True)

    tiers: tuple[RenditionTier, ...]
    segment_ext: str = "ts"
    master_filename: str = MASTER_PLAYLIST_NAME

    @field_validator("tiers")
    @classmethod
    def _check_tiers(cls, tiers: tuple[RenditionTier, ...]) -> tuple[RenditionTier, ...]:
        if not tiers:
            raise ValueError("ladder must contain at least one tier")
        names = [t.name for t in tiers]
        if len(set(names)) != len(names):
            raise ValueError(f"tier names must be unique, got {names}")
        for lower, upper in zip(tiers, tiers[1:]):
            if upper.video_bitrate_kbps <= lower.video_bitrate_kbps:
                raise ValueError(
                    f"tiers must ascend by video bitrate: "
                    f"{lower.name} ({lower.video_bitrate_kbps}k) >= "
                    f"{upper.name} ({upper.video_bitrate_kbps}k)"
                )
        return tiers

    @property
    def names(self) -> list[str]:
        return [t.name for t in self.tiers]

    def tier(self, name: str) -> Optional[RenditionTier]:
        for t in self.tiers:
            if t.name == name:
                return t
        return None


DEFAULT_LADDER = RenditionLadder(
    tiers=(
        RenditionTier(name="360p", width=640, height=360,
                      video_bitrate_kbps=800, max_bitrate_kbps=856,
                      buffer_size_kbps=1200, audio_bitrate_kbps=96),
        RenditionTier(name="480p", width=842, height=480,
                      video_bitrate_kbps=1400, max_bitrate_kbps=1498,
                      buffer_size_kbps=2100, audio_bitrate_kbps=128),
        RenditionTier(name="720p", width=1280, height=720,
                      video_bitrate_kbps=2800, max_bitrate_kbps=2996,
                      buffer_size_kbps=4200, audio_bitrate_kbps=128),
        RenditionTier(name="1080p", width=1920, height=1080,
                      video_bitrate_kbps=5000, max_bitrate_kbps=5350,
                      buffer_size_kbps=7500, audio_bitrate_kbps=192),
    ),
)
