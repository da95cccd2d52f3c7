"""
Segment discovery for one rendition tier.

Segment files follow the encoder's template ``<tier>_<index>.<ext>`` with a
zero-padded, zero-based index (three digits, more once the index passes
999).  This module is the only place that pattern is matched: everything
else asks enumerate_segments() for a sorted, gap-checked listing.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class SegmentFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: str
    index: int
    path: Path

    @property
    def filename(self) -> str:
        return self.path.name


class SegmentScan(BaseModel):
    """Sorted segments found on disk for one tier plus any missing indices."""
    tier: str
    segments: list[SegmentFile] = Field(default_factory=list)
    gaps: list[int] = Field(default_factory=list)

    @property
    def is_contiguous(self) -> bool:
        return not self.gaps

    def __bool__(self) -> bool:
        return bool(self.segments)


def segment_pattern(tier: str, ext: str = "ts") -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(tier)}_(?P<index>\d{{3,}})\.{re.escape(ext)}$")


def enumerate_segments(directory: Path, tier: str, ext: str = "ts") -> SegmentScan:
    """
    List ``<tier>_NNN.<ext>`` files in *directory*, ascending by index.

    Indices absent from ``0..max`` are returned in ``gaps``; the segments
    after a gap are still listed.  A missing directory yields an empty scan.
    """
    directory = Path(directory)
    pattern = segment_pattern(tier, ext)
    found: dict[int, SegmentFile] = {}
    if directory.is_dir():
        for entry in directory.iterdir():
            m = pattern.match(entry.name)
            if not m or not entry.is_file():
                continue
            idx = int(m.group("index"))
            if idx in found:
                # 720p_001.ts and 720p_0001.ts: keep the canonical 3-digit name.
                logger.warning("Duplicate segment index %d for %s: %s", idx, tier, entry.name)
                if entry.name != f"{tier}_{idx:03d}.{ext}":
                    continue
            found[idx] = SegmentFile(tier=tier, index=idx, path=entry)

    segments = [found[i] for i in sorted(found)]
    gaps: list[int] = []
    if segments:
        present = set(found)
        gaps = [i for i in range(segments[-1].index + 1) if i not in present]
    return SegmentScan(tier=tier, segments=segments, gaps=gaps)
