"""
Source metadata probe.

The orchestrator only needs one number from the source, its duration, and
treats it as optional.  DurationProbe is the narrow interface it depends on;
FFmpegDurationProbe implements it by scraping the ``Duration:`` banner that
``ffmpeg -i <source>`` prints to stderr.  Any failure yields None.
"""
from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

# "  Duration: 00:01:33.40, start: 0.000000, bitrate: 1205 kb/s"
_DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2})(?:\.(\d+))?")


class DurationProbe(Protocol):
    def probe(self, source: Path) -> Optional[float]:
        ...


def parse_duration(text: str) -> Optional[float]:
    """Seconds from an ffmpeg input banner, or None (also for ``Duration: N/A``)."""
    m = _DURATION_RE.search(text)
    if not m:
        return None
    hours, minutes, seconds = int(m.group(1)), int(m.group(2)), int(m.group(3))
    fraction = float(f"0.{m.group(4)}") if m.group(4) else 0.0
    return round(hours * 3600 + minutes * 60 + seconds + fraction, 2)


class FFmpegDurationProbe:
    """Reads the duration banner of ``ffmpeg -hide_banner -i <source>``."""

    def __init__(self, ffmpeg_bin: str, timeout: float = 30.0) -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.timeout = timeout

    def probe(self, source: Path) -> Optional[float]:
        # With no output file ffmpeg exits 1 after printing the input banner,
        # so the return code carries no signal here.
        try:
            result = subprocess.run(
                [self.ffmpeg_bin, "-hide_banner", "-i", str(source)],
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            logger.warning("Duration probe failed for %s: %s", source, exc)
            return None

        duration = parse_duration(result.stderr)
        if duration is None:
            logger.warning("Duration probe found no duration for %s", source)
        return duration
