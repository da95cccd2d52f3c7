"""
FFmpeg runner for the HLS transcoding pipeline.

Owns every subprocess call to the encoder: binary resolution, version
check, and bounded-time execution in a dedicated process group so a timed
out encode is killed together with any children it spawned.

Errors map onto the job-terminal taxonomy:
  EngineUnavailable  binary missing or not executable
  EngineFailure      non-zero exit; stderr tail preserved
  EngineTimeout      wall-clock bound exceeded; process group killed
"""
from __future__ import annotations

import logging
import os
import re
import shutil
import signal
import subprocess
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Minimum supported ffmpeg version (MAJOR.MINOR).  Older builds lack
# -hls_playlist_type vod on multi-output command lines.
FFMPEG_MIN_VERSION = "4.0"

_STDERR_TAIL_CHARS = 3000


class EngineError(Exception):
    """Base class for encoder invocation failures."""


class EngineUnavailable(EngineError):
    """The configured ffmpeg binary cannot be found or executed."""


class EngineFailure(EngineError):
    """ffmpeg exited with a non-zero return code."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class EngineTimeout(EngineError, TimeoutError):
    """ffmpeg exceeded its wall-clock bound and was killed."""


# ---------------------------------------------------------------------------
# Binary resolution / version helpers
# ---------------------------------------------------------------------------

def resolve_ffmpeg(ffmpeg_bin: str = "ffmpeg") -> str:
    """
    Return an executable path for *ffmpeg_bin*.

    A value containing a path separator is taken literally; a bare name is
    looked up on PATH.

    Raises:
        EngineUnavailable: nothing executable at that location.
    """
    if os.sep in ffmpeg_bin or (os.altsep and os.altsep in ffmpeg_bin):
        path = Path(ffmpeg_bin).expanduser()
        if path.is_file() and os.access(path, os.X_OK):
            return str(path)
        raise EngineUnavailable(f"ffmpeg not found or not executable at {path}")

    found = shutil.which(ffmpeg_bin)
    if found is None:
        raise EngineUnavailable(
            f"{ffmpeg_bin!r} not found on PATH. "
            f"Install ffmpeg >= {FFMPEG_MIN_VERSION} or set HLS_FFMPEG."
        )
    return found


def get_ffmpeg_version(ffmpeg_bin: str = "ffmpeg") -> str:
    """
    Return the installed ffmpeg version string (e.g. "6.1.1").

    Raises:
        EngineUnavailable: if ffmpeg is absent or fails to respond.
    """
    binary = resolve_ffmpeg(ffmpeg_bin)
    try:
        result = subprocess.run(
            [binary, "-version"],
            capture_output=True,
            text=True,
            timeout=10,
            check=True,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        raise EngineUnavailable(f"{binary} -version failed: {exc}")

    # First line format: "ffmpeg version X.Y.Z[-suffix] ..."
    lines = result.stdout.splitlines()
    first_line = lines[0] if lines else ""
    parts = first_line.split()
    if len(parts) >= 3 and parts[0] == "ffmpeg" and parts[1] == "version":
        return parts[2]
    return first_line


def validate_ffmpeg(ffmpeg_bin: str = "ffmpeg") -> str:
    """
    Validate that ffmpeg is present and warn if below minimum version.

    Returns:
        The version string.

    Raises:
        EngineUnavailable: if ffmpeg is absent.
    """
    version = get_ffmpeg_version(ffmpeg_bin)
    m = re.match(r"n?(\d+)\.(\d+)", version)
    if m:
        major, minor = int(m.group(1)), int(m.group(2))
        req_major, req_minor = (int(x) for x in FFMPEG_MIN_VERSION.split(".", 1))
        if (major, minor) < (req_major, req_minor):
            logger.warning(
                "ffmpeg %s is below minimum supported %s; HLS output may differ.",
                version,
                FFMPEG_MIN_VERSION,
            )
    return version


def engine_status(ffmpeg_bin: str = "ffmpeg") -> dict[str, object]:
    """Encoder availability summary: installed flag, resolved path, version."""
    try:
        path = resolve_ffmpeg(ffmpeg_bin)
        version = get_ffmpeg_version(ffmpeg_bin)
    except EngineUnavailable as exc:
        return {"installed": False, "path": None, "version": None, "message": str(exc)}
    return {
        "installed": True,
        "path": path,
        "version": version,
        "message": f"ready for video processing using {path}",
    }


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

def run_ffmpeg(cmd: list[str], timeout: Optional[float] = 3600) -> str:
    """
    Run an FFmpeg command synchronously in its own process group.

    Args:
        cmd: Complete FFmpeg command as a list of strings; cmd[0] is the
             resolved binary.
        timeout: Maximum wall-clock seconds to allow; None waits forever.

    Returns:
        The captured stderr (ffmpeg writes its diagnostics there).

    Raises:
        EngineUnavailable: the binary could not be started.
        EngineFailure:     non-zero exit.
        EngineTimeout:     *timeout* exceeded; the process group is killed.
    """
    logger.debug("ffmpeg cmd: %s", " ".join(cmd[:10]) + (" ..." if len(cmd) > 10 else ""))

    try:
        process = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            start_new_session=True,  # own process group → clean kill on timeout
        )
    except (FileNotFoundError, PermissionError) as exc:
        raise EngineUnavailable(f"could not start {cmd[0]}: {exc}")

    try:
        _, stderr = process.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_group(process)
        process.communicate()
        raise EngineTimeout(
            f"FFmpeg exceeded timeout of {timeout}s; killed. "
            f"Command: {' '.join(cmd[:6])} ..."
        )

    if process.returncode != 0:
        tail = stderr[-_STDERR_TAIL_CHARS:] if len(stderr) > _STDERR_TAIL_CHARS else stderr
        raise EngineFailure(
            f"FFmpeg exited {process.returncode}.\n"
            f"Command: {' '.join(cmd[:8])} ...\n"
            f"stderr (last {_STDERR_TAIL_CHARS} chars):\n{tail}",
            returncode=process.returncode,
            stderr=tail,
        )

    logger.debug("FFmpeg finished OK (rc=0)")
    return stderr


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _kill_group(process: subprocess.Popen) -> None:
    """Kill the process and its entire process group (SIGKILL)."""
    try:
        os.killpg(os.getpgid(process.pid), signal.SIGKILL)
    except ProcessLookupError:
        pass  # already dead
    except OSError as exc:
        logger.warning("Could not kill ffmpeg process group: %s", exc)
        process.kill()
