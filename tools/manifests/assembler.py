"""
Manifest Assembler: builds, validates and repairs HLS playlists.

Master manifest (one per asset, ``playlist.m3u8``)::

    #EXTM3U
    #EXT-X-VERSION:3
    #EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360
    360p.m3u8
    ...

Variant manifest (one per tier, ``<tier>.m3u8``)::

    #EXTM3U
    #EXT-X-VERSION:3
    #EXT-X-TARGETDURATION:4
    #EXT-X-MEDIA-SEQUENCE:0
    #EXTINF:4.000000,
    360p_000.ts
    ...
    #EXT-X-ENDLIST

Rules:
  - Tiers always appear in ladder order, whatever order the caller supplies.
  - A master is structurally valid iff it carries at least one
    ``#EXT-X-STREAM-INF`` line.  Bandwidths and URIs are not checked.
  - Every write replaces the whole file, so repair_master() is idempotent:
    a second run on the same directory yields byte-identical manifests.
  - Segment gaps are reported, never papered over with invented entries.
"""
from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

from pydantic import BaseModel, Field

from manifests.segments import SegmentFile, SegmentScan, enumerate_segments
from schemas.audit_report import IssueCode
from schemas.ladder import DEFAULT_LADDER, RenditionLadder, RenditionTier

logger = logging.getLogger(__name__)

STREAM_INF_MARKER = "#EXT-X-STREAM-INF"
_HEADER = "#EXTM3U\n#EXT-X-VERSION:3\n"
_ENDLIST = "#EXT-X-ENDLIST\n"


class ManifestStructureError(Exception):
    """A master manifest is missing or fails the structural check."""

    def __init__(self, code: IssueCode, message: str) -> None:
        super().__init__(message)
        self.code = code


class RepairResult(BaseModel):
    """Outcome of repair_master() for one asset directory."""
    master_text: Optional[str] = None                     # None → nothing to publish
    written: list[str] = Field(default_factory=list)      # file names rewritten
    synthesized: list[str] = Field(default_factory=list)  # tiers given a new variant
    gaps: dict[str, list[int]] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Builders (pure text)
# ---------------------------------------------------------------------------

def build_master(
    tiers: Iterable[Union[RenditionTier, str]],
    ladder: RenditionLadder = DEFAULT_LADDER,
) -> str:
    """
    Master manifest text for *tiers* (tier objects or names).

    Output follows ladder order; names the ladder does not know are ignored.
    """
    wanted = {t.name if isinstance(t, RenditionTier) else t for t in tiers}
    lines = [_HEADER]
    for tier in ladder.tiers:
        if tier.name not in wanted:
            continue
        lines.append(
            f"{STREAM_INF_MARKER}:BANDWIDTH={tier.bandwidth},RESOLUTION={tier.resolution}\n"
            f"{tier.variant_filename}\n"
        )
    return "".join(lines)


def master_template(ladder: RenditionLadder = DEFAULT_LADDER) -> str:
    """Static master listing every ladder tier."""
    return build_master(ladder.tiers, ladder)


def build_variant(tier: RenditionTier, segments: Sequence[Union[SegmentFile, str]]) -> str:
    """
    Variant manifest text for *tier*.

    Each segment gets one ``#EXTINF`` entry of the tier's configured segment
    duration; SegmentFile entries are ordered by sequence index, plain file
    names are kept in the order given.
    """
    duration = tier.segment_duration
    if segments and all(isinstance(s, SegmentFile) for s in segments):
        names = [s.filename for s in sorted(segments, key=lambda s: s.index)]  # type: ignore[union-attr]
    else:
        names = [s.filename if isinstance(s, SegmentFile) else str(s) for s in segments]

    parts = [
        _HEADER,
        f"#EXT-X-TARGETDURATION:{duration}\n",
        "#EXT-X-MEDIA-SEQUENCE:0\n",
    ]
    for name in names:
        parts.append(f"#EXTINF:{duration:.6f},\n{name}\n")
    parts.append(_ENDLIST)
    return "".join(parts)


# ---------------------------------------------------------------------------
# Validation / parsing
# ---------------------------------------------------------------------------

def is_valid_master(text: Optional[str]) -> bool:
    return bool(text) and STREAM_INF_MARKER in text  # type: ignore[operator]


def playlist_uris(text: str) -> list[str]:
    """Non-comment, non-blank lines of a playlist: variant paths or segment names."""
    return [
        ln.strip()
        for ln in text.splitlines()
        if ln.strip() and not ln.lstrip().startswith("#")
    ]


def check_master(output_dir: Path, ladder: RenditionLadder = DEFAULT_LADDER) -> str:
    """
    Return the master manifest text of *output_dir*.

    Raises:
        ManifestStructureError: the master is absent, unreadable or has no
            stream references.
    """
    path = Path(output_dir) / ladder.master_filename
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ManifestStructureError(
            IssueCode.MASTER_MISSING, f"{ladder.master_filename} is missing"
        )
    except (OSError, UnicodeDecodeError) as exc:
        raise ManifestStructureError(
            IssueCode.MASTER_INVALID, f"{ladder.master_filename} unreadable: {exc}"
        )
    if not is_valid_master(text):
        raise ManifestStructureError(
            IssueCode.MASTER_INVALID,
            f"{ladder.master_filename} has no {STREAM_INF_MARKER} entries",
        )
    return text


def variant_tiers_on_disk(
    output_dir: Path,
    ladder: RenditionLadder = DEFAULT_LADDER,
) -> list[RenditionTier]:
    """Ladder tiers whose variant playlist file exists, in ladder order."""
    output_dir = Path(output_dir)
    return [t for t in ladder.tiers if (output_dir / t.variant_filename).is_file()]


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------

def write_manifest(path: Path, text: str) -> bool:
    """
    Replace *path* with *text* (temp file + rename).

    Returns False without touching the file when it already holds *text*.
    """
    path = Path(path)
    try:
        if path.read_text(encoding="utf-8") == text:
            return False
    except (OSError, UnicodeDecodeError):
        pass

    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as fh:
            fh.write(text)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    return True


def write_master_template(
    output_dir: Path,
    ladder: RenditionLadder = DEFAULT_LADDER,
) -> Path:
    """Write the all-tiers master template into *output_dir*."""
    path = Path(output_dir) / ladder.master_filename
    write_manifest(path, master_template(ladder))
    logger.info("Wrote master template → %s", path)
    return path


def synthesize_variant(
    output_dir: Path,
    tier: RenditionTier,
    ladder: RenditionLadder = DEFAULT_LADDER,
) -> tuple[Optional[Path], SegmentScan]:
    """
    Build ``<tier>.m3u8`` from the tier's segment files on disk.

    Returns (path, scan); path is None when the tier has no segments.
    """
    scan = enumerate_segments(output_dir, tier.name, ladder.segment_ext)
    if not scan:
        return None, scan
    path = Path(output_dir) / tier.variant_filename
    write_manifest(path, build_variant(tier, scan.segments))
    logger.info(
        "Synthesised %s with %d segments (gaps=%s)",
        path, len(scan.segments), scan.gaps or "none",
    )
    return path, scan


def repair_master(
    output_dir: Path,
    ladder: RenditionLadder = DEFAULT_LADDER,
) -> RepairResult:
    """
    Rebuild the master manifest of *output_dir* from the variants present.

    Steps, in ladder order:
      1. A tier with segment files but no variant playlist gets one
         synthesised from those segments (gaps reported, not filled).
      2. The master is rebuilt from every tier whose variant now exists and
         overwrites ``playlist.m3u8``.
    With no variant and no segments for any tier, nothing is written and
    master_text is None.
    """
    output_dir = Path(output_dir)
    result = RepairResult()

    for tier in ladder.tiers:
        if (output_dir / tier.variant_filename).is_file():
            continue
        path, scan = synthesize_variant(output_dir, tier, ladder)
        if path is None:
            continue
        result.synthesized.append(tier.name)
        result.written.append(path.name)
        if scan.gaps:
            result.gaps[tier.name] = list(scan.gaps)
            for idx in scan.gaps:
                msg = (
                    f"{tier.name}: segment {tier.segment_filename(idx, ladder.segment_ext)} "
                    f"missing (gap at index {idx}); not substituted"
                )
                result.warnings.append(msg)
                logger.warning("%s: %s", output_dir.name, msg)

    present = variant_tiers_on_disk(output_dir, ladder)
    if not present:
        result.warnings.append("no variant playlists or segments found; master not written")
        logger.warning("%s: nothing to publish, no renditions on disk", output_dir.name)
        return result

    text = build_master(present, ladder)
    master_path = output_dir / ladder.master_filename
    if write_manifest(master_path, text):
        result.written.append(master_path.name)
        logger.info(
            "Rebuilt %s with tiers %s", master_path, [t.name for t in present]
        )
    result.master_text = text
    return result
