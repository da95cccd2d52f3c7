"""
CatalogRecord: one published asset, one line of the catalog file.

Line format (UTF-8, newline-terminated):

  {"url": "...", "id": "...", "uploadDate": "...", "fileSize": 12.5,
   "duration": 93.4, "originalName": "clip.mp4"}

or, for assets published before structured records existed, the bare URL:

  http://localhost:8000/uploads/hls-videos/<asset-id>/playlist.m3u8

parse_catalog_line() is the single place a line becomes a record.  It never
raises: anything it cannot read as a structured record comes back as a
DegradedRecord tagged with the reason.
"""
from __future__ import annotations

import json
from typing import Literal, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from schemas.ladder import MASTER_PLAYLIST_NAME


class CatalogRecord(BaseModel):
    """Structured catalog entry.  Unknown keys from older writers are kept."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    kind: Literal["structured"] = Field(default="structured", exclude=True)
    url: str
    id: str = Field(min_length=1)
    upload_date: Optional[str] = Field(default=None, alias="uploadDate")
    file_size: Optional[float] = Field(default=None, alias="fileSize")   # MB
    duration: Optional[float] = None                                     # seconds
    original_name: Optional[str] = Field(default=None, alias="originalName")

    def to_line(self) -> str:
        """Serialise to one catalog line (no trailing newline)."""
        return json.dumps(
            self.model_dump(by_alias=True),
            ensure_ascii=False,
            separators=(",", ":"),
        )


class DegradedRecord(CatalogRecord):
    """
    Best-effort record rebuilt from a line that failed structured parsing.

    id is the placeholder ``unknown-<line_index>`` unless the line was a JSON
    object that carried its own id.  raw_line keeps the original text so a
    migration can pass unmatched lines through untouched.
    """
    kind: Literal["degraded"] = Field(default="degraded", exclude=True)
    line_index: int = Field(default=0, exclude=True)
    raw_line: str = Field(default="", exclude=True)
    reason: str = Field(default="", exclude=True)


AnyCatalogRecord = Union[CatalogRecord, DegradedRecord]

# Field names the parser sets itself; same-named keys in a stored line are dropped.
_RESERVED_KEYS = frozenset({"kind", "line_index", "raw_line", "reason"})


def placeholder_id(line_index: int) -> str:
    return f"unknown-{line_index}"


def parse_catalog_line(line: str, line_index: int) -> AnyCatalogRecord:
    """
    Parse one catalog line.  *line_index* is the zero-based position of the
    line among the file's non-blank lines.
    """
    text = line.strip()
    try:
        data = json.loads(text)
    except ValueError:
        return _degraded(text, line_index, reason="not JSON (legacy bare URL)")

    if not isinstance(data, dict):
        return _degraded(text, line_index, reason=f"JSON {type(data).__name__}, expected object")

    url = data.get("url")
    if not isinstance(url, str) or not url:
        return _degraded(text, line_index, reason="object has no url")

    if not data.get("id"):
        fields = {
            k: v for k, v in data.items()
            if k not in _RESERVED_KEYS and k not in ("url", "id")
        }
        fields.update(
            url=url,
            id=placeholder_id(line_index),
            line_index=line_index,
            raw_line=text,
            reason="object has no id",
        )
        try:
            return DegradedRecord.model_validate(fields)
        except (ValidationError, TypeError):
            return _degraded(url, line_index, raw_line=text, reason="object has no id")

    try:
        return CatalogRecord.model_validate({k: v for k, v in data.items() if k != "kind"})
    except ValidationError as exc:
        return DegradedRecord(
            url=url,
            id=str(data["id"]),
            line_index=line_index,
            raw_line=text,
            reason=f"invalid fields: {exc.error_count()} error(s)",
        )


def _degraded(
    url: str,
    line_index: int,
    *,
    reason: str,
    raw_line: Optional[str] = None,
) -> DegradedRecord:
    return DegradedRecord(
        url=url,
        id=placeholder_id(line_index),
        line_index=line_index,
        raw_line=url if raw_line is None else raw_line,
        reason=reason,
    )


# ---------------------------------------------------------------------------
# Published-asset URL shape:  <base>/<published-root>/<asset-id>/playlist.m3u8
# ---------------------------------------------------------------------------

def build_public_url(
    base_url: str,
    published_prefix: str,
    asset_id: str,
    master_filename: str = MASTER_PLAYLIST_NAME,
) -> str:
    parts = [base_url.rstrip("/"), published_prefix.strip("/"), asset_id, master_filename]
    return "/".join(p for p in parts if p)


def asset_id_from_url(url: str, master_filename: str = MASTER_PLAYLIST_NAME) -> Optional[str]:
    """
    Return the asset id of a published-asset URL, or None when *url* does not
    end in ``/<asset-id>/<master_filename>``.
    """
    path = urlparse(url.strip()).path
    segments = [s for s in path.split("/") if s]
    if len(segments) < 2 or segments[-1] != master_filename:
        return None
    return segments[-2]
