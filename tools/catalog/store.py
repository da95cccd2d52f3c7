"""
Catalog Store: append-only line file of published assets.

Writers:
  append()          one line per successful job; never rewrites earlier lines
  migrate_legacy()  explicit, whole-file normalisation of legacy lines

Both take the store's lock, so concurrent jobs in one process append whole
lines one at a time.  Readers do not lock: read_all() sees every append that
completed before it opened the file and tolerates a torn last line.

read_all() never fails on content.  Each non-blank line goes through
parse_catalog_line(); lines that are not structured records come back as
DegradedRecord instances.
"""
from __future__ import annotations

import datetime
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from schemas.catalog_record import (
    AnyCatalogRecord,
    CatalogRecord,
    asset_id_from_url,
    parse_catalog_line,
    placeholder_id,
)
from schemas.ladder import MASTER_PLAYLIST_NAME

logger = logging.getLogger(__name__)


class CatalogWriteFailure(Exception):
    """A catalog line could not be durably written."""


class CatalogStore:
    """
    Usage::

        store = CatalogStore(Path("videoLinks.txt"))
        store.append(CatalogRecord(url=url, id=asset_id, uploadDate=now))
        record = store.find_by_asset_id(asset_id)
    """

    def __init__(self, path: Path, master_filename: str = MASTER_PLAYLIST_NAME) -> None:
        self.path = Path(path)
        self.master_filename = master_filename
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, record: CatalogRecord) -> None:
        """
        Append *record* as one line.

        Raises:
            CatalogWriteFailure: the line could not be written and flushed.
        """
        line = record.to_line()
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "ab") as fh:
                    prefix = b"\n" if self._needs_newline(fh) else b""
                    fh.write(prefix + line.encode("utf-8") + b"\n")
                    fh.flush()
                    os.fsync(fh.fileno())
            except OSError as exc:
                raise CatalogWriteFailure(
                    f"could not append catalog record {record.id!r} to {self.path}: {exc}"
                ) from exc
        logger.info("Catalog: appended %s", record.id)

    def migrate_legacy(self) -> int:
        """
        Rewrite the file with legacy lines normalised to structured records.

        A degraded line without an id of its own whose URL has the
        published-asset shape gets its id from the URL path; other fields it
        carried are kept.  Lines that do not match the shape, and lines that
        are already structured, are written back unchanged.  Order is preserved.

        Returns the number of lines rewritten.
        """
        with self._lock:
            lines = self._read_lines()
            if not lines:
                return 0

            out: list[str] = []
            rewritten = 0
            for index, raw in enumerate(lines):
                record = parse_catalog_line(raw, index)
                if record.kind != "degraded" or record.id != placeholder_id(index):
                    out.append(raw.strip())
                    continue
                asset_id = asset_id_from_url(record.url, self.master_filename)
                if asset_id is None:
                    logger.warning(
                        "Catalog line %d left as-is (%s): %.80s",
                        index, record.reason, raw.strip(),
                    )
                    out.append(raw.strip())
                    continue
                fields = record.model_dump(by_alias=True)
                fields["id"] = asset_id
                if not fields.get("uploadDate"):
                    fields["uploadDate"] = _utc_now()
                out.append(CatalogRecord.model_validate(fields).to_line())
                rewritten += 1

            if rewritten:
                self._replace("".join(f"{ln}\n" for ln in out))
            logger.info("Catalog migration: %d of %d lines rewritten", rewritten, len(lines))
            return rewritten

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read_all(self) -> list[AnyCatalogRecord]:
        """All records in append order (oldest first)."""
        records: list[AnyCatalogRecord] = []
        for index, raw in enumerate(self._read_lines()):
            record = parse_catalog_line(raw, index)
            if record.kind == "degraded":
                logger.debug("Catalog line %d degraded: %s", index, record.reason)
            records.append(record)
        return records

    def find_by_asset_id(self, asset_id: str) -> Optional[AnyCatalogRecord]:
        """Latest record with this id (later lines win)."""
        for record in reversed(self.read_all()):
            if record.id == asset_id:
                return record
        return None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_lines(self) -> list[str]:
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            return []
        text = data.decode("utf-8", errors="replace")
        # Only \n ends a record: U+2028 and friends may appear inside JSON strings.
        lines = (ln.rstrip("\r") for ln in text.split("\n"))
        return [ln for ln in lines if ln.strip()]

    def _needs_newline(self, fh) -> bool:
        """True when the file is non-empty and its last byte is not a newline."""
        size = fh.seek(0, os.SEEK_END)
        if size == 0:
            return False
        with open(self.path, "rb") as reader:
            reader.seek(size - 1)
            return reader.read(1) != b"\n"

    def _replace(self, content: str) -> None:
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self.path)
        except OSError as exc:
            Path(tmp).unlink(missing_ok=True)
            raise CatalogWriteFailure(f"could not rewrite {self.path}: {exc}") from exc


def find_for_directory(
    records: list[AnyCatalogRecord],
    asset_id: str,
) -> Optional[AnyCatalogRecord]:
    """
    Catalog record matching an asset directory: exact id first, then a URL
    containing ``/<asset_id>/`` for legacy records without a usable id.
    """
    for record in reversed(records):
        if record.id == asset_id:
            return record
    needle = f"/{asset_id}/"
    for record in reversed(records):
        if needle in record.url:
            return record
    return None


def _utc_now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()
