"""
Consistency Auditor: finds and repairs structural drift under the
published-assets root.

For every asset directory (one per asset id):

  1. Master manifest present and structurally valid; every variant it
     references exists on disk.
  2. Per ladder tier: an existing variant's segment references all resolve
     to files; a tier with segments but no variant is flagged.
  3. The directory is matched against the catalog (by id, or by URL for
     legacy records).  Unregistered assets are warnings: they stay servable.

scan() only reads.  repair() runs the same checks and then hands directories
with manifest problems to repair_master(), which synthesises missing variants
and rewrites the master from whatever variants exist.

Directories share no state, so they may be audited in parallel (workers > 1).
Two repair sweeps over the same tree must not overlap; callers serialise
them (see service.ingest.IngestService.audit_now).
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Literal

from catalog.store import CatalogStore, find_for_directory
from manifests.assembler import (
    ManifestStructureError,
    check_master,
    playlist_uris,
    repair_master,
)
from manifests.segments import enumerate_segments
from schemas.audit_report import AuditReport, DirectoryReport, IssueCode
from schemas.catalog_record import AnyCatalogRecord
from schemas.ladder import DEFAULT_LADDER, RenditionLadder

logger = logging.getLogger(__name__)


class ConsistencyAuditor:
    """
    Usage::

        auditor = ConsistencyAuditor()
        report = auditor.scan(Path("uploads/hls-videos"), CatalogStore(path))
        report = auditor.repair(Path("uploads/hls-videos"), CatalogStore(path))
    """

    def __init__(self, ladder: RenditionLadder = DEFAULT_LADDER, workers: int = 1) -> None:
        self.ladder = ladder
        self.workers = max(1, workers)

    def scan(self, published_root: Path, catalog: CatalogStore) -> AuditReport:
        return self._sweep(Path(published_root), catalog, mode="scan")

    def repair(self, published_root: Path, catalog: CatalogStore) -> AuditReport:
        return self._sweep(Path(published_root), catalog, mode="repair")

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def _sweep(
        self,
        published_root: Path,
        catalog: CatalogStore,
        mode: Literal["scan", "repair"],
    ) -> AuditReport:
        records = catalog.read_all()
        report = AuditReport(
            mode=mode,
            published_root=published_root,
            catalog_records=len(records),
            degraded_records=sum(1 for r in records if r.kind == "degraded"),
        )
        if not published_root.is_dir():
            logger.warning("Published root %s does not exist; nothing to audit", published_root)
            return report

        directories = sorted(p for p in published_root.iterdir() if p.is_dir())
        logger.info("Audit (%s) | root=%s | directories=%d | catalog=%d",
                    mode, published_root, len(directories), len(records))

        def audit_one(directory: Path) -> DirectoryReport:
            return self.audit_directory(directory, records, repair=(mode == "repair"))

        if self.workers > 1 and len(directories) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                report.directories = list(pool.map(audit_one, directories))
        else:
            report.directories = [audit_one(d) for d in directories]

        logger.info("Audit (%s) complete: %s", mode, report.summary())
        return report

    # ------------------------------------------------------------------
    # Per-directory checks
    # ------------------------------------------------------------------

    def audit_directory(
        self,
        directory: Path,
        records: list[AnyCatalogRecord],
        repair: bool = False,
    ) -> DirectoryReport:
        directory = Path(directory)
        result = DirectoryReport(asset_id=directory.name, path=directory)

        self._check_master(directory, result)
        self._check_tiers(directory, result)
        self._check_registration(directory, records, result)

        if repair and result.needs_repair:
            self._repair(directory, result)
        return result

    def _check_master(self, directory: Path, result: DirectoryReport) -> None:
        try:
            text = check_master(directory, self.ladder)
        except ManifestStructureError as exc:
            result.add(exc.code, str(exc), subject=self.ladder.master_filename)
            return

        result.published = True
        for uri in playlist_uris(text):
            if not (directory / uri).is_file():
                result.add(
                    IssueCode.MASTER_DANGLING_VARIANT,
                    f"master references missing variant {uri}",
                    subject=uri,
                )

    def _check_tiers(self, directory: Path, result: DirectoryReport) -> None:
        any_rendition = False
        for tier in self.ladder.tiers:
            variant = directory / tier.variant_filename
            if variant.is_file():
                any_rendition = True
                self._check_variant(directory, variant, tier.name, result)
                continue

            scan = enumerate_segments(directory, tier.name, self.ladder.segment_ext)
            if not scan:
                continue
            any_rendition = True
            result.add(
                IssueCode.VARIANT_MISSING,
                f"{tier.variant_filename} missing but {len(scan.segments)} segments exist",
                tier=tier.name,
                subject=tier.variant_filename,
            )
            for idx in scan.gaps:
                result.add(
                    IssueCode.SEGMENT_GAP,
                    f"{tier.name}: no segment at index {idx}",
                    tier=tier.name,
                    subject=tier.segment_filename(idx, self.ladder.segment_ext),
                )

        if not any_rendition:
            result.add(IssueCode.NO_RENDITIONS, "no variant playlists or segment files")

    def _check_variant(
        self,
        directory: Path,
        variant: Path,
        tier_name: str,
        result: DirectoryReport,
    ) -> None:
        try:
            text = variant.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            result.add(IssueCode.VARIANT_EMPTY, f"{variant.name} unreadable: {exc}",
                       tier=tier_name, subject=variant.name)
            return

        uris = playlist_uris(text)
        if not uris:
            result.add(IssueCode.VARIANT_EMPTY, f"{variant.name} references no segments",
                       tier=tier_name, subject=variant.name)
            return
        missing = [u for u in uris if not (directory / u).is_file()]
        for name in missing:
            result.add(IssueCode.SEGMENT_MISSING, f"{variant.name} references missing {name}",
                       tier=tier_name, subject=name)
        if missing:
            logger.warning("%s: %s missing %d of %d segments",
                           directory.name, variant.name, len(missing), len(uris))

    def _check_registration(
        self,
        directory: Path,
        records: list[AnyCatalogRecord],
        result: DirectoryReport,
    ) -> None:
        if find_for_directory(records, directory.name) is not None:
            result.registered = True
            return
        result.add(IssueCode.UNREGISTERED, "no catalog record for this asset")
        logger.warning("%s: not registered in the catalog", directory.name)

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    def _repair(self, directory: Path, result: DirectoryReport) -> None:
        outcome = repair_master(directory, self.ladder)
        for tier_name in outcome.synthesized:
            result.fixed.append(f"synthesised {tier_name}.m3u8")
        if self.ladder.master_filename in outcome.written:
            result.fixed.append(f"rebuilt {self.ladder.master_filename}")
        for tier_name, gaps in outcome.gaps.items():
            for idx in gaps:
                subject = f"{tier_name}_{idx:03d}.{self.ladder.segment_ext}"
                already = any(
                    i.code == IssueCode.SEGMENT_GAP and i.subject == subject
                    for i in result.issues
                )
                if not already:
                    result.add(IssueCode.SEGMENT_GAP, f"{tier_name}: no segment at index {idx}",
                               tier=tier_name, subject=subject)
        result.published = outcome.master_text is not None
