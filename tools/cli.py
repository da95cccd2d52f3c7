#!/usr/bin/env python3
"""
hls: operator CLI for the HLS ingestion pipeline.

Subcommands
-----------
  hls submit SOURCE        Transcode one source file and publish it
  hls catalog list         Print the asset catalog
  hls catalog migrate      Normalise legacy catalog lines in place
  hls audit [--repair]     Check (and optionally repair) published assets
  hls status               Report encoder availability

Global options override the HLS_* environment variables read by
PipelineSettings.from_env().
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from auditor.consistency import ConsistencyAuditor
from catalog.store import CatalogStore, CatalogWriteFailure
from schemas.job import JobState
from schemas.settings import PipelineSettings
from service.ingest import IngestService
from transcoder.ffmpeg_runner import engine_status

logger = logging.getLogger(__name__)


# =============================================================================
# Commands
# =============================================================================

def cmd_submit(settings: PipelineSettings, source: Path, name: Optional[str]) -> int:
    """Run one job to completion; print the job JSON.  0 on success, 1 on failure."""
    with IngestService(settings) as service:
        asset_id = service.submit_job(source, name or source.name, wait=True)
        job = service.wait(asset_id)
    print(job.model_dump_json(indent=2))
    if job.state is not JobState.SUCCEEDED:
        print(f"ERROR: {job.failure_kind.value if job.failure_kind else 'failed'}: "
              f"{job.failure_detail}", file=sys.stderr)
        return 1
    return 0


def cmd_catalog_list(settings: PipelineSettings) -> int:
    records = CatalogStore(settings.catalog_path).read_all()
    payload = {
        "videoUrls": [r.url for r in records],
        "videosData": [r.model_dump(mode="json", by_alias=True) for r in records],
    }
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 0


def cmd_catalog_migrate(settings: PipelineSettings) -> int:
    try:
        count = CatalogStore(settings.catalog_path).migrate_legacy()
    except CatalogWriteFailure as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    print(json.dumps({"rewritten": count}))
    return 0


def cmd_audit(settings: PipelineSettings, repair: bool, workers: int) -> int:
    """Print the AuditReport JSON; exit 1 while unresolved errors remain."""
    auditor = ConsistencyAuditor(workers=workers)
    catalog = CatalogStore(settings.catalog_path)
    if repair:
        report = auditor.repair(settings.published_root, catalog)
    else:
        report = auditor.scan(settings.published_root, catalog)
    data = json.loads(report.model_dump_json())
    data["summary"] = report.summary()
    print(json.dumps(data, indent=2))
    return 1 if report.unresolved_errors() else 0


def cmd_status(settings: PipelineSettings) -> int:
    status = engine_status(settings.ffmpeg_bin)
    print(json.dumps(status, indent=2))
    return 0 if status["installed"] else 1


# =============================================================================
# CLI entry point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hls",
        description="hls: adaptive-bitrate ingestion pipeline CLI",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Increase verbosity (-v, -vv).")
    parser.add_argument("--published-root", type=Path, default=None, metavar="DIR",
                        help="Directory holding one sub-directory per asset")
    parser.add_argument("--catalog", type=Path, default=None, metavar="PATH",
                        help="Catalog file (one record per line)")
    parser.add_argument("--base-url", default=None, metavar="URL",
                        help="Public base URL for published manifests")
    parser.add_argument("--ffmpeg", default=None, metavar="BIN",
                        help="ffmpeg binary name or path")
    parser.add_argument("--timeout", type=float, default=None, metavar="SECONDS",
                        help="Encoder wall-clock limit per job")

    sub = parser.add_subparsers(dest="command", required=True)

    # ── hls submit ────────────────────────────────────────────────────────────
    submit_parser = sub.add_parser("submit", help="Transcode and publish one source file")
    submit_parser.add_argument("source", type=Path, help="Path to the uploaded source")
    submit_parser.add_argument("--name", default=None,
                               help="Original filename to record (default: source basename)")

    # ── hls catalog ───────────────────────────────────────────────────────────
    catalog_parser = sub.add_parser("catalog", help="Inspect or migrate the catalog")
    catalog_sub = catalog_parser.add_subparsers(dest="catalog_command", required=True)
    catalog_sub.add_parser("list", help="Print every catalog record")
    catalog_sub.add_parser("migrate", help="Rewrite legacy lines as structured records")

    # ── hls audit ─────────────────────────────────────────────────────────────
    audit_parser = sub.add_parser("audit", help="Check published assets against the catalog")
    audit_parser.add_argument("--repair", action="store_true",
                              help="Rewrite broken or missing manifests")
    audit_parser.add_argument("--workers", type=int, default=1,
                              help="Directories audited in parallel (default: 1)")

    # ── hls status ────────────────────────────────────────────────────────────
    sub.add_parser("status", help="Report encoder availability")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    level = (
        logging.WARNING
        if args.verbose == 0
        else (logging.INFO if args.verbose == 1 else logging.DEBUG)
    )
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s: %(message)s")

    settings = PipelineSettings.from_env(
        published_root=args.published_root,
        catalog_path=args.catalog,
        public_base_url=args.base_url,
        ffmpeg_bin=args.ffmpeg,
        encode_timeout=args.timeout,
    )

    if args.command == "submit":
        sys.exit(cmd_submit(settings, args.source, args.name))
    elif args.command == "catalog":
        if args.catalog_command == "list":
            sys.exit(cmd_catalog_list(settings))
        sys.exit(cmd_catalog_migrate(settings))
    elif args.command == "audit":
        sys.exit(cmd_audit(settings, repair=args.repair, workers=args.workers))
    elif args.command == "status":
        sys.exit(cmd_status(settings))


if __name__ == "__main__":
    main()
