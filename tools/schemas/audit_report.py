"""
AuditReport: result of one Consistency Auditor sweep.

Issues are data, not exceptions: a sweep always completes and reports every
divergence it found.  Severity "error" marks manifest-structure problems
(the directory is unpublished or a rendition is broken); "warning" marks
conditions that leave the asset servable (unregistered in the catalog,
segment gaps healed around, degraded catalog lines).
"""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field


class IssueCode(str, Enum):
    MASTER_MISSING = "master_missing"
    MASTER_INVALID = "master_invalid"
    MASTER_DANGLING_VARIANT = "master_dangling_variant"
    VARIANT_MISSING = "variant_missing"
    VARIANT_EMPTY = "variant_empty"
    SEGMENT_MISSING = "segment_missing"
    SEGMENT_GAP = "segment_gap"
    NO_RENDITIONS = "no_renditions"
    UNREGISTERED = "unregistered"


_WARNING_CODES = frozenset({IssueCode.SEGMENT_GAP, IssueCode.UNREGISTERED})

# Problems a repair pass can fix by rewriting manifests.
REPAIRABLE_CODES = frozenset({
    IssueCode.MASTER_MISSING,
    IssueCode.MASTER_INVALID,
    IssueCode.MASTER_DANGLING_VARIANT,
    IssueCode.VARIANT_MISSING,
})


class AuditIssue(BaseModel):
    code: IssueCode
    message: str
    tier: Optional[str] = None
    subject: Optional[str] = None    # file name or segment index the issue is about

    @property
    def severity(self) -> Literal["error", "warning"]:
        return "warning" if self.code in _WARNING_CODES else "error"


class DirectoryReport(BaseModel):
    asset_id: str
    path: Path
    published: bool = False          # valid master present at the end of the pass
    registered: bool = False         # matched a catalog record
    issues: list[AuditIssue] = Field(default_factory=list)
    fixed: list[str] = Field(default_factory=list)

    def add(self, code: IssueCode, message: str, **kwargs) -> AuditIssue:
        issue = AuditIssue(code=code, message=message, **kwargs)
        self.issues.append(issue)
        return issue

    def has(self, code: IssueCode) -> bool:
        return any(i.code == code for i in self.issues)

    @property
    def needs_repair(self) -> bool:
        return any(i.code in REPAIRABLE_CODES for i in self.issues)

    @property
    def errors(self) -> list[AuditIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> list[AuditIssue]:
        return [i for i in self.issues if i.severity == "warning"]


class AuditReport(BaseModel):
    mode: Literal["scan", "repair"]
    published_root: Path
    catalog_records: int = 0
    degraded_records: int = 0
    directories: list[DirectoryReport] = Field(default_factory=list)

    @property
    def error_count(self) -> int:
        return sum(len(d.errors) for d in self.directories)

    @property
    def warning_count(self) -> int:
        return sum(len(d.warnings) for d in self.directories)

    @property
    def fixed_count(self) -> int:
        return sum(len(d.fixed) for d in self.directories)

    def unresolved_errors(self) -> list[AuditIssue]:
        """Errors still standing after the pass (repaired ones excluded)."""
        out: list[AuditIssue] = []
        for d in self.directories:
            for issue in d.errors:
                if self.mode == "repair" and issue.code in REPAIRABLE_CODES and d.published:
                    continue
                out.append(issue)
        return out

    def summary(self) -> dict[str, int]:
        return {
            "directories": len(self.directories),
            "errors": self.error_count,
            "warnings": self.warning_count,
            "fixed": self.fixed_count,
            "unresolved": len(self.unresolved_errors()),
        }
