"""
PipelineSettings: runtime configuration for the ingestion pipeline.

Values come from (lowest to highest precedence):
  1. field defaults below
  2. HLS_* environment variables (PipelineSettings.from_env)
  3. explicit overrides, e.g. CLI flags (from_env(**overrides))

The encoder binary is configuration, never a hard-coded location: ffmpeg_bin
may be a bare command name resolved through PATH or a filesystem path.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

_ENV_MAP: dict[str, str] = {
    "published_root": "HLS_PUBLISHED_ROOT",
    "catalog_path": "HLS_CATALOG_PATH",
    "public_base_url": "HLS_PUBLIC_BASE_URL",
    "ffmpeg_bin": "HLS_FFMPEG",
    "encode_timeout": "HLS_ENCODE_TIMEOUT",
    "probe_timeout": "HLS_PROBE_TIMEOUT",
    "max_workers": "HLS_MAX_WORKERS",
    "public_path": "HLS_PUBLIC_PATH",
}


class PipelineSettings(BaseModel):
    published_root: Path = Path("uploads/hls-videos")
    catalog_path: Path = Path("videoLinks.txt")
    public_base_url: str = "http://localhost:8000"
    ffmpeg_bin: str = "ffmpeg"
    encode_timeout: float = Field(default=3600.0, gt=0)
    probe_timeout: float = Field(default=30.0, gt=0)
    max_workers: int = Field(default=2, ge=1)
    # URL path under public_base_url that serves published_root; derived
    # from published_root when unset.
    public_path: Optional[str] = None

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any,
    ) -> "PipelineSettings":
        """Build settings from HLS_* variables; non-None *overrides* win."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for field_name, var in _ENV_MAP.items():
            raw = env.get(var)
            if raw is not None and raw.strip() != "":
                values[field_name] = raw.strip()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)

    @property
    def published_prefix(self) -> str:
        """URL path prefix under which published_root is served."""
        if self.public_path is not None:
            return self.public_path.strip("/")
        root = self.published_root
        if root.is_absolute():
            return root.name
        return root.as_posix().strip("/")

    def output_dir_for(self, asset_id: str) -> Path:
        return self.published_root / asset_id
