"""
Root conftest for tools/.

Adds tools/ to sys.path so that `schemas`, `manifests`, `catalog`,
`transcoder`, `auditor`, `service` and `cli` are importable without
installing the package.

This file is picked up automatically by pytest when tests under
tools/tests/ are collected.
"""
import sys
from pathlib import Path

_TOOLS_ROOT = Path(__file__).parent
if str(_TOOLS_ROOT) not in sys.path:
    sys.path.insert(0, str(_TOOLS_ROOT))
