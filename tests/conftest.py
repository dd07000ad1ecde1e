"""Mozart test bootstrap.

- Puts the repository root on `sys.path` so `mozart` and `web.backend` import
  from the checkout without an install.
- Points `MOZART_RUNTIME_DIR` at a per-test temporary directory so version
  files, entities and drafts never leak between tests.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _prepend_sys_path(path: Path) -> None:
    p = str(path)
    if p and p not in sys.path:
        sys.path.insert(0, p)


HERE = Path(__file__).resolve()
REPO_ROOT = HERE.parents[1]

_prepend_sys_path(REPO_ROOT)


@pytest.fixture(autouse=True)
def runtime_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    base = tmp_path / "runtime"
    monkeypatch.setenv("MOZART_RUNTIME_DIR", str(base))
    return base
