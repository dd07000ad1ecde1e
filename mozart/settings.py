"""Environment-driven configuration.

Every setting is read through a small resolver so the CLI can override it by
exporting the variable before the component that needs it is built.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://127.0.0.1:8080/api"
DEFAULT_AUTOSAVE_DELAY_MS = 4000
DEFAULT_HTTP_TIMEOUT_S = 30.0
DEFAULT_TRANSFORM_TIMEOUT_S = 2.0
DEFAULT_USER_ID = "local"


def _is_repo_checkout() -> bool:
    """Best-effort detection for running from a source checkout.

    In this repository layout:
    - this file lives at `mozart/settings.py`
    - repo root contains `pyproject.toml` and `web/backend/`
    """
    repo_root = Path(__file__).resolve().parents[1]
    return bool((repo_root / "pyproject.toml").is_file() and (repo_root / "web" / "backend").is_dir())


def default_runtime_dir() -> Path:
    """Default on-disk runtime directory (versions, entities and local drafts).

    - Source checkout: `<repo>/web/runtime`
    - Installed package: `~/.mozart/runtime`
    """
    if _is_repo_checkout():
        return (Path(__file__).resolve().parents[1] / "web" / "runtime").resolve()
    return (Path.home() / ".mozart" / "runtime").expanduser().resolve()


def resolve_runtime_dir() -> Path:
    """Resolve the runtime directory (env override + mkdir)."""
    raw = os.getenv("MOZART_RUNTIME_DIR") or ""
    p = Path(str(raw)).expanduser() if str(raw).strip() else default_runtime_dir()
    p = p.resolve()
    p.mkdir(parents=True, exist_ok=True)
    return p


def resolve_api_url() -> str:
    raw = os.getenv("MOZART_API_URL") or ""
    url = str(raw).strip().rstrip("/")
    return url or DEFAULT_API_URL


def _env_number(name: str, default: float, *, minimum: float = 0) -> float:
    raw = str(os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring {name}={raw!r}: not a number")
        return default
    if value < minimum:
        logger.warning(f"Ignoring {name}={raw!r}: must be >= {minimum:g}")
        return default
    return value


def resolve_autosave_delay_ms() -> int:
    return int(_env_number("MOZART_AUTOSAVE_DELAY_MS", DEFAULT_AUTOSAVE_DELAY_MS))


def resolve_http_timeout_s() -> float:
    return _env_number("MOZART_HTTP_TIMEOUT_S", DEFAULT_HTTP_TIMEOUT_S, minimum=0.001)


def resolve_transform_timeout_s() -> float:
    return _env_number("MOZART_TRANSFORM_TIMEOUT_S", DEFAULT_TRANSFORM_TIMEOUT_S, minimum=0.001)


def resolve_default_user_id() -> str:
    raw: Optional[str] = os.getenv("MOZART_DEFAULT_USER_ID")
    return str(raw).strip() if raw and str(raw).strip() else DEFAULT_USER_ID
