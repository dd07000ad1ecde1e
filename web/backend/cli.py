"""Local/dev runner for the Mozart web backend.

`python -m web.backend --runtime-dir ./data` is the same as exporting
MOZART_RUNTIME_DIR and running uvicorn on `web.backend.main:app`.
"""

from __future__ import annotations

import argparse
import os

import uvicorn


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="python -m web.backend", add_help=True)
    p.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    p.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")))
    p.add_argument("--reload", action="store_true", help="Enable auto-reload (dev)")
    p.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "info"))
    p.add_argument("--runtime-dir", default=os.getenv("MOZART_RUNTIME_DIR") or "")
    p.add_argument("--user-id", default=os.getenv("MOZART_DEFAULT_USER_ID") or "", help="Owner stamped on new journeys")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)

    if isinstance(args.runtime_dir, str) and args.runtime_dir.strip():
        os.environ["MOZART_RUNTIME_DIR"] = args.runtime_dir.strip()
    if isinstance(args.user_id, str) and args.user_id.strip():
        os.environ["MOZART_DEFAULT_USER_ID"] = args.user_id.strip()

    uvicorn.run(
        "web.backend.main:app",
        host=str(args.host),
        port=int(args.port),
        reload=bool(args.reload),
        log_level=str(args.log_level),
    )


if __name__ == "__main__":
    main()
