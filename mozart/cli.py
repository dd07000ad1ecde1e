"""Command-line interface for Mozart.

Commands:
- serve: run the flow-definition API (FastAPI)
- run: execute a definition file headless and print what the Response nodes show
- versions: list saved versions of a flow from the API
- check: report dangling edges, cycles, entry nodes and transform compile errors
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path
import sys
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .core.store import CyclicGraphError, GraphStore, entry_node_ids, find_cycle
from .runner import FlowRunner, NoEntryNodes
from .version_store import VersionStoreClient, VersionStoreError
from .visual.code_executor import validate_code
from .visual.models import FlowEdge, FlowNode, NodeKind, TransformConfig


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mozart", add_help=True)
    p.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "info"))
    sub = p.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the flow-definition API (FastAPI)")
    serve.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")))
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload (dev)")
    serve.add_argument("--runtime-dir", default=None, help="Data directory (default: MOZART_RUNTIME_DIR)")

    run = sub.add_parser("run", help="Execute a flow definition JSON file headless")
    run.add_argument("definition", help="Path to a JSON file holding {nodes, edges}")
    run.add_argument("--timeout", type=float, default=60.0, help="Seconds to wait for the run to settle")

    versions = sub.add_parser("versions", help="List saved versions of a flow")
    versions.add_argument("flow_id")
    versions.add_argument("--api-url", default=None, help="API base URL (default: MOZART_API_URL)")
    versions.add_argument("--limit", type=int, default=50)

    check = sub.add_parser("check", help="Validate a flow definition JSON file")
    check.add_argument("definition", help="Path to a JSON file holding {nodes, edges}")

    return p


def _read_graph(path: str) -> Dict[str, Any]:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Definition file must hold a JSON object with 'nodes' and 'edges'")
    return payload


def _parse_graph(payload: Dict[str, Any]) -> tuple[List[FlowNode], List[FlowEdge]]:
    nodes = [FlowNode.model_validate(n) for n in payload.get("nodes") or []]
    edges = [FlowEdge.model_validate(e) for e in payload.get("edges") or []]
    return nodes, edges


def _write_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, ensure_ascii=False) + "\n")


def check_definition(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Static report for a definition payload."""
    nodes, edges = _parse_graph(payload)
    node_ids = {n.id for n in nodes}
    dangling = [e.id for e in edges if e.source not in node_ids or e.target not in node_ids]
    store = GraphStore(nodes, edges)
    transform_errors: Dict[str, List[str]] = {}
    for node in store.nodes:
        if node.type == NodeKind.TRANSFORM:
            errors = validate_code(TransformConfig.model_validate(node.data).code)
            if errors:
                transform_errors[node.id] = errors
    cycle = find_cycle(store.nodes, store.edges)
    report = {
        "nodes": len(store.nodes),
        "edges": len(store.edges),
        "danglingEdges": dangling,
        "cycle": cycle,
        "entryNodes": entry_node_ids(store.snapshot),
        "transformErrors": transform_errors,
    }
    report["ok"] = not (dangling or cycle or transform_errors or not report["entryNodes"])
    return report


async def run_definition(payload: Dict[str, Any], *, timeout: float = 60.0) -> Dict[str, Any]:
    nodes, edges = _parse_graph(payload)
    store = GraphStore(nodes, edges)
    async with FlowRunner(store) as runner:
        await runner.execute()
        settled = await runner.wait_settled(timeout)
    return {
        "settled": settled,
        "responses": {n.id: n.data.get("display") for n in store.nodes if n.type == NodeKind.RESPONSE},
        "errors": {n.id: n.data["error"] for n in store.nodes if n.data.get("error")},
    }


async def list_remote_versions(flow_id: str, *, api_url: Optional[str], limit: int) -> List[Dict[str, Any]]:
    client = VersionStoreClient(api_url)
    try:
        versions = await client.list_versions(flow_id, limit=limit)
    finally:
        await client.aclose()
    return [
        {
            "version": v.version,
            "createdAt": v.createdAt,
            "nodes": len(v.nodes),
            "edges": len(v.edges),
        }
        for v in versions
    ]


def main(args: Optional[List[str]] = None) -> int:
    if args is None:
        args = sys.argv[1:]

    parser = _build_parser()
    ns = parser.parse_args(args)
    logging.basicConfig(
        level=str(ns.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if ns.command == "serve":
        import uvicorn

        if ns.runtime_dir:
            os.environ["MOZART_RUNTIME_DIR"] = str(Path(ns.runtime_dir).expanduser())

        uvicorn.run(
            "web.backend.main:app",
            host=str(ns.host),
            port=int(ns.port),
            reload=bool(ns.reload),
            log_level=str(ns.log_level).lower(),
        )
        return 0

    if ns.command == "run":
        try:
            result = asyncio.run(run_definition(_read_graph(ns.definition), timeout=ns.timeout))
        except (OSError, ValueError, ValidationError, NoEntryNodes, CyclicGraphError) as e:
            sys.stderr.write(f"Cannot run {ns.definition}: {e}\n")
            return 2
        _write_json(result)
        return 0 if result["settled"] and not result["errors"] else 1

    if ns.command == "versions":
        try:
            listing = asyncio.run(list_remote_versions(ns.flow_id, api_url=ns.api_url, limit=ns.limit))
        except VersionStoreError as e:
            sys.stderr.write(f"{e}\n")
            return 2
        _write_json(listing)
        return 0

    if ns.command == "check":
        try:
            report = check_definition(_read_graph(ns.definition))
        except (OSError, ValueError, ValidationError) as e:
            sys.stderr.write(f"Cannot check {ns.definition}: {e}\n")
            return 2
        _write_json(report)
        return 0 if report["ok"] else 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
