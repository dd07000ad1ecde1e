"""Sandboxed evaluation of Transform node code.

User code is the *body* of a function taking one argument, `data`:

    return {**data, "modified": True}

The body is compiled with RestrictedPython as `def transform(data): ...`, then
run with guarded builtins: no imports, no `_`-prefixed names or attributes,
no file or process access. A small `json` namespace (`loads`/`dumps`) is
available. The return value must be JSON-compatible all the way down.

Evaluation happens on a daemon worker thread so the event loop stays
responsive; a trace-based deadline stops Python-level loops and the awaiting
side gives up one second later regardless.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import math
import operator
import sys
import textwrap
import threading
import time
from types import CodeType, SimpleNamespace
from typing import Any, Callable, Dict, List

from RestrictedPython import compile_restricted, limited_builtins, safe_builtins
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr,
)

logger = logging.getLogger(__name__)

FUNCTION_NAME = "transform"
ARGUMENT_NAME = "data"


class CodeExecutionError(Exception):
    """Raised when transform code fails to compile, raises, or times out."""


class InvalidTransformResult(CodeExecutionError):
    """Raised when transform code returns a value that is not JSON-compatible."""


class _DeadlineExceeded(BaseException):
    # BaseException so `except Exception` in user code cannot swallow it.
    pass


_INPLACE_OPS: Dict[str, Callable[[Any, Any], Any]] = {
    "+=": operator.add,
    "-=": operator.sub,
    "*=": operator.mul,
    "/=": operator.truediv,
    "//=": operator.floordiv,
    "%=": operator.mod,
    "**=": operator.pow,
    "&=": operator.and_,
    "|=": operator.or_,
    "^=": operator.xor,
    "<<=": operator.lshift,
    ">>=": operator.rshift,
}


def _inplacevar(op: str, x: Any, y: Any) -> Any:
    fn = _INPLACE_OPS.get(op)
    if fn is None:
        raise CodeExecutionError(f"Unsupported in-place operator {op}")
    return fn(x, y)


def _apply(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    return fn(*args, **kwargs)


def _sandbox_builtins() -> Dict[str, Any]:
    builtins = dict(safe_builtins)
    builtins.update(limited_builtins)
    builtins.update(
        {
            "dict": dict,
            "list": list,
            "set": set,
            "min": min,
            "max": max,
            "sum": sum,
            "enumerate": enumerate,
            "any": any,
            "all": all,
            "map": map,
            "filter": filter,
            "sorted": sorted,
            "reversed": reversed,
        }
    )
    return builtins


def _sandbox_globals() -> Dict[str, Any]:
    return {
        "__builtins__": _sandbox_builtins(),
        "__name__": "mozart_transform",
        "_getattr_": safer_getattr,
        "_getitem_": default_guarded_getitem,
        "_getiter_": default_guarded_getiter,
        "_write_": full_write_guard,
        "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
        "_unpack_sequence_": guarded_unpack_sequence,
        "_inplacevar_": _inplacevar,
        "_apply_": _apply,
        "json": SimpleNamespace(loads=json.loads, dumps=json.dumps),
    }


def wrap_source(code: str) -> str:
    body = textwrap.dedent(code or "").strip("\n")
    if not body.strip():
        body = "return None"
    return f"def {FUNCTION_NAME}({ARGUMENT_NAME}):\n" + textwrap.indent(body, "    ") + "\n"


def compile_transform(code: str) -> CodeType:
    """Compile transform body code, raising `CodeExecutionError` on rejection."""
    try:
        return compile_restricted(wrap_source(code), filename="<transform>", mode="exec")
    except SyntaxError as e:
        raise CodeExecutionError(f"Invalid transform code: {e}") from e


def validate_code(code: str) -> List[str]:
    """Return compile errors for transform code (empty when it compiles)."""
    try:
        compile_transform(code)
    except CodeExecutionError as e:
        return [str(e)]
    return []


def ensure_json_compatible(value: Any, path: str = "result") -> Any:
    """Check that `value` is made only of dict/list/str/int/float/bool/None."""
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidTransformResult(f"{path} is not a finite number")
        return value
    if isinstance(value, list):
        for i, item in enumerate(value):
            ensure_json_compatible(item, f"{path}[{i}]")
        return value
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise InvalidTransformResult(f"{path} has a non-string key {key!r}")
            ensure_json_compatible(item, f"{path}.{key}")
        return value
    raise InvalidTransformResult(f"{path} has unsupported type {type(value).__name__}")


def _deadline_tracer(deadline: float):
    def tracer(frame, event, arg):
        if time.monotonic() > deadline:
            raise _DeadlineExceeded()
        return tracer

    return tracer


def run_compiled(compiled: CodeType, data: Any, *, timeout_s: float) -> Any:
    """Execute compiled transform code on the calling thread."""
    glb = _sandbox_globals()
    exec(compiled, glb)
    fn = glb[FUNCTION_NAME]

    sys.settrace(_deadline_tracer(time.monotonic() + timeout_s))
    try:
        result = fn(copy.deepcopy(data))
    except _DeadlineExceeded:
        raise CodeExecutionError(f"Transform timed out after {timeout_s:g}s") from None
    except CodeExecutionError:
        raise
    except Exception as e:
        raise CodeExecutionError(f"{type(e).__name__}: {e}") from e
    finally:
        sys.settrace(None)
    return ensure_json_compatible(result)


async def evaluate_transform(code: str, data: Any, *, timeout_s: float = 2.0) -> Any:
    """Evaluate transform code against `data` without blocking the event loop."""
    compiled = compile_transform(code)
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def _resolve(value: Any, error: BaseException | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(value)

    def _worker() -> None:
        value: Any = None
        error: BaseException | None = None
        try:
            value = run_compiled(compiled, data, timeout_s=timeout_s)
        except CodeExecutionError as e:
            error = e
        try:
            loop.call_soon_threadsafe(_resolve, value, error)
        except RuntimeError:
            logger.debug("Transform finished after its event loop closed")

    threading.Thread(target=_worker, name="mozart-transform", daemon=True).start()
    try:
        return await asyncio.wait_for(future, timeout=timeout_s + 1)
    except asyncio.TimeoutError:
        raise CodeExecutionError(f"Transform timed out after {timeout_s:g}s") from None
