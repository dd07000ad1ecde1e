"""Request node: an outbound HTTP call.

The request is built from the node's configuration plus any routed input:

- headers: routed `headersInput` when `useInputAsHeaders` is on and something
  was routed, else `headersTemplate` parsed as a JSON object. A template that
  does not parse is reported on the node and no custom headers are sent.
- body (non-GET only): routed `bodyInput` when `useInputAsBody` is on and
  something was routed, else `bodyTemplate` parsed as JSON, falling back to
  the raw text.

Triggers that arrive while a call is in flight are coalesced: the call runs
once more afterwards with the latest input.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from ..core.contracts import ExecutionContext, NodeResult, SerialRunner, TokenGate
from ..visual.models import HttpMethod, RequestConfig
from ..visual.router import coerce_headers

logger = logging.getLogger(__name__)


@dataclass
class PreparedRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    json_body: Any = None
    content: Optional[str] = None
    has_json_body: bool = False
    warning: Optional[str] = None

    def send_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"headers": self.headers}
        if self.has_json_body:
            kwargs["json"] = self.json_body
        elif self.content is not None:
            kwargs["content"] = self.content
        return kwargs


def parse_headers_template(template: str) -> Dict[str, str]:
    """Parse a headers template; raises ValueError with a user-facing message."""
    text = (template or "").strip()
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid headers JSON: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise ValueError("Invalid headers JSON: expected an object")
    return coerce_headers(parsed)


def prepare_request(data: Dict[str, Any]) -> PreparedRequest:
    config = RequestConfig.model_validate(data)
    req = PreparedRequest(method=config.method.value, url=config.url)

    headers_input = data.get("headersInput")
    if config.useInputAsHeaders and headers_input is not None:
        req.headers = coerce_headers(headers_input)
    else:
        try:
            req.headers = parse_headers_template(config.headersTemplate)
        except ValueError as e:
            req.warning = str(e)

    if config.method == HttpMethod.GET:
        return req

    body_input = data.get("bodyInput")
    if config.useInputAsBody and body_input is not None:
        if isinstance(body_input, str):
            req.content = body_input
        else:
            req.json_body, req.has_json_body = body_input, True
    elif (config.bodyTemplate or "").strip():
        try:
            req.json_body, req.has_json_body = json.loads(config.bodyTemplate), True
        except json.JSONDecodeError:
            req.content = config.bodyTemplate
    return req


def _read_response(res: httpx.Response) -> Any:
    try:
        return res.json()
    except ValueError:
        return res.text


class RequestExecutor:
    def __init__(self, node_id: str, ctx: ExecutionContext):
        self.node_id = node_id
        self.ctx = ctx
        self._gate = TokenGate()
        self._serial = SerialRunner(self._run_and_propagate)
        self.calls = 0

    async def on_trigger(self, token: int) -> None:
        if not self._gate.accept(token):
            return
        await self._serial.request()

    async def on_input_changed(self, value: Any) -> None:
        # Input alone does not fire a request; the routed trigger does.
        return None

    async def _run_and_propagate(self) -> None:
        self.propagate(await self.run())

    async def run(self) -> NodeResult:
        node = self.ctx.node(self.node_id)
        if node is None:
            return NodeResult.failed(f"Node '{self.node_id}' no longer exists")

        try:
            req = prepare_request(node.data)
        except ValidationError as e:
            message = f"Invalid request configuration: {e.errors()[0].get('msg', e)}"
            self.ctx.update(self.node_id, {"error": message, "response": None, "status": None, "statusText": None})
            return NodeResult.failed(message)

        self.ctx.update(self.node_id, {"loading": True, "error": req.warning})
        self.calls += 1
        try:
            request = self.ctx.http.build_request(req.method, req.url, **req.send_kwargs())
        except (httpx.InvalidURL, ValueError, TypeError) as e:
            # Non-ASCII header values or an unserializable JSON body.
            return self._fail(req, f"Invalid request: {e}")
        try:
            res = await self.ctx.http.send(request)
            res.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = f"HTTP {e.response.status_code} {e.response.reason_phrase}".strip()
            return self._fail(req, message)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return self._fail(req, f"Request failed: {e}" if str(e) else f"Request failed: {type(e).__name__}")

        response = _read_response(res)
        self.ctx.update(
            self.node_id,
            {
                "loading": False,
                "response": response,
                "status": res.status_code,
                "statusText": res.reason_phrase,
                "error": req.warning,
            },
        )
        logger.debug(f"Request '{self.node_id}' {req.method} {req.url} -> {res.status_code}")
        return NodeResult.success(response)

    def _fail(self, req: PreparedRequest, message: str) -> NodeResult:
        logger.error(f"Request '{self.node_id}' {req.method} {req.url} failed: {message}")
        self.ctx.update(
            self.node_id,
            {"loading": False, "response": None, "status": None, "statusText": None, "error": message},
        )
        return NodeResult.failed(message)

    def propagate(self, result: NodeResult) -> None:
        if result.ok:
            self.ctx.router.route(self.node_id, result.value)
