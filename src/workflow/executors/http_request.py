"""HTTP_REQUEST node: call an HTTP endpoint with httpx and store the response."""

import json
import logging
from typing import Any, Dict, Optional

import httpx

from common.errors import ConfigurationError, ExecutionError, TransientExecutionError
from workflow.executors.templating import render_template, render_value
from workflow.models import WorkflowContext
from workflow.registry import NodeExecutionParams

logger = logging.getLogger(__name__)

METHODS_WITH_BODY = ("POST", "PUT", "PATCH")
SUPPORTED_METHODS = ("GET", "DELETE") + METHODS_WITH_BODY


class HttpRequestExecutor:
    """Runs ``data["method"]`` against the rendered ``data["endpoint"]``.

    The response is stored under ``data["variable_name"]`` as
    ``{"httpResponse": {"status", "statusText", "data"}}``. Server errors and
    transport failures are retryable; client errors are not.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self._client = client
        self._timeout = timeout

    async def __call__(self, params: NodeExecutionParams) -> WorkflowContext:
        data = params.data
        if not data.get("endpoint"):
            raise ConfigurationError("HTTP Request node: No endpoint configured")
        if not data.get("variable_name"):
            raise ConfigurationError("HTTP Request node: Variable name not configured")
        method = str(data.get("method") or "").upper()
        if method not in SUPPORTED_METHODS:
            raise ConfigurationError(f"HTTP Request node: Unsupported method '{method}'")

        endpoint = render_template(data["endpoint"], params.context)
        body = None
        if method in METHODS_WITH_BODY:
            body = self._render_body(data.get("body"), params.context)
        headers = render_value(data.get("headers") or {}, params.context)

        async def _request() -> Dict[str, Any]:
            return await self._send(method, endpoint, body, headers)

        response = await params.step.run("http-request", _request)
        context = dict(params.context)
        context[data["variable_name"]] = {"httpResponse": response}
        return context

    @staticmethod
    def _render_body(body: Any, context: WorkflowContext) -> Any:
        if body is None:
            return {}
        if isinstance(body, str):
            rendered = render_template(body, context)
            try:
                return json.loads(rendered or "{}")
            except json.JSONDecodeError as exc:
                raise ConfigurationError(
                    f"HTTP Request node: body is not valid JSON: {exc}"
                ) from exc
        return render_value(body, context)

    async def _send(
        self, method: str, endpoint: str, body: Any, headers: Dict[str, str]
    ) -> Dict[str, Any]:
        try:
            if self._client is not None:
                response = await self._client.request(method, endpoint, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, endpoint, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise TransientExecutionError(f"HTTP {method} {endpoint} failed: {exc}") from exc

        if response.status_code >= 500:
            raise TransientExecutionError(
                f"HTTP {method} {endpoint} returned {response.status_code}",
                details={"status": response.status_code},
            )
        if response.status_code >= 400:
            raise ExecutionError(
                f"HTTP {method} {endpoint} returned {response.status_code}",
                details={"status": response.status_code},
            )

        content_type = response.headers.get("content-type", "")
        payload = response.json() if "application/json" in content_type else response.text
        logger.debug("HTTP %s %s -> %s", method, endpoint, response.status_code)
        return {
            "status": response.status_code,
            "statusText": response.reason_phrase,
            "data": payload,
        }
