"""Action provider that forwards tool calls to an integrations service over HTTP."""

import logging
from typing import Any, Dict, Optional

import httpx

from common.config.env import get_env_float, get_env_str
from common.errors import ConfigurationError, PolicyError, TransientExecutionError

logger = logging.getLogger(__name__)


class HttpActionProvider:
    """POSTs ``{"input", "user_id", "workspace_id"}`` to ``{base_url}/tools/{tool_name}``.

    The response body's ``output`` field is returned. 5xx responses and transport
    errors are transient; 401/403 are policy errors; other 4xx are configuration
    errors.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        base_url = base_url or get_env_str("ACTION_PROVIDER_URL")
        if not base_url:
            raise ConfigurationError("ACTION_PROVIDER_URL is not set")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout or get_env_float("ACTION_PROVIDER_TIMEOUT_SECONDS", 30.0)
        self._client = client

    async def execute(
        self,
        tool_name: str,
        tool_input: Dict[str, Any],
        *,
        user_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
    ) -> Any:
        url = f"{self._base_url}/tools/{tool_name}"
        body = {"input": tool_input, "user_id": user_id, "workspace_id": workspace_id}
        try:
            if self._client is not None:
                response = await self._client.post(url, json=body)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, json=body)
        except httpx.HTTPError as exc:
            raise TransientExecutionError(f"Tool '{tool_name}' request failed: {exc}") from exc

        if response.status_code >= 500:
            raise TransientExecutionError(
                f"Tool '{tool_name}' returned {response.status_code}",
                details={"tool_name": tool_name, "status": response.status_code},
            )
        if response.status_code in (401, 403):
            raise PolicyError(
                f"Tool '{tool_name}' was rejected ({response.status_code})",
                details={"tool_name": tool_name, "status": response.status_code},
            )
        if response.status_code >= 400:
            raise ConfigurationError(
                f"Tool '{tool_name}' returned {response.status_code}: {response.text[:200]}",
                details={"tool_name": tool_name, "status": response.status_code},
            )
        payload = response.json()
        logger.debug("Tool %s completed with status %s", tool_name, response.status_code)
        return payload.get("output") if isinstance(payload, dict) else payload
