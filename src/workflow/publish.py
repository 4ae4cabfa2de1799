"""Node status publishing for realtime observers."""

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set

from common.interfaces.publish import PublishChannel
from workflow.models import NodeStatus

logger = logging.getLogger(__name__)


class NodePublisher(Protocol):
    async def publish(
        self, node_id: str, status: NodeStatus, payload: Optional[Dict[str, Any]] = None
    ) -> None: ...


class NullPublisher:
    """Publisher used in synchronous mode."""

    async def publish(
        self, node_id: str, status: NodeStatus, payload: Optional[Dict[str, Any]] = None
    ) -> None:
        return None


class ChannelPublisher:
    """Fire-and-forget publisher over a ``PublishChannel``.

    ``publish`` schedules delivery and returns immediately. Delivery failures are
    logged and never reach the execution.
    """

    def __init__(self, channel: PublishChannel, execution_id: str, timeout: float = 5.0):
        self._channel = channel
        self._execution_id = execution_id
        self._timeout = timeout
        self._pending: Set[asyncio.Task] = set()

    @property
    def channel_name(self) -> str:
        return f"workflow-execution:{self._execution_id}"

    async def publish(
        self, node_id: str, status: NodeStatus, payload: Optional[Dict[str, Any]] = None
    ) -> None:
        event = {
            "execution_id": self._execution_id,
            "node_id": node_id,
            "status": NodeStatus(status).value,
            "payload": payload or {},
        }
        task = asyncio.create_task(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: Dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(
                self._channel.publish(self.channel_name, event), timeout=self._timeout
            )
        except Exception as exc:
            logger.warning(
                "Publishing %s for node %s failed: %s", event["status"], event["node_id"], exc
            )

    async def drain(self) -> None:
        """Wait for in-flight deliveries (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class InMemoryPublishChannel:
    """Collects published events; handy for local runs and tests."""

    def __init__(self):
        self.events: list = []

    async def publish(self, channel: str, event: Dict[str, Any]) -> None:
        self.events.append({"channel": channel, **event})
