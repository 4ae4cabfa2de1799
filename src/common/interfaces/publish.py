from typing import Any, Dict, Protocol, runtime_checkable


@runtime_checkable
class PublishChannel(Protocol):
    """Protocol for the realtime channel that streams node status to observers."""

    async def publish(self, channel: str, event: Dict[str, Any]) -> None:
        """Deliver one event on the named channel."""
        ...
