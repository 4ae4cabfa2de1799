import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

logger = logging.getLogger("runtime.events")


def log_event(event_name: str, level: int = logging.INFO, **kwargs: Any) -> None:
    """
    Emit a structured log event.

    Args:
        event_name: Unique name of the event (e.g., 'job_dead_lettered').
        level: Logging level (default INFO).
        **kwargs: Context data to include in the payload.
    """
    payload: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "event": event_name,
        **kwargs,
    }

    try:
        msg = json.dumps(payload, default=str)
    except (TypeError, ValueError):
        msg = str(payload)

    logger.log(level, msg)
