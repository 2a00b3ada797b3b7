"""Domain event constants and publisher.

Defines event type constants and a simple publish() callable used by the
draft save and final submission flows.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, List
import logging

logger = logging.getLogger(__name__)

DRAFT_SAVED = "response.draft_saved"
RESPONSE_SUBMITTED = "response.submitted"

# Bounded in-memory buffer for domain events (test-only visibility)
EVENT_BUFFER: Deque[Dict[str, Any]] = deque(maxlen=1000)


def publish(event_type: str, payload: Dict[str, Any]) -> None:
    """Publish a domain event.

    In this minimal implementation, we log the event for observability.
    """
    logger.info("event_publish type=%s payload=%s", event_type, payload)
    EVENT_BUFFER.append({"type": event_type, "payload": payload})


def get_buffered_events(clear: bool = True) -> List[Dict[str, Any]]:
    """Return buffered domain events; optionally clear the buffer."""
    events = list(EVENT_BUFFER)
    if clear:
        EVENT_BUFFER.clear()
    return events


__all__ = [
    "DRAFT_SAVED",
    "RESPONSE_SUBMITTED",
    "publish",
    "get_buffered_events",
    "EVENT_BUFFER",
]
