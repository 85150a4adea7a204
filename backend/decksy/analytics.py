"""
Analytics events emitted by the recommendation engine.

Events are fire-and-forget: a failing sink is logged and never breaks the
caller.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass
class AnalyticsEvent:
    name: str
    properties: Dict[str, Any] = field(default_factory=dict)


class AnalyticsSink(Protocol):
    def track(self, event: AnalyticsEvent) -> None:
        ...


class AnalyticsTracker:
    """Buffers events in memory and logs them"""

    def __init__(self, log_events: bool = True, max_buffer: int = 1000):
        self.log_events = log_events
        self.max_buffer = max_buffer
        self._buffer: List[AnalyticsEvent] = []

    def track(self, event: AnalyticsEvent) -> None:
        self._buffer.append(event)
        if len(self._buffer) > self.max_buffer:
            del self._buffer[: len(self._buffer) - self.max_buffer]

        if self.log_events:
            logger.info(f"[Analytics] {event.name}: {json.dumps(event.properties, default=str)}")

    def events(self, name: Optional[str] = None) -> List[AnalyticsEvent]:
        if name is None:
            return list(self._buffer)
        return [event for event in self._buffer if event.name == name]

    def reset(self) -> None:
        self._buffer.clear()


def emit(sink: Optional[AnalyticsSink], name: str, properties: Optional[Dict[str, Any]] = None) -> None:
    """Send an event to the sink, swallowing sink failures"""
    if sink is None:
        return
    try:
        sink.track(AnalyticsEvent(name=name, properties=properties or {}))
    except Exception as e:
        logger.warning(f"Analytics sink unavailable, dropping {name}: {e}")
