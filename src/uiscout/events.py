"""
Progress events.

Components publish typed events to an ``EventBus``; any number of consumers
(CLI printer, audit trail, a UI) subscribe and read them from their own
queue. Publishing never blocks, so a slow consumer cannot stall exploration.

Example:
    ```python
    bus = EventBus()
    queue = bus.subscribe()
    bus.emit(EventType.LOG, message="starting", level="info")
    event = queue.get_nowait()
    ```
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventType(Enum):
    PHASE_START = "phase_start"
    PHASE_COMPLETE = "phase_complete"
    PAGE_START = "page_start"
    PAGE_COMPLETE = "page_complete"
    STEP_START = "step_start"
    STEP_COMPLETE = "step_complete"
    SCREENSHOT = "screenshot"
    BACKTRACK = "backtrack"
    LOG = "log"
    EXPLORATION_COMPLETE = "exploration_complete"
    COMPLETE = "complete"
    ERROR = "error"


_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class ProgressEvent:
    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "timestamp": self.timestamp, **self.data}


_CLOSED = object()


class EventBus:
    """Fan-out of progress events to subscriber queues."""

    def __init__(self, source: Optional[str] = None):
        self.source = source
        self._lock = threading.Lock()
        self._subscribers: List[asyncio.Queue] = []
        self._history: List[ProgressEvent] = []
        self._closed = False

    def subscribe(self) -> asyncio.Queue:
        """New unbounded queue receiving every event published from now on."""
        queue: asyncio.Queue = asyncio.Queue()
        with self._lock:
            if self._closed:
                queue.put_nowait(_CLOSED)
            self._subscribers.append(queue)
        return queue

    def publish(self, event: ProgressEvent) -> None:
        with self._lock:
            if self._closed:
                return
            self._history.append(event)
            subscribers = list(self._subscribers)
        if event.type == EventType.LOG:
            level = _LOG_LEVELS.get(str(event.data.get("level", "info")), logging.INFO)
            logger.log(level, "%s", event.data.get("message", ""))
        for queue in subscribers:
            queue.put_nowait(event)

    def emit(self, event_type: EventType, **data) -> ProgressEvent:
        if self.source and "source" not in data:
            data["source"] = self.source
        event = ProgressEvent(type=event_type, data=data)
        self.publish(event)
        return event

    def log(self, message: str, level: str = "info") -> None:
        self.emit(EventType.LOG, message=message, level=level)

    def close(self) -> None:
        """Signal end-of-stream to all subscribers."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscribers = list(self._subscribers)
        for queue in subscribers:
            queue.put_nowait(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    def history(self) -> List[ProgressEvent]:
        with self._lock:
            return list(self._history)

    async def stream(self) -> AsyncIterator[ProgressEvent]:
        """Iterate events until the bus is closed."""
        queue = self.subscribe()
        while True:
            item = await queue.get()
            if item is _CLOSED:
                return
            yield item


def is_end_of_stream(item: Any) -> bool:
    return item is _CLOSED
