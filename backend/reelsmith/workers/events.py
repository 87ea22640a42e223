"""Best-effort progress broadcast to websocket subscribers."""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, asdict
from typing import AsyncIterator, Set

logger = logging.getLogger(__name__)


@dataclass
class ProgressEvent:
    job_id: str
    state: str  # admitted|analyzing|generating|processing|finalizing|completed|error
    message: str
    progress: int

    def to_dict(self) -> dict:
        return asdict(self)


class EventBroadcaster:
    """Fan out events to subscriber queues. Slow subscribers lose events."""

    def __init__(self, queue_size: int = 100):
        self._queue_size = queue_size
        self._subscribers: Set[asyncio.Queue] = set()

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        self._subscribers.discard(queue)

    @asynccontextmanager
    async def subscription(self) -> AsyncIterator[asyncio.Queue]:
        queue = self.subscribe()
        try:
            yield queue
        finally:
            self.unsubscribe(queue)

    def publish(self, event: ProgressEvent):
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.debug(f"Dropping event for slow subscriber: {event.state} {event.job_id}")
