"""
Convoy Async UI

In async mode every host runs its own task list, so output from many hosts
interleaves. Workers never print or touch the run context; they put
``HostEvent`` values on a queue and a single consumer task folds outcomes
into the context and renders them through the visitor.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Optional

from convoy.engine.context import PlaybookContext
from convoy.engine.results import HostOutcome
from convoy.engine.visitor import PlaybookVisitor

logger = logging.getLogger(__name__)


class HostEventKind(enum.Enum):
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    BARRIER_REACHED = "barrier_reached"
    BARRIER_PASSED = "barrier_passed"
    BARRIER_FAILED = "barrier_failed"
    HOST_COMPLETED = "host_completed"
    HOST_FAILED = "host_failed"


@dataclass
class HostEvent:
    kind: HostEventKind
    host: str
    task_name: Optional[str] = None
    barrier: Optional[str] = None
    # Carried by TASK_COMPLETED / TASK_FAILED
    outcome: Optional[HostOutcome] = None
    message: Optional[str] = None


_STOP = object()


class AsyncUI:
    """
    Queue-backed renderer.

    Usage:
        ui = AsyncUI(visitor, context)
        ui.start()
        ...                 # workers call ui.emit(event)
        await ui.stop()     # drains the queue
    """

    def __init__(self, visitor: PlaybookVisitor, context: PlaybookContext):
        self.visitor = visitor
        self.context = context
        self._queue: "asyncio.Queue[object]" = asyncio.Queue()
        self._consumer: Optional["asyncio.Task[None]"] = None

    def emit(self, event: HostEvent) -> None:
        self._queue.put_nowait(event)

    def start(self) -> None:
        if self._consumer is None:
            self._consumer = asyncio.create_task(self._consume())

    async def stop(self) -> None:
        """Send the sentinel and wait until every queued event is handled."""
        if self._consumer is None:
            return
        self._queue.put_nowait(_STOP)
        await self._consumer
        self._consumer = None

    async def _consume(self) -> None:
        while True:
            item = await self._queue.get()
            if item is _STOP:
                return
            self.handle(item)

    def handle(self, event: HostEvent) -> None:
        if event.outcome is not None:
            self.context.record_outcome(event.outcome)
        self.visitor.on_host_event(event)
