"""
Convoy Async Execution

Async mode runs each host through the whole flattened task list of a batch
on its own, instead of moving every host through task N before task N+1.
Hosts only line up at ``wait_for_others`` tasks, each backed by a
CountdownBarrier sized to the batch.

A host that fails withdraws from every barrier it has not reached yet, so
the remaining hosts are not left waiting for it.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Dict, List, Optional

from convoy.engine.async_ui import AsyncUI, HostEvent, HostEventKind
from convoy.engine.barrier import CountdownBarrier
from convoy.engine.errors import BarrierError
from convoy.engine.fsm import ScheduledTask, run_task_on_host
from convoy.engine.results import HostOutcome
from convoy.inventory.host import Host
from convoy.modules.builtin_wait_for_others import WaitForOthersModule
from convoy.tasks.response import TaskResponse, TaskStatus

if TYPE_CHECKING:
    from convoy.engine.traversal import RunState

logger = logging.getLogger(__name__)


class AsyncExecutionContext:
    """Barriers for one batch's flattened task list."""

    def __init__(self, tasks: List[ScheduledTask], barriers: Dict[int, CountdownBarrier]):
        self.tasks = tasks
        self._barriers = barriers

    @classmethod
    def from_tasks(cls, tasks: List[ScheduledTask], host_count: int) -> "AsyncExecutionContext":
        """Create one barrier per ``wait_for_others`` task, keyed by its index."""
        barriers: Dict[int, CountdownBarrier] = {}
        for index, scheduled in enumerate(tasks):
            task = scheduled.task
            if isinstance(task, WaitForOthersModule):
                barriers[index] = CountdownBarrier(task.barrier_name(), host_count, task.barrier_mode())
        return cls(tasks, barriers)

    @property
    def barrier_count(self) -> int:
        return len(self._barriers)

    def get_barrier(self, index: int) -> Optional[CountdownBarrier]:
        return self._barriers.get(index)

    async def withdraw_from(self, index: int) -> None:
        """Withdraw from every barrier at or after ``index``."""
        for barrier_index in sorted(self._barriers):
            if barrier_index < index:
                continue
            barrier = self._barriers[barrier_index]
            try:
                await barrier.withdraw()
            except BarrierError as e:
                logger.debug("withdrawal from %s: %s", barrier.name, e)

    async def run(self, run_state: "RunState", hosts: List[Host], ui: AsyncUI) -> None:
        """Run every host through the task list. Outcomes reach the context through ``ui``."""
        semaphore = asyncio.Semaphore(max(1, run_state.threads))
        await asyncio.gather(*[self._run_host(run_state, host, semaphore, ui) for host in hosts])

    async def _run_host(self, run_state: "RunState", host: Host, semaphore: asyncio.Semaphore,
                        ui: AsyncUI) -> None:
        for index, scheduled in enumerate(self.tasks):
            barrier = self.get_barrier(index)
            if barrier is not None:
                # Waiting must not hold a worker slot
                ui.emit(HostEvent(HostEventKind.BARRIER_REACHED, host.name, scheduled.name, barrier=barrier.name))
                try:
                    await barrier.wait()
                except BarrierError as e:
                    await self._fail_on_barrier(host, scheduled, barrier, e, index, ui)
                    return
                ui.emit(HostEvent(HostEventKind.BARRIER_PASSED, host.name, scheduled.name, barrier=barrier.name))

            ui.emit(HostEvent(HostEventKind.TASK_STARTED, host.name, scheduled.name))
            async with semaphore:
                outcomes = await run_task_on_host(run_state, scheduled, host)

            failed = False
            for outcome in outcomes:
                kind = HostEventKind.TASK_FAILED if outcome.failed else HostEventKind.TASK_COMPLETED
                ui.emit(HostEvent(kind, host.name, scheduled.name, outcome=outcome))
                failed = failed or outcome.failed

            if failed:
                await self.withdraw_from(index + 1)
                ui.emit(HostEvent(HostEventKind.HOST_FAILED, host.name, scheduled.name,
                                  message=f"failed at task '{scheduled.name}'"))
                return

        ui.emit(HostEvent(HostEventKind.HOST_COMPLETED, host.name))

    async def _fail_on_barrier(self, host: Host, scheduled: ScheduledTask, barrier: CountdownBarrier,
                               error: BarrierError, index: int, ui: AsyncUI) -> None:
        message = error.message
        outcome = HostOutcome(
            host=host.name,
            task_name=scheduled.name,
            response=TaskResponse(TaskStatus.FAILED, msg=message),
            msg=message,
        )
        ui.emit(HostEvent(HostEventKind.BARRIER_FAILED, host.name, scheduled.name,
                          barrier=barrier.name, message=message))
        ui.emit(HostEvent(HostEventKind.TASK_FAILED, host.name, scheduled.name, outcome=outcome))
        await self.withdraw_from(index + 1)
        ui.emit(HostEvent(HostEventKind.HOST_FAILED, host.name, scheduled.name, message=message))
