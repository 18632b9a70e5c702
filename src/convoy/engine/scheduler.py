"""
Convoy Scheduler

Host-parallel worker pool built on asyncio. A task runs across all remaining
hosts at once, bounded by a semaphore (``--threads``), and the traversal
waits for every host before moving on to the next task.
"""

import asyncio
from typing import Awaitable, Callable, Iterable, List

from convoy.engine.results import HostOutcome
from convoy.inventory.host import Host

DEFAULT_THREADS = 1

HostWorker = Callable[[Host], Awaitable[List[HostOutcome]]]


class Scheduler:
    """
    Bounded fan-out of one unit of work over many hosts.

    Workers return outcomes and never touch the run context; the caller
    folds the flattened list in afterwards.
    """

    def __init__(self, threads: int = DEFAULT_THREADS):
        """
        Initialize the scheduler.

        Args:
            threads: Maximum number of hosts worked on at the same time
        """
        self.threads = max(1, threads)

    def semaphore(self) -> asyncio.Semaphore:
        return asyncio.Semaphore(self.threads)

    async def run(self, hosts: Iterable[Host], worker: HostWorker) -> List[HostOutcome]:
        """
        Run ``worker`` on every host.

        Returns:
            Outcomes for all hosts, in host order
        """
        semaphore = self.semaphore()

        async def run_on_host(host: Host) -> List[HostOutcome]:
            async with semaphore:
                return await worker(host)

        results = await asyncio.gather(*[run_on_host(host) for host in hosts])

        outcomes: List[HostOutcome] = []
        for host_outcomes in results:
            outcomes.extend(host_outcomes)
        return outcomes
