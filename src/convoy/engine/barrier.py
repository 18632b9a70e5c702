"""
Convoy Countdown Barrier

Rendezvous point for the hosts of a batch in async mode. Hosts that fail
before reaching the barrier withdraw from it, which shrinks the expected
count (loose mode) or poisons the barrier for everyone (strict mode).

Waiters block on a per-generation broadcast: the event is set once when the
generation completes (or the barrier is poisoned or emptied) and replaced
with a fresh one for the next generation.
"""

import asyncio
import enum
import logging
from typing import Optional

from convoy.engine.errors import AllWithdrawnError, BarrierError, StrictWithdrawalError

logger = logging.getLogger(__name__)


class BarrierMode(enum.Enum):
    LOOSE = "loose"
    STRICT = "strict"


class _Broadcast:
    """One generation's wake-up signal and its outcome."""

    def __init__(self):
        self.event = asyncio.Event()
        self.error: Optional[BarrierError] = None


class CountdownBarrier:
    """
    Barrier sized to the number of participating hosts.

    Usage:
        barrier = CountdownBarrier("deploy", expected=3)
        await barrier.wait()      # in each host's task
        await barrier.withdraw()  # from a host that will never arrive
    """

    def __init__(self, name: str, expected: int, mode: BarrierMode = BarrierMode.LOOSE):
        self._name = name
        self._mode = mode
        self._expected = expected
        self._arrived = 0
        self._generation = 0
        self._withdrawn = 0
        self._poisoned = False
        self._broadcast = _Broadcast()

    @property
    def name(self) -> str:
        return self._name

    @property
    def mode(self) -> BarrierMode:
        return self._mode

    @property
    def expected_count(self) -> int:
        return self._expected

    @property
    def withdrawn_count(self) -> int:
        return self._withdrawn

    @property
    def arrived_count(self) -> int:
        return self._arrived

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_poisoned(self) -> bool:
        return self._poisoned

    def _error(self) -> Optional[BarrierError]:
        if self._poisoned:
            return StrictWithdrawalError(self._name)
        if self._expected <= 0:
            return AllWithdrawnError(self._name)
        return None

    def _release(self, error: Optional[BarrierError] = None) -> None:
        broadcast = self._broadcast
        broadcast.error = error
        self._broadcast = _Broadcast()
        if error is None:
            self._generation += 1
            self._arrived = 0
            logger.debug("barrier %s released generation %d", self._name, self._generation)
        broadcast.event.set()

    async def wait(self) -> None:
        """
        Arrive at the barrier and block until every remaining participant has.

        Raises:
            StrictWithdrawalError: If the barrier is strict and someone withdrew
            AllWithdrawnError: If every participant withdrew
        """
        error = self._error()
        if error is not None:
            raise error

        self._arrived += 1
        if self._arrived >= self._expected:
            self._release()
            return

        broadcast = self._broadcast
        await broadcast.event.wait()
        if broadcast.error is not None:
            raise type(broadcast.error)(self._name)

    async def withdraw(self) -> None:
        """
        Leave the barrier without arriving.

        Raises:
            StrictWithdrawalError: Always, in strict mode
            AllWithdrawnError: If this was the last participant
        """
        self._withdrawn += 1

        if self._mode == BarrierMode.STRICT:
            if not self._poisoned:
                logger.debug("barrier %s poisoned by withdrawal", self._name)
                self._poisoned = True
                self._release(StrictWithdrawalError(self._name))
            raise StrictWithdrawalError(self._name)

        self._expected -= 1
        if self._expected <= 0:
            self._expected = 0
            self._release(AllWithdrawnError(self._name))
            raise AllWithdrawnError(self._name)

        if self._arrived > 0 and self._arrived >= self._expected:
            self._release()
