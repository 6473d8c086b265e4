"""Single-shot hand-off between the interception addon and the login caller."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Generic, TypeVar

from .constants import LOGGER
from .errors import SupersededError

T = TypeVar("T")


class RendezvousState(enum.Enum):
    IDLE = "idle"
    WAITING = "waiting"
    SETTLED = "settled"


class RendezvousController(Generic[T]):
    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._future: asyncio.Future[T] | None = None
        self._logger = logger or LOGGER

    @property
    def state(self) -> RendezvousState:
        if self._future is None:
            return RendezvousState.IDLE
        if self._future.done():
            return RendezvousState.SETTLED
        return RendezvousState.WAITING

    @property
    def waiting(self) -> bool:
        return self.state is RendezvousState.WAITING

    def begin_wait(self) -> asyncio.Future[T]:
        self.close(SupersededError())
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._future = future
        return future

    def deliver(self, result: T) -> bool:
        future = self._take_waiting()
        if future is None:
            self._logger.debug("Dropped login result, nobody is waiting")
            return False
        future.set_result(result)
        return True

    def fail(self, error: BaseException) -> bool:
        future = self._take_waiting()
        if future is None:
            self._logger.debug("Dropped login failure, nobody is waiting: %s", error)
            return False
        future.set_exception(error)
        return True

    def close(self, error: BaseException) -> bool:
        """Reject the outstanding wait, if any, and return to idle."""
        future = self._future
        self._future = None
        if future is None or future.done():
            return False
        future.set_exception(error)
        return True

    def _take_waiting(self) -> asyncio.Future[T] | None:
        future = self._future
        if future is None or future.done():
            return None
        self._future = None
        return future
