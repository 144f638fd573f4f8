from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import ChannelOpenFailure, ChannelTimeout, GeneratorError, UnsolicitedDisconnect


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    DISCONNECT = "disconnect"
    OPEN_FAILED = "open-failed"


@dataclass(frozen=True)
class QueryOutcome:
    kind: OutcomeKind
    value: Any = None
    error: str | None = None

    @classmethod
    def success(cls, value: Any = None) -> QueryOutcome:
        return cls(OutcomeKind.SUCCESS, value=value)

    @classmethod
    def failed(cls, message: str) -> QueryOutcome:
        return cls(OutcomeKind.ERROR, error=message)

    @classmethod
    def timeout(cls, message: str = "Timeout") -> QueryOutcome:
        return cls(OutcomeKind.TIMEOUT, error=message)

    @classmethod
    def disconnect(cls, message: str | None = None) -> QueryOutcome:
        return cls(OutcomeKind.DISCONNECT, error=message or "Connection lost")

    @classmethod
    def open_failed(cls, message: str | None = None) -> QueryOutcome:
        return cls(OutcomeKind.OPEN_FAILED, error=message or "Generator unreachable")

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    def unwrap(self) -> Any:
        if self.kind is OutcomeKind.SUCCESS:
            return self.value
        if self.kind is OutcomeKind.TIMEOUT:
            raise ChannelTimeout(self.error or "Timeout")
        if self.kind is OutcomeKind.DISCONNECT:
            raise UnsolicitedDisconnect(self.error or "Connection lost")
        if self.kind is OutcomeKind.OPEN_FAILED:
            raise ChannelOpenFailure(self.error or "Generator unreachable")
        raise GeneratorError(self.error or "Generator request failed")


class CompletionLatch:
    """Single-fire completion for one asynchronous query.

    The first `fire()` wins and resolves `wait()`; every later call is a no-op and
    returns False. Optional `on_fire` callbacks run once, synchronously, inside the
    winning `fire()` (used to cancel timers and close the query channel).
    """

    def __init__(self) -> None:
        self._outcome: QueryOutcome | None = None
        self._future: asyncio.Future[QueryOutcome] | None = None
        self._on_fire: list[Callable[[QueryOutcome], None]] = []

    @property
    def fired(self) -> bool:
        return self._outcome is not None

    @property
    def outcome(self) -> QueryOutcome | None:
        return self._outcome

    def add_done_callback(self, callback: Callable[[QueryOutcome], None]) -> None:
        if self._outcome is not None:
            callback(self._outcome)
            return
        self._on_fire.append(callback)

    def fire(self, outcome: QueryOutcome) -> bool:
        if self._outcome is not None:
            return False
        self._outcome = outcome
        if self._future is not None and not self._future.done():
            self._future.set_result(outcome)
        callbacks, self._on_fire = self._on_fire, []
        for callback in callbacks:
            callback(outcome)
        return True

    async def wait(self, timeout: float | None = None) -> QueryOutcome:
        """Wait for the outcome; when `timeout` elapses first, fire a TIMEOUT outcome."""
        if self._outcome is not None:
            return self._outcome
        loop = asyncio.get_running_loop()
        if self._future is None:
            self._future = loop.create_future()
        handle = None
        if timeout is not None:
            handle = loop.call_later(max(0.0, float(timeout)), self.fire, QueryOutcome.timeout())
        try:
            return await asyncio.shield(self._future)
        finally:
            if handle is not None:
                handle.cancel()
