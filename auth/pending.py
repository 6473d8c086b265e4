from __future__ import annotations

import time
from typing import Callable

from auth.models import PendingAuthorization


class PendingStateStore:
    """Maps an OAuth ``state`` to the code verifier of the login URL that carried it.

    Entries expire after ``ttl_seconds`` and are single use: ``consume`` removes
    the entry it returns, so a replayed redirect no longer matches.
    """

    def __init__(
        self,
        *,
        ttl_seconds: int = 600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._pending: dict[str, PendingAuthorization] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, state: object) -> bool:
        return state in self._pending

    def add(self, state: str, code_verifier: str) -> PendingAuthorization:
        self._cleanup()
        pending = PendingAuthorization(
            state=state,
            code_verifier=code_verifier,
            created_at=self._clock(),
        )
        self._pending[state] = pending
        return pending

    def get(self, state: str | None) -> PendingAuthorization | None:
        self._cleanup()
        if state is None:
            return None
        return self._pending.get(state)

    def consume(self, state: str | None) -> PendingAuthorization | None:
        self._cleanup()
        if state is None:
            return None
        return self._pending.pop(state, None)

    def clear(self) -> None:
        self._pending.clear()

    def _cleanup(self) -> None:
        if self.ttl_seconds <= 0:
            return
        cutoff = self._clock() - self.ttl_seconds
        expired_states = [
            state for state, pending in self._pending.items() if pending.created_at < cutoff
        ]
        for state in expired_states:
            del self._pending[state]
