from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class ProvisioningLocks:
    """
    One lock per target environment. Provisioning stages of concurrent runs
    against the same environment are serialized; different environments
    proceed independently.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def lock_for(self, environment: str) -> threading.Lock:
        with self._guard:
            lk = self._locks.get(environment)
            if lk is None:
                lk = threading.Lock()
                self._locks[environment] = lk
            return lk

    def locked(self, environment: str) -> bool:
        return self.lock_for(environment).locked()

    @contextmanager
    def hold(self, environment: str) -> Iterator[None]:
        lk = self.lock_for(environment)
        lk.acquire()
        try:
            yield
        finally:
            lk.release()


_DEFAULT = ProvisioningLocks()


def default_locks() -> ProvisioningLocks:
    """Process-wide registry shared by every orchestrator that is not given one."""
    return _DEFAULT
