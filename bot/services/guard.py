from __future__ import annotations

import logging
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

LOGGER = logging.getLogger(__name__)


class KeyGuard:
    """Non-blocking in-flight marker set.

    A failed acquire means the same work is already running; callers reject
    instead of waiting.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._held: set[Hashable] = set()

    def __len__(self) -> int:
        return len(self._held)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._held

    def try_acquire(self, key: Hashable) -> bool:
        if key in self._held:
            LOGGER.debug("Guard %s rejected duplicate key %s", self.name, key)
            return False
        self._held.add(key)
        return True

    def release(self, key: Hashable) -> None:
        self._held.discard(key)

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[bool]:
        acquired = self.try_acquire(key)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(key)


@dataclass(slots=True)
class ConcurrencyGuard:
    users: KeyGuard = field(default_factory=lambda: KeyGuard("users"))
    events: KeyGuard = field(default_factory=lambda: KeyGuard("events"))
    channels: KeyGuard = field(default_factory=lambda: KeyGuard("channels"))
