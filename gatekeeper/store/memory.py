"""In-process enforcement store with monotonic-clock expiry.

Used by the test suite and by the `memory` backend for dry runs on machines
without nftables.
"""

import logging
import math
import time
from typing import Callable, Dict, List, Optional

from ..core.types import MembershipEntry, SetName
from .base import EnforcementStore

logger = logging.getLogger(__name__)


class MemoryStore(EnforcementStore):
    """Dict-backed membership sets. Insertion order is listing order."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """Initialize memory store.

        Args:
            clock: Monotonic time source (injectable for tests)
        """
        self._clock = clock
        self._sets: Dict[SetName, Dict[str, Optional[float]]] = {name: {} for name in SetName}
        self._bypass = False

    def _expire(self, set_name: SetName):
        now = self._clock()
        members = self._sets[set_name]
        for mac in [m for m, exp in members.items() if exp is not None and exp <= now]:
            del members[mac]

    async def add_member(self, set_name: SetName, mac: str, ttl: Optional[int] = None):
        self._expire(set_name)
        members = self._sets[set_name]
        # Re-adding moves the entry to the end, like delete + add in nft
        members.pop(mac, None)
        members[mac] = self._clock() + ttl if ttl is not None else None

    async def remove_member(self, set_name: SetName, mac: str) -> bool:
        self._expire(set_name)
        members = self._sets[set_name]
        if mac not in members:
            return False
        del members[mac]
        return True

    async def list_members(self, set_name: SetName) -> List[MembershipEntry]:
        self._expire(set_name)
        now = self._clock()
        return [
            MembershipEntry(mac=mac, expires_in=None if exp is None else int(math.ceil(exp - now)))
            for mac, exp in self._sets[set_name].items()
        ]

    async def flush(self, set_name: SetName):
        self._sets[set_name].clear()

    async def set_bypass(self, active: bool):
        self._bypass = active
        logger.info(f"Bypass {'enabled' if active else 'disabled'}")

    async def get_bypass(self) -> bool:
        return self._bypass
