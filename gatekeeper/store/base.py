"""Enforcement State Store - abstraction over the firewall's membership sets.

Backends implement the primitive operations; everything composite (extend,
snapshot, admission check, reconcile) is built here on top of them so every
backend shares the same semantics.
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from ..core.errors import RaceLossError, TransientIOError
from ..core.types import MembershipEntry, MembershipSnapshot, SetName

logger = logging.getLogger(__name__)


class EnforcementStore(ABC):
    """Four TTL-capable membership sets plus a global bypass flag.

    Each primitive is assumed individually atomic. Composite operations are
    best-effort read-modify-write.
    """

    @abstractmethod
    async def add_member(self, set_name: SetName, mac: str, ttl: Optional[int] = None):
        """Add (or re-add) a MAC. ttl is in seconds; None means permanent."""

    @abstractmethod
    async def remove_member(self, set_name: SetName, mac: str) -> bool:
        """Remove a MAC. Returns False if it was not a member."""

    @abstractmethod
    async def list_members(self, set_name: SetName) -> List[MembershipEntry]:
        """List live members in store order."""

    @abstractmethod
    async def flush(self, set_name: SetName):
        """Remove every member of a set."""

    @abstractmethod
    async def set_bypass(self, active: bool):
        """Enable/disable global bypass (no admission filtering at all)."""

    @abstractmethod
    async def get_bypass(self) -> bool:
        """Return whether bypass is active."""

    async def contains(self, set_name: SetName, mac: str) -> bool:
        """Check membership."""
        return await self.get_member(set_name, mac) is not None

    async def get_member(self, set_name: SetName, mac: str) -> Optional[MembershipEntry]:
        """Return the live entry for a MAC, or None."""
        for entry in await self.list_members(set_name):
            if entry.mac == mac:
                return entry
        return None

    async def extend(self, set_name: SetName, mac: str, delta: int) -> int:
        """Extend a member's TTL by delta seconds.

        The backing store has no atomic extend, so this reads the remaining TTL,
        removes the entry and re-adds it with remaining + delta.

        Returns:
            The new TTL in seconds

        Raises:
            RaceLossError: if the entry is gone (never listed, or expired
                between the read and the re-add)
            TransientIOError: if the re-add failed; the message says whether the
                previous entry was restored or the MAC lost its membership
        """
        entry = await self.get_member(set_name, mac)
        if entry is None:
            raise RaceLossError(f"{mac} is no longer in {set_name.value}")

        new_ttl = (entry.expires_in or 0) + delta
        if not await self.remove_member(set_name, mac):
            raise RaceLossError(f"{mac} expired from {set_name.value} before it could be extended")

        try:
            await self.add_member(set_name, mac, new_ttl)
        except TransientIOError as e:
            logger.warning(f"Re-adding {mac} to {set_name.value} failed, restoring previous entry: {e}")
            try:
                await self.add_member(set_name, mac, entry.expires_in)
            except TransientIOError as restore_error:
                logger.error(f"{mac} lost its {set_name.value} membership: {restore_error}")
                raise TransientIOError(
                    f"{mac} was removed from {set_name.value} and could not be restored ({restore_error})"
                ) from restore_error
            raise TransientIOError(f"{mac} not extended, previous time kept ({e})") from e

        logger.info(f"Extended {mac} in {set_name.value} to {new_ttl}s")
        return new_ttl

    async def snapshot(self, mac: str) -> MembershipSnapshot:
        """Read every set membership for one MAC."""
        return MembershipSnapshot(
            static=await self.contains(SetName.STATIC, mac),
            approved=await self.contains(SetName.APPROVED, mac),
            denied=await self.contains(SetName.DENIED, mac),
            blacklisted=await self.contains(SetName.BLACKLIST, mac),
        )

    async def is_admitted(self, mac: str) -> bool:
        """Evaluate the forwarding chain: bypass > static > approved > default-deny."""
        if await self.get_bypass():
            return True
        if await self.contains(SetName.STATIC, mac):
            return True
        return await self.contains(SetName.APPROVED, mac)


async def reconcile_set(store: EnforcementStore, set_name: SetName, macs: Iterable[str]) -> int:
    """Rebuild a named set from its persisted source list.

    Used for both static lease sync and blacklist sync.

    Returns:
        Number of MACs written
    """
    await store.flush(set_name)
    count = 0
    for mac in sorted(set(macs)):
        await store.add_member(set_name, mac)
        count += 1
    logger.info(f"🔄 Reconciled {set_name.value}: {count} entries")
    return count
