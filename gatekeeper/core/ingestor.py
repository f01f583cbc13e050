"""Event Ingestor - validates, filters and rate-limits device sightings.

Best-effort by contract: nothing raised here reaches an operator. Bad input is
logged and dropped, transient store failures are retried with backoff.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional

from ..store.base import EnforcementStore
from .approval import ApprovalCoordinator
from .device_log import DeviceLog
from .errors import TransientIOError, ValidationError
from .policy_config import PolicyConfigStore
from .policy_engine import PolicyEngine
from .types import Decision, DeviceAction, DeviceEvent, MembershipSnapshot, normalize_mac

logger = logging.getLogger(__name__)


class EventIngestor:
    """Turns raw DHCP events into policy decisions."""

    PRUNE_EVERY = 100  # events between rate-limit table prunes

    def __init__(
        self,
        store: EnforcementStore,
        engine: PolicyEngine,
        coordinator: ApprovalCoordinator,
        policy: PolicyConfigStore,
        device_log: Optional[DeviceLog] = None,
        renew_as_sighting: bool = False,
        rate_limit_seconds: int = 60,
        max_retries: int = 3,
        base_delay: float = 1.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """Initialize event ingestor.

        Args:
            store: Enforcement store to snapshot memberships from
            engine: Policy engine
            coordinator: Executes the resulting decisions
            policy: Durable policy (for the current mode)
            device_log: Optional sightings log
            renew_as_sighting: Treat DHCP renewals like new connections
            rate_limit_seconds: Minimum spacing between evaluations of one MAC
            max_retries: Snapshot retries on transient store errors
            base_delay: First backoff delay in seconds
            clock: Monotonic time source
        """
        self.store = store
        self.engine = engine
        self.coordinator = coordinator
        self.policy = policy
        self.device_log = device_log
        self.renew_as_sighting = renew_as_sighting
        self.rate_limit_seconds = rate_limit_seconds
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._clock = clock
        self._last_seen: Dict[str, float] = {}
        self._events_since_prune = 0

    async def ingest(
        self,
        action: DeviceAction,
        mac: Optional[str],
        ip: str = "",
        hostname: str = ""
    ) -> Optional[Decision]:
        """Process one device event.

        Returns:
            The decision that was executed, or None if the event was dropped
        """
        try:
            mac = normalize_mac(mac)
        except ValidationError as e:
            logger.warning(f"Dropping event: {e}")
            return None

        if not self._is_admissible(action):
            logger.debug(f"Ignoring {action.name} event for {mac}")
            return None

        if self._is_rate_limited(mac):
            logger.debug(f"Rate limited: {mac}")
            return None

        event = DeviceEvent(action=action, mac=mac, ip=ip or "", hostname=hostname or "")
        logger.info(f"📡 Device {action.name.lower()}: {mac} ({event.hostname or '?'}) at {event.ip or '?'}")

        snapshot = await self._snapshot_with_retry(mac)
        if snapshot is None:
            return None

        decision = self.engine.decide(mac, snapshot, self.policy.config.mode)

        if self.device_log:
            self.device_log.record(event, decision)

        try:
            await self.coordinator.handle(decision, event)
        except TransientIOError as e:
            logger.error(f"Could not apply {decision.kind.value} for {mac}: {e}")
        return decision

    def _is_admissible(self, action: DeviceAction) -> bool:
        if action == DeviceAction.ADD:
            return True
        if action == DeviceAction.RENEW:
            return self.renew_as_sighting
        return False

    def _is_rate_limited(self, mac: str) -> bool:
        now = self._clock()
        last = self._last_seen.get(mac)
        if last is not None and now - last < self.rate_limit_seconds:
            return True

        self._last_seen[mac] = now
        self._events_since_prune += 1
        if self._events_since_prune >= self.PRUNE_EVERY:
            self._prune(now)
        return False

    def _prune(self, now: float):
        cutoff = now - self.rate_limit_seconds
        stale = [m for m, ts in self._last_seen.items() if ts < cutoff]
        for m in stale:
            del self._last_seen[m]
        self._events_since_prune = 0
        if stale:
            logger.debug(f"Pruned {len(stale)} rate-limit entries")

    async def _snapshot_with_retry(self, mac: str) -> Optional[MembershipSnapshot]:
        for attempt in range(self.max_retries + 1):
            try:
                return await self.store.snapshot(mac)
            except TransientIOError as e:
                if attempt >= self.max_retries:
                    logger.error(f"Dropping event for {mac}: store unavailable ({e})")
                    return None
                delay = self.base_delay * (2 ** attempt)  # 1s, 2s, 4s
                logger.warning(f"Store read failed for {mac}. Retrying in {delay}s... (Attempt {attempt+1}/{self.max_retries})")
                await asyncio.sleep(delay)
        return None
