"""Approval Coordinator - executes admission decisions.

Owns the in-flight approval table. For REQUEST_APPROVAL decisions it sends an
Approve/Deny message, remembers the message id, and schedules an auto-deny
task. The pending table is the single point where a manual answer and the
auto-deny timer meet: whichever removes the entry first wins and the other
becomes a no-op.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, Set

from ..channels.base import Notifier
from ..store.base import EnforcementStore
from ..utils.formatting import format_duration
from .device_log import NameCache
from .errors import TransientIOError
from .types import Decision, DecisionKind, DeviceEvent, PendingApproval, SetName

logger = logging.getLogger(__name__)


class ApprovalCoordinator:
    """Tracks pending approvals and writes outcomes to the enforcement store."""

    def __init__(
        self,
        store: EnforcementStore,
        notifier: Notifier,
        name_cache: Optional[NameCache] = None,
        max_retries: int = 3,
        base_delay: float = 1.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """Initialize approval coordinator.

        Args:
            store: Enforcement store receiving approve/deny memberships
            notifier: Chat channel for approval requests
            name_cache: Display-name cache updated on approval
            max_retries: Store retries for the auto-deny timer
            base_delay: First backoff delay in seconds
            clock: Monotonic time source
        """
        self.store = store
        self.notifier = notifier
        self.name_cache = name_cache
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._clock = clock
        self._pending: Dict[str, PendingApproval] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> Dict[str, PendingApproval]:
        return dict(self._pending)

    async def handle(self, decision: Decision, event: DeviceEvent):
        """Carry out a policy decision for a device sighting."""
        if decision.kind == DecisionKind.REQUEST_APPROVAL:
            await self._request_approval(decision, event)
        elif decision.kind == DecisionKind.AUTO_APPROVE:
            await self._auto_approve(decision, event)
        elif decision.kind == DecisionKind.ALLOW:
            logger.info(f"✅ {event.mac} allowed ({decision.reason})")
        else:
            logger.debug(f"{event.mac} suppressed ({decision.reason})")

    async def _request_approval(self, decision: Decision, event: DeviceEvent):
        mac = event.mac
        if mac in self._pending:
            logger.info(f"Approval already pending for {mac}, not sending another request")
            return

        now = self._clock()
        pending = PendingApproval(
            mac=mac,
            created_at=now,
            deadline=now + decision.auto_deny_after,
            decision=decision,
            hostname=event.hostname,
            ip=event.ip,
        )
        # Registered before the first await so a concurrent sighting sees it
        self._pending[mac] = pending

        text = (
            f"⚠️ *New Device Connection*\n"
            f"*Host:* {event.hostname or 'Unknown'}\n"
            f"*MAC:* {mac}\n"
            f"*IP:* {event.ip or 'Unknown'}"
        )
        buttons = [("✅ Approve", f"approve_{mac}"), ("❌ Deny", f"deny_{mac}")]
        try:
            pending.correlation_id = await self.notifier.send_message(text, buttons)
        except TransientIOError as e:
            # Still schedule the timer: an unanswerable request times out to deny
            logger.warning(f"Approval request for {mac} not delivered: {e}")

        logger.info(f"⏳ Approval requested for {mac} ({event.hostname or 'unknown host'})")
        self._schedule(self._auto_deny_after(pending))

    def _schedule(self, coro):
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _auto_approve(self, decision: Decision, event: DeviceEvent):
        await self.store.add_member(SetName.APPROVED, event.mac, decision.approve_ttl)
        logger.info(f"✅ {event.mac} auto-approved for {decision.approve_ttl}s ({decision.reason})")
        try:
            await self.notifier.send_message(
                f"ℹ️ *Device Auto-Approved*\n"
                f"*Host:* {event.hostname or 'Unknown'}\n"
                f"*MAC:* {event.mac}\n"
                f"*IP:* {event.ip or 'Unknown'}\n"
                f"Access for {format_duration(decision.approve_ttl)}"
            )
        except TransientIOError as e:
            logger.warning(f"Auto-approve notice for {event.mac} not delivered: {e}")

    async def resolve(self, action: str, mac: str, message_id: Optional[int] = None) -> str:
        """Apply a manual approve/deny answer.

        Returns:
            Text describing the outcome (used to edit the request message)
        """
        pending = self._pending.pop(mac, None)
        if pending is None:
            logger.info(f"Callback {action} for {mac} ignored: already handled")
            return f"ℹ️ Already handled: {mac}"

        if message_id is None:
            message_id = pending.correlation_id

        try:
            if action == "approve":
                await self.store.add_member(SetName.APPROVED, mac, pending.decision.approve_ttl)
            else:
                await self._deny(mac, pending.decision.deny_ttl)
        except TransientIOError:
            # Put the request back so the button can be pressed again
            self._pending.setdefault(mac, pending)
            raise

        if action == "approve":
            if self.name_cache and pending.hostname:
                self.name_cache.set(mac, pending.hostname)
            text = f"✅ Approved: {pending.hostname or mac}"
            logger.info(f"✅ {mac} approved for {pending.decision.approve_ttl}s")
        else:
            text = f"❌ Denied: {mac}"
            logger.info(f"❌ {mac} denied for {pending.decision.deny_ttl}s")

        await self._edit(message_id, text)
        return text

    async def _deny(self, mac: str, ttl: int):
        # A MAC is never both approved and denied
        await self.store.remove_member(SetName.APPROVED, mac)
        await self.store.add_member(SetName.DENIED, mac, ttl)

    async def _auto_deny_after(self, pending: PendingApproval):
        """Deferred auto-deny. Re-validates state at fire time."""
        delay = max(0.0, pending.deadline - self._clock())
        await asyncio.sleep(delay)

        mac = pending.mac
        try:
            approved = await self._with_retry(
                f"approval check for {mac}",
                lambda: self.store.contains(SetName.APPROVED, mac),
            )
            if self._pending.get(mac) is not pending:
                logger.debug(f"Auto-deny for {mac} skipped: already resolved")
                return
            del self._pending[mac]

            if approved:
                logger.info(f"Auto-deny for {mac} skipped: already approved")
                return

            await self._with_retry(
                f"auto-deny of {mac}",
                lambda: self._deny(mac, pending.decision.deny_ttl),
            )
            logger.info(f"⌛ {mac} auto-denied after timeout")
            await self._edit(
                pending.correlation_id,
                f"⌛ *Auto-Denied (Timeout)*\n{mac} remained unapproved."
            )
        except Exception as e:
            logger.error(f"Auto-deny for {mac} failed: {e}", exc_info=True)
        finally:
            # A timer that gave up must not block the next request for this MAC
            if self._pending.get(mac) is pending:
                del self._pending[mac]

    async def _with_retry(self, label: str, operation: Callable[[], Awaitable]):
        """Run an idempotent store operation with exponential backoff.

        Raises:
            TransientIOError: once max_retries is exhausted
        """
        for attempt in range(self.max_retries + 1):
            try:
                return await operation()
            except TransientIOError as e:
                if attempt >= self.max_retries:
                    raise
                delay = self.base_delay * (2 ** attempt)
                logger.warning(f"{label} failed: {e}. Retrying in {delay}s... (Attempt {attempt+1}/{self.max_retries})")
                await asyncio.sleep(delay)

    async def _edit(self, message_id: Optional[int], text: str):
        if message_id is None:
            return
        try:
            await self.notifier.edit_message(message_id, text)
        except TransientIOError as e:
            logger.warning(f"Could not edit message {message_id}: {e}")

    async def shutdown(self):
        """Cancel outstanding auto-deny tasks (process exit only)."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

