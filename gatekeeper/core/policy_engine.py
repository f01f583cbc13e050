"""Policy Engine - deterministic admission decisions for device sightings.

Sits between the Event Ingestor (which decides whether a sighting is worth
evaluating) and the Approval Coordinator (which carries out the decision).
No side effects happen here: the same MAC, snapshot and mode always give the
same Decision.

Precedence:
1. Static lease       -> ALLOW (never notify)
2. Already denied     -> SUPPRESS
3. Already approved   -> SUPPRESS
4. Blacklist mode     -> REQUEST_APPROVAL if listed, else AUTO_APPROVE (24h)
5. Normal mode        -> REQUEST_APPROVAL
"""

import logging
from typing import Optional

from .types import (
    Decision,
    DecisionKind,
    MembershipSnapshot,
    Mode,
    Timeouts,
)

logger = logging.getLogger(__name__)


class PolicyEngine:
    """Pure decision function over a membership snapshot."""

    def __init__(self, timeouts: Optional[Timeouts] = None):
        """Initialize policy engine.

        Args:
            timeouts: TTLs and deadlines attached to decisions
        """
        self.timeouts = timeouts or Timeouts()

    def decide(self, mac: str, snapshot: MembershipSnapshot, mode: Mode) -> Decision:
        """Classify a device sighting.

        Args:
            mac: Normalized MAC address
            snapshot: Set memberships for this MAC
            mode: Current policy mode

        Returns:
            Decision for the Approval Coordinator to execute
        """
        if snapshot.static:
            decision = Decision(DecisionKind.ALLOW, reason="static lease")
        elif snapshot.denied:
            decision = Decision(DecisionKind.SUPPRESS, reason="already denied")
        elif snapshot.approved:
            decision = Decision(DecisionKind.SUPPRESS, reason="already approved")
        elif mode == Mode.BLACKLIST:
            if snapshot.blacklisted:
                decision = self._request_approval("blacklisted device")
            else:
                decision = Decision(
                    DecisionKind.AUTO_APPROVE,
                    reason="not blacklisted",
                    approve_ttl=self.timeouts.auto_approve_ttl,
                    informational=True,
                )
        else:
            decision = self._request_approval("unknown device")

        logger.debug(f"POLICY: {mac} -> {decision.kind.value} ({decision.reason})")
        return decision

    def _request_approval(self, reason: str) -> Decision:
        return Decision(
            DecisionKind.REQUEST_APPROVAL,
            reason=reason,
            approve_ttl=self.timeouts.approve_ttl,
            deny_ttl=self.timeouts.deny_ttl,
            auto_deny_after=self.timeouts.auto_deny_after,
        )
