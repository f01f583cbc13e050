"""Type definitions for the gatekeeper admission engine."""

import re
from dataclasses import dataclass, field
from typing import Optional, Set, Union
from enum import Enum

from .errors import ValidationError


class DeviceAction(Enum):
    """DHCP event kind reported by the event bridge."""
    ADD = "add"
    RENEW = "old"
    REMOVE = "del"


class Mode(Enum):
    """Admission policy mode."""
    NORMAL = "normal"        # Every unknown device needs approval
    BLACKLIST = "blacklist"  # Only listed devices need approval


class SetName(Enum):
    """Logical membership sets held by the enforcement store."""
    STATIC = "static"
    APPROVED = "approved"
    DENIED = "denied"
    BLACKLIST = "blacklist"


class DecisionKind(Enum):
    """How a device sighting should be handled."""
    ALLOW = "allow"
    SUPPRESS = "suppress"
    AUTO_APPROVE = "auto_approve"
    REQUEST_APPROVAL = "request_approval"


_MAC_RE = re.compile(r"^([0-9a-f]{2}:){5}[0-9a-f]{2}$")


def normalize_mac(mac: Optional[str]) -> str:
    """Return the canonical lower-case, colon separated form of a MAC.

    Raises:
        ValidationError: if the value is empty or not a 48-bit MAC
    """
    if mac is None or not mac.strip():
        raise ValidationError("MAC address is empty")
    canonical = mac.strip().replace("-", ":").lower()
    if not _MAC_RE.match(canonical):
        raise ValidationError(f"Malformed MAC address: {mac}")
    return canonical


@dataclass(frozen=True)
class DeviceEvent:
    """A device sighting from the DHCP event bridge."""
    action: DeviceAction
    mac: str
    ip: str = ""
    hostname: str = ""


@dataclass
class Timeouts:
    """Durations in seconds used by decisions and commands."""
    approve_ttl: int = 30 * 60
    deny_ttl: int = 30 * 60
    auto_deny_after: int = 5 * 60
    auto_approve_ttl: int = 24 * 60 * 60
    extend_ttl: int = 30 * 60


@dataclass(frozen=True)
class Decision:
    """Policy engine output. TTL fields are only set where they apply."""
    kind: DecisionKind
    reason: str = ""
    approve_ttl: Optional[int] = None
    deny_ttl: Optional[int] = None
    auto_deny_after: Optional[int] = None
    informational: bool = False


@dataclass(frozen=True)
class MembershipSnapshot:
    """Which sets a MAC belongs to at one point in time."""
    static: bool = False
    approved: bool = False
    denied: bool = False
    blacklisted: bool = False


@dataclass(frozen=True)
class MembershipEntry:
    """One element of a membership set. expires_in is None for permanent entries."""
    mac: str
    expires_in: Optional[int] = None


@dataclass
class PendingApproval:
    """An approval request waiting for a human answer."""
    mac: str
    created_at: float
    deadline: float
    decision: Decision
    correlation_id: Optional[int] = None
    hostname: str = ""
    ip: str = ""


@dataclass
class PolicyConfig:
    """Durable admission policy."""
    mode: Mode = Mode.NORMAL
    blacklist: Set[str] = field(default_factory=set)
    static: Set[str] = field(default_factory=set)


@dataclass(frozen=True)
class TextCommand:
    """Administrative text typed into the chat."""
    text: str


@dataclass(frozen=True)
class Callback:
    """An inline button press: '<approve|deny>_<mac>'."""
    action: str
    mac: str
    message_id: Optional[int] = None
    callback_id: Optional[str] = None

    @classmethod
    def from_payload(
        cls,
        payload: str,
        message_id: Optional[int] = None,
        callback_id: Optional[str] = None
    ) -> 'Callback':
        """Parse callback data of the form 'approve_aa:bb:cc:dd:ee:ff'."""
        action, sep, mac = (payload or "").partition("_")
        if not sep or action not in ("approve", "deny"):
            raise ValidationError(f"Unrecognised callback payload: {payload}")
        return cls(
            action=action,
            mac=normalize_mac(mac),
            message_id=message_id,
            callback_id=callback_id,
        )


Update = Union[TextCommand, Callback]


@dataclass
class GatekeeperConfig:
    """Runtime configuration for the gatekeeper service."""
    # Telegram
    telegram_bot_token: str
    telegram_chat_id: str
    poll_timeout: int = 30

    # Storage
    data_dir: str = "./data"
    store_backend: str = "nftables"  # nftables | memory

    # nftables
    nft_family: str = "inet"
    nft_table: str = "fw4"
    nft_sets: dict = field(default_factory=dict)  # overrides of the default set names

    # Events
    renew_as_sighting: bool = False
    rate_limit_seconds: int = 60
    ubus_event: str = "dnsmasq.event"

    # Timeouts
    timeouts: Timeouts = field(default_factory=Timeouts)

    # Static leases
    static_lease_source: str = "uci"  # uci | file
    static_lease_path: str = "./config/static_leases.yaml"
    dhcp_leases_path: str = "/tmp/dhcp.leases"

    # Logging
    log_level: str = "INFO"
    log_file: str = "./data/logs/gatekeeper.log"


@dataclass
class StaticLease:
    """A pre-registered device that bypasses approval."""
    mac: str
    name: Optional[str] = None

