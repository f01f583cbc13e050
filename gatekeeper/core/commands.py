"""Command Processor - the administrative surface of the gatekeeper.

Accepts both inputs of the chat channel through one entry point:
- TextCommand: operator commands such as STATUS or EXTEND 2
- Callback: Approve/Deny button presses on approval requests

Every recognised command yields exactly one reply, success or failure.
Unrecognised text yields None and is ignored by the channel.
"""

import logging
from typing import Awaitable, Callable, Dict, List, Optional

from ..store.base import EnforcementStore, reconcile_set
from ..utils.formatting import format_duration
from .approval import ApprovalCoordinator
from .device_log import DeviceLog, DeviceNames, NameCache
from .errors import GatekeeperError, NotFoundError, RaceLossError, TransientIOError, ValidationError
from .id_mapping import IDMappingTable
from .policy_config import PolicyConfigStore
from .types import Callback, Mode, SetName, TextCommand, Timeouts, Update, normalize_mac

logger = logging.getLogger(__name__)

Handler = Callable[[List[str]], Awaitable[str]]

HELP_TEXT = """🛡️ *Gatekeeper Commands*

*Guests:*
STATUS - Approved devices (with IDs)
DSTATUS - Denied devices (with IDs)
EXTEND <id> / REVOKE <id> - Extend or revoke an approval
DEXTEND <id> / DREVOKE <id> - Extend or lift a denial

*Control:*
ENABLE - Enforce admission control
DISABLE - Bypass all filtering
SYNC [static|blacklist|all] - Rebuild firewall sets

*Blacklist mode:*
BL\\_ON / BL\\_OFF / BL\\_STATUS
BL\\_ADD <mac> / BL\\_REMOVE <mac> / BL\\_CLEAR

*Housekeeping:*
LOG - Recent device events
CLEAR - Clear device log and name cache
"""


class CommandProcessor:
    """Interprets text commands and button callbacks."""

    def __init__(
        self,
        store: EnforcementStore,
        policy: PolicyConfigStore,
        coordinator: ApprovalCoordinator,
        static_source=None,
        timeouts: Optional[Timeouts] = None,
        id_mappings: Optional[IDMappingTable] = None,
        device_names: Optional[DeviceNames] = None,
        device_log: Optional[DeviceLog] = None,
        name_cache: Optional[NameCache] = None
    ):
        """Initialize command processor.

        Args:
            store: Enforcement store
            policy: Durable policy config (source of truth for blacklist/static)
            coordinator: Resolves Approve/Deny callbacks
            static_source: Object with async load() -> List[StaticLease]
            timeouts: TTLs, extend_ttl is used by EXTEND/DEXTEND
            id_mappings: Listing ID table
            device_names: Display-name lookup for listings
            device_log: Sightings log (LOG / CLEAR)
            name_cache: Display-name cache (CLEAR)
        """
        self.store = store
        self.policy = policy
        self.coordinator = coordinator
        self.static_source = static_source
        self.timeouts = timeouts or Timeouts()
        self.id_mappings = id_mappings or IDMappingTable()
        self.name_cache = name_cache
        self.device_names = device_names or (DeviceNames(name_cache) if name_cache else None)
        self.device_log = device_log

        self.handlers: Dict[str, Handler] = {}
        self.register_command("HELP", self._handle_help)
        self.register_command("STATUS", self._handle_status)
        self.register_command("DSTATUS", self._handle_dstatus)
        self.register_command("EXTEND", self._handle_extend)
        self.register_command("REVOKE", self._handle_revoke)
        self.register_command("DEXTEND", self._handle_dextend)
        self.register_command("DREVOKE", self._handle_drevoke)
        self.register_command("SYNC", self._handle_sync)
        self.register_command("ENABLE", self._handle_enable)
        self.register_command("DISABLE", self._handle_disable)
        self.register_command("BL_ON", self._handle_bl_on)
        self.register_command("BL_OFF", self._handle_bl_off)
        self.register_command("BL_STATUS", self._handle_bl_status)
        self.register_command("BL_ADD", self._handle_bl_add)
        self.register_command("BL_REMOVE", self._handle_bl_remove)
        self.register_command("BL_CLEAR", self._handle_bl_clear)
        self.register_command("LOG", self._handle_log)
        self.register_command("CLEAR", self._handle_clear)

    def register_command(self, command: str, handler: Handler):
        """Register a command handler.

        Args:
            command: Command word (matched case-insensitively)
            handler: Async function taking the argument list, returning the reply
        """
        self.handlers[command.upper()] = handler

    async def process(self, update: Update) -> Optional[str]:
        """Handle one inbound update.

        Returns:
            Reply text, or None for unrecognised commands
        """
        if isinstance(update, Callback):
            return await self._guarded(
                f"callback {update.action}",
                lambda: self.coordinator.resolve(update.action, update.mac, update.message_id),
            )

        if not isinstance(update, TextCommand):
            return None

        words = update.text.strip().split()
        if not words:
            return None
        command = words[0].lstrip("/").upper()
        handler = self.handlers.get(command)
        if handler is None:
            logger.debug(f"Ignoring unrecognised command: {words[0]}")
            return None

        logger.info(f"Received command: {command} {' '.join(words[1:])}".rstrip())
        return await self._guarded(command, lambda: handler(words[1:]))

    async def _guarded(self, label: str, call: Callable[[], Awaitable[str]]) -> str:
        try:
            return await call()
        except RaceLossError as e:
            return f"⌛ Expired: {e}"
        except NotFoundError as e:
            return f"❌ Not found: {e}"
        except ValidationError as e:
            return f"❌ Invalid: {e}"
        except TransientIOError as e:
            logger.warning(f"{label} failed: {e}")
            return f"⚠️ Temporarily unavailable: {e}"
        except GatekeeperError as e:
            return f"❌ {e}"
        except Exception as e:
            logger.error(f"{label} crashed: {e}", exc_info=True)
            return f"❌ Internal error: {e}"

    # ========================================================================
    # Listings
    # ========================================================================

    async def _handle_help(self, args: List[str]) -> str:
        return HELP_TEXT

    async def _handle_status(self, args: List[str]) -> str:
        bypass = await self.store.get_bypass()
        header = (
            f"🛡️ *Gatekeeper:* {'🔓 DISABLED' if bypass else '🛡️ ENABLED'}\n"
            f"*Mode:* {self.policy.config.mode.value}\n"
            f"📋 *Active Guests:*\n"
        )
        body = await self._listing("approved", SetName.APPROVED)
        footer = "\n💡 Reply `EXTEND ID` or `REVOKE ID`" if body else ""
        return header + (body or "_None active_\n") + footer

    async def _handle_dstatus(self, args: List[str]) -> str:
        header = "🚫 *Denied Devices:*\n"
        body = await self._listing("denied", SetName.DENIED)
        footer = "\n💡 Reply `DEXTEND ID` or `DREVOKE ID`" if body else ""
        return header + (body or "_None denied_\n") + footer

    async def _listing(self, kind: str, set_name: SetName) -> str:
        entries = await self.store.list_members(set_name)
        self.id_mappings.regenerate(kind, [entry.mac for entry in entries])

        lines = []
        for i, entry in enumerate(entries, start=1):
            name = self.device_names.resolve(entry.mac) if self.device_names else "Guest"
            lines.append(f"{i}. *{name}*\n   └ `{entry.mac}` ({format_duration(entry.expires_in)})\n")
        return "".join(lines)

    # ========================================================================
    # Membership mutations
    # ========================================================================

    async def _handle_extend(self, args: List[str]) -> str:
        mac = self.id_mappings.resolve("approved", _first(args, "EXTEND <id>"))
        ttl = await self.store.extend(SetName.APPROVED, mac, self.timeouts.extend_ttl)
        return f"⏳ Extended access for {mac} ({format_duration(ttl)} left)"

    async def _handle_revoke(self, args: List[str]) -> str:
        mac = self.id_mappings.resolve("approved", _first(args, "REVOKE <id>"))
        if not await self.store.remove_member(SetName.APPROVED, mac):
            raise RaceLossError(f"{mac} is no longer approved")
        return f"🚫 Revoked access for {mac}"

    async def _handle_dextend(self, args: List[str]) -> str:
        mac = self.id_mappings.resolve("denied", _first(args, "DEXTEND <id>"))
        ttl = await self.store.extend(SetName.DENIED, mac, self.timeouts.extend_ttl)
        return f"⏳ Extended denial for {mac} ({format_duration(ttl)} left)"

    async def _handle_drevoke(self, args: List[str]) -> str:
        mac = self.id_mappings.resolve("denied", _first(args, "DREVOKE <id>"))
        if not await self.store.remove_member(SetName.DENIED, mac):
            raise RaceLossError(f"{mac} is no longer denied")
        return f"✅ Lifted denial for {mac}"

    # ========================================================================
    # Control
    # ========================================================================

    async def _handle_enable(self, args: List[str]) -> str:
        await self.store.set_bypass(False)
        return "🛡️ Enabled"

    async def _handle_disable(self, args: List[str]) -> str:
        await self.store.set_bypass(True)
        return "🔓 Disabled"

    async def _handle_sync(self, args: List[str]) -> str:
        target = args[0].lower() if args else "all"
        if target not in ("static", "blacklist", "all"):
            raise ValidationError("Usage: SYNC [static|blacklist|all]")

        parts = []
        if target in ("static", "all"):
            count = await self.sync_static()
            parts.append(f"{count} static leases")
        if target in ("blacklist", "all"):
            count = await self.sync_blacklist()
            parts.append(f"{count} blacklisted devices")
        return f"🔄 Synced {' and '.join(parts)}."

    async def sync_static(self) -> int:
        """Refresh PolicyConfig.static from the lease source and rebuild the store set."""
        if self.static_source is not None:
            leases = await self.static_source.load()
            self.policy.config.static = {lease.mac for lease in leases}
            self.policy.save()
            if self.device_names is not None:
                self.device_names.static_names = {lease.mac: lease.name for lease in leases if lease.name}
        return await reconcile_set(self.store, SetName.STATIC, self.policy.config.static)

    async def sync_blacklist(self) -> int:
        """Rebuild the store blacklist set from PolicyConfig."""
        return await reconcile_set(self.store, SetName.BLACKLIST, self.policy.config.blacklist)

    # ========================================================================
    # Blacklist mode
    # ========================================================================

    async def _handle_bl_on(self, args: List[str]) -> str:
        self.policy.config.mode = Mode.BLACKLIST
        self.policy.save()
        reply = "⚫ Blacklist mode ON: only listed devices need approval"
        return reply + await self._mirror(self.sync_blacklist())

    async def _handle_bl_off(self, args: List[str]) -> str:
        self.policy.config.mode = Mode.NORMAL
        self.policy.save()
        return "⚪ Blacklist mode OFF: every new device needs approval"

    async def _handle_bl_status(self, args: List[str]) -> str:
        config = self.policy.config
        lines = [f"⚫ *Blacklist mode:* {'ON' if config.mode == Mode.BLACKLIST else 'OFF'}"]
        if config.blacklist:
            lines.append(f"*Blacklisted ({len(config.blacklist)}):*")
            lines.extend(f"• `{mac}`" for mac in sorted(config.blacklist))
        else:
            lines.append("_Blacklist is empty_")
        return "\n".join(lines)

    async def _handle_bl_add(self, args: List[str]) -> str:
        mac = normalize_mac(_first(args, "BL_ADD <mac>"))
        self.policy.config.blacklist.add(mac)
        self.policy.save()
        return f"⚫ Blacklisted {mac}" + await self._mirror(
            self.store.add_member(SetName.BLACKLIST, mac)
        )

    async def _handle_bl_remove(self, args: List[str]) -> str:
        mac = normalize_mac(_first(args, "BL_REMOVE <mac>"))
        if mac not in self.policy.config.blacklist:
            raise NotFoundError(f"{mac} is not blacklisted")
        self.policy.config.blacklist.discard(mac)
        self.policy.save()
        return f"⚪ Removed {mac} from blacklist" + await self._mirror(
            self.store.remove_member(SetName.BLACKLIST, mac)
        )

    async def _handle_bl_clear(self, args: List[str]) -> str:
        count = len(self.policy.config.blacklist)
        self.policy.config.blacklist.clear()
        self.policy.save()
        return f"🗑️ Blacklist cleared ({count} removed)" + await self._mirror(
            self.store.flush(SetName.BLACKLIST)
        )

    async def _mirror(self, operation: Awaitable) -> str:
        """Mirror a config change into the store. Failures never roll back the config."""
        try:
            await operation
        except TransientIOError as e:
            logger.warning(f"Blacklist mirror failed: {e}")
            return f"\n⚠️ Firewall not updated ({e}). Run `SYNC blacklist` to retry."
        return ""

    # ========================================================================
    # Housekeeping
    # ========================================================================

    async def _handle_log(self, args: List[str]) -> str:
        lines = self.device_log.tail(10) if self.device_log else []
        if not lines:
            return "📜 No logs."
        return "📜 *Recent Logs:*\n```\n" + "\n".join(lines) + "\n```"

    async def _handle_clear(self, args: List[str]) -> str:
        if self.device_log:
            self.device_log.clear()
        if self.name_cache:
            self.name_cache.clear()
        return "🗑️ Logs and name cache cleared."


def _first(args: List[str], usage: str) -> str:
    if not args:
        raise ValidationError(f"Usage: {usage}")
    return args[0]
