"""nftables-backed enforcement store.

Drives the named sets of the router firewall (OpenWrt fw4 by default) through
the `nft` binary. Reads use the JSON output of `nft -j list set`.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from ..core.errors import TransientIOError
from ..core.types import MembershipEntry, SetName
from .base import EnforcementStore

logger = logging.getLogger(__name__)

BYPASS_MARKER = "ff:ff:ff:ff:ff:ff"

DEFAULT_SET_NAMES = {
    "static": "static_macs",
    "approved": "approved_macs",
    "denied": "denied_macs",
    "blacklist": "blacklist_macs",
    "bypass": "bypass_switch",
}


class NftablesStore(EnforcementStore):
    """Membership sets stored as nftables ether_addr sets."""

    def __init__(
        self,
        family: str = "inet",
        table: str = "fw4",
        set_names: Optional[Dict[str, str]] = None,
        nft_binary: str = "nft",
        timeout: int = 10
    ):
        """Initialize nftables store.

        Args:
            family: nftables address family of the table
            table: Table holding the gatekeeper sets
            set_names: Logical set name -> nft set name (plus 'bypass')
            nft_binary: Path to the nft executable
            timeout: Seconds to wait for a single nft invocation
        """
        self.family = family
        self.table = table
        self.set_names = dict(DEFAULT_SET_NAMES)
        self.set_names.update(set_names or {})
        self.nft_binary = nft_binary
        self.timeout = timeout

    def _set(self, set_name: SetName) -> str:
        return self.set_names[set_name.value]

    async def _run(self, *args: str) -> str:
        """Run nft and return stdout.

        Raises:
            TransientIOError: on missing binary, timeout or non-zero exit
        """
        cmd = [self.nft_binary, *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TransientIOError(f"Cannot execute {self.nft_binary}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise TransientIOError(f"nft timed out after {self.timeout}s: {' '.join(args)}")

        stdout_str = stdout.decode('utf-8', errors='replace') if stdout else ""
        stderr_str = stderr.decode('utf-8', errors='replace') if stderr else ""

        if process.returncode != 0:
            raise TransientIOError(
                f"nft failed ({process.returncode}): {' '.join(args)}: {stderr_str.strip()}"
            )
        return stdout_str

    async def add_member(self, set_name: SetName, mac: str, ttl: Optional[int] = None):
        element = f"{mac} timeout {int(ttl)}s" if ttl is not None else mac
        await self._run(f"add element {self.family} {self.table} {self._set(set_name)} {{ {element} }}")
        logger.debug(f"nft: added {mac} to {self._set(set_name)} (ttl={ttl})")

    async def remove_member(self, set_name: SetName, mac: str) -> bool:
        try:
            await self._run(f"delete element {self.family} {self.table} {self._set(set_name)} {{ {mac} }}")
        except TransientIOError as e:
            # nft reports a missing element as ENOENT
            if "No such file or directory" in str(e):
                return False
            raise
        logger.debug(f"nft: removed {mac} from {self._set(set_name)}")
        return True

    async def list_members(self, set_name: SetName) -> List[MembershipEntry]:
        return parse_set_elements(await self._list_raw(self._set(set_name)))

    async def _list_raw(self, nft_set: str) -> str:
        return await self._run("-j", "list", "set", self.family, self.table, nft_set)

    async def flush(self, set_name: SetName):
        await self._run(f"flush set {self.family} {self.table} {self._set(set_name)}")

    async def set_bypass(self, active: bool):
        bypass_set = self.set_names["bypass"]
        if active:
            await self._run(f"add element {self.family} {self.table} {bypass_set} {{ {BYPASS_MARKER} }}")
            logger.warning("🔓 Bypass enabled: admission filtering disabled")
        else:
            await self._run(f"flush set {self.family} {self.table} {bypass_set}")
            logger.info("🛡️ Bypass disabled: admission filtering enabled")

    async def get_bypass(self) -> bool:
        entries = parse_set_elements(await self._list_raw(self.set_names["bypass"]))
        return any(entry.mac == BYPASS_MARKER for entry in entries)


def parse_set_elements(raw: str) -> List[MembershipEntry]:
    """Parse `nft -j list set` output into membership entries.

    Elements are either bare strings (permanent) or objects of the form
    {"elem": {"val": "<mac>", "timeout": 1800, "expires": 1712}}.
    """
    try:
        data = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError as e:
        raise TransientIOError(f"Unparseable nft output: {e}") from e

    entries: List[MembershipEntry] = []
    for item in data.get("nftables", []):
        nft_set = item.get("set")
        if not nft_set:
            continue
        for element in nft_set.get("elem", []):
            entry = _parse_element(element)
            if entry:
                entries.append(entry)
    return entries


def _parse_element(element: Any) -> Optional[MembershipEntry]:
    if isinstance(element, str):
        return MembershipEntry(mac=element.lower())
    if isinstance(element, dict) and "elem" in element:
        inner = element["elem"]
        val = inner.get("val")
        if not isinstance(val, str):
            return None
        expires = inner.get("expires")
        return MembershipEntry(mac=val.lower(), expires_in=int(expires) if expires is not None else None)
    return None
