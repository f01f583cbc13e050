"""Static lease sources - devices pre-registered for permanent access.

The list is owned outside the gatekeeper (DHCP config or a YAML file) and is
only ever read here.
"""

import asyncio
import logging
import re
from collections import OrderedDict
from pathlib import Path
from typing import Dict, List

import yaml

from ..core.errors import TransientIOError, ValidationError
from ..core.types import StaticLease, normalize_mac

logger = logging.getLogger(__name__)

# dhcp.cfg01fe63.mac='AA:BB:CC:DD:EE:FF 11:22:33:44:55:66'
_UCI_LINE = re.compile(r"^dhcp\.([^.=]+)\.(mac|name)='?(.*?)'?$")


class UciStaticLeaseSource:
    """Reads dhcp host sections from OpenWrt UCI."""

    def __init__(self, uci_binary: str = "uci", timeout: int = 10):
        self.uci_binary = uci_binary
        self.timeout = timeout

    async def load(self) -> List[StaticLease]:
        try:
            process = await asyncio.create_subprocess_exec(
                self.uci_binary, "-q", "show", "dhcp",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except (OSError, asyncio.TimeoutError) as e:
            raise TransientIOError(f"uci show dhcp failed: {e}") from e

        if process.returncode != 0:
            raise TransientIOError(f"uci show dhcp exited with {process.returncode}")
        return parse_uci_dhcp(stdout.decode('utf-8', errors='replace'))


def parse_uci_dhcp(output: str) -> List[StaticLease]:
    """Parse `uci show dhcp` output into static leases.

    A host section may list several MACs separated by spaces; each gets its
    own lease with the section's name.
    """
    sections: "OrderedDict[str, Dict[str, str]]" = OrderedDict()
    for line in output.splitlines():
        match = _UCI_LINE.match(line.strip())
        if not match:
            continue
        section, key, value = match.groups()
        sections.setdefault(section, {})[key] = value

    leases: List[StaticLease] = []
    for section, values in sections.items():
        name = values.get("name") or None
        for raw_mac in values.get("mac", "").replace("'", " ").split():
            try:
                leases.append(StaticLease(mac=normalize_mac(raw_mac), name=name))
            except ValidationError as e:
                logger.warning(f"Skipping static lease in {section}: {e}")
    return leases


class FileStaticLeaseSource:
    """Reads static leases from a YAML file.

    Format:
        leases:
          - mac: aa:bb:cc:dd:ee:ff
            name: printer
    """

    def __init__(self, path: str = "./config/static_leases.yaml"):
        self.path = Path(path)

    async def load(self) -> List[StaticLease]:
        if not self.path.exists():
            logger.info(f"No static lease file at {self.path}")
            return []
        try:
            with open(self.path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            raise TransientIOError(f"Cannot read static leases from {self.path}: {e}") from e

        leases: List[StaticLease] = []
        for item in data.get("leases", []):
            try:
                leases.append(StaticLease(mac=normalize_mac(str(item.get("mac", ""))), name=item.get("name")))
            except ValidationError as e:
                logger.warning(f"Skipping static lease: {e}")
        return leases


def create_static_lease_source(source: str, path: str):
    """Build the configured static lease source ('uci' or 'file')."""
    if source == "file":
        return FileStaticLeaseSource(path)
    return UciStaticLeaseSource()
