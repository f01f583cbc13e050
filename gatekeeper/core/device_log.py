"""Device sighting log and display-name cache.

This module keeps two small pieces of operator-facing state:
- a JSONL log of device sightings and their decisions (LOG command)
- a MAC -> display name cache written when a device is approved

Both are cleared by the CLEAR command and neither affects admission.
"""

import json
import logging
from typing import Dict, List, Optional
from datetime import datetime
from pathlib import Path

from .types import Decision, DeviceEvent

logger = logging.getLogger(__name__)

DEFAULT_NAME = "Guest"


class DeviceLog:
    """Append-only log of device sightings."""

    def __init__(self, log_path: str = "./data/devices.jsonl"):
        """Initialize device log.

        Args:
            log_path: Path to the sightings log (JSONL format)
        """
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def record(self, event: DeviceEvent, decision: Optional[Decision] = None):
        """Append one sighting."""
        entry = {
            "timestamp": datetime.now().isoformat(timespec="seconds"),
            "action": event.action.name.lower(),
            "mac": event.mac,
            "ip": event.ip,
            "hostname": event.hostname,
            "decision": decision.kind.value if decision else None,
        }
        try:
            with open(self.log_path, 'a') as f:
                f.write(json.dumps(entry) + '\n')
        except OSError as e:
            logger.error(f"Failed to write device log: {e}")

    def tail(self, count: int = 10) -> List[str]:
        """Return the last entries formatted one per line."""
        if not self.log_path.exists():
            return []
        with open(self.log_path, 'r') as f:
            lines = f.readlines()[-count:]

        formatted = []
        for line in lines:
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            formatted.append(
                f"{entry.get('timestamp', '?')} {entry.get('mac', '?')} "
                f"{entry.get('ip') or '-'} {entry.get('hostname') or '-'} "
                f"{entry.get('decision') or '-'}"
            )
        return formatted

    def clear(self):
        """Truncate the log."""
        self.log_path.write_text("")


class NameCache:
    """MAC -> display name, cached at approval time."""

    def __init__(self, cache_path: str = "./data/mac_names.json"):
        self.cache_path = Path(cache_path)
        self._names: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if not self.cache_path.exists():
            return {}
        try:
            with open(self.cache_path, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.error(f"Failed to load name cache: {e}")
            return {}

    def _save(self):
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.cache_path, 'w') as f:
            json.dump(self._names, f, indent=2)

    def get(self, mac: str) -> Optional[str]:
        return self._names.get(mac)

    def set(self, mac: str, name: str):
        if not name or name == "*":
            return
        self._names[mac] = name
        self._save()

    def clear(self):
        self._names = {}
        self._save()


class DeviceNames:
    """Display-name lookup.

    Priority: name cache, DHCP leases, static lease names, then 'Guest'.
    """

    def __init__(
        self,
        name_cache: NameCache,
        dhcp_leases_path: str = "/tmp/dhcp.leases",
        static_names: Optional[Dict[str, str]] = None
    ):
        self.name_cache = name_cache
        self.dhcp_leases_path = Path(dhcp_leases_path)
        self.static_names: Dict[str, str] = static_names or {}

    def resolve(self, mac: str) -> str:
        return (
            self.name_cache.get(mac)
            or self._from_dhcp_leases(mac)
            or self.static_names.get(mac)
            or DEFAULT_NAME
        )

    def _from_dhcp_leases(self, mac: str) -> Optional[str]:
        # dnsmasq format: <expiry> <mac> <ip> <hostname> <client-id>
        if not self.dhcp_leases_path.exists():
            return None
        try:
            for line in self.dhcp_leases_path.read_text().splitlines():
                parts = line.split()
                if len(parts) >= 4 and parts[1].lower() == mac and parts[3] != "*":
                    return parts[3]
        except OSError as e:
            logger.debug(f"DHCP leases unreadable: {e}")
        return None
