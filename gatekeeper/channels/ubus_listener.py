"""Device event source - listens to dnsmasq events on the OpenWrt ubus.

dnsmasq's dhcp-script publishes each lease change with
`ubus send dnsmasq.event '{"action":"add","mac":...,"ip":...,"host":...}'`;
`ubus listen dnsmasq.event` prints one JSON object per event:

    { "dnsmasq.event": {"action":"add","mac":"aa:bb:..","ip":"10.0.0.5","host":"phone"} }
"""

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

from ..core.errors import TransientIOError
from ..core.types import DeviceAction, DeviceEvent

logger = logging.getLogger(__name__)


def parse_event_line(line: str, event_name: str = "dnsmasq.event") -> Optional[DeviceEvent]:
    """Parse one line of `ubus listen` output. Returns None for anything else."""
    line = line.strip()
    if not line or event_name not in line:
        return None
    try:
        payload = json.loads(line).get(event_name)
    except (json.JSONDecodeError, AttributeError):
        logger.debug(f"Unparseable ubus line: {line[:120]}")
        return None
    if not isinstance(payload, dict):
        return None

    try:
        action = DeviceAction(str(payload.get("action", "")).lower())
    except ValueError:
        logger.debug(f"Unknown DHCP action: {payload.get('action')}")
        return None

    return DeviceEvent(
        action=action,
        mac=str(payload.get("mac", "")),
        ip=str(payload.get("ip", "")),
        hostname=str(payload.get("host", "")),
    )


class UbusEventSource:
    """Async iterator over dnsmasq events from `ubus listen`."""

    def __init__(self, event_name: str = "dnsmasq.event", ubus_binary: str = "ubus"):
        self.event_name = event_name
        self.ubus_binary = ubus_binary

    async def events(self) -> AsyncIterator[DeviceEvent]:
        """Yield events until the listener exits.

        Raises:
            TransientIOError: if ubus cannot be started or exits
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self.ubus_binary, "listen", self.event_name,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TransientIOError(f"Cannot start ubus listener: {e}") from e

        logger.info(f"👂 Listening for {self.event_name} on ubus")
        try:
            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                event = parse_event_line(line.decode('utf-8', errors='replace'), self.event_name)
                if event is not None:
                    yield event
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()

        raise TransientIOError(f"ubus listener exited with {process.returncode}")
