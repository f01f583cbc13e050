"""Gatekeeper service - the two long-running control loops.

- Event loop: waits on the device event source and feeds the Event Ingestor.
- Command loop: long-polls the chat channel and feeds the Command Processor.

Both loops run for the life of the process and share only the enforcement
store and the durable policy. Neither exits on I/O failures; they log, back
off and carry on.
"""

import asyncio
import logging

from .commands import CommandProcessor
from .errors import TransientIOError
from .ingestor import EventIngestor
from .types import Update

logger = logging.getLogger(__name__)

BACKOFF_START_SECONDS = 2
BACKOFF_MAX_SECONDS = 60


class GatekeeperService:
    """Wires the event source and chat channel to the admission engine."""

    def __init__(self, ingestor: EventIngestor, commands: CommandProcessor, channel, event_source):
        """Initialize the service.

        Args:
            ingestor: Event Ingestor for device events
            commands: Command Processor for chat updates
            channel: Chat channel with poll_updates(), reply() and send_message()
            event_source: Object with an async events() generator
        """
        self.ingestor = ingestor
        self.commands = commands
        self.channel = channel
        self.event_source = event_source

    async def startup_sync(self):
        """Rebuild the derived static and blacklist sets from their sources."""
        for name, sync in (("static", self.commands.sync_static), ("blacklist", self.commands.sync_blacklist)):
            try:
                count = await sync()
                logger.info(f"Startup sync {name}: {count} entries")
            except TransientIOError as e:
                logger.error(f"Startup sync {name} failed (retry with SYNC {name}): {e}")

    async def run(self):
        """Start both loops and run until cancelled."""
        await self.startup_sync()
        try:
            await self.channel.send_message("🛡️ *Gatekeeper started*", reply_keyboard=True)
        except TransientIOError as e:
            logger.warning(f"Startup notification not delivered: {e}")

        await asyncio.gather(self.run_event_loop(), self.run_command_loop())

    async def run_event_loop(self):
        """Consume device events forever."""
        failures = 0
        while True:
            try:
                async for event in self.event_source.events():
                    failures = 0
                    await self.ingestor.ingest(event.action, event.mac, event.ip, event.hostname)
            except asyncio.CancelledError:
                raise
            except TransientIOError as e:
                logger.warning(f"Event source failed: {e}")
            except Exception as e:
                logger.error(f"Event loop error: {e}", exc_info=True)

            failures += 1
            await asyncio.sleep(_backoff(failures))

    async def run_command_loop(self):
        """Long-poll the chat channel forever."""
        failures = 0
        while True:
            try:
                updates = await self.channel.poll_updates()
                failures = 0
            except asyncio.CancelledError:
                raise
            except TransientIOError as e:
                failures += 1
                wait_time = _backoff(failures)
                logger.warning(f"Polling failed: {e}. Retrying in {wait_time}s...")
                await asyncio.sleep(wait_time)
                continue

            for update in updates:
                await self.handle_update(update)

    async def handle_update(self, update: Update):
        """Process one update and deliver its reply, if any."""
        try:
            reply = await self.commands.process(update)
        except Exception as e:
            logger.error(f"Update handling error: {e}", exc_info=True)
            return
        if reply is None:
            return
        try:
            await self.channel.reply(update, reply)
        except TransientIOError as e:
            logger.warning(f"Reply not delivered: {e}")


def _backoff(failures: int) -> int:
    return min(BACKOFF_START_SECONDS * (2 ** max(failures - 1, 0)), BACKOFF_MAX_SECONDS)
