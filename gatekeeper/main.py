"""Main entry point for the gatekeeper service."""

import asyncio
import logging
import sys
from pathlib import Path

from gatekeeper.core.config import load_config
from gatekeeper.core.errors import ConfigurationError, TransientIOError
from gatekeeper.core.types import GatekeeperConfig
from gatekeeper.core.approval import ApprovalCoordinator
from gatekeeper.core.commands import CommandProcessor
from gatekeeper.core.device_log import DeviceLog, DeviceNames, NameCache
from gatekeeper.core.ingestor import EventIngestor
from gatekeeper.core.policy_config import PolicyConfigStore
from gatekeeper.core.policy_engine import PolicyEngine
from gatekeeper.core.service import GatekeeperService
from gatekeeper.channels.telegram_channel import TelegramChannel
from gatekeeper.channels.ubus_listener import UbusEventSource
from gatekeeper.integrations.static_leases import create_static_lease_source
from gatekeeper.store import MemoryStore, NftablesStore

logger = logging.getLogger(__name__)


def setup_logging(config: GatekeeperConfig):
    """Configure root logging: console plus the service log file."""
    Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(config.log_file),
        ]
    )
    # httpx logs every long-poll request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_service(config: GatekeeperConfig) -> GatekeeperService:
    """Assemble the admission engine from configuration."""
    data_dir = Path(config.data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)

    if config.store_backend == "memory":
        logger.warning("⚠️  Using in-memory store: nothing is enforced on the firewall")
        store = MemoryStore()
    else:
        store = NftablesStore(
            family=config.nft_family,
            table=config.nft_table,
            set_names=config.nft_sets,
        )

    channel = TelegramChannel(
        bot_token=config.telegram_bot_token,
        chat_id=config.telegram_chat_id,
        poll_timeout=config.poll_timeout,
    )

    policy = PolicyConfigStore(config.data_dir)
    name_cache = NameCache(str(data_dir / "mac_names.json"))
    device_log = DeviceLog(str(data_dir / "devices.jsonl"))
    device_names = DeviceNames(name_cache, config.dhcp_leases_path)

    coordinator = ApprovalCoordinator(store, channel, name_cache=name_cache)
    ingestor = EventIngestor(
        store=store,
        engine=PolicyEngine(config.timeouts),
        coordinator=coordinator,
        policy=policy,
        device_log=device_log,
        renew_as_sighting=config.renew_as_sighting,
        rate_limit_seconds=config.rate_limit_seconds,
    )
    commands = CommandProcessor(
        store=store,
        policy=policy,
        coordinator=coordinator,
        static_source=create_static_lease_source(config.static_lease_source, config.static_lease_path),
        timeouts=config.timeouts,
        device_names=device_names,
        device_log=device_log,
        name_cache=name_cache,
    )

    return GatekeeperService(
        ingestor=ingestor,
        commands=commands,
        channel=channel,
        event_source=UbusEventSource(config.ubus_event),
    )


async def main():
    """Main entry point for the gatekeeper service."""
    try:
        config = load_config()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(config)
    logger.info("🛡️ Gatekeeper starting")
    logger.info(f"Store backend: {config.store_backend}")
    logger.info(f"Renewals treated as sightings: {config.renew_as_sighting}")

    service = build_service(config)

    try:
        await service.channel.start()
    except TransientIOError as e:
        # Polling retries with backoff; do not refuse to start on a flaky uplink
        logger.warning(f"Telegram not reachable at startup: {e}")

    try:
        await service.run()
    finally:
        logger.info("👋 Shutting down...")
        await service.ingestor.coordinator.shutdown()
        await service.channel.shutdown()


def run():
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
