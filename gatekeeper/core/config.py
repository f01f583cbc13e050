"""Configuration loader for the gatekeeper service."""

import os
import yaml
from pathlib import Path
from dotenv import load_dotenv

from .errors import ConfigurationError
from .types import GatekeeperConfig, Timeouts


def load_config(env_file: str = ".env", config_file: str = "config/gatekeeper.yaml") -> GatekeeperConfig:
    """Load configuration from environment and yaml files.

    Args:
        env_file: Path to .env file
        config_file: Path to gatekeeper.yaml config file

    Returns:
        GatekeeperConfig instance with all settings

    Raises:
        ConfigurationError: if the Telegram token or chat id is missing
    """
    # Load environment variables
    load_dotenv(env_file)

    # Load YAML config if exists
    yaml_config = {}
    if Path(config_file).exists():
        try:
            with open(config_file, 'r') as f:
                yaml_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid {config_file}: {e}") from e

    timeouts_config = yaml_config.get("timeouts", {})
    events_config = yaml_config.get("events", {})
    nft_config = yaml_config.get("nftables", {})
    leases_config = yaml_config.get("static_leases", {})
    telegram_config = yaml_config.get("telegram", {})

    defaults = Timeouts()
    try:
        timeouts = Timeouts(
            approve_ttl=int(timeouts_config.get("approve", defaults.approve_ttl)),
            deny_ttl=int(timeouts_config.get("deny", defaults.deny_ttl)),
            auto_deny_after=int(timeouts_config.get("auto_deny", defaults.auto_deny_after)),
            auto_approve_ttl=int(timeouts_config.get("auto_approve", defaults.auto_approve_ttl)),
            extend_ttl=int(timeouts_config.get("extend", defaults.extend_ttl)),
        )

        config = GatekeeperConfig(
            # Telegram
            telegram_bot_token=os.getenv("GATEKEEPER_TOKEN", ""),
            telegram_chat_id=os.getenv("GATEKEEPER_CHAT_ID", ""),
            poll_timeout=int(telegram_config.get("poll_timeout", 30)),

            # Storage
            data_dir=os.getenv("DATA_DIR", yaml_config.get("data_dir", "./data")),
            store_backend=os.getenv("STORE_BACKEND", yaml_config.get("store_backend", "nftables")).lower(),

            # nftables
            nft_family=nft_config.get("family", "inet"),
            nft_table=nft_config.get("table", "fw4"),
            nft_sets=dict(nft_config.get("sets", {})),

            # Events
            renew_as_sighting=os.getenv(
                "RENEW_AS_SIGHTING", str(events_config.get("renew_as_sighting", False))
            ).lower() == "true",
            rate_limit_seconds=int(events_config.get("rate_limit_seconds", 60)),
            ubus_event=events_config.get("ubus_event", "dnsmasq.event"),

            timeouts=timeouts,

            # Static leases
            static_lease_source=leases_config.get("source", "uci"),
            static_lease_path=leases_config.get("path", "./config/static_leases.yaml"),
            dhcp_leases_path=yaml_config.get("dhcp_leases_path", "/tmp/dhcp.leases"),

            # Logging
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE", "./data/logs/gatekeeper.log"),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration value: {e}") from e

    # Validate required fields
    if not config.telegram_bot_token or not config.telegram_chat_id:
        raise ConfigurationError("GATEKEEPER_TOKEN and GATEKEEPER_CHAT_ID are required but not set in .env file")
    if config.store_backend not in ("nftables", "memory"):
        raise ConfigurationError(f"Unknown STORE_BACKEND: {config.store_backend}")

    return config
