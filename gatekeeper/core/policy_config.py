"""Durable PolicyConfig storage - mode, blacklist and static MACs as JSON."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Set

from .errors import ValidationError
from .types import Mode, PolicyConfig, normalize_mac

logger = logging.getLogger(__name__)


class PolicyConfigStore:
    """Load-or-default at startup, save on every mutating command.

    The PolicyConfig is the source of truth for the blacklist and static sets;
    the enforcement store only holds a derived copy rebuilt on sync.
    """

    def __init__(self, data_dir: str = "./data"):
        """Initialize policy config store.

        Args:
            data_dir: Directory where policy.json lives
        """
        self.policy_file = Path(data_dir) / "policy.json"
        self.config = self.load()

    def load(self) -> PolicyConfig:
        """Load policy from disk, falling back to defaults."""
        if not self.policy_file.exists():
            logger.info(f"No policy file at {self.policy_file}, using defaults")
            return PolicyConfig()
        try:
            with open(self.policy_file, 'r') as f:
                data = json.load(f)
            return _from_dict(data)
        except (json.JSONDecodeError, IOError, ValueError, AttributeError, TypeError) as e:
            logger.error(f"Failed to load policy file, using defaults: {e}")
            return PolicyConfig()

    def save(self):
        """Write the current policy to disk atomically."""
        self.policy_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self.policy_file.with_suffix(".json.tmp")
        with open(tmp_file, 'w') as f:
            json.dump(_to_dict(self.config), f, indent=2)
        tmp_file.replace(self.policy_file)
        logger.debug(f"Policy saved: mode={self.config.mode.value}, blacklist={len(self.config.blacklist)}")


def _to_dict(config: PolicyConfig) -> Dict[str, Any]:
    return {
        "mode": config.mode.value,
        "blacklist": sorted(config.blacklist),
        "static": sorted(config.static),
    }


def _from_dict(data: Dict[str, Any]) -> PolicyConfig:
    if not isinstance(data, dict):
        raise ValueError(f"policy must be a JSON object, got {type(data).__name__}")
    return PolicyConfig(
        mode=Mode(data.get("mode", Mode.NORMAL.value)),
        blacklist=_mac_set(data.get("blacklist", []), "blacklist"),
        static=_mac_set(data.get("static", []), "static"),
    )


def _mac_set(values: List[Any], field: str) -> Set[str]:
    if not isinstance(values, list):
        raise ValueError(f"{field} must be a list, got {type(values).__name__}")
    macs = set()
    for value in values:
        try:
            macs.add(normalize_mac(value))
        except (ValidationError, AttributeError) as e:
            logger.warning(f"Skipping {field} entry {value!r}: {e}")
    return macs
