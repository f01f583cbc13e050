"""Short-lived numeric IDs for listing replies."""

import logging
from typing import Dict, List

from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class IDMappingTable:
    """Per-kind mapping from listing position to MAC.

    Each listing replaces the mapping of its kind; an ID is only valid until
    the next listing of the same kind.
    """

    def __init__(self):
        self._mappings: Dict[str, Dict[int, str]] = {}

    def regenerate(self, kind: str, macs: List[str]) -> Dict[int, str]:
        """Number MACs from 1 in listing order, replacing the previous mapping."""
        mapping = {i: mac for i, mac in enumerate(macs, start=1)}
        self._mappings[kind] = mapping
        logger.debug(f"ID mapping '{kind}' regenerated with {len(mapping)} entries")
        return mapping

    def resolve(self, kind: str, raw_id: str) -> str:
        """Resolve an ID from the latest listing of this kind.

        Raises:
            ValidationError: if raw_id is not a positive integer
            NotFoundError: if the ID is not in the latest mapping
        """
        try:
            list_id = int(raw_id)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid ID: {raw_id}")
        if list_id < 1:
            raise ValidationError(f"Invalid ID: {raw_id}")

        mac = self._mappings.get(kind, {}).get(list_id)
        if mac is None:
            raise NotFoundError(f"ID {list_id} is not in the latest {kind} listing")
        return mac
