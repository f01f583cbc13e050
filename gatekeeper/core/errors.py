"""Error taxonomy for the gatekeeper engine."""


class GatekeeperError(Exception):
    """Base class for all gatekeeper errors."""


class ValidationError(GatekeeperError):
    """Malformed MAC address or command argument. No state was changed."""


class NotFoundError(GatekeeperError):
    """Stale listing ID, unknown MAC, or an entry that no longer exists."""


class RaceLossError(NotFoundError):
    """A read-modify-write lost the race against entry expiry."""


class TransientIOError(GatekeeperError):
    """Notification channel or enforcement store temporarily unreachable."""


class ConfigurationError(GatekeeperError):
    """Missing credentials or identifiers at startup. Fatal."""
