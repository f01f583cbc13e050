"""Formatting helpers for chat replies."""

from typing import Optional


def format_duration(seconds: Optional[int]) -> str:
    """Render a TTL like nft does: 1h30m, 45m, 2d."""
    if seconds is None:
        return "permanent"
    seconds = max(int(seconds), 0)
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs and not days:
        parts.append(f"{secs}s")
    return "".join(parts) or "0s"
