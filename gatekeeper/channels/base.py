"""Channel-agnostic notification interface."""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

# (label, callback payload)
Button = Tuple[str, str]


class Notifier(ABC):
    """Outbound side of the chat channel.

    Implementations raise TransientIOError when the channel is unreachable.
    """

    @abstractmethod
    async def send_message(self, text: str, buttons: Optional[List[Button]] = None) -> Optional[int]:
        """Send a message, optionally with inline buttons. Returns its message id."""

    @abstractmethod
    async def edit_message(self, message_id: int, text: str):
        """Replace the text (and buttons) of a previously sent message."""
