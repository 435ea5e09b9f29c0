"""Abstract base for chat channels the dispatcher delivers to."""

from abc import ABC, abstractmethod


class ChannelError(Exception):
    """Raised when a message cannot be delivered to the channel."""

    pass


class MessageChannel(ABC):
    """Outbound chat channel with externally controlled availability."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Whether the channel can accept sends right now."""
        ...

    @abstractmethod
    def send(self, target: str, text: str) -> None:
        """Deliver text to target (chat or group id). Raises ChannelError on failure."""
        ...
