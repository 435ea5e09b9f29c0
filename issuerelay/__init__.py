"""Issue Relay: chat-driven issue tracker with notification relay."""

__version__ = "0.1.0"
