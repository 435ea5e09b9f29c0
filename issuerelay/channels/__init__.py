"""Outbound chat channels."""

from issuerelay.channels.base import ChannelError, MessageChannel
from issuerelay.channels.http import HttpBridgeChannel, start_readiness_thread

__all__ = ["ChannelError", "HttpBridgeChannel", "MessageChannel", "start_readiness_thread"]
