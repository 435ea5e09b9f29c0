"""Chat bridge channel over HTTP.

The bridge is a separate process owning the chat session (login, QR pairing,
reconnects). It exposes GET /health ({"ready": bool}) and POST /send
({"target", "text"}). Readiness is cached and refreshed by probe(); a
background poller pushes transitions to the dispatcher.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict

import requests

from issuerelay.channels.base import ChannelError, MessageChannel

LOG = logging.getLogger("issuerelay.channels.http")


class HttpBridgeChannel(MessageChannel):
    """MessageChannel backed by a chat bridge HTTP API."""

    def __init__(self, bridge_url: str, token: str | None = None, timeout: int = 15) -> None:
        self._bridge_url = bridge_url.rstrip("/")
        self._timeout = timeout
        self._ready = False
        self._session = requests.Session()
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def is_ready(self) -> bool:
        return self._ready

    def mark_ready(self, ready: bool) -> None:
        """Set cached readiness (e.g. from a bridge push notification)."""
        self._ready = ready

    def probe(self) -> bool:
        """Ask the bridge for its state and cache it. Network errors mean not ready."""
        try:
            resp = self._session.request("GET", f"{self._bridge_url}/health", timeout=self._timeout)
            data: Dict[str, Any] = resp.json() if resp.status_code < 400 else {}
        except (requests.RequestException, ValueError) as e:
            LOG.debug("Bridge probe failed: %s", e)
            data = {}
        self._ready = bool(data.get("ready"))
        return self._ready

    def send(self, target: str, text: str) -> None:
        if not self._ready:
            raise ChannelError("Channel is not ready")
        try:
            resp = self._session.request(
                "POST",
                f"{self._bridge_url}/send",
                json={"target": target, "text": text},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise ChannelError(f"Bridge request failed: {e}") from e
        if resp.status_code >= 400:
            raise ChannelError(f"{resp.status_code}: {resp.text or resp.reason}")
        LOG.debug("Sent message to %s (%s chars)", target, len(text))


def run_readiness_loop(
    channel: HttpBridgeChannel,
    on_change: Callable[[bool], None],
    interval_seconds: int = 15,
) -> None:
    """Loop: every interval_seconds, probe the bridge and report readiness changes."""
    last: bool | None = None
    while True:
        try:
            ready = channel.probe()
            if ready != last:
                LOG.info("Chat channel %s", "ready" if ready else "not ready")
                on_change(ready)
                last = ready
        except Exception as e:
            LOG.exception("Readiness poll error: %s", e)
        time.sleep(interval_seconds)


def start_readiness_thread(
    channel: HttpBridgeChannel,
    on_change: Callable[[bool], None],
    interval_seconds: int = 15,
) -> threading.Thread:
    """Start the readiness poller in a daemon thread."""
    thread = threading.Thread(
        target=run_readiness_loop,
        args=(channel, on_change),
        kwargs={"interval_seconds": interval_seconds},
        daemon=True,
        name="readiness-poller",
    )
    thread.start()
    return thread
