"""
Issue Relay daemon: HTTP ingress, issue store and notification dispatcher.

Loads issue state (remote first, then local file, migrating local to remote
when needed), starts the chat bridge readiness poller and serves webhooks
and chat messages until interrupted.
"""

import logging

from issuerelay.app import RelayApp, build_app
from issuerelay.channels.http import HttpBridgeChannel, start_readiness_thread
from issuerelay.config import AppConfig
from issuerelay.logging import RelayLogging
from issuerelay.webhook.server import run_webhook_server


def start_background(app: RelayApp) -> None:
    """Start the readiness poller for HTTP bridge channels."""
    if isinstance(app.channel, HttpBridgeChannel):
        start_readiness_thread(
            app.channel,
            app.dispatcher.on_readiness_changed,
            interval_seconds=app.config.channel.poll_interval_seconds,
        )


def run_daemon(config: AppConfig) -> None:
    """Build the app and serve until interrupted."""
    RelayLogging(config.logging).setup()
    log = logging.getLogger("issuerelay.daemon")

    app = build_app(config)
    log.info(
        "Issue Relay started | sheets=%s | channel=%s | webhook=%s",
        config.sheets.enabled,
        config.channel.bridge_url if config.channel.enabled else "disabled",
        config.webhook.enabled,
    )
    if not config.bot.notify_target:
        log.warning("bot.notify_target is empty; repository notifications have no destination")

    start_background(app)
    try:
        if config.webhook.enabled:
            run_webhook_server(app)
        else:
            log.warning("Webhook disabled in config; daemon will do nothing useful.")
    finally:
        app.dispatcher.stop()
