"""HTTP ingress: GitHub webhooks, inbound chat messages and bridge readiness.

GET  /health            status, channel readiness, backlog and open issue count
POST webhook.github_path GitHub event (optionally HMAC-signed)
POST webhook.chat_path   chat message from the bridge, answered via the dispatcher
POST webhook.ready_path  readiness push from the bridge
"""

import json
import logging
from http.server import BaseHTTPRequestHandler, HTTPServer, ThreadingHTTPServer
from typing import Any, Callable, Dict

from issuerelay.app import RelayApp
from issuerelay.webhook.handlers import (
    handle_chat_message,
    handle_github_event,
    handle_readiness,
    parse_github_body,
    verify_signature,
)

LOG = logging.getLogger("issuerelay.webhook")

JsonRoute = Callable[[RelayApp, Dict[str, Any]], Dict[str, Any]]

JSON_ROUTES: Dict[str, JsonRoute] = {
    "chat_path": lambda app, payload: {"reply": handle_chat_message(app, payload)},
    "ready_path": lambda app, payload: {"ready": handle_readiness(app, payload)},
}


class WebhookHandler(BaseHTTPRequestHandler):
    """Request handler bound to one RelayApp (set by make_server)."""

    app: RelayApp

    def _send_json(self, status: int, data: Dict[str, Any]) -> None:
        body = json.dumps(data).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _not_found(self) -> None:
        self._send_json(404, {"error": "not found"})

    def _read_body(self) -> bytes:
        length = int(self.headers.get("Content-Length") or 0)
        return self.rfile.read(length) if length > 0 else b""

    def do_GET(self) -> None:
        if self.path not in ("/", "/health"):
            self._not_found()
            return
        self._send_json(
            200,
            {
                "status": "ok",
                "service": "issuerelay",
                "channel_ready": self.app.channel.is_ready(),
                "pending_messages": self.app.dispatcher.pending_count,
                "open_issues": len(self.app.store.list_open()),
            },
        )

    def do_POST(self) -> None:
        webhook = self.app.config.webhook
        if self.path == webhook.github_path:
            self._github()
            return
        for attr, route in JSON_ROUTES.items():
            if self.path == getattr(webhook, attr):
                self._json_route(route)
                return
        self._not_found()

    def _github(self) -> None:
        body = self._read_body()
        if not verify_signature(self.app.config.webhook_secret_resolved, body, self.headers.get("X-Hub-Signature-256")):
            LOG.warning("Rejected GitHub webhook: bad signature")
            self._send_json(401, {"error": "invalid signature"})
            return
        event = self.headers.get("X-GitHub-Event", "")
        relayed = False
        try:
            payload = parse_github_body(body, self.headers.get("Content-Type", ""))
            LOG.info("GitHub event: %s (action: %s)", event, payload.get("action"))
            relayed = handle_github_event(self.app, event, payload)
        except json.JSONDecodeError:
            LOG.warning("Invalid JSON in GitHub %s webhook", event or "unknown")
        except Exception as e:
            LOG.exception("GitHub webhook handler error: %s", e)
        # GitHub only needs an acknowledgement; failures are in our log
        self._send_json(200, {"received": True, "relayed": relayed})

    def _json_route(self, route: JsonRoute) -> None:
        body = self._read_body()
        try:
            payload = json.loads(body) if body else {}
        except json.JSONDecodeError:
            self._send_json(400, {"error": "invalid JSON"})
            return
        if not isinstance(payload, dict):
            self._send_json(400, {"error": "expected a JSON object"})
            return
        try:
            result = route(self.app, payload)
        except Exception as e:
            LOG.exception("Handler error on %s: %s", self.path, e)
            self._send_json(500, {"error": "internal error"})
            return
        self._send_json(200, result)

    def log_message(self, format: str, *args: Any) -> None:
        LOG.debug(format, *args)


def make_server(app: RelayApp) -> HTTPServer:
    """Threaded server on webhook.host:webhook.port serving app."""
    handler = type("BoundWebhookHandler", (WebhookHandler,), {"app": app})
    return ThreadingHTTPServer((app.config.webhook.host, app.config.webhook.port), handler)


def run_webhook_server(app: RelayApp) -> None:
    server = make_server(app)
    LOG.info("Listening on %s:%s", *server.server_address[:2])
    try:
        server.serve_forever()
    finally:
        server.server_close()
