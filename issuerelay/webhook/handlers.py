"""Handle inbound HTTP events: GitHub webhooks, chat messages, readiness.

Each handler takes the parsed JSON payload and the app components; the
server only does transport (read body, verify, respond).
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict
from urllib.parse import parse_qs

from pydantic import ValidationError

from issuerelay.app import RelayApp
from issuerelay.commands import ChatMessage
from issuerelay.webhook.events import format_github_event

LOG = logging.getLogger("issuerelay.webhook.handlers")


def verify_signature(secret: str, body: bytes, signature_header: str | None) -> bool:
    """Check X-Hub-Signature-256 (sha256=<hex>) against the raw body.

    An empty secret disables verification.
    """
    if not secret:
        return True
    if not signature_header or not signature_header.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature_header.split("=", 1)[1])


def parse_github_body(body: bytes, content_type: str = "") -> Dict[str, Any]:
    """Decode a webhook body sent as JSON or as a form field payload=<json>."""
    if not body:
        return {}
    if "application/x-www-form-urlencoded" in content_type:
        fields = parse_qs(body.decode("utf-8", errors="replace"))
        values = fields.get("payload")
        return json.loads(values[0]) if values else {}
    return json.loads(body)


def handle_github_event(app: RelayApp, event: str, payload: Dict[str, Any]) -> bool:
    """Format the event and hand it to the dispatcher. Returns True if relayed."""
    text = format_github_event(event, payload)
    if text is None:
        LOG.debug("Ignoring GitHub event %s (action=%s)", event, payload.get("action"))
        return False
    app.dispatcher.enqueue_or_send(text)
    return True


def handle_chat_message(app: RelayApp, payload: Dict[str, Any]) -> str | None:
    """Run a chat command and send the reply back to the originating chat."""
    try:
        message = ChatMessage.model_validate(payload)
    except ValidationError as e:
        LOG.warning("Invalid chat message payload: %s", e)
        return None
    reply = app.commands.handle(message)
    if reply is not None:
        app.dispatcher.enqueue_or_send(reply, target=message.chat_id or message.sender)
    return reply


def handle_readiness(app: RelayApp, payload: Dict[str, Any]) -> bool:
    """Apply a readiness push from the bridge."""
    ready = bool(payload.get("ready"))
    mark = getattr(app.channel, "mark_ready", None)
    if mark is not None:
        mark(ready)
    app.dispatcher.on_readiness_changed(ready)
    return ready
