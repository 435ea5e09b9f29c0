"""HTTP ingress: GitHub webhooks, chat bridge messages and readiness."""

from issuerelay.webhook.handlers import handle_chat_message, handle_github_event, handle_readiness
from issuerelay.webhook.server import run_webhook_server

__all__ = ["handle_chat_message", "handle_github_event", "handle_readiness", "run_webhook_server"]
