"""Configuration loading from YAML and environment.

Secrets (service account key, bridge token, webhook secret) are taken from the
YAML value, environment variables or from files (Docker secrets). Never
put real tokens in config files committed to the repo.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _read_secret(env_key: str, file_env_key: str) -> str | None:
    """Read secret from env var or from file path in env (e.g. Docker
    secrets)."""
    value = _current_env.get(env_key)
    if value:
        return value.strip()
    file_path = _current_env.get(file_env_key)
    if file_path:
        return Path(file_path).read_text().strip()
    return None


def _is_placeholder(value: str | None) -> bool:
    return not value or value.startswith("${") or value.startswith("your-")


# Injected by load_config so secret resolution can read env/file
_current_env: dict[str, str] = {}


class BotConfig(BaseSettings):
    """Bot identity and chat command settings."""

    model_config = SettingsConfigDict(env_prefix="BOT_", extra="ignore")

    name: str = Field(default="Issue Relay", description="Bot display name")
    command_prefix: str = Field(default="$", description="Prefix for chat commands ($issue, $help)")
    owner_id: str | None = Field(default=None, description="Chat id of the bot owner")
    notify_target: str = Field(default="", description="Chat id that receives repository notifications")


class StorageConfig(BaseSettings):
    """Local durable file backend."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_", extra="ignore")

    data_file: str = Field(default="data/issues.json", description="Path of the local JSON snapshot")


class SheetsConfig(BaseSettings):
    """Remote tabular store (Google Sheets v4 REST)."""

    model_config = SettingsConfigDict(env_prefix="SHEETS_", extra="ignore")

    enabled: bool = Field(default=False, description="Use the spreadsheet as primary backend")
    spreadsheet_id: str = Field(default="", description="Spreadsheet id from its URL")
    api_url: str = Field(default="https://sheets.googleapis.com/v4", description="API base URL")
    credentials_file: str | None = Field(default=None, description="Service account JSON key file")
    service_account_email: str | None = Field(default=None, description="Service account client email")
    private_key: str | None = Field(default=None, description="Service account private key; use env or secret file")
    open_sheet: str = Field(default="Open Issues", description="Partition holding open issues")
    closed_sheet: str = Field(default="Closed Issues", description="Partition holding closed issues")
    timeout: int = Field(default=30, ge=1, description="HTTP timeout in seconds")


class ChannelConfig(BaseSettings):
    """Chat bridge used to deliver notifications and replies."""

    model_config = SettingsConfigDict(env_prefix="CHANNEL_", extra="ignore")

    enabled: bool = Field(default=True, description="Deliver messages through the bridge")
    bridge_url: str = Field(default="http://localhost:3000", description="Chat bridge base URL")
    token: str | None = Field(default=None, description="Bridge API token; use env or secret file")
    retry_delay_seconds: float = Field(default=5.0, gt=0, description="Fixed delay before a retry flush")
    poll_interval_seconds: int = Field(default=15, ge=1, description="Readiness probe interval")
    timeout: int = Field(default=15, ge=1, description="HTTP timeout in seconds")
    backlog_warning: int = Field(default=100, ge=0, description="Warn at every multiple of this backlog size")


class WebhookConfig(BaseSettings):
    """Webhook server settings."""

    model_config = SettingsConfigDict(env_prefix="WEBHOOK_", extra="ignore")

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8000, ge=0, le=65535, description="Bind port (0 picks a free one)")
    enabled: bool = Field(default=True, description="Enable webhook server")
    github_path: str = Field(default="/webhook/github", description="GitHub webhook URL path")
    chat_path: str = Field(default="/chat/message", description="Inbound chat message URL path")
    ready_path: str = Field(default="/chat/ready", description="Channel readiness URL path")
    secret: str = Field(default="", description="Secret for X-Hub-Signature-256 verification")


class LoggingConfig(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(env_prefix="LOGGING_", extra="ignore")

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: str | None = Field(default=None, description="Also write logs to this file")


class AppConfig(BaseSettings):
    """Root application config from YAML + env."""

    model_config = SettingsConfigDict(extra="ignore")

    bot: BotConfig = Field(default_factory=BotConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sheets: SheetsConfig = Field(default_factory=SheetsConfig)
    channel: ChannelConfig = Field(default_factory=ChannelConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def sheets_email_resolved(self) -> str | None:
        e = self.sheets.service_account_email
        if not _is_placeholder(e):
            return e
        return _current_env.get("SHEETS_SERVICE_ACCOUNT_EMAIL") or None

    @property
    def sheets_private_key_resolved(self) -> str | None:
        """Resolve service account private key from env or Docker secret file."""
        k = self.sheets.private_key
        if not _is_placeholder(k):
            return k
        return _read_secret("SHEETS_PRIVATE_KEY", "SHEETS_PRIVATE_KEY_FILE")

    @property
    def channel_token_resolved(self) -> str | None:
        """Resolve chat bridge token from env or Docker secret file."""
        t = self.channel.token
        if not _is_placeholder(t):
            return t
        return _read_secret("CHANNEL_TOKEN", "CHANNEL_TOKEN_FILE")

    @property
    def webhook_secret_resolved(self) -> str:
        """Resolve webhook secret from env or Docker secret file."""
        s = self.webhook.secret
        if not _is_placeholder(s):
            return s
        return _read_secret("WEBHOOK_SECRET", "WEBHOOK_SECRET_FILE") or ""


def _substitute_env(value: Any) -> Any:
    """Replace ${VAR} and $VAR in strings with os.environ."""
    if isinstance(value, str):
        if value.startswith("${") and value.endswith("}"):
            key = value[2:-1].strip()
            return _current_env.get(key, value)
        # Simple $VAR
        if value.startswith("$") and len(value) > 1 and value[1:].replace("_", "").isalnum():
            key = value[1:].strip()
            return _current_env.get(key, value)
        return value
    if isinstance(value, dict):
        return {k: _substitute_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute_env(v) for v in value]
    return value


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load config from YAML file and environment.

    Secrets: SHEETS_PRIVATE_KEY or SHEETS_PRIVATE_KEY_FILE, CHANNEL_TOKEN or
    CHANNEL_TOKEN_FILE, WEBHOOK_SECRET or WEBHOOK_SECRET_FILE.
    """
    global _current_env
    import os

    _current_env = dict(os.environ)

    path = config_path or Path("config.yaml")
    if not path.is_file():
        return AppConfig()

    raw = yaml.safe_load(path.read_text()) or {}
    raw = _substitute_env(raw)

    # Env overrides for nested values (e.g. SHEETS_SPREADSHEET_ID)
    sheets_raw = raw.get("sheets") or {}
    if _current_env.get("SHEETS_SPREADSHEET_ID"):
        sheets_raw = {**sheets_raw, "spreadsheet_id": _current_env.get("SHEETS_SPREADSHEET_ID")}

    return AppConfig(
        bot=BotConfig(**(raw.get("bot") or {})),
        storage=StorageConfig(**(raw.get("storage") or {})),
        sheets=SheetsConfig(**sheets_raw),
        channel=ChannelConfig(**(raw.get("channel") or {})),
        webhook=WebhookConfig(**(raw.get("webhook") or {})),
        logging=LoggingConfig(**(raw.get("logging") or {})),
    )
