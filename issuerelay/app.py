"""Wiring of store, dispatcher, command handler and channel for one process."""

import logging
from pathlib import Path

from issuerelay.channels.base import ChannelError, MessageChannel
from issuerelay.channels.http import HttpBridgeChannel
from issuerelay.commands import CommandHandler
from issuerelay.config import AppConfig
from issuerelay.dispatcher import NotificationDispatcher
from issuerelay.issue_store import IssueStore
from issuerelay.persistence.local import LocalFileAdapter
from issuerelay.persistence.sheets import SheetsAdapter, service_account_session

LOG = logging.getLogger("issuerelay.app")


class DisabledChannel(MessageChannel):
    """Channel used when delivery is switched off: never ready."""

    def is_ready(self) -> bool:
        return False

    def send(self, target: str, text: str) -> None:
        raise ChannelError("Channel disabled in config")


class RelayApp:
    """Explicitly constructed components shared by the HTTP handlers."""

    def __init__(
        self,
        config: AppConfig,
        store: IssueStore,
        dispatcher: NotificationDispatcher,
        commands: CommandHandler,
        channel: MessageChannel,
    ) -> None:
        self.config = config
        self.store = store
        self.dispatcher = dispatcher
        self.commands = commands
        self.channel = channel


def make_remote_adapter(config: AppConfig) -> SheetsAdapter | None:
    """Build the spreadsheet backend, or None when it is not configured."""
    if not config.sheets.enabled:
        return None
    if not config.sheets.spreadsheet_id:
        LOG.warning("sheets.enabled is set but sheets.spreadsheet_id is empty; using local file only")
        return None
    session = service_account_session(
        credentials_file=config.sheets.credentials_file,
        client_email=config.sheets_email_resolved,
        private_key=config.sheets_private_key_resolved,
    )
    if session is None:
        LOG.warning("sheets.enabled is set but no service account credentials are configured; using local file only")
        return None
    return SheetsAdapter(
        spreadsheet_id=config.sheets.spreadsheet_id,
        session=session,
        api_url=config.sheets.api_url,
        open_sheet=config.sheets.open_sheet,
        closed_sheet=config.sheets.closed_sheet,
        timeout=config.sheets.timeout,
    )


def make_channel(config: AppConfig) -> MessageChannel:
    if not config.channel.enabled:
        return DisabledChannel()
    return HttpBridgeChannel(
        bridge_url=config.channel.bridge_url,
        token=config.channel_token_resolved,
        timeout=config.channel.timeout,
    )


def build_app(config: AppConfig, base_dir: Path | None = None) -> RelayApp:
    """Construct and initialize all components (loads issue state)."""
    data_file = Path(config.storage.data_file)
    if not data_file.is_absolute():
        data_file = (base_dir or Path.cwd()) / data_file
    store = IssueStore(local=LocalFileAdapter(data_file), remote=make_remote_adapter(config))
    store.initialize()
    channel = make_channel(config)
    dispatcher = NotificationDispatcher(
        channel,
        default_target=config.bot.notify_target,
        retry_delay=config.channel.retry_delay_seconds,
        backlog_warning=config.channel.backlog_warning,
    )
    commands = CommandHandler(store, prefix=config.bot.command_prefix, owner_id=config.bot.owner_id)
    return RelayApp(config, store, dispatcher, commands, channel)
