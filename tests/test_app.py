"""Tests for component wiring (build_app) and the CLI entry point."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
import requests

from issuerelay.app import DisabledChannel, build_app, make_channel, make_remote_adapter
from issuerelay.channels.base import ChannelError
from issuerelay.channels.http import HttpBridgeChannel
from issuerelay.config import AppConfig, BotConfig, ChannelConfig, SheetsConfig, StorageConfig
from issuerelay.main import main
from issuerelay.persistence.sheets import SheetsAdapter


def test_remote_adapter_only_when_enabled_with_id() -> None:
    """Sheets backend needs enabled, a spreadsheet id and service account credentials."""
    assert make_remote_adapter(AppConfig()) is None
    assert make_remote_adapter(AppConfig(sheets=SheetsConfig(enabled=True))) is None
    sheets = SheetsConfig(enabled=True, spreadsheet_id="abc", service_account_email="bot@x", private_key="k")
    session = requests.Session()
    with patch("issuerelay.app.service_account_session", return_value=session) as mock_session:
        adapter = make_remote_adapter(AppConfig(sheets=sheets))
    assert isinstance(adapter, SheetsAdapter)
    assert adapter._session is session
    assert mock_session.call_args.kwargs == {"credentials_file": None, "client_email": "bot@x", "private_key": "k"}


def test_remote_adapter_requires_credentials() -> None:
    """Without a key the spreadsheet is not used."""
    with patch("issuerelay.app.service_account_session", return_value=None):
        assert make_remote_adapter(AppConfig(sheets=SheetsConfig(enabled=True, spreadsheet_id="abc"))) is None


def test_channel_selection() -> None:
    """Disabled channel never becomes ready and refuses to send."""
    assert isinstance(make_channel(AppConfig()), HttpBridgeChannel)
    disabled = make_channel(AppConfig(channel=ChannelConfig(enabled=False)))
    assert isinstance(disabled, DisabledChannel)
    assert disabled.is_ready() is False
    with pytest.raises(ChannelError):
        disabled.send("x", "y")


def test_build_app_local_only(tmp_path: Path) -> None:
    """Relative data_file resolves against base_dir; mutations reach the file."""
    config = AppConfig(storage=StorageConfig(data_file="data/issues.json"), channel=ChannelConfig(enabled=False))
    app = build_app(config, base_dir=tmp_path)
    try:
        assert app.store.list_open() == []
        app.store.add("First", creator="u1")
        data = json.loads((tmp_path / "data" / "issues.json").read_text(encoding="utf-8"))
        assert data["nextId"] == 2
        assert data["open"][0]["title"] == "First"
        assert app.store.last_persist.remote == "skipped"
        assert app.store.last_persist.local == "ok"

        assert app.dispatcher.enqueue_or_send("note") is False
        assert app.dispatcher.pending_count == 1
    finally:
        app.dispatcher.stop()


def test_build_app_wires_owner_and_backlog_threshold(tmp_path: Path) -> None:
    """bot.owner_id reaches the command handler; channel.backlog_warning the dispatcher."""
    config = AppConfig(
        bot=BotConfig(owner_id="owner@c.us"),
        storage=StorageConfig(data_file=str(tmp_path / "issues.json")),
        channel=ChannelConfig(enabled=False, backlog_warning=7),
    )
    app = build_app(config)
    assert app.commands._owner_id == "owner@c.us"
    assert app.dispatcher._backlog_warning == 7


def test_build_app_reloads_existing_state(tmp_path: Path) -> None:
    """A second process picks up the saved issues and counter."""
    config = AppConfig(storage=StorageConfig(data_file=str(tmp_path / "issues.json")), channel=ChannelConfig(enabled=False))
    first = build_app(config)
    first.store.add("a")
    first.store.add("b")
    first.store.delete("2")
    second = build_app(config)
    assert [i.id for i in second.store.list_open()] == ["1"]
    assert second.store.add("c").id == "3"


def test_main_check_reports_state(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """--check loads config and issue state, prints a summary and does not serve."""
    data_file = tmp_path / "issues.json"
    data_file.write_text(
        json.dumps({"open": [{"id": "1", "title": "a"}], "closed": [{"id": "2", "title": "b"}], "nextId": 7}),
        encoding="utf-8",
    )
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        f"storage:\n  data_file: {data_file}\nchannel:\n  enabled: false\n",
        encoding="utf-8",
    )
    with patch("issuerelay.daemon.run_daemon") as mock_run:
        assert main(["--config", str(config_path), "--check"]) == 0
    mock_run.assert_not_called()
    out = capsys.readouterr().out
    assert "Config OK: 1 open, 1 closed, nextId=7, sheets=off" in out


def test_main_port_override(tmp_path: Path) -> None:
    """--port replaces webhook.port before the daemon starts."""
    with patch("issuerelay.daemon.run_daemon") as mock_run:
        assert main(["--config", str(tmp_path / "missing.yaml"), "--port", "9100"]) == 0
    assert mock_run.call_args[0][0].webhook.port == 9100
