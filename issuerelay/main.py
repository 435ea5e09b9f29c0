"""Issue Relay entry point.

Usage: issuerelay [--config config.yaml] [--port N] [--check]

Secrets come from env or Docker secret files (SHEETS_PRIVATE_KEY_FILE,
CHANNEL_TOKEN_FILE, WEBHOOK_SECRET_FILE), never from the command line.
"""

import argparse
import logging
import sys
from pathlib import Path

from issuerelay.config import AppConfig, load_config

DEFAULT_CONFIG = Path("config.yaml")
EXAMPLE_CONFIG = Path("config.example.yaml")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="issuerelay",
        description="Issue Relay - chat issue tracker and repository notification relay",
    )
    parser.add_argument("--config", "-c", type=Path, default=DEFAULT_CONFIG, help="YAML config file")
    parser.add_argument("--port", type=int, default=None, help="Override webhook.port")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Load config and issue state, print a summary and exit",
    )
    return parser.parse_args(argv)


def _config_path(requested: Path) -> Path:
    if requested.is_file() or requested != DEFAULT_CONFIG or not EXAMPLE_CONFIG.is_file():
        return requested
    logging.getLogger("issuerelay").warning("%s not found, using %s", DEFAULT_CONFIG, EXAMPLE_CONFIG)
    return EXAMPLE_CONFIG


def check(config: AppConfig) -> int:
    """Build every component once and report where the issue state came from."""
    from issuerelay.app import build_app

    app = build_app(config)
    try:
        print(
            f"Config OK: {len(app.store.list_open())} open, {len(app.store.list_closed())} closed, "
            f"nextId={app.store.next_id}, sheets={'on' if app.config.sheets.enabled else 'off'}, "
            f"data_file={config.storage.data_file}"
        )
    finally:
        app.dispatcher.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    config = load_config(_config_path(args.config))
    if args.port is not None:
        config.webhook.port = args.port

    if args.check:
        return check(config)

    from issuerelay.daemon import run_daemon

    try:
        run_daemon(config)
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("issuerelay.daemon").exception("Fatal error: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
