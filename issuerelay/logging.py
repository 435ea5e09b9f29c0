"""Root logger setup for the relay daemon.

Supported levels: DEBUG, INFO, WARNING, ERROR. Unknown names mean INFO.
Persistence and delivery failures log at WARNING, issue lifecycle at INFO and
per-request detail at DEBUG. HTTP client chatter (urllib3) is kept at WARNING
unless the relay itself runs at DEBUG.

Set via config.yaml (logging.level, logging.format, logging.file) or env
(LOGGING_LEVEL, LOGGING_FORMAT, LOGGING_FILE).
"""

import logging
from pathlib import Path

from issuerelay.config import LoggingConfig

LEVELS = {name: getattr(logging, name) for name in ("DEBUG", "INFO", "WARNING", "ERROR")}

DEFAULT_LEVEL = "INFO"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

NOISY_LOGGERS = ("urllib3",)


def _resolve_level(level: str) -> int:
    return LEVELS.get((level or "").strip().upper(), LEVELS[DEFAULT_LEVEL])


class RelayLogging:
    """Applies LoggingConfig to the root logger."""

    def __init__(self, config: LoggingConfig) -> None:
        self._level = _resolve_level(config.level)
        self._format = config.format or DEFAULT_FORMAT
        self._file = Path(config.file) if config.file else None

    def _handlers(self) -> list[logging.Handler]:
        handlers: list[logging.Handler] = [logging.StreamHandler()]
        if self._file is not None:
            self._file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(self._file, encoding="utf-8"))
        return handlers

    def setup(self) -> None:
        """Replace root handlers with stderr (and optionally a file) at the configured level."""
        logging.basicConfig(level=self._level, format=self._format, handlers=self._handlers(), force=True)
        quiet = logging.DEBUG if self._level == logging.DEBUG else logging.WARNING
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(quiet)

    def get_logger(self, name: str) -> logging.Logger:
        return logging.getLogger(name)
