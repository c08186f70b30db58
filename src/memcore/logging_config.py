# src/memcore/logging_config.py
"""
Logging setup for memcore.

The capture worker is usually a background process, so by default nothing is
written to the console except records explicitly flagged for display, while
everything at DEBUG and above goes to a log file.

Sources, lowest precedence first:

- :data:`DEFAULT_LOGGING_CONFIG`
- the ``[logging]`` section of the memcore configuration
- a dictionary passed straight to :func:`configure_logging`

Usage:
    from memcore.logging_config import configure_logging, log_display

    configure_logging(app_name="memcore-worker")

    logger = logging.getLogger("memcore.worker")
    log_display(logger, logging.INFO, "Capturing session %s", content_session_id)
"""

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional


DEFAULT_LOGGING_CONFIG: dict[str, Any] = {
    "console_enabled": False,
    "console_level": "WARNING",
    "console_format": "%(levelname)s - %(name)s - %(message)s",
    "file_enabled": True,
    "file_level": "DEBUG",
    "file_directory": "~/.local/share/memcore/logs",
    "file_mode": "single",
    "file_name_pattern": "{app}_{timestamp:%Y%m%d_%H%M%S}.log",
    "file_single_name": "{app}.log",
    "file_format": "%(asctime)s [%(levelname)-8s] %(name)-32s - %(message)s",
    "rotation_max_bytes": 5 * 1024 * 1024,
    "rotation_backup_count": 3,
    "display_min_level": "INFO",
    "components": {
        "memcore": "INFO",
        "aiosqlite": "WARNING",
        "aiohttp": "WARNING",
        "openai": "WARNING",
        "anthropic": "WARNING",
        "httpx": "WARNING",
        "httpcore": "WARNING",
        "asyncio": "WARNING",
    },
}


def _resolve_level(value: str | int | None, default: int) -> int:
    if isinstance(value, int):
        return value
    if value is None:
        return default
    level = logging.getLevelName(str(value).upper())
    return level if isinstance(level, int) else default


class DisplayFilter(logging.Filter):
    """Gate for the console handler.

    With the console globally enabled every record passes and the handler
    level decides. Otherwise only records logged with ``extra={"display": True}``
    at or above ``display_min_level`` get through.
    """

    def __init__(self, console_globally_enabled: bool = False, display_min_level: int = logging.INFO) -> None:
        super().__init__()
        self.console_globally_enabled = console_globally_enabled
        self.display_min_level = display_min_level

    def filter(self, record: logging.LogRecord) -> bool:
        if self.console_globally_enabled:
            return True
        if getattr(record, "display", False):
            return record.levelno >= self.display_min_level
        return False


class LoggingManager:
    """
    Process-wide owner of the memcore log handlers.

    Configuration happens once; later calls are no-ops unless
    ``force_reconfigure`` is given.
    """

    _instance: Optional["LoggingManager"] = None
    _configured: bool = False
    _log_file_path: Path | None = None

    def __init__(self) -> None:
        self._console_handler: logging.Handler | None = None
        self._file_handler: logging.Handler | None = None
        self._display_filter: DisplayFilter | None = None

    @classmethod
    def get_instance(cls) -> "LoggingManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def is_configured(cls) -> bool:
        return cls._configured

    def configure(
        self,
        app_name: str = "memcore",
        config: dict[str, Any] | None = None,
        force_reconfigure: bool = False,
    ) -> Path | None:
        """
        Installs console and file handlers on the root logger.

        Args:
            app_name: Used to name the log file.
            config: Overrides merged over :data:`DEFAULT_LOGGING_CONFIG`.
            force_reconfigure: Replace handlers even if already configured.

        Returns:
            The log file path, or None when file logging is disabled or unavailable.
        """
        if LoggingManager._configured and not force_reconfigure:
            return LoggingManager._log_file_path

        log_config = {**DEFAULT_LOGGING_CONFIG, **(config or {})}
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()
        root_logger.setLevel(logging.DEBUG)

        console_enabled = bool(log_config.get("console_enabled", False))
        self._display_filter = DisplayFilter(
            console_globally_enabled=console_enabled,
            display_min_level=_resolve_level(log_config.get("display_min_level"), logging.INFO),
        )
        self._console_handler = self._create_console_handler(log_config)
        if not console_enabled:
            # The filter is the only gate when the console is off.
            self._console_handler.setLevel(logging.DEBUG)
        self._console_handler.addFilter(self._display_filter)
        root_logger.addHandler(self._console_handler)

        log_file_path = None
        self._file_handler = None
        if log_config.get("file_enabled", True):
            self._file_handler, log_file_path = self._create_file_handler(log_config, app_name)
            if self._file_handler is not None:
                root_logger.addHandler(self._file_handler)

        components = log_config.get("components") or DEFAULT_LOGGING_CONFIG["components"]
        for component_name, level_str in components.items():
            logging.getLogger(component_name).setLevel(_resolve_level(level_str, logging.INFO))

        LoggingManager._configured = True
        LoggingManager._log_file_path = log_file_path
        if log_file_path:
            logging.getLogger(__name__).debug(f"Logging configured. Log file: {log_file_path}")
        return log_file_path

    def _create_console_handler(self, config: dict[str, Any]) -> logging.Handler:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(_resolve_level(config.get("console_level"), logging.WARNING))
        handler.setFormatter(logging.Formatter(config.get("console_format", DEFAULT_LOGGING_CONFIG["console_format"])))
        return handler

    def _create_file_handler(
        self, config: dict[str, Any], app_name: str
    ) -> tuple[logging.Handler | None, Path | None]:
        """Builds a rotating handler (``file_mode="single"``) or a fresh file per run."""
        log_dir = Path(os.path.expanduser(config.get("file_directory", DEFAULT_LOGGING_CONFIG["file_directory"])))
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            sys.stderr.write(f"Warning: Cannot create log directory {log_dir}: {e}\n")
            return None, None

        try:
            if config.get("file_mode", "single") == "single":
                filename = config.get("file_single_name", "{app}.log").format(app=app_name)
                log_file_path = log_dir / filename
                handler: logging.Handler = RotatingFileHandler(
                    log_file_path,
                    maxBytes=int(config.get("rotation_max_bytes", DEFAULT_LOGGING_CONFIG["rotation_max_bytes"])),
                    backupCount=int(config.get("rotation_backup_count", DEFAULT_LOGGING_CONFIG["rotation_backup_count"])),
                    encoding="utf-8",
                )
            else:
                pattern = config.get("file_name_pattern", DEFAULT_LOGGING_CONFIG["file_name_pattern"])
                log_file_path = log_dir / pattern.format(app=app_name, timestamp=datetime.now())
                handler = logging.FileHandler(log_file_path, encoding="utf-8")
        except OSError as e:
            sys.stderr.write(f"Warning: Cannot create log file in {log_dir}: {e}\n")
            return None, None

        handler.setLevel(_resolve_level(config.get("file_level"), logging.DEBUG))
        handler.setFormatter(logging.Formatter(config.get("file_format", DEFAULT_LOGGING_CONFIG["file_format"])))
        return handler, log_file_path


def configure_logging(
    app_name: str = "memcore",
    config: dict[str, Any] | None = None,
    force_reconfigure: bool = False,
) -> Path | None:
    """Configures memcore logging once per process. See :meth:`LoggingManager.configure`."""
    return LoggingManager.get_instance().configure(
        app_name=app_name, config=config, force_reconfigure=force_reconfigure
    )


def log_display(logger: logging.Logger, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
    """Logs ``msg`` flagged for display so it reaches the console in quiet mode too."""
    extra = kwargs.pop("extra", None) or {}
    extra["display"] = True
    kwargs["extra"] = extra
    logger.log(level, msg, *args, **kwargs)
