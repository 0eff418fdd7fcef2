"""Structured logging for refresh runs.

Every record carries the refresh scope bound by the orchestrator (refresh id,
current step, target side), so a single run can be followed through a shared
log file. Timestamps are UTC, matching the progress events.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from dbrefresh.config.settings import Settings

_DEFAULT_CONFIG = {"log_dir": "logs", "log_level": "INFO", "structured_logging": False}

SCOPE_FIELDS = ("refresh_id", "step", "side")


class JsonRefreshFormatter(logging.Formatter):
    """One JSON object per line: scope fields at top level, call context nested."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        scope = getattr(record, 'scope', None) or {}
        for key in SCOPE_FIELDS:
            if key in scope:
                log_data[key] = scope[key]
        context = getattr(record, 'context', None)
        if context:
            log_data['context'] = context
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


class PlainRefreshFormatter(logging.Formatter):
    """Human-readable lines like '... INFO [3f2a9c1e0b7d step=5] message | host=DSTHOST'."""

    def __init__(self):
        super().__init__('%(asctime)s %(levelname)s %(scope_prefix)s%(message)s%(context_suffix)s')

    def format(self, record: logging.LogRecord) -> str:
        scope = getattr(record, 'scope', None) or {}
        parts = [str(scope['refresh_id'])] if 'refresh_id' in scope else []
        parts += [f"{key}={scope[key]}" for key in SCOPE_FIELDS[1:] if key in scope]
        record.scope_prefix = f"[{' '.join(parts)}] " if parts else ""

        context = getattr(record, 'context', None)
        record.context_suffix = (
            " | " + " ".join(f"{k}={v}" for k, v in context.items()) if context else "")
        return super().format(record)


class StructuredLogger:
    """Logger whose records carry a bound refresh scope and an optional context dict."""

    def __init__(self, name: str, config: Dict[str, Any]):
        """
        Initialize structured logger with a configuration dictionary.

        Args:
            name (str): The logger name; also the log file's stem.
            config (Dict[str, Any]): The logging configuration settings dictionary.
        """
        self.config = config
        self.scope: Dict[str, Any] = {}
        self.logger = logging.getLogger(name)
        log_level = str(self.config.get("log_level", "INFO")).upper()
        self.logger.setLevel(getattr(logging, log_level))

        if not self.logger.handlers:
            self._setup_handlers()

    def _setup_handlers(self) -> None:
        """Setup rotating file and stderr handlers sharing one formatter."""
        log_dir = Path(self.config.get("log_dir", "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_dir / f"{self.logger.name}.log",
            maxBytes=self.config.get("max_file_size_mb", 10) * 1024 * 1024,
            backupCount=self.config.get("backup_count", 5))

        # stdout is reserved for the rich progress display and report.
        console_handler = logging.StreamHandler(sys.stderr)

        if self.config.get("structured_logging", True):
            formatter: logging.Formatter = JsonRefreshFormatter()
        else:
            formatter = PlainRefreshFormatter()

        for handler in (file_handler, console_handler):
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def bind(self, **fields: Any) -> None:
        """Sets scope fields on every following record; a None value removes the field."""
        for key, value in fields.items():
            if value is None:
                self.scope.pop(key, None)
            else:
                self.scope[key] = value

    def clear_scope(self) -> None:
        self.scope.clear()

    def _log_with_context(self,
                          level: int,
                          message: str,
                          context: Optional[Dict[str, Any]] = None,
                          exc_info=False):
        extra = {'scope': dict(self.scope), 'context': context or None}
        self.logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, context: Optional[Dict[str, Any]] = None, exc_info=False):
        self._log_with_context(logging.DEBUG, message, context, exc_info)

    def info(self, message: str, context: Optional[Dict[str, Any]] = None, exc_info=False):
        self._log_with_context(logging.INFO, message, context, exc_info)

    def warning(self, message: str, context: Optional[Dict[str, Any]] = None, exc_info=False):
        self._log_with_context(logging.WARNING, message, context, exc_info)

    def error(self, message: str, context: Optional[Dict[str, Any]] = None, exc_info=False):
        self._log_with_context(logging.ERROR, message, context, exc_info)

    def critical(self, message: str, context: Optional[Dict[str, Any]] = None, exc_info=False):
        self._log_with_context(logging.CRITICAL, message, context, exc_info)


class LoggerFactory:
    """Factory for creating configured logger instances."""

    _config: Optional[Dict[str, Any]] = None
    _loggers: Dict[str, StructuredLogger] = {}

    @classmethod
    def configure(cls, settings: Settings | dict):
        """Configure the factory from a Settings object or a raw logging dict."""
        config = settings if isinstance(settings, dict) else settings.get_logging_config()
        cls._config = dict(config)

    @classmethod
    def get_logger(cls, name: str) -> StructuredLogger:
        """Get or create the named logger; unconfigured factories use plain-text defaults."""
        if cls._config is None:
            cls._config = dict(_DEFAULT_CONFIG)

        if name not in cls._loggers:
            cls._loggers[name] = StructuredLogger(name, cls._config)

        return cls._loggers[name]
