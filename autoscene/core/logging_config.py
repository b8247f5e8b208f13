"""Logging setup: console and rotating files, secret redaction, session tags.

Every record carries a ``session`` attribute. Threads owned by a monitoring
session (dispatcher, detector) tag themselves with the session id, so the
lines of one start/stop cycle can be picked out of the shared log file.
"""
import logging
import logging.handlers
import re
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional, Union

LOG_FORMAT = '%(asctime)s %(levelname)-7s [%(session)s] %(name)s: %(message)s'
NO_SESSION = '-'

# Libraries that are chatty at INFO
QUIET_LOGGERS = ('websocket', 'obsws_python', 'keyboard')

_tags = threading.local()


def get_session_tag() -> Optional[str]:
    return getattr(_tags, 'session', None)


def set_session_tag(tag: Optional[str]) -> None:
    _tags.session = tag


def clear_session_tag() -> None:
    _tags.session = None


@contextmanager
def session_tag(tag: Optional[str]) -> Iterator[None]:
    """Tag records logged by the current thread for the duration of the block."""
    previous = get_session_tag()
    set_session_tag(tag)
    try:
        yield
    finally:
        set_session_tag(previous)


class SessionTagFilter(logging.Filter):

    def filter(self, record: logging.LogRecord) -> bool:
        record.session = get_session_tag() or NO_SESSION
        return True


class RedactingFormatter(logging.Formatter):
    """Formatter that masks the OBS password and websocket auth strings."""

    SECRET_PATTERNS = (
        re.compile(r'(?i)((?:obs_)?password["\']?\s*[:=]\s*["\']?)[^\s"\',}]+'),
        re.compile(r'(?i)(authentication["\']?\s*[:=]\s*["\']?)[^\s"\',}]+'),
    )

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        for pattern in self.SECRET_PATTERNS:
            text = pattern.sub(r'\1[REDACTED]', text)
        return text


class LoggingManager:
    """Owns the handlers this application attaches to the root logger."""

    def __init__(self):
        self._configured = False
        self._handlers: Dict[str, logging.Handler] = {}
        self.log_dir: Optional[Path] = None

    @property
    def configured(self) -> bool:
        return self._configured

    def configure(
        self,
        log_level: str = 'INFO',
        log_dir: Optional[Union[str, Path]] = None,
        console: bool = True,
        files: bool = True,
        max_bytes: int = 5 * 1024 * 1024,
        backups: int = 3,
        name: str = 'autoscene'
    ) -> None:
        """Attach console and rotating file handlers to the root logger.

        ``<name>.log`` receives every record at ``log_level`` and
        ``<name>-errors.log`` only ERROR and above. A second call while
        configured does nothing.

        Args:
            log_level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for the log files, ``logs`` when omitted
            console: Also log to stdout
            files: Write the rotating log files
            max_bytes: Size at which a log file is rotated
            backups: Rotated files kept per log
            name: Base name of the log files
        """
        if self._configured:
            return

        level = logging.getLevelName(str(log_level).upper())
        if not isinstance(level, int):
            level = logging.INFO

        root = logging.getLogger()
        root.setLevel(level)
        root.handlers.clear()

        if console:
            self.attach('console', logging.StreamHandler(sys.stdout), level)

        if files:
            self.log_dir = Path(log_dir or 'logs')
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self.attach('file', self._rotating(f'{name}.log', max_bytes, backups), level)
            self.attach('errors', self._rotating(f'{name}-errors.log', max_bytes, backups), logging.ERROR)

        for logger_name in QUIET_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

        self._configured = True
        logging.getLogger(__name__).info(
            f"Logging at {logging.getLevelName(level)} to {self.log_dir if files else 'console only'}"
        )

    def _rotating(self, filename: str, max_bytes: int, backups: int) -> logging.Handler:
        return logging.handlers.RotatingFileHandler(
            self.log_dir / filename, maxBytes=max_bytes, backupCount=backups, encoding='utf-8'
        )

    def attach(self, name: str, handler: logging.Handler, level: Optional[int] = None) -> None:
        """Add ``handler`` to the root logger with session tags and redaction.

        Handlers without a formatter get the redacting file format.
        """
        if level is not None:
            handler.setLevel(level)
        handler.addFilter(SessionTagFilter())
        if handler.formatter is None:
            handler.setFormatter(RedactingFormatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)
        self._handlers[name] = handler

    def shutdown(self) -> None:
        """Detach and close every handler attached through this manager."""
        root = logging.getLogger()
        for handler in self._handlers.values():
            root.removeHandler(handler)
            handler.close()
        self._handlers.clear()
        self._configured = False


logging_manager = LoggingManager()


def configure_logging(**kwargs) -> None:
    logging_manager.configure(**kwargs)
