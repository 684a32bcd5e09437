import logging
import re
from collections.abc import Mapping
from typing import Any

_CONTROL_CHAR_PATTERN = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
_SANITIZED_ATTR = "_matterdesk_sanitized"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def sanitize_log_value(value: Any, max_length: int = 512) -> str:
    """
    Normalize user-controlled values before they reach log sinks.

    Escapes CR/LF, replaces other control characters with ``?`` and truncates,
    so search terms and sort keys cannot forge multi-line log entries.
    """
    if value is None:
        return "<none>"

    text = str(value).replace("\r", "\\r").replace("\n", "\\n")
    text = _CONTROL_CHAR_PATTERN.sub("?", text)
    if len(text) > max_length:
        text = text[:max_length] + "...[truncated]"
    return text


class LogSanitizerFilter(logging.Filter):
    """
    Rewrites a record's message arguments with ``sanitize_log_value``.

    Attach it to handlers: logger-level filters only see records logged on
    that exact logger, never the ones propagated up from ``api.app.*``.
    """

    def __init__(self, max_length: int = 512):
        super().__init__()
        self.max_length = max_length

    def _clean(self, value: Any) -> str:
        return sanitize_log_value(value, self.max_length)

    def filter(self, record: logging.LogRecord) -> bool:
        # A record reaching several handlers is rewritten once.
        if getattr(record, _SANITIZED_ATTR, False):
            return True
        setattr(record, _SANITIZED_ATTR, True)

        args = record.args
        if not args:
            record.msg = self._clean(record.msg)
        elif isinstance(args, Mapping):
            record.args = {key: self._clean(val) for key, val in args.items()}
        else:
            record.args = tuple(self._clean(arg) for arg in args)
        return True


def _attach(target: logging.Filterer, max_length: int) -> None:
    if not any(isinstance(f, LogSanitizerFilter) for f in target.filters):
        target.addFilter(LogSanitizerFilter(max_length))


def install_log_sanitizer(
    target_logger: logging.Logger | None = None, max_length: int = 512
) -> None:
    """
    Attach the sanitizer to a logger (root by default) and to its handlers.

    Handlers added afterwards are not covered; ``configure_logging`` calls
    this again once the process handlers exist. Repeated calls are no-ops.
    """
    logger = target_logger or logging.getLogger()
    _attach(logger, max_length)
    for handler in logger.handlers:
        _attach(handler, max_length)


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging for the API process."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    else:
        root.setLevel(level.upper())
    install_log_sanitizer(root)
