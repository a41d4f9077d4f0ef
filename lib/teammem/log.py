"""Logging helpers that keep credentials out of log output."""
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import List, Optional, Pattern

SENSITIVE_PATTERNS: List[Pattern] = [
    re.compile(r'(password|passwd|pwd|secret|token)\s*[:=]\s*[\'"]?[\w\-]+[\'"]?', re.IGNORECASE),
    re.compile(r'(redis|rediss|unix)://[^:/@\s]*:[^@\s]+@', re.IGNORECASE),
    re.compile(r'bearer\s+[\w\-_.~+/]+=*', re.IGNORECASE),
    re.compile(r'(REDIS_URL|TEAMMEM_REDIS_URL)\s*=\s*[\'"]?[^\s\'\"]+[\'"]?', re.IGNORECASE),
]

REDACTED = '[REDACTED]'

_EXTRA_SKIP = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}


def sanitize(message: str) -> str:
    """Remove sensitive data from a message."""
    if not message:
        return message

    result = message
    for pattern in SENSITIVE_PATTERNS:
        result = pattern.sub(REDACTED, result)

    return result


class SecureLogger:
    """Logger wrapper that sanitizes all output."""

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _sanitize_args(self, args):
        return tuple(sanitize(arg) if isinstance(arg, str) else arg for arg in args)

    def debug(self, msg, *args, **kwargs):
        self._logger.debug(sanitize(msg), *self._sanitize_args(args), **kwargs)

    def info(self, msg, *args, **kwargs):
        self._logger.info(sanitize(msg), *self._sanitize_args(args), **kwargs)

    def warning(self, msg, *args, **kwargs):
        self._logger.warning(sanitize(msg), *self._sanitize_args(args), **kwargs)

    def error(self, msg, *args, **kwargs):
        self._logger.error(sanitize(msg), *self._sanitize_args(args), **kwargs)

    def exception(self, msg, *args, **kwargs):
        self._logger.exception(sanitize(msg), *self._sanitize_args(args), **kwargs)


class JsonLineFormatter(logging.Formatter):
    """Formats records as one JSON object per line.

    Fields passed through ``extra=`` are merged into the entry, so callers can
    attach ``team_id``, ``backend`` and similar context.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'level': record.levelname.lower(),
            'component': record.name,
            'message': record.getMessage(),
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
        }
        for key, value in record.__dict__.items():
            if key not in _EXTRA_SKIP and not key.startswith('_'):
                entry[key] = value
        if record.exc_info:
            entry['exception'] = sanitize(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


def get_logger(name: str) -> SecureLogger:
    """Return a sanitizing logger for a teammem component."""
    return SecureLogger(logging.getLogger(name))


def configure_logging(level: str = 'INFO', json_lines: bool = False,
                      stream: Optional[object] = None) -> logging.Handler:
    """Install a stderr handler on the ``teammem`` logger tree."""
    handler = logging.StreamHandler(stream or sys.stderr)
    if json_lines:
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))

    root = logging.getLogger('teammem')
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())
    return handler
