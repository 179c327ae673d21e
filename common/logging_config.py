import logging
import os
import re
import sys
from typing import Optional


class SensitiveDataFilter(logging.Filter):
    """Filter to mask key material in log records."""

    PATTERNS = [
        (re.compile(r'(secret["\']?\s*[:=]\s*["\']?)([^"\'}\s,\]]+)', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(private[_-]?key["\']?\s*[:=]\s*["\']?)([^"\'}\s,\]]+)', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(seed["\']?\s*[:=]\s*["\']?)([^"\'}\s,\]]+)', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(token["\']?\s*[:=]\s*["\']?)([^"\'}\s,\]]+)', re.IGNORECASE), r'\1***MASKED***'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Mask sensitive data in the log message."""
        if isinstance(record.msg, str):
            for pattern, replacement in self.PATTERNS:
                record.msg = pattern.sub(replacement, record.msg)

        if hasattr(record, 'args') and record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask_value(v) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._mask_value(arg) for arg in record.args)

        return True

    def _mask_value(self, value):
        """Mask sensitive values in arguments."""
        if isinstance(value, str):
            for pattern, replacement in self.PATTERNS:
                value = pattern.sub(replacement, value)
        return value


class ContextAdapter(logging.LoggerAdapter):
    """
    Logger adapter that appends [key=value] context to every message.

    Usage:
        log = get_logger(__name__, peer="https://a.example")
        log = log.child(digest=digest)
        log.info("Saved record")  # Saved record [peer=https://a.example] [digest=...]
    """

    def process(self, msg, kwargs):
        if self.extra:
            suffix = " ".join(f"[{key}={value}]" for key, value in self.extra.items())
            msg = f"{msg} {suffix}"
        return msg, kwargs

    def child(self, **context) -> 'ContextAdapter':
        """Return an adapter carrying this adapter's context plus the given fields."""
        merged = dict(self.extra or {})
        merged.update(context)
        return ContextAdapter(self.logger, merged)


def setup_logging(
    component_name: str,
    log_level: Optional[str] = None
) -> logging.Logger:
    """
    Set up logging configuration for a component.

    Handlers are attached to the root logger so that module loggers created
    with get_logger(__name__) share the component's format and filter.

    Args:
        component_name: Name of the component (e.g., 'server', 'replicator')
        log_level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL env var or INFO

    Returns:
        Configured logger instance
    """
    if log_level is None:
        log_level = os.getenv('LOG_LEVEL', 'INFO').upper()

    level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    logger = logging.getLogger(component_name)

    if any(getattr(h, '_archive_handler', False) for h in root.handlers):
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler._archive_handler = True

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handler.setFormatter(formatter)
    handler.addFilter(SensitiveDataFilter())

    root.addHandler(handler)

    return logger


def get_logger(name: str, **context) -> ContextAdapter:
    """
    Get a logger with the given name and optional context fields.

    Args:
        name: Logger name (typically __name__)
        **context: Fields appended to every message as [key=value]

    Returns:
        ContextAdapter wrapping the named logger
    """
    return ContextAdapter(logging.getLogger(name), context)
