"""Logging helpers that keep secrets out of log output."""

from __future__ import annotations

import logging
import re


_SECRET_RE = re.compile(r"(email|pass|password|token|cookie|value)=[^\s,]+", re.IGNORECASE)


class CredentialFilter(logging.Filter):
    """Mask sensitive key-value pairs in log messages.

    Typed text and cookie jars pass through the browser layer, so the filter
    covers those keys as well as login credentials.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            record.msg = record.getMessage()
            record.args = None
        record.msg = _SECRET_RE.sub(lambda m: f"{m.group(1)}=***", str(record.msg))
        return True


def get_logger(name: str) -> logging.Logger:
    """Return a module logger that carries the masking filter."""
    log = logging.getLogger(name)
    if not any(isinstance(f, CredentialFilter) for f in log.filters):
        log.addFilter(CredentialFilter())
    return log
