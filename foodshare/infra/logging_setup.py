"""Logging setup shared by the API process and the client helpers."""

from __future__ import annotations

import logging
import os
import re

from foodshare.infra.context import get_role, get_user_id

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [user=%(user_id)s role=%(role)s] %(message)s"

_SENSITIVE_PATTERN = re.compile(
    r"(Bearer\s+[\w\.-]+|access_token\"?\s*[:=]\s*\"?[^\"\s,]+|password\"?\s*[:=]\s*\"?[^\"\s,]+)",
    re.IGNORECASE,
)


def redact(message: str) -> str:
    return _SENSITIVE_PATTERN.sub("**REDACTED**", message)


class RequestContextFilter(logging.Filter):
    """Stamp records with the current user and scrub credentials from messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.user_id = get_user_id() or "-"
        record.role = get_role() or "-"
        if record.args:
            try:
                message = record.getMessage()
            except (TypeError, ValueError):
                # left for the handler to report through handleError
                return True
            record.msg = redact(message)
            record.args = None
        elif isinstance(record.msg, str):
            record.msg = redact(record.msg)
        return True


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    root.setLevel((level or LOG_LEVEL).upper())
    if any(getattr(handler, "_foodshare", False) for handler in root.handlers):
        return
    handler = logging.StreamHandler()
    handler._foodshare = True  # type: ignore[attr-defined]
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestContextFilter())
    root.addHandler(handler)
