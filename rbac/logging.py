"""Structured logging for the RBAC graph, its adapters and the HTTP surface."""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class JsonLogFormatter(logging.Formatter):
    """Format log records as single-line JSON payloads."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited docstring
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        for attr in ("user", "system", "role", "group", "dn"):
            if hasattr(record, attr):
                payload[attr] = getattr(record, attr)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: Optional[str] = None) -> None:
    """Install the JSON formatter on the root logger.

    Does nothing when the root logger already has handlers, so repeated
    calls (tests, reloads, embedding applications) are harmless.
    """

    if logging.getLogger().handlers:
        return

    level_name = level or os.environ.get("RBAC_LOG_LEVEL", "INFO")
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    root_logger.addHandler(handler)

    # ldap3 logs every PDU at DEBUG when enabled
    logging.getLogger("ldap3").setLevel(logging.WARNING)
