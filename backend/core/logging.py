"""
Proposal Suite: logging setup and structured event lines.

``configure_logging()`` runs once at import of ``backend.app``.  Every record
carries the id of the HTTP request that produced it (``-`` outside a
request); ``bind_request_id`` sets it for the current context and
``asyncio.to_thread`` hands it on to the service threads.

``log_event`` writes ``"<event> {json}"`` lines for the state changes worth
shipping: one per request, per proposal status change, per payment status
change and per client pricing change.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from enum import Enum
from typing import Any, Optional

from backend import config

_request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)
_configured = False

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s"
QUIET_LOGGERS = ("sqlalchemy.engine", "stripe", "uvicorn.access")


class LogEvent(str, Enum):
    REQUEST = "request_log"
    PROPOSAL_STATUS = "proposal_status"
    PAYMENT_STATUS = "payment_status"
    PRICING_UPDATED = "pricing_updated"


def bind_request_id(request_id: str) -> contextvars.Token:
    return _request_id.set(request_id)


def reset_request_id(token: contextvars.Token) -> None:
    _request_id.reset(token)


def current_request_id() -> Optional[str]:
    return _request_id.get()


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get() or "-"
        return True


def configure_logging(level: Optional[str] = None) -> None:
    """Install a stdout handler on the root logger unless a server already did."""
    global _configured
    if _configured:
        return

    resolved = logging.getLevelName((level or config.LOG_LEVEL).upper())
    root = logging.getLogger()
    root.setLevel(resolved if isinstance(resolved, int) else logging.INFO)

    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.addFilter(RequestContextFilter())
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    _configured = True


def log_event(logger: logging.Logger, event: LogEvent, proposal_id: Optional[str] = None,
              **fields: Any) -> None:
    """Emit one ``event`` line at INFO, tagged with the current request and proposal."""
    payload = {"request_id": current_request_id(), **fields}
    if proposal_id is not None:
        payload["proposal_id"] = proposal_id
    logger.info("%s %s", LogEvent(event).value, json.dumps(payload, default=str, sort_keys=True))
