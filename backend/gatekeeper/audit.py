"""
Gatekeeper: Audit Trail
=========================

What:  One structured log record per security decision (grant, denial,
       throttle, suspicious payload, internal fault).
Why:   Incident response needs to answer "who tried what, from where, when"
       without reproducing the request.
How:   Records go to the ``gatekeeper.audit`` logger with the decision fields
       in ``extra={"audit": {...}}`` and a flattened copy in the message.
       In a running server, setup_logging() puts a QueueHandler in front of
       the real handlers, so the request task only enqueues; a QueueListener
       thread does the I/O. A slow or broken sink therefore never delays or
       fails a request.

Privacy note:
    Suspicious-content records deliberately include the raw body, query and
    path parameters. That is the forensic record of the attempt; the access
    log (middleware/logging.py) never logs payloads.
"""

import logging
import queue
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener
from typing import Any, Dict, Optional

from starlette.requests import HTTPConnection

from gatekeeper.config import settings
from gatekeeper.middleware.request_id import request_id_var

audit_logger = logging.getLogger("gatekeeper.audit")

_listener: Optional[QueueListener] = None


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def client_address(request: HTTPConnection) -> str:
    """
    Client origin used for rate-limit keys and audit records.

    The socket peer, or the first X-Forwarded-For hop when the deployment
    sits behind a trusted proxy (settings.trust_forwarded_for).
    """
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return getattr(request.client, "host", "unknown") if request.client else "unknown"


def request_context(request: HTTPConnection) -> Dict[str, Any]:
    """The ip/path/method fields every audit record carries."""
    return {
        "ip": client_address(request),
        "path": request.url.path,
        "method": request.scope.get("method", ""),
    }


def audit(event: str, level: int = logging.INFO, **fields: Any) -> None:
    """Emit one audit record. Never raises into the caller."""
    fields.setdefault("timestamp", utc_timestamp())
    fields.setdefault("request_id", request_id_var.get(""))
    flattened = " ".join(f"{key}={value!r}" for key, value in fields.items())
    audit_logger.log(level, "%s | %s", event, flattened, extra={"audit": fields, "event": event})


# ══════════════════════════════════════════════════════════════════════════
# Non-blocking delivery
# ══════════════════════════════════════════════════════════════════════════

def start_audit_listener(*handlers: logging.Handler) -> None:
    """Route audit records through an in-memory queue drained on a thread."""
    global _listener
    stop_audit_listener()

    log_queue: "queue.SimpleQueue[logging.LogRecord]" = queue.SimpleQueue()
    audit_logger.handlers = [QueueHandler(log_queue)]
    audit_logger.propagate = False

    _listener = QueueListener(log_queue, *handlers, respect_handler_level=True)
    _listener.start()


def stop_audit_listener() -> None:
    """Flush pending records and hand the audit logger back to the root."""
    global _listener
    if _listener is not None:
        _listener.stop()
        _listener = None
    audit_logger.handlers = []
    audit_logger.propagate = True
