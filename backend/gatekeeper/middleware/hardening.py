"""
Gatekeeper: Request Hardening (Threat Scan + Sanitization)
============================================================

What:  Scans the request for injection signatures, then rewrites body and
       query so downstream handlers only ever see sanitized values.
Why:   Starlette's Request body is read-once and the query string lives in
       the ASGI scope, so an in-place rewrite has to happen at the ASGI
       layer: the body is buffered, rewritten and replayed to the app.
How:   RequestHardeningMiddleware (pure ASGI):
         1. buffer JSON or form-urlencoded bodies (capped at the size
            limit, so chunked uploads are bounded too) and decode them
         2. ThreatDetector over body, query, User-Agent, Referer → 400
         3. scrub operator keys, sanitize body and query
         4. re-encode what changed, replay the new body downstream
       harden_path_params (router dependency) does steps 2-3 for path
       parameters, which only exist after routing.

Pipeline order:
    ... → RateLimit → [ThreatDetector → InputSanitizer] → route

Failure modes:
    Signature match         → 400 "Request contains suspicious content"
    Undecodable payload     → 400 "Invalid input data"
    Fault while sanitizing  → 400 "Invalid input data" (logged with traceback)
    Buffered body over cap  → 413 "Request size exceeds limit of <limit>"

Other content types (multipart, binary uploads) are streamed through without
buffering; only the query string and headers are scanned.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode

from fastapi import Request
from starlette.datastructures import Headers
from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from gatekeeper.audit import audit, request_context
from gatekeeper.config import settings
from gatekeeper.exceptions import (
    GatekeeperError,
    InternalFaultError,
    MalformedInputError,
    PayloadTooLargeError,
    SuspiciousContentError,
)
from gatekeeper.middleware.request_size import parse_size
from gatekeeper.schemas.identity import get_identity
from gatekeeper.services import sanitizer, threat_detector

logger = logging.getLogger(__name__)

JSON_TYPE = "application/json"
FORM_TYPE = "application/x-www-form-urlencoded"


# ══════════════════════════════════════════════════════════════════════════
# Payload decoding
# ══════════════════════════════════════════════════════════════════════════

def _pairs_to_dict(pairs: List[Tuple[str, str]]) -> Dict[str, Any]:
    """Repeated keys become lists, single keys stay scalars."""
    result: Dict[str, Any] = {}
    for key, value in pairs:
        if key in result:
            existing = result[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                result[key] = [existing, value]
        else:
            result[key] = value
    return result


def _dict_to_query(data: Dict[str, Any]) -> str:
    return urlencode(
        [(key, item) for key, value in data.items() for item in (value if isinstance(value, list) else [value])]
    )


def parse_query(query_string: bytes) -> Dict[str, Any]:
    return _pairs_to_dict(parse_qsl(query_string.decode("latin-1"), keep_blank_values=True))


def _media_type(headers: Headers) -> str:
    return headers.get("content-type", "").split(";")[0].strip().lower()


def decode_body(body: bytes, media_type: str) -> Tuple[bool, Any]:
    """
    Returns (handled, data). handled=False means the payload is opaque and
    must be replayed untouched.

    Raises ValueError for a JSON or form payload that does not decode.
    """
    if not body:
        return False, None
    if media_type == JSON_TYPE or media_type.endswith("+json"):
        return True, json.loads(body.decode("utf-8"))
    if media_type == FORM_TYPE:
        return True, _pairs_to_dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True, strict_parsing=False))
    return False, None


def encode_body(data: Any, media_type: str) -> bytes:
    if media_type == FORM_TYPE:
        return _dict_to_query(data).encode("utf-8")
    return json.dumps(data, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


# ══════════════════════════════════════════════════════════════════════════
# Shared stages
# ══════════════════════════════════════════════════════════════════════════

def reject_if_suspicious(
    connection: HTTPConnection,
    body: Any = None,
    query: Any = None,
    params: Any = None,
) -> None:
    """
    Run the ThreatDetector; on a match, audit the full context and raise.

    The audit record deliberately includes the raw body/query/params: it is
    the forensic evidence of the attempt.
    """
    user_agent = connection.headers.get("user-agent")
    match = threat_detector.inspect(
        body=body,
        query=query,
        params=params,
        user_agent=user_agent,
        referer=connection.headers.get("referer"),
    )
    if match is None:
        return

    identity = get_identity(connection)
    audit(
        "Suspicious activity detected",
        logging.ERROR,
        category=match.category,
        field=match.field,
        user_id=identity.id if identity is not None else "anonymous",
        user_agent=user_agent,
        body=body,
        query=query,
        params=params,
        **request_context(connection),
    )
    raise SuspiciousContentError(context={"category": match.category, "field": match.field})


def sanitize_payload(connection: HTTPConnection, data: Any, source: str) -> Any:
    """Operator-key scrub followed by markup sanitization of one payload tree."""
    scrubbed, keys = sanitizer.scrub_operator_keys(data)
    for key in keys:
        audit(
            "Operator key scrubbed",
            logging.WARNING,
            key=key,
            source=source,
            **request_context(connection),
        )
    return sanitizer.sanitize_value(scrubbed)


# ══════════════════════════════════════════════════════════════════════════
# ASGI middleware: body + query
# ══════════════════════════════════════════════════════════════════════════

def is_decodable(media_type: str) -> bool:
    """JSON and form payloads are buffered and rewritten; anything else streams through."""
    return media_type in (JSON_TYPE, FORM_TYPE) or media_type.endswith("+json")


async def _read_body(receive: Receive, max_bytes: int, limit: str) -> Tuple[bytes, List[Message]]:
    """
    Buffer the request body, refusing more than max_bytes.

    Raises PayloadTooLargeError once the running total passes the cap. This
    covers chunked uploads, which declare no Content-Length and so pass the
    size-limit middleware unchecked.
    """
    chunks: List[bytes] = []
    tail: List[Message] = []
    received = 0
    while True:
        message = await receive()
        if message.get("type") != "http.request":
            tail.append(message)
            break
        chunk = message.get("body", b"") or b""
        received += len(chunk)
        if received > max_bytes:
            raise PayloadTooLargeError(limit=limit, context={"received": received})
        chunks.append(chunk)
        if not message.get("more_body", False):
            break
    return b"".join(chunks), tail


def _replace_content_length(headers: List[Tuple[bytes, bytes]], length: int) -> List[Tuple[bytes, bytes]]:
    kept = [(name, value) for name, value in headers if name.lower() != b"content-length"]
    kept.append((b"content-length", str(length).encode("latin-1")))
    return kept


class RequestHardeningMiddleware:
    """
    Threat-scan and sanitize body and query before routing.

    Args:
        body_limit: Cap on buffered JSON/form bodies (default: settings.request_size_limit)
    """

    def __init__(self, app: ASGIApp, body_limit: Optional[str] = None) -> None:
        self.app = app
        self.body_limit = body_limit if body_limit is not None else settings.request_size_limit
        self.body_limit_bytes = parse_size(self.body_limit)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        connection = HTTPConnection(scope)
        media_type = _media_type(connection.headers)
        query = parse_query(scope.get("query_string", b""))

        # ── Opaque payloads: scan query and headers, stream the body ──────
        # Why: Multipart and binary bodies are never rewritten, so holding
        #      them in memory buys nothing
        if not is_decodable(media_type):
            try:
                reject_if_suspicious(connection, query=query)
            except GatekeeperError as exc:
                await exc.to_response()(scope, receive, send)
                return
            except Exception as exc:
                logger.error("Threat detection error: %s", exc, exc_info=True)
                await InternalFaultError("Error inspecting request").to_response()(scope, receive, send)
                return
            try:
                clean_query = sanitize_payload(connection, query, "query")
            except Exception as exc:
                logger.error("Input sanitization error: %s", exc, exc_info=True)
                await MalformedInputError().to_response()(scope, receive, send)
                return
            if clean_query != query:
                scope["query_string"] = _dict_to_query(clean_query).encode("latin-1")
            await self.app(scope, receive, send)
            return

        try:
            body, tail = await _read_body(receive, self.body_limit_bytes, self.body_limit)
        except PayloadTooLargeError as exc:
            audit(
                "Request size limit exceeded",
                logging.WARNING,
                received=exc.context.get("received"),
                limit=self.body_limit,
                **request_context(connection),
            )
            await exc.to_response()(scope, receive, send)
            return

        try:
            handled, body_data = decode_body(body, media_type)
        except ValueError:
            logger.warning("Undecodable %s payload on %s", media_type, scope.get("path"))
            await MalformedInputError().to_response()(scope, receive, send)
            return

        try:
            reject_if_suspicious(connection, body=body_data, query=query)
        except GatekeeperError as exc:
            await exc.to_response()(scope, receive, send)
            return
        except Exception as exc:
            logger.error("Threat detection error: %s", exc, exc_info=True)
            await InternalFaultError("Error inspecting request").to_response()(scope, receive, send)
            return

        try:
            clean_query = sanitize_payload(connection, query, "query")
            clean_body = sanitize_payload(connection, body_data, "body") if handled else body_data
        except Exception as exc:
            logger.error("Input sanitization error: %s", exc, exc_info=True)
            await MalformedInputError().to_response()(scope, receive, send)
            return

        if clean_query != query:
            scope["query_string"] = _dict_to_query(clean_query).encode("latin-1")
        if handled and clean_body != body_data:
            body = encode_body(clean_body, media_type)
            scope["headers"] = _replace_content_length(list(scope.get("headers") or []), len(body))

        # ── Replay ────────────────────────────────────────────────────────
        # What: The app reads the (possibly rewritten) body as one message,
        #       then any message that ended our read (e.g. http.disconnect),
        #       then whatever the server sends next
        # Why: The original receive() stream was consumed above
        replay: List[Message] = [{"type": "http.request", "body": body, "more_body": False}] + tail

        async def replay_receive() -> Message:
            if replay:
                return replay.pop(0)
            return await receive()

        await self.app(scope, replay_receive, send)


# ══════════════════════════════════════════════════════════════════════════
# Router dependency: path parameters
# ══════════════════════════════════════════════════════════════════════════

async def harden_path_params(request: Request) -> None:
    """
    Attach as a router-level dependency so it runs before guards and the
    endpoint's own parameters are resolved:

        router = APIRouter(
            dependencies=[Depends(harden_path_params)],
            responses=GUARD_RESPONSES,
        )
    """
    params: Optional[Dict[str, Any]] = request.scope.get("path_params")
    if not params:
        return
    reject_if_suspicious(request, params=dict(params))
    try:
        cleaned = sanitize_payload(request, dict(params), "params")
    except Exception as exc:
        logger.error("Path parameter sanitization error: %s", exc, exc_info=True)
        raise MalformedInputError() from exc
    params.clear()
    params.update(cleaned)
