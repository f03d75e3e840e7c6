"""
Gatekeeper: Request Size Limit Tests
======================================

What we test:
    ✅ parse_size: units, decimals, bare numbers, garbage
    ✅ Declared lengths over the limit answer 413 with the configured limit
    ✅ An unparseable limit refuses every request that declares a body
    ✅ Content-Length values that are not plain ASCII digits never crash the stage
    ✅ A fault inside the size check answers 500 with the hardening headers
    ✅ Chunked JSON bodies without Content-Length are capped while buffering
"""

import asyncio

import pytest

import gatekeeper.middleware.request_size
from gatekeeper.middleware.request_size import parse_size


class TestParseSize:

    @pytest.mark.parametrize(
        "size, expected",
        [
            ("10mb", 10 * 1024 * 1024),
            ("10MB", 10 * 1024 * 1024),
            ("1.5kb", 1536),
            ("512", 512),
            ("512b", 512),
            (" 2 gb ", 2 * 1024 ** 3),
            ("3tb", 3),
        ],
    )
    def test_valid_sizes(self, size, expected):
        assert parse_size(size) == expected

    @pytest.mark.parametrize("size", ["not-a-size", "", "mb", "-5kb", None])
    def test_invalid_sizes_are_zero(self, size):
        assert parse_size(size) == 0


class TestRequestSizeLimit:

    @pytest.mark.asyncio
    async def test_oversized_body_rejected(self, build_client, audit_records):
        client = await build_client(request_size_limit="1kb")
        response = await client.post("/api/echo", json={"note": "x" * 2048})

        assert response.status_code == 413
        assert response.json() == {
            "error": "Payload too large",
            "message": "Request size exceeds limit of 1kb",
        }
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert any(r.event == "Request size limit exceeded" for r in audit_records())

    @pytest.mark.asyncio
    async def test_body_within_limit_passes(self, build_client):
        client = await build_client(request_size_limit="1kb")
        response = await client.post("/api/echo", json={"note": "hello"})
        assert response.status_code == 200
        assert response.json()["body"] == {"note": "hello"}

    @pytest.mark.asyncio
    async def test_zero_limit_rejects_bodies_but_not_reads(self, build_client):
        client = await build_client(request_size_limit="not-a-size")

        refused = await client.post("/api/echo", json={})
        assert refused.status_code == 413
        assert refused.json()["message"] == "Request size exceeds limit of not-a-size"

        assert (await client.get("/health")).status_code == 200

    @pytest.mark.asyncio
    async def test_size_check_fault_is_500_with_headers(self, build_client, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("audit sink gone")

        monkeypatch.setattr(gatekeeper.middleware.request_size, "audit", broken)
        client = await build_client(request_size_limit="1kb")
        response = await client.post("/api/echo", json={"note": "x" * 2048})

        assert response.status_code == 500
        assert response.json() == {
            "error": "Internal server error",
            "message": "Error checking request size",
        }
        assert response.headers["X-Frame-Options"] == "DENY"

    @pytest.mark.asyncio
    async def test_chunked_body_over_limit_rejected(self, build_client, audit_records):
        client = await build_client(request_size_limit="1kb")

        async def chunks():
            yield b'{"note": "'
            yield b"x" * 2048
            yield b'"}'

        response = await client.post(
            "/api/echo", content=chunks(), headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 413
        assert response.json()["message"] == "Request size exceeds limit of 1kb"
        assert any(r.event == "Request size limit exceeded" for r in audit_records())

    @pytest.mark.asyncio
    async def test_chunked_body_within_limit_passes(self, build_client):
        client = await build_client(request_size_limit="1kb")

        async def chunks():
            yield b'{"note": '
            yield b'"hello"}'

        response = await client.post(
            "/api/echo", content=chunks(), headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 200
        assert response.json()["body"] == {"note": "hello"}


async def send_raw(app, method: str, path: str, headers: list, body: bytes = b""):
    """
    Drive the app over bare ASGI, for header bytes an HTTP client will not send.

    Returns (status, headers) from the http.response.start message.
    """
    messages = []
    body_sent = False
    response_complete = asyncio.Event()

    async def receive():
        nonlocal body_sent
        if not body_sent:
            body_sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        await response_complete.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        messages.append(message)
        if message["type"] == "http.response.body" and not message.get("more_body", False):
            response_complete.set()

    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("ascii"),
        "query_string": b"",
        "root_path": "",
        "headers": [(b"host", b"test")] + headers,
        "client": ("127.0.0.1", 50000),
        "server": ("test", 80),
    }
    await app(scope, receive, send)

    start = next(m for m in messages if m["type"] == "http.response.start")
    response_headers = {
        name.decode("latin-1").lower(): value.decode("latin-1") for name, value in start["headers"]
    }
    return start["status"], response_headers


class TestUnusualContentLength:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("declared", [b"\xb2", b"\xb9\xb2", b"abc", b"-5"])
    async def test_non_ascii_or_non_numeric_length_is_not_judged(self, build_app, declared):
        status, headers = await send_raw(
            build_app(request_size_limit="1kb"),
            "POST",
            "/api/echo",
            [(b"content-type", b"application/json"), (b"content-length", declared)],
            body=b"{}",
        )

        assert status == 200
        assert headers["x-frame-options"] == "DENY"
