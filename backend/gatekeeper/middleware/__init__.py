"""
Gatekeeper: Middleware Package
================================

Middleware Chain (outermost first):
    Request → [Security Headers] → [Request ID] → [Access Log] → [CORS]
            → [Size Limit] → [Rate Limit] → [Hardening] → Route
              (route: harden_path_params → guards → handler)

    1. Security headers outermost: every response, including rejections
       produced further in, carries the hardening headers
    2. Request ID and access log wrap the pipeline so rejections are logged
       with a correlation ID
    3. Size limit before rate limit: oversized requests are refused without
       reading anything
    4. Rate limit before hardening: a flood of malicious payloads is throttled
       before the detector spends time on it
    5. Hardening last, so handlers only see sanitized payloads

The upstream authenticator, when present, must wrap this whole chain so the
identity is attached before the rate limiter builds its bucket key.
"""
