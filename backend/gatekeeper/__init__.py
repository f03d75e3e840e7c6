"""
Gatekeeper: Application Package Initializer
=============================================

What: Request authorization and hardening layer for an HTTP API.

Architecture Note:

    ┌─────────────────────────────────────┐
    │   Middleware (pipeline stages)      │  ← headers, size, rate limit, hardening
    ├─────────────────────────────────────┤
    │   Guards (FastAPI dependencies)     │  ← permission / role / ownership checks
    ├─────────────────────────────────────┤
    │   Services (pure decision logic)    │  ← rbac, sanitizer, threat detector,
    │                                     │    rate limiter store
    └─────────────────────────────────────┘

    Services never touch HTTP objects, so each one is tested without a server.
    Middleware and guards translate their answers into GatekeeperError
    responses (exceptions.py) and audit records (audit.py).
"""

__version__ = "1.0.0"
