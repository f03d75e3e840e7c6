# Routes package init
"""
Gatekeeper: Routes Package
============================

Route Inventory:
    - health.py:  GET /health   (liveness probe, exempt from rate limiting)

Business routers live in the host application; they attach
harden_path_params and the guards from gatekeeper.guards.
"""
