# Services package init
"""
Gatekeeper: Services Package
==============================

Pure decision logic, no HTTP:
    - rbac.py:             permission catalog, role registry, has_* checks
    - sanitizer.py:        markup stripping, email normalization, operator-key scrub
    - threat_detector.py:  injection signature battery
    - rate_limiter.py:     fixed-window bucket store with striped locks
"""
