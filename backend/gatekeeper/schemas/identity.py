"""
Gatekeeper: Identity Schema
=============================

What:  The authenticated subject of a request: an integer id and a role name.
Who:   Produced by the upstream authenticator (out of this service's scope),
       which stores it on ``request.state.identity`` before the pipeline runs.
       Read by the rate limiter (bucket key) and every guard.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field
from starlette.requests import HTTPConnection

IDENTITY_STATE_KEY = "identity"


class Identity(BaseModel):
    id: int = Field(description="Authenticated user id")
    role: str = Field(description="Role name, looked up in the role registry")

    model_config = {"frozen": True}


def attach_identity(request: HTTPConnection, identity: Identity) -> None:
    """Used by authenticators (and tests) to hand an identity to the pipeline."""
    setattr(request.state, IDENTITY_STATE_KEY, identity)


def get_identity(request: HTTPConnection) -> Optional[Identity]:
    """
    Return the identity attached upstream, or None.

    Mappings with ``id``/``role`` keys are accepted too, since some
    authenticators store decoded token claims as-is.
    """
    value: Any = getattr(request.state, IDENTITY_STATE_KEY, None)
    if value is None or isinstance(value, Identity):
        return value
    if isinstance(value, dict):
        return Identity.model_validate(value)
    return None
