"""
auth/dependencies.py -- FastAPI Depends() helper guarding protected routes.

The gate inspects exactly one transport -- the one on app.state.transport.
A credential sitting on the other transport is ignored.

Outcomes:
  no credential      -> AuthError("missing")
  malformed / forged -> AuthError("invalid")
  expired            -> AuthError("expired"); the exception handler clears the
                        stored cookie on the same 401 response
  valid              -> Identity attached to request.state.identity

The gate never touches persisted state.

Layer rule: no imports from api/, users/, uploads/, or cache/.
  auth/dependencies.py may import from fastapi because this module is part of
  the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import Identity
from auth.tokens import decode_access_token
from core.errors import AuthError


def get_current_identity(request: Request) -> Identity:
    """Require a valid credential on the configured transport.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    token = request.app.state.transport.extract(request)
    if not token:
        raise AuthError("missing", "No credential presented")
    identity = decode_access_token(token)
    request.state.identity = identity
    return identity
