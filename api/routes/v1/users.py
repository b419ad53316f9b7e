"""
api/routes/v1/users.py -- User resource REST endpoints.

Routes (prefix /api/v1/users):
  POST   /register   -- create account; 201 + redacted user
  POST   /login      -- email/password login; writes the credential transport
  POST   /logout     -- clears the credential transport; 200
  GET    ""          -- paginated list (page >= 1, 1 <= limit <= 100)
  GET    /{user_id}  -- one user
  PATCH  /{user_id}  -- update name / email / password
  DELETE /{user_id}  -- delete; 200 + the deleted user, redacted

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  authenticate_user() provides timing equalization -- the service uses it,
  never an inline lookup + verify.
  Wrong email and wrong password return the same generic 401.
  Cache-Control: no-store on every login response.
  Passwords are never echoed; every user payload carries "[REDACTED]".
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api import responses
from api.limiter import limiter, login_limit
from api.models import LoginRequest, UserCreate, UserUpdate
from auth.dependencies import get_current_identity
from auth.models import Identity
from auth.tokens import create_access_token
from core.messages import MessageCode
from users.service import UserService, to_public

logger = logging.getLogger("starterapi.api.users")

# Auth policy:
# - POST   /register, /login, /logout:  public
# - GET    "", /{id}; PATCH, DELETE /{id}:  requires a credential (get_current_identity)
router = APIRouter()

LOGIN_SUCCESS_MESSAGE = "Login successful"
LOGOUT_SUCCESS_MESSAGE = "Logout successful"


def _service(request: Request) -> UserService:
    return request.app.state.user_service


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/register", status_code=201)
def register(request: Request, body: UserCreate) -> JSONResponse:
    user = _service(request).create_user(body.name, body.email, body.password)
    return responses.created(request, user)


@router.post("/login")
@limiter.limit(login_limit)  # must sit BELOW @router so the route registers the limited wrapper
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Exchange email + password for a signed credential on the configured transport."""
    user = _service(request).authenticate(body.email, body.password)
    if user is None:
        resp = responses.error(request, MessageCode.INVALID_CREDENTIALS, status_code=401)
        resp.headers["Cache-Control"] = "no-store"
        return resp

    token = create_access_token(user.id, user.email, user.name)
    resp = responses.success(request, to_public(user), message=LOGIN_SUCCESS_MESSAGE)
    request.app.state.transport.attach(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    logger.info("User %s logged in", user.id)
    return resp


@router.post("/logout")
def logout(request: Request) -> JSONResponse:
    """Clear the stored credential. Needs no prior auth; clearing nothing is harmless."""
    resp = responses.success(request, message=LOGOUT_SUCCESS_MESSAGE)
    request.app.state.transport.clear(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("")
def list_users(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    result = _service(request).list_users(page, limit)
    logger.debug("User list page=%d limit=%d requested by %s", page, limit, identity.subject_id)
    return responses.paginated(request, result["items"], page, limit, result["total"])


@router.get("/{user_id}")
def get_user(
    request: Request,
    user_id: str,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    return responses.success(request, _service(request).get_user(user_id))


@router.patch("/{user_id}")
def update_user(
    request: Request,
    user_id: str,
    body: UserUpdate,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    user = _service(request).update_user(user_id, name=body.name, email=body.email, password=body.password)
    return responses.success(request, user, message=MessageCode.UPDATED)


@router.delete("/{user_id}")
def delete_user(
    request: Request,
    user_id: str,
    identity: Identity = Depends(get_current_identity),
) -> JSONResponse:
    user = _service(request).delete_user(user_id)
    return responses.success(request, user, message=MessageCode.DELETED)
