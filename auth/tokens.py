"""
auth/tokens.py -- JWT issuance/verification and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       the user id (sub), email, display name, issue time, expiry and a fixed
       issuer. Verification raises AuthError with reason "expired" for a
       well-formed token past its exp, and "invalid" for everything else
       (bad signature, wrong issuer, missing claims, garbage input).

  Passwords: bcrypt directly. Its cost factor makes brute-force expensive.
       The _DUMMY_HASH constant enables timing equalization in
       authenticate_user() so response time does not reveal whether an email
       is registered.

  SECRET_KEY: sourced from core.config.get_settings(), which validates it at
       startup (dev auto-generation, production hard failure, >= 32 chars).

Layer rule: no imports from api/, users/, uploads/, or cache/. Import from
core/ is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import Identity
from core.config import get_settings
from core.errors import AuthError

logger = logging.getLogger("starterapi.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ("sub", "email", "name", "iat", "exp")

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes. Request models cap passwords at
    72 characters so nothing is silently truncated for ASCII input.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or over-long input
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("starterapi_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: str, email: str, name: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT for the given user.

    Args:
        user_id:        Primary key of the user, stored as the "sub" claim.
        email:          User email, echoed into the decoded Identity.
        name:           Display name, echoed into the decoded Identity.
        expire_seconds: Lifetime in seconds. If 0 (default), uses
                        Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "email": email,
        "name": name,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
        "iss": _settings.jwt_issuer,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> Identity:
    """Verify token and return the Identity it carries.

    Raises:
        AuthError("expired"): signature and issuer are fine but exp has passed.
        AuthError("invalid"): anything else wrong with the token.
    """
    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_ALGORITHM],
            issuer=_settings.jwt_issuer,
        )
    except ExpiredSignatureError as exc:
        raise AuthError("expired", "Token expired") from exc
    except JWTError as exc:
        raise AuthError("invalid", str(exc)) from exc

    if any(claim not in payload for claim in _REQUIRED_CLAIMS):
        raise AuthError("invalid", "Token is missing required claims")

    return Identity(
        subject_id=str(payload["sub"]),
        email=payload["email"],
        display_name=payload["name"],
        issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store, email: str, password: str):
    """Check an email/password pair with timing equalization.

    store is anything exposing get_by_email(email) that returns an object with
    a hashed ``password`` attribute, or None.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the user on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None or not user.password:
        # Do NOT return before running bcrypt
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password):
        return None
    return user
