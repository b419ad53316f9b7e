"""
auth/models.py -- Decoded credential payload attached to an authenticated request.

Pattern: Data class (pure data container, zero logic). The identity lives on
request.state for one request only and is never persisted.

Layer rule: no imports from api/, users/, uploads/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Identity:
    """Who the bearer of a verified credential is.

    subject_id is the user's primary key (the JWT "sub" claim). issued_at and
    expires_at are timezone-aware UTC datetimes taken from "iat" / "exp".
    """

    subject_id: str
    email: str
    display_name: str
    issued_at: datetime
    expires_at: datetime
