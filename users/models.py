"""
users/models.py -- Domain dataclass for the user resource.

Pure data container, zero logic. Hashing, redaction and cache invalidation
live in users/service.py; SQL lives in users/store.py.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A registered account.

    password holds the bcrypt hash once the record has been through the
    service -- never plaintext at rest. id is None before the record is
    written to the database; created_at / updated_at are ISO 8601 UTC strings
    set by the store.
    """

    name: str
    email: str
    id: str | None = None
    password: str | None = None
    created_at: str = ""
    updated_at: str = ""
