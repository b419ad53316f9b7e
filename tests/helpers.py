"""
tests/helpers.py -- Constants and small helpers shared by test modules.

Kept out of conftest.py so test modules can import them directly.
"""

from __future__ import annotations

SEED_NAME = "Test Admin"
SEED_EMAIL = "admin@example.com"
SEED_PASSWORD = "testpass123"


def cookie_header(token: str) -> dict[str, str]:
    """Explicit Cookie header, so module-scoped clients never leak cookies between tests."""
    return {"Cookie": f"token={token}"}
