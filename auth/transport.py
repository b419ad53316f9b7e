"""
auth/transport.py -- Where the signed credential travels: cookie or header.

Pattern: Strategy. The auth gate, login and logout only talk to a
CredentialTransport; which concrete transport is used is decided once at
startup from TOKEN_TRANSPORT and stored on app.state.transport.

  CookieTransport -- httpOnly "token" cookie. Secure is set iff a cookie
      domain is configured (a real domain implies HTTPS). SameSite=None iff
      cross-site cookies are enabled, else Lax.
  HeaderTransport -- "Authorization: Bearer <token>" on requests. The login
      response carries the same header so clients can pick the token up.
      There is nothing server-side to clear on logout or expiry.

Layer rule: no imports from api/, users/, uploads/, or cache/.
"""

from __future__ import annotations

from typing import Optional, Protocol

from starlette.requests import Request
from starlette.responses import Response

from core.config import Settings

COOKIE_NAME = "token"
_BEARER_PREFIX = "Bearer "


class CredentialTransport(Protocol):
    name: str

    def extract(self, request: Request) -> Optional[str]: ...

    def attach(self, response: Response, token: str) -> None: ...

    def clear(self, response: Response) -> None: ...


class CookieTransport:
    name = "cookie"

    def __init__(self, max_age: int, domain: str = "", cross_site: bool = False) -> None:
        self.max_age = max_age
        self.domain = domain or None
        self.secure = bool(domain)
        self.samesite = "none" if cross_site else "lax"

    def extract(self, request: Request) -> Optional[str]:
        return request.cookies.get(COOKIE_NAME) or None

    def attach(self, response: Response, token: str) -> None:
        """Write token as an httpOnly cookie whose max_age matches the JWT expiry."""
        response.set_cookie(
            COOKIE_NAME,
            value=token,
            max_age=self.max_age,
            path="/",
            domain=self.domain,
            secure=self.secure,
            httponly=True,
            samesite=self.samesite,
        )

    def clear(self, response: Response) -> None:
        # Attributes must match the ones used in attach() or browsers keep the cookie.
        response.delete_cookie(
            COOKIE_NAME,
            path="/",
            domain=self.domain,
            secure=self.secure,
            httponly=True,
            samesite=self.samesite,
        )


class HeaderTransport:
    name = "header"

    def extract(self, request: Request) -> Optional[str]:
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith(_BEARER_PREFIX):
            return None
        return auth_header[len(_BEARER_PREFIX) :].strip() or None

    def attach(self, response: Response, token: str) -> None:
        response.headers["Authorization"] = f"{_BEARER_PREFIX}{token}"

    def clear(self, response: Response) -> None:
        return None


def transport_from_settings(settings: Settings) -> CredentialTransport:
    """Build the single transport selected by TOKEN_TRANSPORT."""
    if settings.token_transport == "header":
        return HeaderTransport()
    return CookieTransport(
        max_age=settings.token_expire_seconds,
        domain=settings.cookie_domain,
        cross_site=settings.cross_site_cookies,
    )
