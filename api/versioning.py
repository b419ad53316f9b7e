"""
api/versioning.py -- API version negotiation for /api/ routes.

The requested version is read from, in order:
  1. the version header (API-Version by default)
  2. the "v" query parameter
  3. the configured default ("1.0")

Unknown versions are rejected with a 400 error envelope listing the supported
ones. Every /api/ response carries API-Version and Supported-Versions; a
deprecated version also gets Deprecation, Warning and (when configured)
Sunset headers. The negotiated version is left on request.state.api_version
for route handlers.

Routes outside /api/ (health probes, docs) are passed through untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from starlette.requests import Request
from starlette.responses import Response

from api import responses
from core.config import Settings

logger = logging.getLogger("starterapi.versioning")

VERSION_QUERY_PARAM = "v"
UNSUPPORTED_VERSION_MESSAGE = "Unsupported API version"


@dataclass(frozen=True)
class VersionConfig:
    version: str
    deprecated: bool = False
    deprecated_since: Optional[str] = None
    sunset_date: Optional[str] = None
    replaced_by: Optional[str] = None

    def deprecation_warning(self) -> str:
        warning = f"API version {self.version} is deprecated"
        if self.deprecated_since:
            warning += f" since {self.deprecated_since}"
        if self.replaced_by:
            warning += f". Use version {self.replaced_by} instead"
        if self.sunset_date:
            warning += f". Will be removed on {self.sunset_date}"
        return warning


class ApiVersioning:
    """Version registry plus the HTTP middleware that enforces it."""

    def __init__(
        self,
        versions: Iterable[VersionConfig],
        default_version: str = "1.0",
        header: str = "API-Version",
        path_prefix: str = "/api/",
    ) -> None:
        self.versions = {v.version: v for v in versions}
        self.default_version = default_version
        self.header = header
        self.path_prefix = path_prefix
        logger.info("API versioning initialized with versions: %s", ", ".join(self.versions))

    @classmethod
    def from_settings(cls, settings: Settings) -> "ApiVersioning":
        deprecated = set(settings.api_deprecated_versions)
        # The newest non-deprecated version is the suggested replacement.
        current = [v for v in settings.api_supported_versions if v not in deprecated]
        replaced_by = current[-1] if current else None
        configs = [
            VersionConfig(
                version=v,
                deprecated=v in deprecated,
                sunset_date=(settings.api_sunset_date or None) if v in deprecated else None,
                replaced_by=replaced_by if v in deprecated else None,
            )
            for v in settings.api_supported_versions
        ]
        return cls(configs, default_version=settings.api_default_version, header=settings.api_version_header)

    @property
    def supported(self) -> list[str]:
        return list(self.versions)

    def requested_version(self, request: Request) -> str:
        return (
            request.headers.get(self.header)
            or request.query_params.get(VERSION_QUERY_PARAM)
            or self.default_version
        )

    def apply_headers(self, response: Response, config: VersionConfig) -> None:
        response.headers["API-Version"] = config.version
        response.headers["Supported-Versions"] = ", ".join(self.supported)
        if config.deprecated:
            response.headers["Deprecation"] = "true"
            response.headers["Warning"] = f'299 - "{config.deprecation_warning()}"'
            if config.sunset_date:
                response.headers["Sunset"] = config.sunset_date

    async def dispatch(self, request: Request, call_next) -> Response:
        """HTTP middleware: register with app.middleware("http")(versioning.dispatch)."""
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        version = self.requested_version(request)
        config = self.versions.get(version)
        if config is None:
            logger.warning("Rejected unsupported API version %r on %s", version, request.url.path)
            return responses.error(
                request,
                UNSUPPORTED_VERSION_MESSAGE,
                [{"path": self.header, "message": f"Version {version} is not supported"}],
                status_code=400,
                extra={"supportedVersions": self.supported},
            )

        request.state.api_version = version
        if config.deprecated:
            logger.warning(
                "Deprecated API version %s used on %s by %s",
                version,
                request.url.path,
                request.client.host if request.client else "unknown",
            )
        response = await call_next(request)
        self.apply_headers(response, config)
        return response
