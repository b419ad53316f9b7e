"""
api/health.py -- Named health checks and the aggregate system report.

A HealthRegistry holds checker callables, each returning a CheckResult with
status "healthy", "degraded" or "unhealthy". A checker that raises is
reported as unhealthy with the exception text; it never breaks the report.

Overall status:
  any unhealthy -> "unhealthy"
  any degraded  -> "degraded"
  otherwise     -> "healthy"

Default checkers (see default_registry()):
  database -- SELECT 1 round-trip, degraded above 1000 ms
  cache    -- write/read/delete probe, degraded above 100 ms
  disk     -- upload dir writable + shutil.disk_usage, degraded above 90% used
"""

from __future__ import annotations

import logging
import os
import shutil
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Literal, Optional

from api.responses import utc_timestamp
from cache.store import CacheStore
from users.store import UserStore

logger = logging.getLogger("starterapi.health")

Status = Literal["healthy", "degraded", "unhealthy"]

DATABASE_SLOW_MS = 1000
CACHE_SLOW_MS = 100
DISK_USAGE_LIMIT_PERCENT = 90.0

READINESS_CHECKS = ("database", "cache")


@dataclass
class CheckResult:
    name: str
    status: Status
    message: str = ""
    response_time_ms: float = 0.0
    timestamp: str = field(default_factory=utc_timestamp)
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["responseTime"] = round(data.pop("response_time_ms"), 2)
        return data


Checker = Callable[[], CheckResult]


class HealthRegistry:
    def __init__(self, version: str = "1.0.0", environment: str = "development") -> None:
        self.version = version
        self.environment = environment
        self.started_at = time.monotonic()
        self._checkers: dict[str, Checker] = {}

    def register(self, name: str, checker: Checker) -> None:
        self._checkers[name] = checker

    def remove(self, name: str) -> bool:
        removed = self._checkers.pop(name, None) is not None
        if removed:
            logger.info("Health checker %r removed", name)
        return removed

    @property
    def names(self) -> list[str]:
        return list(self._checkers)

    def uptime(self) -> float:
        return round(time.monotonic() - self.started_at, 3)

    def run(self, name: str) -> Optional[CheckResult]:
        """Run one checker by name. Returns None if no such checker is registered."""
        checker = self._checkers.get(name)
        if checker is None:
            logger.warning("Health checker %r not found", name)
            return None
        try:
            return checker()
        except Exception as exc:  # noqa: BLE001 -- a failing checker is a report entry, not a crash
            logger.error("Health check %r failed: %s", name, exc)
            return CheckResult(name=name, status="unhealthy", message=str(exc) or type(exc).__name__)

    def run_all(self) -> dict[str, Any]:
        start = time.perf_counter()
        checks = [self.run(name) for name in self.names]
        results = [c for c in checks if c is not None]
        summary = {
            "total": len(results),
            "healthy": sum(1 for c in results if c.status == "healthy"),
            "unhealthy": sum(1 for c in results if c.status == "unhealthy"),
            "degraded": sum(1 for c in results if c.status == "degraded"),
        }
        status = overall_status(c.status for c in results)
        logger.info("Health check completed in %.1fms - status: %s", (time.perf_counter() - start) * 1000, status)
        return {
            "status": status,
            "timestamp": utc_timestamp(),
            "uptime": self.uptime(),
            "version": self.version,
            "environment": self.environment,
            "checks": [c.to_dict() for c in results],
            "summary": summary,
        }

    def is_ready(self) -> bool:
        """True unless a readiness-critical check (database, cache) is unhealthy."""
        for name in READINESS_CHECKS:
            result = self.run(name)
            if result is not None and result.status == "unhealthy":
                return False
        return True


def overall_status(statuses) -> Status:
    seen = set(statuses)
    if "unhealthy" in seen:
        return "unhealthy"
    if "degraded" in seen:
        return "degraded"
    return "healthy"


# ---------------------------------------------------------------------------
# Default checkers
# ---------------------------------------------------------------------------


def database_checker(store: UserStore, slow_ms: float = DATABASE_SLOW_MS) -> Checker:
    def check() -> CheckResult:
        start = time.perf_counter()
        try:
            store.ping()
        except Exception as exc:  # noqa: BLE001
            return CheckResult(
                name="database",
                status="unhealthy",
                message=f"Database connection failed: {type(exc).__name__}",
                response_time_ms=(time.perf_counter() - start) * 1000,
            )
        elapsed = (time.perf_counter() - start) * 1000
        slow = elapsed >= slow_ms
        return CheckResult(
            name="database",
            status="degraded" if slow else "healthy",
            message="Database connection slow" if slow else "Database connection healthy",
            response_time_ms=elapsed,
            details={"threshold": f"{slow_ms:g}ms"},
        )

    return check


def cache_checker(cache: CacheStore, slow_ms: float = CACHE_SLOW_MS) -> Checker:
    def check() -> CheckResult:
        key = f"health:probe:{time.time_ns()}"
        start = time.perf_counter()
        cache.set(key, "ok", ttl=10)
        value = cache.get(key)
        cache.delete(key)
        elapsed = (time.perf_counter() - start) * 1000
        if value != "ok":
            return CheckResult(
                name="cache",
                status="unhealthy",
                message="Cache read/write test failed",
                response_time_ms=elapsed,
            )
        slow = elapsed >= slow_ms
        return CheckResult(
            name="cache",
            status="degraded" if slow else "healthy",
            message="Cache operations slow" if slow else "Cache operations healthy",
            response_time_ms=elapsed,
            details={"keys": cache.stats()["keys"], "threshold": f"{slow_ms:g}ms"},
        )

    return check


def disk_checker(path: str | Path = ".", limit_percent: float = DISK_USAGE_LIMIT_PERCENT) -> Checker:
    def check() -> CheckResult:
        target = Path(path)
        if not os.access(target, os.R_OK | os.W_OK):
            return CheckResult(name="disk", status="unhealthy", message=f"Directory {target} is not accessible")
        usage = shutil.disk_usage(target)
        used_percent = usage.used / usage.total * 100 if usage.total else 0.0
        high = used_percent > limit_percent
        return CheckResult(
            name="disk",
            status="degraded" if high else "healthy",
            message="Disk usage high" if high else "Disk access healthy",
            details={
                "usagePercent": f"{used_percent:.2f}%",
                "freeMB": usage.free // (1024 * 1024),
                "totalMB": usage.total // (1024 * 1024),
            },
        )

    return check


def default_registry(
    store: UserStore,
    cache: CacheStore,
    disk_path: str | Path = ".",
    version: str = "1.0.0",
    environment: str = "development",
) -> HealthRegistry:
    registry = HealthRegistry(version=version, environment=environment)
    registry.register("database", database_checker(store))
    registry.register("cache", cache_checker(cache))
    registry.register("disk", disk_checker(disk_path))
    return registry
