"""
users/service.py -- Orchestration for the user resource.

Mutation discipline (create / update / delete):
  1. hash any incoming password before it reaches the store
  2. perform the persistence write
  3. invalidate every cached list page (prefix "users:") before returning
  4. return the entity with the password replaced by "[REDACTED]"

Registration also queues a welcome email when a JobService is wired in. A
job queue outage is logged and never fails the registration itself.

List reads are cache-first: a miss reads count + page from the store and
primes the cache under "users:all:page:<p>:limit:<l>". A page read while a
mutation invalidates the family is returned but not cached.

Failures are raised as DomainError (not found, duplicate email); driver
errors from the store propagate untouched to the error classifier.

Layer rule: no imports from api/. The service is framework-agnostic so it can
be exercised directly in unit tests with fakes for the store and cache.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from auth.tokens import authenticate_user, hash_password
from cache.store import CacheStore
from core.errors import DomainError, JobError
from core.messages import MessageCode
from jobs.service import JobService
from notifications.mailer import welcome_template
from users.models import User
from users.store import UserStore

logger = logging.getLogger("starterapi.users")

REDACTED = "[REDACTED]"
CACHE_PREFIX = "users:"
_LIST_KEY = CACHE_PREFIX + "all:page:{page}:limit:{limit}"

DUPLICATE_EMAIL_MESSAGE = "Email is already registered"


def to_public(user: User) -> dict[str, Any]:
    """Serialize user for the wire with the password redacted."""
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "password": REDACTED,
        "createdAt": user.created_at,
        "updatedAt": user.updated_at,
    }


class UserService:
    def __init__(
        self,
        store: UserStore,
        cache: CacheStore,
        list_ttl: int = 300,
        jobs: Optional[JobService] = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.list_ttl = list_ttl
        self.jobs = jobs

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_users(self, page: int, limit: int) -> dict[str, Any]:
        """Return {"items": [...], "total": N} for one page, served from cache when warm."""
        key = _LIST_KEY.format(page=page, limit=limit)

        def load() -> dict[str, Any]:
            logger.debug("Users cache miss for %s, reading from database", key)
            total = self.store.count_users()
            users = self.store.list_users(offset=(page - 1) * limit, limit=limit)
            return {"items": [to_public(u) for u in users], "total": total}

        return self.cache.get_or_compute(key, load, ttl=self.list_ttl, family=CACHE_PREFIX)

    def get_user(self, user_id: str) -> dict[str, Any]:
        return to_public(self._require(user_id))

    def authenticate(self, email: str, password: str) -> Optional[User]:
        """Return the user for a correct email/password pair, else None (timing-equalized)."""
        return authenticate_user(self.store, email, password)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_user(self, name: str, email: str, password: str) -> dict[str, Any]:
        if self.store.get_by_email(email) is not None:
            raise DomainError(DUPLICATE_EMAIL_MESSAGE, status_code=400, message_code=MessageCode.CONFLICT)
        user = User(name=name, email=email, password=hash_password(password))
        user_id = self.store.create_user(user)
        self._invalidate()
        logger.info("User %s registered", user_id)
        self._send_welcome(user_id, name, email)
        return to_public(self._require(user_id))

    def update_user(
        self,
        user_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
    ) -> dict[str, Any]:
        self._require(user_id)
        fields: dict[str, str] = {}
        if name is not None:
            fields["name"] = name
        if email is not None:
            if self.store.get_by_email(email, exclude_id=user_id) is not None:
                raise DomainError(DUPLICATE_EMAIL_MESSAGE, status_code=400, message_code=MessageCode.CONFLICT)
            fields["email"] = email
        if password is not None:
            fields["password"] = hash_password(password)
        if not fields:
            raise DomainError("No fields to update", status_code=400)

        if not self.store.update_user(user_id, **fields):
            # Deleted between the existence check and the write
            raise DomainError(MessageCode.NOT_FOUND, status_code=404)
        self._invalidate()
        return to_public(self._require(user_id))

    def delete_user(self, user_id: str) -> dict[str, Any]:
        user = self._require(user_id)
        if not self.store.delete_user(user_id):
            raise DomainError(MessageCode.NOT_FOUND, status_code=404)
        self._invalidate()
        logger.info("User %s deleted", user_id)
        return to_public(user)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, user_id: str) -> User:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise DomainError(MessageCode.NOT_FOUND, status_code=404)
        return user

    def _invalidate(self) -> None:
        removed = self.cache.delete_prefix(CACHE_PREFIX)
        logger.debug("Invalidated %d cached user list pages", removed)

    def _send_welcome(self, user_id: str, name: str, email: str) -> None:
        if self.jobs is None:
            return
        try:
            job_id = self.jobs.enqueue_email(email, welcome_template(name))
        except JobError as exc:
            logger.warning("Welcome email for user %s not queued: %s", user_id, exc.detail or exc)
            return
        logger.info("Welcome email for user %s queued as job %s", user_id, job_id)
