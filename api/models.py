"""
API request models for the user and upload endpoints.

These Pydantic v2 models define the HTTP input contract. They are
intentionally separate from the dataclasses in users/models.py, which own the
persisted representation. Route handlers map between the two.

Validation failures raise RequestValidationError, which the error classifier
renders as 400 "Invalid input data" with one {path, message} per field.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt only hashes the first 72 bytes; longer passwords are rejected rather
# than silently truncated.
_Password = Annotated[str, Field(min_length=6, max_length=72)]
_Name = Annotated[str, Field(min_length=1, max_length=100)]
_Email = Annotated[str, Field(max_length=255, pattern=EMAIL_PATTERN)]


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users/register."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: _Name
    email: _Email
    password: _Password


class UserUpdate(BaseModel):
    """Request body for PATCH /api/v1/users/{id}. At least one field is required."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[_Name] = None
    email: Optional[_Email] = None
    password: Optional[_Password] = None

    @model_validator(mode="after")
    def require_one_field(self) -> "UserUpdate":
        if self.name is None and self.email is None and self.password is None:
            raise ValueError("At least one of name, email or password is required")
        return self


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/users/login.

    Only presence is checked here. Length rules are not applied so a login
    attempt never reveals the password policy.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: _Email
    password: str = Field(min_length=1, max_length=256)
