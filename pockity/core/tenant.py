"""
Tenant references.

A tenant is either an end-user account or an API key issued to that
account. The kind is resolved once, at the boundary, and everything below
works with a concrete TenantRef.
"""

from dataclasses import dataclass
from typing import Union

from .errors import ValidationFailure


USER_KIND = "user"
API_KEY_KIND = "apikey"
USER_PREFIX_ROOT = "users"


def _require_id(value: str, what: str) -> None:
    if not value or not value.strip():
        raise ValidationFailure(f"{what} is required")
    if "/" in value or ":" in value:
        raise ValidationFailure(f"{what} must not contain '/' or ':'")


@dataclass(frozen=True)
class UserTenant:
    """Storage owned directly by a user account."""
    user_id: str

    def __post_init__(self):
        _require_id(self.user_id, "user id")

    @property
    def tenant_id(self) -> str:
        return f"{USER_KIND}:{self.user_id}"

    @property
    def prefix(self) -> str:
        return f"{USER_PREFIX_ROOT}/{self.user_id}"


@dataclass(frozen=True)
class ApiKeyTenant:
    """Storage scoped to an issued API key."""
    access_key_id: str

    def __post_init__(self):
        _require_id(self.access_key_id, "access key id")
        # key prefixes share the bucket root with the user prefix root
        if self.access_key_id == USER_PREFIX_ROOT:
            raise ValidationFailure(f"access key id '{USER_PREFIX_ROOT}' is reserved")

    @property
    def tenant_id(self) -> str:
        return f"{API_KEY_KIND}:{self.access_key_id}"

    @property
    def prefix(self) -> str:
        return self.access_key_id


TenantRef = Union[UserTenant, ApiKeyTenant]


def parse_tenant(value: str) -> TenantRef:
    """Parse a tenant id of the form ``user:<id>`` or ``apikey:<id>``."""
    kind, sep, ident = (value or "").partition(":")
    if not sep:
        raise ValidationFailure(
            f"Invalid tenant '{value}': expected 'user:<id>' or 'apikey:<id>'"
        )
    if kind == USER_KIND:
        return UserTenant(ident)
    if kind == API_KEY_KIND:
        return ApiKeyTenant(ident)
    raise ValidationFailure(f"Unknown tenant kind '{kind}'")
