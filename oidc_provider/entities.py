"""
Value objects passed between repositories, rules, grants and token builders.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ClientEntity:
    identifier: str
    name: str
    redirect_uris: list[str]
    scopes: list[str] = field(default_factory=list)
    secret: str | None = None  # bcrypt hash; None for public clients
    is_enabled: bool = True
    auth_source: str | None = None
    post_logout_redirect_uris: list[str] = field(default_factory=list)
    back_channel_logout_uri: str | None = None
    allowed_origins: list[str] = field(default_factory=list)

    @property
    def is_confidential(self) -> bool:
        return bool(self.secret)

    def redirect_uri_allowed(self, uri: str) -> bool:
        return uri in self.redirect_uris


@dataclass
class UserEntity:
    identifier: str
    claims: dict[str, Any] = field(default_factory=dict)


class _Revocable:
    is_revoked: bool
    expires_at: datetime

    def revoke(self) -> None:
        # Monotonic: there is no way back to False
        self.is_revoked = True

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utc_now())


@dataclass
class AuthCodeEntity(_Revocable):
    identifier: str
    client_id: str
    user_id: str
    scopes: list[str]
    expires_at: datetime
    redirect_uri: str | None = None
    nonce: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None
    requested_claims: dict | None = None
    auth_time: int | None = None
    acr: str | None = None
    session_id: str | None = None
    is_revoked: bool = False


@dataclass
class AccessTokenEntity(_Revocable):
    identifier: str
    client_id: str
    user_id: str | None
    scopes: list[str]
    expires_at: datetime
    auth_code_id: str | None = None
    requested_claims: dict | None = None
    issued_at: datetime = field(default_factory=utc_now)
    is_revoked: bool = False


@dataclass
class RefreshTokenEntity(_Revocable):
    identifier: str
    access_token_id: str
    client_id: str
    user_id: str | None
    scopes: list[str]
    expires_at: datetime
    auth_code_id: str | None = None
    is_revoked: bool = False


@dataclass
class RelyingPartyAssociation:
    client_id: str
    user_id: str
    session_id: str | None = None
    back_channel_logout_uri: str | None = None


@dataclass
class LoginSessionEntity:
    identifier: str
    user_id: str
    authn_instant: int
    is_valid: bool = True
