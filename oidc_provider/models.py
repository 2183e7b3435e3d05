"""
SQLAlchemy models: users, clients, allowed origins, authorization codes, access and refresh tokens,
login sessions and relying party associations.
"""
import json
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Extra claims (JSON object), e.g. given_name, locale, phone_number
    claims: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    def get_claims(self) -> dict:
        claims = json.loads(self.claims) if self.claims else {}
        claims["preferred_username"] = self.username
        if self.name is not None:
            claims["name"] = self.name
        if self.email is not None:
            claims["email"] = self.email
        return claims


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    # JSON arrays; exact match required
    redirect_uris: Mapped[str] = mapped_column(Text, nullable=False)
    scopes: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    post_logout_redirect_uris: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    # bcrypt hash of client_secret; None = public client
    client_secret_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auth_source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    back_channel_logout_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    def get_redirect_uris_list(self) -> list[str]:
        return json.loads(self.redirect_uris)

    def get_scopes_list(self) -> list[str]:
        return json.loads(self.scopes or "[]")

    def get_post_logout_redirect_uris_list(self) -> list[str]:
        return json.loads(self.post_logout_redirect_uris or "[]")


class AllowedOrigin(Base):
    __tablename__ = "allowed_origins"
    __table_args__ = (UniqueConstraint("client_id", "origin"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(ForeignKey("clients.client_id", ondelete="CASCADE"), nullable=False)
    origin: Mapped[str] = mapped_column(String(1024), nullable=False, index=True)


class AuthorizationCode(Base):
    __tablename__ = "authorization_codes"

    identifier: Mapped[str] = mapped_column(String(191), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    scopes: Mapped[str] = mapped_column(Text, nullable=False)  # JSON array
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    redirect_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    nonce: Mapped[str | None] = mapped_column(Text, nullable=True)
    code_challenge: Mapped[str | None] = mapped_column(String(128), nullable=True)
    code_challenge_method: Mapped[str | None] = mapped_column(String(16), nullable=True)
    requested_claims: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON object
    auth_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    acr: Mapped[str | None] = mapped_column(String(255), nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(191), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)


class AccessToken(Base):
    __tablename__ = "access_tokens"

    identifier: Mapped[str] = mapped_column(String(191), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    scopes: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auth_code_id: Mapped[str | None] = mapped_column(String(191), nullable=True, index=True)
    requested_claims: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    identifier: Mapped[str] = mapped_column(String(191), primary_key=True)
    access_token_id: Mapped[str] = mapped_column(String(191), nullable=False)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    scopes: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auth_code_id: Mapped[str | None] = mapped_column(String(191), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)


class LoginSession(Base):
    __tablename__ = "login_sessions"

    identifier: Mapped[str] = mapped_column(String(191), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    authn_instant: Mapped[int] = mapped_column(Integer, nullable=False)  # unix timestamp
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)


class RelyingPartyAssociationRecord(Base):
    __tablename__ = "relying_party_associations"
    __table_args__ = (UniqueConstraint("session_id", "client_id"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(191), nullable=False, index=True)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    back_channel_logout_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
