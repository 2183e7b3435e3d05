"""
JWT signing and verification (RS256) for access tokens, ID tokens and back-channel logout tokens.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from oidc_provider.claims import claims_for_scopes, requested_claims
from oidc_provider.entities import AccessTokenEntity, RelyingPartyAssociation, UserEntity
from oidc_provider.keys import KeyStore

BACKCHANNEL_LOGOUT_EVENT = "http://schemas.openid.net/event/backchannel-logout"


def _timestamp(value: datetime) -> int:
    return int(value.timestamp())


class JsonWebTokenBuilder:
    algorithm = "RS256"

    def __init__(self, key_store: KeyStore, issuer: str):
        self.key_store = key_store
        self.issuer = issuer

    def sign(self, claims: dict[str, Any], typ: str = "JWT") -> str:
        token = jwt.encode(
            claims,
            self.key_store.signing_key,
            algorithm=self.algorithm,
            headers={"kid": self.key_store.kid, "typ": typ},
        )
        if isinstance(token, bytes):
            token = token.decode("utf-8")
        return token

    def decode(self, token: str, leeway: int | timedelta = 0, options: dict | None = None) -> dict:
        """
        Verify signature (key chosen by header kid), issuer and time claims.
        Raises jwt.InvalidTokenError on any failure.
        """
        header = jwt.get_unverified_header(token)
        public_key = self.key_store.public_key_for_kid(header.get("kid"))
        if public_key is None:
            raise jwt.InvalidSignatureError("Unknown key id")
        verify_options = {"verify_aud": False}
        verify_options.update(options or {})
        return jwt.decode(
            token,
            public_key,
            algorithms=[self.algorithm],
            issuer=self.issuer,
            leeway=leeway,
            options=verify_options,
        )

    def access_token_claims(self, access_token: AccessTokenEntity) -> dict[str, Any]:
        issued_at = _timestamp(access_token.issued_at)
        claims = {
            "iss": self.issuer,
            "aud": access_token.client_id,
            "jti": access_token.identifier,
            "iat": issued_at,
            "nbf": issued_at,
            "exp": _timestamp(access_token.expires_at),
            "sub": access_token.user_id or "",
            "scopes": list(access_token.scopes),
        }
        return claims

    def access_token_to_jwt(self, access_token: AccessTokenEntity) -> str:
        return self.sign(self.access_token_claims(access_token))


def access_token_hash(access_token: str) -> str:
    """at_hash: base64url of the left half of SHA-256 over the ASCII token."""
    digest = hashlib.sha256(access_token.encode("ascii")).digest()
    return urlsafe_b64encode(digest[: len(digest) // 2]).rstrip(b"=").decode("ascii")


class IdTokenBuilder:
    def __init__(self, jwt_builder: JsonWebTokenBuilder, scope_claims: dict[str, list[str]], ttl_seconds: int):
        self.jwt_builder = jwt_builder
        self.scope_claims = scope_claims
        self.ttl_seconds = ttl_seconds

    def build(
        self,
        user: UserEntity,
        access_token: AccessTokenEntity,
        add_claims_from_scopes: bool = False,
        access_token_jwt: str | None = None,
        nonce: str | None = None,
        auth_time: int | None = None,
        acr: str | None = None,
        session_id: str | None = None,
    ) -> str:
        now = datetime.now(timezone.utc)
        claims: dict[str, Any] = {}
        if add_claims_from_scopes:
            claims.update(claims_for_scopes(user, access_token.scopes, self.scope_claims))
        claims.update(requested_claims(user, access_token.requested_claims, "id_token"))
        claims.update(
            {
                "iss": self.jwt_builder.issuer,
                "aud": access_token.client_id,
                "sub": user.identifier,
                "jti": secrets.token_hex(20),
                "iat": _timestamp(now),
                "nbf": _timestamp(now),
                "exp": _timestamp(now + timedelta(seconds=self.ttl_seconds)),
            }
        )
        if nonce:
            claims["nonce"] = nonce
        if auth_time is not None:
            claims["auth_time"] = auth_time
        if access_token_jwt:
            claims["at_hash"] = access_token_hash(access_token_jwt)
        if acr:
            claims["acr"] = acr
        if session_id:
            claims["sid"] = session_id
        return self.jwt_builder.sign(claims)


class LogoutTokenBuilder:
    def __init__(self, jwt_builder: JsonWebTokenBuilder, ttl_seconds: int = 120):
        self.jwt_builder = jwt_builder
        self.ttl_seconds = ttl_seconds

    def for_relying_party_association(self, association: RelyingPartyAssociation) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "iss": self.jwt_builder.issuer,
            "aud": association.client_id,
            "sub": association.user_id,
            "iat": _timestamp(now),
            "exp": _timestamp(now + timedelta(seconds=self.ttl_seconds)),
            "jti": secrets.token_hex(20),
            "events": {BACKCHANNEL_LOGOUT_EVENT: {}},
        }
        if association.session_id:
            claims["sid"] = association.session_id
        return self.jwt_builder.sign(claims, typ="logout+jwt")
