"""
Token issuance with collision-safe identifiers.

Identifiers are random hex strings persisted under a unique constraint. A collision is retried a
bounded number of times; access tokens and codes fail hard on exhaustion, refresh tokens are optional
and fail soft.
"""
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from oidc_provider.entities import (
    AccessTokenEntity,
    AuthCodeEntity,
    ClientEntity,
    RefreshTokenEntity,
    utc_now,
)
from oidc_provider.exceptions import OidcServerError, UniqueTokenIdentifierConstraintViolation

MAX_RANDOM_TOKEN_GENERATION_ATTEMPTS = 5
DEFAULT_IDENTIFIER_BYTES = 40


def generate_unique_identifier(length: int = DEFAULT_IDENTIFIER_BYTES) -> str:
    try:
        return secrets.token_hex(length)
    except (NotImplementedError, OSError) as e:
        raise OidcServerError.server_error("Could not generate a random string") from e


class TokenIssuer:
    def __init__(
        self,
        access_token_repository,
        refresh_token_repository,
        auth_code_repository,
        identifier_length: int = DEFAULT_IDENTIFIER_BYTES,
        identifier_generator: Callable[[int], str] = generate_unique_identifier,
        clock: Callable[[], datetime] = utc_now,
        logger: logging.Logger | None = None,
    ):
        self.access_token_repository = access_token_repository
        self.refresh_token_repository = refresh_token_repository
        self.auth_code_repository = auth_code_repository
        self.identifier_length = identifier_length
        self.identifier_generator = identifier_generator
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

    def _new_identifier(self) -> str:
        return self.identifier_generator(self.identifier_length)

    def issue_access_token(
        self,
        ttl: timedelta,
        client: ClientEntity,
        user_id: str | None,
        scopes: list[str],
        auth_code_id: str | None = None,
        requested_claims: dict | None = None,
    ) -> AccessTokenEntity:
        now = self.clock()
        for attempt in range(1, MAX_RANDOM_TOKEN_GENERATION_ATTEMPTS + 1):
            access_token = AccessTokenEntity(
                identifier=self._new_identifier(),
                client_id=client.identifier,
                user_id=user_id,
                scopes=list(scopes),
                expires_at=now + ttl,
                auth_code_id=auth_code_id,
                requested_claims=requested_claims,
                issued_at=now,
            )
            try:
                self.access_token_repository.persist_new_access_token(access_token)
                return access_token
            except UniqueTokenIdentifierConstraintViolation:
                if attempt == MAX_RANDOM_TOKEN_GENERATION_ATTEMPTS:
                    raise

    def issue_refresh_token(
        self,
        access_token: AccessTokenEntity,
        ttl: timedelta,
        auth_code_id: str | None = None,
    ) -> RefreshTokenEntity | None:
        """New refresh token bound to access_token, or None if no unique identifier could be found."""
        expires_at = self.clock() + ttl
        for attempt in range(1, MAX_RANDOM_TOKEN_GENERATION_ATTEMPTS + 1):
            refresh_token = RefreshTokenEntity(
                identifier=self._new_identifier(),
                access_token_id=access_token.identifier,
                client_id=access_token.client_id,
                user_id=access_token.user_id,
                scopes=list(access_token.scopes),
                expires_at=expires_at,
                auth_code_id=auth_code_id,
            )
            try:
                self.refresh_token_repository.persist_new_refresh_token(refresh_token)
                return refresh_token
            except UniqueTokenIdentifierConstraintViolation:
                if attempt == MAX_RANDOM_TOKEN_GENERATION_ATTEMPTS:
                    self.logger.error(
                        "Could not issue refresh token for client_id=%s after %d attempts",
                        access_token.client_id,
                        attempt,
                    )
        return None

    def issue_auth_code(
        self,
        ttl: timedelta,
        client: ClientEntity,
        user_id: str,
        scopes: list[str],
        redirect_uri: str | None,
        **binding,
    ) -> AuthCodeEntity:
        """Authorization code; binding carries nonce, code_challenge(_method), requested_claims, auth_time, acr, session_id."""
        expires_at = self.clock() + ttl
        for attempt in range(1, MAX_RANDOM_TOKEN_GENERATION_ATTEMPTS + 1):
            auth_code = AuthCodeEntity(
                identifier=self._new_identifier(),
                client_id=client.identifier,
                user_id=user_id,
                scopes=list(scopes),
                expires_at=expires_at,
                redirect_uri=redirect_uri,
                **binding,
            )
            try:
                self.auth_code_repository.persist_new_auth_code(auth_code)
                return auth_code
            except UniqueTokenIdentifierConstraintViolation:
                if attempt == MAX_RANDOM_TOKEN_GENERATION_ATTEMPTS:
                    raise
