"""
Tests for token identifier generation and the retry-on-collision issuer.
"""
import logging
from datetime import timedelta
from unittest.mock import patch

import pytest

from oidc_provider.entities import ClientEntity
from oidc_provider.exceptions import OidcServerError, UniqueTokenIdentifierConstraintViolation
from oidc_provider.tokens import MAX_RANDOM_TOKEN_GENERATION_ATTEMPTS, TokenIssuer, generate_unique_identifier

CLIENT = ClientEntity(identifier="spa", name="SPA", redirect_uris=["http://rp/cb"])


class CollidingRepository:
    """Rejects the first `collisions` identifiers, then stores."""

    def __init__(self, collisions: int):
        self.collisions = collisions
        self.attempts = []
        self.stored = []

    def _persist(self, entity):
        self.attempts.append(entity.identifier)
        if len(self.attempts) <= self.collisions:
            raise UniqueTokenIdentifierConstraintViolation.create()
        self.stored.append(entity)

    persist_new_access_token = _persist
    persist_new_refresh_token = _persist
    persist_new_auth_code = _persist


def _counter():
    count = iter(range(1000))
    return lambda length: f"id-{next(count)}"


def _issuer(access=0, refresh=0, codes=0):
    return TokenIssuer(
        CollidingRepository(access),
        CollidingRepository(refresh),
        CollidingRepository(codes),
        identifier_generator=_counter(),
    )


def test_generated_identifier_is_hex_of_requested_length():
    identifier = generate_unique_identifier(40)
    assert len(identifier) == 80
    int(identifier, 16)
    assert generate_unique_identifier(40) != identifier


def test_access_token_retries_on_collision():
    issuer = _issuer(access=2)
    token = issuer.issue_access_token(timedelta(hours=1), CLIENT, "1", ["openid"])
    assert token.identifier == "id-2"
    assert issuer.access_token_repository.attempts == ["id-0", "id-1", "id-2"]
    assert token.expires_at - token.issued_at == timedelta(hours=1)


def test_access_token_gives_up_after_max_attempts():
    issuer = _issuer(access=MAX_RANDOM_TOKEN_GENERATION_ATTEMPTS)
    with pytest.raises(UniqueTokenIdentifierConstraintViolation):
        issuer.issue_access_token(timedelta(hours=1), CLIENT, "1", ["openid"])
    assert len(issuer.access_token_repository.attempts) == MAX_RANDOM_TOKEN_GENERATION_ATTEMPTS


def test_refresh_token_exhaustion_returns_none_and_logs(caplog):
    issuer = _issuer(refresh=MAX_RANDOM_TOKEN_GENERATION_ATTEMPTS)
    access_token = issuer.issue_access_token(timedelta(hours=1), CLIENT, "1", ["offline_access"])
    with caplog.at_level(logging.ERROR, logger="oidc_provider.tokens"):
        assert issuer.issue_refresh_token(access_token, timedelta(days=1)) is None
    assert "Could not issue refresh token" in caplog.text
    assert len(issuer.refresh_token_repository.attempts) == MAX_RANDOM_TOKEN_GENERATION_ATTEMPTS


def test_refresh_token_bound_to_access_token():
    issuer = _issuer(refresh=1)
    access_token = issuer.issue_access_token(timedelta(hours=1), CLIENT, "1", ["openid", "offline_access"])
    refresh_token = issuer.issue_refresh_token(access_token, timedelta(days=1), auth_code_id="code-1")
    assert refresh_token.access_token_id == access_token.identifier
    assert refresh_token.scopes == access_token.scopes
    assert refresh_token.auth_code_id == "code-1"


def test_auth_code_carries_binding_and_reraises_on_exhaustion():
    issuer = _issuer()
    code = issuer.issue_auth_code(
        timedelta(minutes=10), CLIENT, "1", ["openid"], "http://rp/cb", nonce="n", session_id="sid"
    )
    assert (code.nonce, code.session_id, code.client_id) == ("n", "sid", "spa")

    issuer = _issuer(codes=MAX_RANDOM_TOKEN_GENERATION_ATTEMPTS)
    with pytest.raises(UniqueTokenIdentifierConstraintViolation):
        issuer.issue_auth_code(timedelta(minutes=10), CLIENT, "1", ["openid"], "http://rp/cb")


def test_identifier_generation_failure_is_server_error():
    with patch("oidc_provider.tokens.secrets.token_hex", side_effect=OSError("no entropy")):
        with pytest.raises(OidcServerError) as exc_info:
            generate_unique_identifier(40)
    assert exc_info.value.error_type == "server_error"
    assert exc_info.value.http_status == 500


def test_revocation_is_monotonic():
    issuer = _issuer()
    access_token = issuer.issue_access_token(timedelta(hours=1), CLIENT, "1", ["openid"])
    assert access_token.is_revoked is False
    access_token.revoke()
    access_token.revoke()
    assert access_token.is_revoked is True
    assert not access_token.is_expired()
