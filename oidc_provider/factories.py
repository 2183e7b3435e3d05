"""
Wiring: build per-request servers, validators and handlers from configuration.
Each is exposed as a FastAPI dependency; tests swap them through app.dependency_overrides.
"""
import logging
from datetime import timedelta

from fastapi import Depends
from sqlalchemy.orm import Session

from oidc_provider import config
from oidc_provider.backchannel import BackChannelLogoutHandler
from oidc_provider.bearer import BearerTokenValidator
from oidc_provider.database import get_db
from oidc_provider.grants import AuthCodeGrant, ImplicitGrant, OAuth2ImplicitGrant, RefreshTokenGrant
from oidc_provider.jwt_builder import IdTokenBuilder, JsonWebTokenBuilder, LogoutTokenBuilder
from oidc_provider.keys import KeyStore, default_key_store
from oidc_provider.pkce import default_code_challenge_verifiers
from oidc_provider.repositories import (
    AccessTokenRepository,
    AllowedOriginRepository,
    AuthCodeRepository,
    ClientRepository,
    RefreshTokenRepository,
    ScopeRepository,
    SessionRepository,
    UserRepository,
)
from oidc_provider.rules import (
    AcrValuesRule,
    AddClaimsToIdTokenRule,
    ClientAuthenticationRule,
    ClientRule,
    CodeChallengeMethodRule,
    CodeChallengeRule,
    CodeVerifierRule,
    IdTokenHintRule,
    MaxAgeRule,
    PostLogoutRedirectUriRule,
    PromptRule,
    RedirectUriRule,
    RequestedClaimsRule,
    RequestParameterRule,
    RequiredNonceRule,
    RequiredOpenIdScopeRule,
    ResponseTypeRule,
    ScopeOfflineAccessRule,
    ScopeRule,
    StateRule,
    UiLocalesRule,
)
from oidc_provider.rules_manager import RequestRulesManager
from oidc_provider.server import AuthorizationServer
from oidc_provider.tokens import TokenIssuer


def get_key_store() -> KeyStore:
    return default_key_store()


def build_jwt_builder(key_store: KeyStore) -> JsonWebTokenBuilder:
    return JsonWebTokenBuilder(key_store, config.ISSUER)


def build_request_rules_manager(db: Session, key_store: KeyStore) -> RequestRulesManager:
    client_repository = ClientRepository(db)
    jwt_builder = build_jwt_builder(key_store)
    rules = [
        StateRule(),
        ClientRule(client_repository),
        RedirectUriRule(),
        ScopeRule(ScopeRepository(config.ALLOWED_SCOPES)),
        RequiredOpenIdScopeRule(),
        ScopeOfflineAccessRule(),
        PromptRule(),
        MaxAgeRule(),
        RequestedClaimsRule(config.SCOPE_CLAIMS),
        AcrValuesRule(),
        CodeChallengeRule(config.REQUIRE_PKCE_FOR_PUBLIC_CLIENTS),
        CodeChallengeMethodRule(default_code_challenge_verifiers()),
        CodeVerifierRule(config.REQUIRE_PKCE_FOR_PUBLIC_CLIENTS),
        ClientAuthenticationRule(client_repository),
        ResponseTypeRule(),
        AddClaimsToIdTokenRule(),
        RequiredNonceRule(),
        RequestParameterRule(),
        IdTokenHintRule(jwt_builder),
        PostLogoutRedirectUriRule(client_repository),
        UiLocalesRule(),
    ]
    return RequestRulesManager(rules, logging.getLogger("oidc_provider.rules"))


def build_authorization_server(db: Session, key_store: KeyStore) -> AuthorizationServer:
    rules_manager = build_request_rules_manager(db, key_store)
    jwt_builder = build_jwt_builder(key_store)
    id_token_builder = IdTokenBuilder(jwt_builder, config.SCOPE_CLAIMS, config.ID_TOKEN_TTL_SECONDS)
    auth_code_repository = AuthCodeRepository(db)
    access_token_repository = AccessTokenRepository(db)
    refresh_token_repository = RefreshTokenRepository(db)
    user_repository = UserRepository(db)
    token_issuer = TokenIssuer(
        access_token_repository,
        refresh_token_repository,
        auth_code_repository,
        identifier_length=config.TOKEN_IDENTIFIER_BYTES,
    )
    access_token_ttl = timedelta(seconds=config.ACCESS_TOKEN_TTL_SECONDS)
    refresh_token_ttl = timedelta(seconds=config.REFRESH_TOKEN_TTL_SECONDS)
    shared = (rules_manager, token_issuer, jwt_builder, id_token_builder, user_repository, access_token_ttl)

    grants = [
        AuthCodeGrant(
            *shared,
            auth_code_repository=auth_code_repository,
            access_token_repository=access_token_repository,
            refresh_token_repository=refresh_token_repository,
            auth_code_ttl=timedelta(seconds=config.AUTH_CODE_TTL_SECONDS),
            refresh_token_ttl=refresh_token_ttl,
            code_challenge_verifiers=default_code_challenge_verifiers(),
        ),
        RefreshTokenGrant(
            *shared,
            auth_code_repository=auth_code_repository,
            access_token_repository=access_token_repository,
            refresh_token_repository=refresh_token_repository,
            refresh_token_ttl=refresh_token_ttl,
            rotate_refresh_tokens=config.REFRESH_TOKEN_ROTATION,
        ),
        ImplicitGrant(*shared),
        OAuth2ImplicitGrant(*shared),
    ]
    return AuthorizationServer(rules_manager, grants, config.DEFAULT_SCOPE, config.SCOPE_DELIMITER)


def build_bearer_token_validator(db: Session, key_store: KeyStore) -> BearerTokenValidator:
    return BearerTokenValidator(
        AccessTokenRepository(db),
        build_jwt_builder(key_store),
        leeway=config.TIMESTAMP_VALIDATION_LEEWAY_SECONDS,
    )


def build_back_channel_logout_handler(key_store: KeyStore) -> BackChannelLogoutHandler:
    return BackChannelLogoutHandler(
        LogoutTokenBuilder(build_jwt_builder(key_store), config.LOGOUT_TOKEN_TTL_SECONDS),
        concurrency=config.BACKCHANNEL_LOGOUT_CONCURRENCY,
        timeout=config.BACKCHANNEL_LOGOUT_TIMEOUT_SECONDS,
        verify_tls=config.BACKCHANNEL_LOGOUT_VERIFY_TLS,
    )


# FastAPI dependencies


def get_authorization_server(
    db: Session = Depends(get_db), key_store: KeyStore = Depends(get_key_store)
) -> AuthorizationServer:
    return build_authorization_server(db, key_store)


def get_bearer_token_validator(
    db: Session = Depends(get_db), key_store: KeyStore = Depends(get_key_store)
) -> BearerTokenValidator:
    return build_bearer_token_validator(db, key_store)


def get_back_channel_logout_handler(key_store: KeyStore = Depends(get_key_store)) -> BackChannelLogoutHandler:
    return build_back_channel_logout_handler(key_store)


def get_session_repository(db: Session = Depends(get_db)) -> SessionRepository:
    return SessionRepository(db)


def get_user_repository(db: Session = Depends(get_db)) -> UserRepository:
    return UserRepository(db)


def get_allowed_origin_repository(db: Session = Depends(get_db)) -> AllowedOriginRepository:
    return AllowedOriginRepository(db)


def get_request_rules_manager(
    db: Session = Depends(get_db), key_store: KeyStore = Depends(get_key_store)
) -> RequestRulesManager:
    return build_request_rules_manager(db, key_store)


def get_jwt_builder(key_store: KeyStore = Depends(get_key_store)) -> JsonWebTokenBuilder:
    return build_jwt_builder(key_store)


def get_access_token_repository(db: Session = Depends(get_db)) -> AccessTokenRepository:
    return AccessTokenRepository(db)


def get_refresh_token_repository(db: Session = Depends(get_db)) -> RefreshTokenRepository:
    return RefreshTokenRepository(db)
