"""
Token revocation endpoint (POST /revoke). RFC 7009.
The client authenticates like at the token endpoint; tokens issued to other clients are left alone.
Always 200 with an empty body once the client is authenticated, so token existence is not leaked.
"""
import logging

import jwt
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from oidc_provider.exceptions import OidcServerError
from oidc_provider.factories import (
    get_access_token_repository,
    get_jwt_builder,
    get_refresh_token_repository,
    get_request_rules_manager,
)
from oidc_provider.grants import POST_ONLY
from oidc_provider.jwt_builder import JsonWebTokenBuilder
from oidc_provider.repositories import AccessTokenRepository, RefreshTokenRepository
from oidc_provider.request import ServerRequest, get_server_request
from oidc_provider.rules_manager import RequestRulesManager

logger = logging.getLogger(__name__)
router = APIRouter()

CLIENT_RULES = ["client_id", "client_authentication"]


def _access_token_id(token: str, jwt_builder: JsonWebTokenBuilder) -> str:
    """jti of a signed access token, or the raw value when it is not one of our JWTs."""
    if token.count(".") != 2:
        return token
    try:
        claims = jwt_builder.decode(token, options={"verify_exp": False})
    except jwt.InvalidTokenError as e:
        logger.debug("revoke: token is not a verifiable JWT: %s", e)
        return token
    return claims.get("jti") or token


@router.post("/revoke")
def revoke(
    server_request: ServerRequest = Depends(get_server_request),
    rules_manager: RequestRulesManager = Depends(get_request_rules_manager),
    jwt_builder: JsonWebTokenBuilder = Depends(get_jwt_builder),
    access_tokens: AccessTokenRepository = Depends(get_access_token_repository),
    refresh_tokens: RefreshTokenRepository = Depends(get_refresh_token_repository),
):
    result_bag = rules_manager.check(server_request, CLIENT_RULES, False, POST_ONLY)
    client = result_bag.get_or_fail("client_id").value

    token = (server_request.param_for_methods("token", POST_ONLY) or "").strip()
    if not token:
        raise OidcServerError.invalid_request("token")
    hint = (server_request.param_for_methods("token_type_hint", POST_ONLY) or "").strip().lower()

    if hint in ("", "refresh_token"):
        refresh_token = refresh_tokens.find_by_id(token)
        if refresh_token is not None and refresh_token.client_id == client.identifier:
            refresh_tokens.revoke_refresh_token(refresh_token.identifier)
            access_tokens.revoke_access_token(refresh_token.access_token_id)
            logger.info("revoke: refresh token revoked, client_id=%s", client.identifier)
            return JSONResponse({})

    access_token = access_tokens.find_by_id(_access_token_id(token, jwt_builder))
    if access_token is not None and access_token.client_id == client.identifier:
        access_tokens.revoke_access_token(access_token.identifier)
        logger.info("revoke: access token revoked, client_id=%s", client.identifier)
    return JSONResponse({})
