"""
OIDC UserInfo endpoint (GET/POST /userinfo). Bearer token required; returns claims by scope and by the
userinfo section of the claims request bound to the token.
"""
import logging

from fastapi import APIRouter, Depends

from oidc_provider.bearer import ATTRIBUTE_ACCESS_TOKEN_ID, ATTRIBUTE_SCOPES, ATTRIBUTE_USER_ID, BearerTokenValidator
from oidc_provider.claims import claims_for_scopes, requested_claims
from oidc_provider.config import SCOPE_CLAIMS
from oidc_provider.cors import handle_cors
from oidc_provider.exceptions import OidcServerError
from oidc_provider.factories import (
    get_access_token_repository,
    get_allowed_origin_repository,
    get_bearer_token_validator,
    get_user_repository,
)
from oidc_provider.repositories import AccessTokenRepository, AllowedOriginRepository, UserRepository
from oidc_provider.request import ServerRequest, get_server_request

logger = logging.getLogger(__name__)
router = APIRouter()


@router.api_route("/userinfo", methods=["GET", "POST"])
def userinfo(
    server_request: ServerRequest = Depends(get_server_request),
    validator: BearerTokenValidator = Depends(get_bearer_token_validator),
    users: UserRepository = Depends(get_user_repository),
    access_tokens: AccessTokenRepository = Depends(get_access_token_repository),
):
    """sub always; profile, email, address and phone release their claim sets."""
    authorized = validator.validate_authorization(server_request)
    user = users.get_user_entity_by_identifier(authorized.get_attribute(ATTRIBUTE_USER_ID))
    if user is None:
        raise OidcServerError.access_denied("User not found", headers={"WWW-Authenticate": "Bearer"})

    claims = claims_for_scopes(user, authorized.get_attribute(ATTRIBUTE_SCOPES, []), SCOPE_CLAIMS)
    access_token = access_tokens.find_by_id(authorized.get_attribute(ATTRIBUTE_ACCESS_TOKEN_ID))
    if access_token is not None:
        claims.update(requested_claims(user, access_token.requested_claims, "userinfo"))
    claims["sub"] = user.identifier
    return claims


@router.options("/userinfo")
def userinfo_preflight(
    server_request: ServerRequest = Depends(get_server_request),
    origins: AllowedOriginRepository = Depends(get_allowed_origin_repository),
):
    return handle_cors(server_request, origins)
