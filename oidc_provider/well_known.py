"""
Well-known endpoints: JWKS and OpenID Connect discovery.
"""
from fastapi import APIRouter, Depends

from oidc_provider.config import ALLOWED_SCOPES, ISSUER, SCOPE_CLAIMS
from oidc_provider.factories import get_key_store
from oidc_provider.keys import KeyStore

router = APIRouter()


@router.get("/.well-known/jwks.json")
def jwks_json(key_store: KeyStore = Depends(get_key_store)):
    """JSON Web Key Set for token signature verification; includes the previous key during rotation."""
    return key_store.jwks()


@router.get("/.well-known/openid-configuration")
def openid_configuration():
    """OpenID Connect discovery document."""
    claims = {"sub", "iss", "aud", "exp", "iat", "auth_time", "nonce", "acr", "sid"}
    for scope_claims in SCOPE_CLAIMS.values():
        claims.update(scope_claims)
    return {
        "issuer": ISSUER,
        "authorization_endpoint": f"{ISSUER}/authorize",
        "token_endpoint": f"{ISSUER}/token",
        "userinfo_endpoint": f"{ISSUER}/userinfo",
        "revocation_endpoint": f"{ISSUER}/revoke",
        "end_session_endpoint": f"{ISSUER}/logout",
        "jwks_uri": f"{ISSUER}/.well-known/jwks.json",
        "response_types_supported": ["code", "token", "id_token", "id_token token"],
        "response_modes_supported": ["query", "fragment"],
        "grant_types_supported": ["authorization_code", "refresh_token", "implicit"],
        "scopes_supported": sorted(ALLOWED_SCOPES),
        "claims_supported": sorted(claims),
        "subject_types_supported": ["public"],
        "id_token_signing_alg_values_supported": ["RS256"],
        "token_endpoint_auth_methods_supported": ["client_secret_basic", "client_secret_post", "none"],
        "code_challenge_methods_supported": ["S256", "plain"],
        "claims_parameter_supported": True,
        "request_parameter_supported": False,
        "backchannel_logout_supported": True,
        "backchannel_logout_session_supported": True,
    }
