"""
Bearer token validation for protected resources. Every way a token can be wrong ends in the same
access_denied error; the specific reason only goes to the debug log.
"""
import logging
import re

import jwt

from oidc_provider.exceptions import OidcServerError
from oidc_provider.request import ServerRequest

_BEARER_PREFIX = re.compile(r"^\s*Bearer\s+", re.IGNORECASE)

ATTRIBUTE_ACCESS_TOKEN_ID = "oauth_access_token_id"
ATTRIBUTE_CLIENT_ID = "oauth_client_id"
ATTRIBUTE_USER_ID = "oauth_user_id"
ATTRIBUTE_SCOPES = "oauth_scopes"

_GENERIC_HINT = "Access token could not be verified"


def _access_denied(hint: str = _GENERIC_HINT) -> OidcServerError:
    return OidcServerError.access_denied(hint, headers={"WWW-Authenticate": "Bearer"})


class BearerTokenValidator:
    def __init__(self, access_token_repository, jwt_builder, leeway: int = 0, logger: logging.Logger | None = None):
        self.access_token_repository = access_token_repository
        self.jwt_builder = jwt_builder
        self.leeway = leeway
        self.logger = logger or logging.getLogger(__name__)

    def _recover_authorization_header(self, request: ServerRequest) -> str | None:
        # Reverse proxies that strip Authorization usually forward it under another *-authorization name
        for name, value in request.raw_headers:
            if name != "authorization" and name.endswith("authorization") and value:
                return value
        return None

    def _extract_token(self, request: ServerRequest) -> str:
        header = request.get_header("authorization")
        if header and _BEARER_PREFIX.match(header):
            return _BEARER_PREFIX.sub("", header, count=1).strip()

        if request.method.upper() == "POST" and request.body_params and request.body_params.get("access_token"):
            return request.body_params["access_token"].strip()

        recovered = self._recover_authorization_header(request)
        if recovered and _BEARER_PREFIX.match(recovered):
            self.logger.warning(
                "Bearer token recovered from a forwarded header; check the reverse proxy passes Authorization through"
            )
            return _BEARER_PREFIX.sub("", recovered, count=1).strip()

        raise _access_denied("Missing Authorization header or access_token request body param.")

    def validate_authorization(self, request: ServerRequest) -> ServerRequest:
        """Return the request with oauth_* attributes set, or raise access_denied."""
        token = self._extract_token(request)
        try:
            claims = self.jwt_builder.decode(
                token,
                leeway=self.leeway,
                options={"require": ["exp", "jti"]},
            )
        except jwt.InvalidTokenError as e:
            self.logger.debug("Bearer token rejected: %s", e)
            raise _access_denied() from e

        jti = claims.get("jti")
        if not isinstance(jti, str) or not jti:
            self.logger.debug("Bearer token rejected: empty jti")
            raise _access_denied()
        if self.access_token_repository.is_access_token_revoked(jti):
            self.logger.debug("Bearer token rejected: revoked jti")
            raise _access_denied()

        audience = claims.get("aud")
        if isinstance(audience, list) and len(audience) == 1:
            audience = audience[0]
        scopes = claims.get("scopes") or []
        return (
            request.with_attribute(ATTRIBUTE_ACCESS_TOKEN_ID, jti)
            .with_attribute(ATTRIBUTE_CLIENT_ID, audience)
            .with_attribute(ATTRIBUTE_USER_ID, claims.get("sub"))
            .with_attribute(ATTRIBUTE_SCOPES, list(scopes))
        )
