"""
Grants: one strategy per OAuth2/OIDC flow.

A grant starts once the request rules have run. It turns the result bag into an AuthorizationRequest
at the authorization endpoint, completes that request into a redirect, and answers token endpoint
requests for its grant_type.
"""
import logging
from datetime import timedelta
from urllib.parse import urlencode

from oidc_provider.entities import AccessTokenEntity, ClientEntity, RefreshTokenEntity
from oidc_provider.exceptions import LogicFault, OidcServerError
from oidc_provider.request import ServerRequest
from oidc_provider.request_types import AuthorizationRequest
from oidc_provider.result_bag import ResultBag

GET_AND_POST = ("GET", "POST")
POST_ONLY = ("POST",)


def make_redirect_uri(uri: str, params: dict, use_fragment: bool = False) -> str:
    separator = "#" if use_fragment else "?"
    separator = "&" if separator in uri else separator
    return f"{uri}{separator}{urlencode(params)}"


class AbstractGrant:
    identifier = ""
    # Release scope claims in every ID token, not only when no access token is returned
    always_add_claims_to_id_token = True

    def __init__(
        self,
        rules_manager,
        token_issuer,
        jwt_builder,
        id_token_builder,
        user_repository,
        access_token_ttl: timedelta,
        logger: logging.Logger | None = None,
    ):
        self.rules_manager = rules_manager
        self.token_issuer = token_issuer
        self.jwt_builder = jwt_builder
        self.id_token_builder = id_token_builder
        self.user_repository = user_repository
        self.access_token_ttl = access_token_ttl
        self.logger = logger or logging.getLogger(__name__)

    # Authorization endpoint

    def can_respond_to_authorization_request(self, request: ServerRequest) -> bool:
        return False

    def validate_authorization_request_with_request_rules(
        self, request: ServerRequest, result_bag: ResultBag
    ) -> AuthorizationRequest:
        raise LogicFault(f"Grant {self.identifier} does not handle authorization requests")

    def complete_authorization_request(self, auth_request: AuthorizationRequest) -> str:
        raise LogicFault(f"Grant {self.identifier} does not handle authorization requests")

    # Token endpoint

    def can_respond_to_access_token_request(self, request: ServerRequest) -> bool:
        return request.param_for_methods("grant_type", POST_ONLY) == self.identifier

    def respond_to_access_token_request(self, request: ServerRequest) -> dict:
        raise LogicFault(f"Grant {self.identifier} does not handle token requests")

    # Shared helpers

    def _check_rules(
        self,
        request: ServerRequest,
        rule_keys: list[str],
        use_fragment: bool = False,
        allowed_methods: tuple[str, ...] = GET_AND_POST,
    ) -> ResultBag:
        if self.rules_manager is None:
            raise LogicFault("Request rules manager not set on grant")
        return self.rules_manager.check(request, rule_keys, use_fragment, allowed_methods)

    def _ensure_completable(self, auth_request: AuthorizationRequest) -> None:
        if auth_request.user is None:
            raise LogicFault("A user must be set on the authorization request before completion")
        if not auth_request.is_authorization_approved:
            raise OidcServerError.access_denied(
                "The user denied the request",
                auth_request.redirect_uri,
                auth_request.state,
                auth_request.use_fragment,
            )

    def _expires_in(self, access_token: AccessTokenEntity) -> int:
        return int((access_token.expires_at - access_token.issued_at).total_seconds())

    def _id_token(
        self,
        access_token: AccessTokenEntity,
        add_claims_from_scopes: bool = False,
        access_token_jwt: str | None = None,
        nonce: str | None = None,
        auth_time: int | None = None,
        acr: str | None = None,
        session_id: str | None = None,
    ) -> str:
        user = self.user_repository.get_user_entity_by_identifier(access_token.user_id)
        if user is None:
            raise OidcServerError.server_error("User not found for ID token")
        return self.id_token_builder.build(
            user,
            access_token,
            add_claims_from_scopes=add_claims_from_scopes or self.always_add_claims_to_id_token,
            access_token_jwt=access_token_jwt,
            nonce=nonce,
            auth_time=auth_time,
            acr=acr,
            session_id=session_id,
        )

    def _bearer_token_response(
        self,
        access_token: AccessTokenEntity,
        refresh_token: RefreshTokenEntity | None = None,
        id_token: str | None = None,
    ) -> dict:
        response = {
            "access_token": self.jwt_builder.access_token_to_jwt(access_token),
            "token_type": "Bearer",
            "expires_in": self._expires_in(access_token),
            "scope": " ".join(access_token.scopes),
        }
        if refresh_token is not None:
            response["refresh_token"] = refresh_token.identifier
        if id_token is not None:
            response["id_token"] = id_token
        return response


class AuthCodeGrant(AbstractGrant):
    identifier = "authorization_code"

    AUTHORIZATION_RULES = [
        "request_parameter",
        "prompt",
        "max_age",
        "scope",
        "requested_claims",
        "acr_values",
        "scope_offline_access",
        "code_challenge",
        "code_challenge_method",
    ]
    TOKEN_RULES = ["client_id", "redirect_uri", "client_authentication", "code_verifier"]

    def __init__(
        self,
        rules_manager,
        token_issuer,
        jwt_builder,
        id_token_builder,
        user_repository,
        access_token_ttl: timedelta,
        *,
        auth_code_repository,
        access_token_repository,
        refresh_token_repository,
        auth_code_ttl: timedelta,
        refresh_token_ttl: timedelta,
        code_challenge_verifiers: dict,
        logger: logging.Logger | None = None,
    ):
        super().__init__(
            rules_manager, token_issuer, jwt_builder, id_token_builder, user_repository, access_token_ttl, logger
        )
        self.auth_code_repository = auth_code_repository
        self.access_token_repository = access_token_repository
        self.refresh_token_repository = refresh_token_repository
        self.auth_code_ttl = auth_code_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.code_challenge_verifiers = code_challenge_verifiers

    def can_respond_to_authorization_request(self, request: ServerRequest) -> bool:
        params = request.all_params_for_methods(GET_AND_POST) or {}
        return params.get("response_type") == "code" and "client_id" in params

    def validate_authorization_request_with_request_rules(
        self, request: ServerRequest, result_bag: ResultBag
    ) -> AuthorizationRequest:
        result_bag = self._check_rules(request, self.AUTHORIZATION_RULES)
        max_age = result_bag.get("max_age")
        prompt = result_bag.get_or_fail("prompt").value
        acr_values = result_bag.get("acr_values")
        requested_claims = result_bag.get("requested_claims")
        return AuthorizationRequest(
            grant_type_id=self.identifier,
            client=result_bag.get_or_fail("client_id").value,
            redirect_uri=result_bag.get_or_fail("redirect_uri").value,
            scopes=result_bag.get_or_fail("scope").value,
            response_type="code",
            state=result_bag.get_or_fail("state").value,
            nonce=request.param_for_methods("nonce", GET_AND_POST),
            code_challenge=result_bag.get_or_fail("code_challenge").value,
            code_challenge_method=result_bag.get_or_fail("code_challenge_method").value,
            requested_claims=requested_claims.value if requested_claims else None,
            acr_values=acr_values.value if acr_values else None,
            prompt=prompt,
            requires_authentication="login" in prompt or bool(max_age and max_age.value["expired"]),
        )

    def complete_authorization_request(self, auth_request: AuthorizationRequest) -> str:
        self._ensure_completable(auth_request)
        auth_code = self.token_issuer.issue_auth_code(
            self.auth_code_ttl,
            auth_request.client,
            auth_request.user.identifier,
            auth_request.scopes,
            auth_request.redirect_uri,
            nonce=auth_request.nonce,
            code_challenge=auth_request.code_challenge,
            code_challenge_method=auth_request.code_challenge_method,
            requested_claims=auth_request.requested_claims,
            auth_time=auth_request.auth_time,
            acr=auth_request.acr,
            session_id=auth_request.session_id,
        )
        params = {"code": auth_code.identifier}
        if auth_request.state is not None:
            params["state"] = auth_request.state
        return make_redirect_uri(auth_request.redirect_uri, params)

    def _revoke_descendants(self, auth_code_id: str) -> None:
        self.access_token_repository.revoke_by_auth_code_id(auth_code_id)
        self.refresh_token_repository.revoke_by_auth_code_id(auth_code_id)

    def _verify_pkce(self, auth_code, code_verifier: str | None) -> None:
        if auth_code.code_challenge is None:
            if code_verifier is not None:
                # PKCE downgrade: a verifier for a code issued without a challenge
                raise OidcServerError.invalid_request(
                    "code_verifier", "code_verifier received when no code_challenge is present"
                )
            return
        if code_verifier is None:
            raise OidcServerError.invalid_request("code_verifier")
        verifier = self.code_challenge_verifiers.get(auth_code.code_challenge_method or "plain")
        if verifier is None:
            raise OidcServerError.server_error(
                f"Unsupported code challenge method `{auth_code.code_challenge_method}`"
            )
        if not verifier.verify_code_challenge(code_verifier, auth_code.code_challenge):
            raise OidcServerError.invalid_grant("Failed to verify `code_verifier`.")

    def respond_to_access_token_request(self, request: ServerRequest) -> dict:
        result_bag = self._check_rules(request, self.TOKEN_RULES, allowed_methods=POST_ONLY)
        client: ClientEntity = result_bag.get_or_fail("client_id").value
        redirect_uri = result_bag.get_or_fail("redirect_uri").value
        code_verifier = result_bag.get_or_fail("code_verifier").value
        if result_bag.get_or_fail("client_authentication").value is None and code_verifier is None:
            raise OidcServerError.invalid_client("Client authentication not performed")

        code_id = request.param_for_methods("code", POST_ONLY)
        if not code_id:
            raise OidcServerError.invalid_request("code")
        auth_code = self.auth_code_repository.find_by_id(code_id)
        if auth_code is None:
            raise OidcServerError.invalid_grant("Authorization code not found")
        if auth_code.is_revoked:
            self.logger.warning(
                "Authorization code replay: client_id=%s, revoking tokens issued for the code", client.identifier
            )
            self._revoke_descendants(auth_code.identifier)
            raise OidcServerError.invalid_grant("Authorization code has been revoked")
        if auth_code.is_expired():
            raise OidcServerError.invalid_grant("Authorization code has expired")
        if auth_code.client_id != client.identifier:
            raise OidcServerError.invalid_request("client_id", "Authorization code was not issued to this client")
        if auth_code.redirect_uri is not None and auth_code.redirect_uri != redirect_uri:
            raise OidcServerError.invalid_request("redirect_uri", "Invalid redirect URI")
        self._verify_pkce(auth_code, code_verifier)

        if not self.auth_code_repository.consume_auth_code(auth_code.identifier):
            # Lost a concurrent redemption race
            self._revoke_descendants(auth_code.identifier)
            raise OidcServerError.invalid_grant("Authorization code has been revoked")

        access_token = self.token_issuer.issue_access_token(
            self.access_token_ttl,
            client,
            auth_code.user_id,
            auth_code.scopes,
            auth_code_id=auth_code.identifier,
            requested_claims=auth_code.requested_claims,
        )
        refresh_token = None
        if "offline_access" in auth_code.scopes:
            refresh_token = self.token_issuer.issue_refresh_token(
                access_token, self.refresh_token_ttl, auth_code.identifier
            )
        id_token = None
        if "openid" in auth_code.scopes:
            id_token = self._id_token(
                access_token,
                nonce=auth_code.nonce,
                auth_time=auth_code.auth_time,
                acr=auth_code.acr,
                session_id=auth_code.session_id,
            )
        self.logger.info(
            "authorization_code grant: tokens issued for client_id=%s sub=%s (refresh=%s)",
            client.identifier,
            auth_code.user_id,
            refresh_token is not None,
        )
        return self._bearer_token_response(access_token, refresh_token, id_token)


class RefreshTokenGrant(AbstractGrant):
    identifier = "refresh_token"

    TOKEN_RULES = ["client_id", "client_authentication"]

    def __init__(
        self,
        rules_manager,
        token_issuer,
        jwt_builder,
        id_token_builder,
        user_repository,
        access_token_ttl: timedelta,
        *,
        auth_code_repository,
        access_token_repository,
        refresh_token_repository,
        refresh_token_ttl: timedelta,
        rotate_refresh_tokens: bool = True,
        logger: logging.Logger | None = None,
    ):
        super().__init__(
            rules_manager, token_issuer, jwt_builder, id_token_builder, user_repository, access_token_ttl, logger
        )
        self.auth_code_repository = auth_code_repository
        self.access_token_repository = access_token_repository
        self.refresh_token_repository = refresh_token_repository
        self.refresh_token_ttl = refresh_token_ttl
        self.rotate_refresh_tokens = rotate_refresh_tokens

    def _validate_old_refresh_token(self, request: ServerRequest, client: ClientEntity) -> RefreshTokenEntity:
        token_id = request.param_for_methods("refresh_token", POST_ONLY)
        if not token_id:
            raise OidcServerError.invalid_request("refresh_token")
        refresh_token = self.refresh_token_repository.find_by_id(token_id)
        if refresh_token is None:
            raise OidcServerError.invalid_refresh_token("Token not found")
        if refresh_token.client_id != client.identifier:
            self.logger.warning(
                "refresh_token grant: token presented by client_id=%s belongs to another client", client.identifier
            )
            raise OidcServerError.invalid_refresh_token("Token is not linked to client")
        if refresh_token.is_expired():
            raise OidcServerError.invalid_refresh_token("Token has expired")
        if refresh_token.is_revoked:
            raise OidcServerError.invalid_refresh_token("Token has been revoked")
        return refresh_token

    def _requested_scopes(self, request: ServerRequest, original_scopes: list[str]) -> list[str]:
        scope_param = request.param_for_methods("scope", POST_ONLY)
        if not scope_param:
            return list(original_scopes)
        scopes = [scope for scope in scope_param.split(" ") if scope]
        for scope in scopes:
            # Scopes can only be narrowed on refresh
            if scope not in original_scopes:
                raise OidcServerError.invalid_scope(scope)
        return scopes

    def respond_to_access_token_request(self, request: ServerRequest) -> dict:
        result_bag = self._check_rules(request, self.TOKEN_RULES, allowed_methods=POST_ONLY)
        client: ClientEntity = result_bag.get_or_fail("client_id").value
        old_refresh_token = self._validate_old_refresh_token(request, client)
        scopes = self._requested_scopes(request, old_refresh_token.scopes)

        old_access_token = self.access_token_repository.find_by_id(old_refresh_token.access_token_id)
        access_token = self.token_issuer.issue_access_token(
            self.access_token_ttl,
            client,
            old_refresh_token.user_id,
            scopes,
            auth_code_id=old_refresh_token.auth_code_id,
            requested_claims=old_access_token.requested_claims if old_access_token else None,
        )
        refresh_token = old_refresh_token
        if self.rotate_refresh_tokens:
            refresh_token = self.token_issuer.issue_refresh_token(
                access_token, self.refresh_token_ttl, old_refresh_token.auth_code_id
            )
        # Old tokens stay valid until the new ones exist
        self.access_token_repository.revoke_access_token(old_refresh_token.access_token_id)
        if self.rotate_refresh_tokens:
            self.refresh_token_repository.revoke_refresh_token(old_refresh_token.identifier)

        id_token = None
        if "openid" in scopes:
            auth_code = None
            if old_refresh_token.auth_code_id:
                auth_code = self.auth_code_repository.find_by_id(old_refresh_token.auth_code_id)
            id_token = self._id_token(
                access_token,
                auth_time=auth_code.auth_time if auth_code else None,
                acr=auth_code.acr if auth_code else None,
                session_id=auth_code.session_id if auth_code else None,
            )
        self.logger.info(
            "refresh_token grant: new tokens issued for client_id=%s sub=%s (rotated=%s)",
            client.identifier,
            old_refresh_token.user_id,
            self.rotate_refresh_tokens,
        )
        return self._bearer_token_response(access_token, refresh_token, id_token)


class OAuth2ImplicitGrant(AbstractGrant):
    """response_type=token: access token straight from the authorization endpoint, in the fragment."""

    identifier = "oauth2_implicit"

    AUTHORIZATION_RULES = ["scope"]

    def can_respond_to_authorization_request(self, request: ServerRequest) -> bool:
        params = request.all_params_for_methods(GET_AND_POST) or {}
        return params.get("response_type") == "token" and "client_id" in params

    def can_respond_to_access_token_request(self, request: ServerRequest) -> bool:
        return False

    def validate_authorization_request_with_request_rules(
        self, request: ServerRequest, result_bag: ResultBag
    ) -> AuthorizationRequest:
        result_bag = self._check_rules(request, self.AUTHORIZATION_RULES, use_fragment=True)
        return AuthorizationRequest(
            grant_type_id=self.identifier,
            client=result_bag.get_or_fail("client_id").value,
            redirect_uri=result_bag.get_or_fail("redirect_uri").value,
            scopes=result_bag.get_or_fail("scope").value,
            response_type="token",
            state=result_bag.get_or_fail("state").value,
            use_fragment=True,
        )

    def _issue_access_token(self, auth_request: AuthorizationRequest) -> AccessTokenEntity:
        return self.token_issuer.issue_access_token(
            self.access_token_ttl,
            auth_request.client,
            auth_request.user.identifier,
            auth_request.scopes,
            requested_claims=auth_request.requested_claims,
        )

    def complete_authorization_request(self, auth_request: AuthorizationRequest) -> str:
        self._ensure_completable(auth_request)
        access_token = self._issue_access_token(auth_request)
        params = {
            "access_token": self.jwt_builder.access_token_to_jwt(access_token),
            "token_type": "Bearer",
            "expires_in": self._expires_in(access_token),
            "scope": " ".join(access_token.scopes),
        }
        if auth_request.state is not None:
            params["state"] = auth_request.state
        return make_redirect_uri(auth_request.redirect_uri, params, use_fragment=True)


class ImplicitGrant(OAuth2ImplicitGrant):
    """OIDC implicit flow: response_type id_token or id_token token."""

    identifier = "implicit"

    AUTHORIZATION_RULES = [
        "request_parameter",
        "prompt",
        "max_age",
        "scope",
        "required_openid_scope",
        "response_type",
        "add_claims_to_id_token",
        "required_nonce",
        "requested_claims",
        "acr_values",
    ]

    def can_respond_to_authorization_request(self, request: ServerRequest) -> bool:
        params = request.all_params_for_methods(GET_AND_POST) or {}
        response_types = (params.get("response_type") or "").split()
        return "id_token" in response_types and "code" not in response_types and "client_id" in params

    def validate_authorization_request_with_request_rules(
        self, request: ServerRequest, result_bag: ResultBag
    ) -> AuthorizationRequest:
        result_bag = self._check_rules(request, self.AUTHORIZATION_RULES, use_fragment=True)
        max_age = result_bag.get("max_age")
        prompt = result_bag.get_or_fail("prompt").value
        acr_values = result_bag.get("acr_values")
        requested_claims = result_bag.get("requested_claims")
        return AuthorizationRequest(
            grant_type_id=self.identifier,
            client=result_bag.get_or_fail("client_id").value,
            redirect_uri=result_bag.get_or_fail("redirect_uri").value,
            scopes=result_bag.get_or_fail("scope").value,
            response_type=result_bag.get_or_fail("response_type").value,
            state=result_bag.get_or_fail("state").value,
            nonce=result_bag.get_or_fail("required_nonce").value,
            requested_claims=requested_claims.value if requested_claims else None,
            acr_values=acr_values.value if acr_values else None,
            prompt=prompt,
            add_claims_to_id_token=result_bag.get_or_fail("add_claims_to_id_token").value,
            use_fragment=True,
            requires_authentication="login" in prompt or bool(max_age and max_age.value["expired"]),
        )

    def complete_authorization_request(self, auth_request: AuthorizationRequest) -> str:
        self._ensure_completable(auth_request)
        access_token = self._issue_access_token(auth_request)
        params = {}
        access_token_jwt = None
        if auth_request.should_return_access_token():
            access_token_jwt = self.jwt_builder.access_token_to_jwt(access_token)
            params["access_token"] = access_token_jwt
            params["token_type"] = "Bearer"
            params["expires_in"] = self._expires_in(access_token)
        params["id_token"] = self._id_token(
            access_token,
            add_claims_from_scopes=auth_request.add_claims_to_id_token,
            access_token_jwt=access_token_jwt,
            nonce=auth_request.nonce,
            auth_time=auth_request.auth_time,
            acr=auth_request.acr,
            session_id=auth_request.session_id,
        )
        if auth_request.state is not None:
            params["state"] = auth_request.state
        return make_redirect_uri(auth_request.redirect_uri, params, use_fragment=True)
