"""
Request rules. Each rule resolves and validates one fact about a request and is registered
under a stable key; later rules read earlier facts from the result bag.
"""
import json
import logging
import time
from typing import Any

import jwt

from oidc_provider.exceptions import OidcServerError
from oidc_provider.pkce import CODE_CHALLENGE_PATTERN
from oidc_provider.request import ServerRequest
from oidc_provider.result_bag import Result, ResultBag

# Data bag keys
DATA_DEFAULT_SCOPE = "default_scope"
DATA_SCOPE_DELIMITER = "scope_delimiter_string"
DATA_LOGIN_SESSION = "login_session"


class AbstractRule:
    key = ""

    def get_key(self) -> str:
        return self.key

    def check_rule(
        self,
        request: ServerRequest,
        current_result_bag: ResultBag,
        logger: logging.Logger,
        data: dict[str, Any],
        use_fragment_in_http_error_responses: bool = False,
        allowed_server_request_methods: tuple[str, ...] = ("GET",),
    ) -> Result | None:
        raise NotImplementedError

    @staticmethod
    def _redirect_context(current_result_bag: ResultBag) -> tuple[str, str | None]:
        """(redirect_uri, state) for errors raised after redirect_uri is established."""
        redirect_uri = current_result_bag.get_or_fail(RedirectUriRule.key).value
        state_result = current_result_bag.get(StateRule.key)
        return redirect_uri, state_result.value if state_result else None


class StateRule(AbstractRule):
    key = "state"

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        return Result(self.key, request.param_for_methods("state", allowed_server_request_methods, logger))


class UiLocalesRule(AbstractRule):
    key = "ui_locales"

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        return Result(self.key, request.param_for_methods("ui_locales", allowed_server_request_methods, logger))


class ClientRule(AbstractRule):
    key = "client_id"

    def __init__(self, client_repository):
        self.client_repository = client_repository

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        client_id = request.param_for_methods("client_id", allowed_server_request_methods, logger)
        if client_id is None:
            credentials = request.basic_auth_credentials()
            client_id = credentials[0] if credentials else None
        if not client_id:
            raise OidcServerError.invalid_request("client_id")

        client = self.client_repository.get_client_entity(client_id)
        if client is None:
            raise OidcServerError.invalid_client("Client entity not found")
        return Result(self.key, client)


class RedirectUriRule(AbstractRule):
    key = "redirect_uri"

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        client = current_result_bag.get_or_fail(ClientRule.key).value
        redirect_uri = request.param_for_methods("redirect_uri", allowed_server_request_methods, logger)
        if redirect_uri is None:
            raise OidcServerError.invalid_request("redirect_uri")
        if not client.redirect_uri_allowed(redirect_uri):
            raise OidcServerError.invalid_client("Provided redirect URI is not registered for this client")
        return Result(self.key, redirect_uri)


class ScopeRule(AbstractRule):
    key = "scope"

    def __init__(self, scope_repository):
        self.scope_repository = scope_repository

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        redirect_uri, state = self._redirect_context(current_result_bag)
        scope_param = request.param_for_methods("scope", allowed_server_request_methods, logger)
        if not scope_param:
            scope_param = data.get(DATA_DEFAULT_SCOPE, "")
        delimiter = data.get(DATA_SCOPE_DELIMITER, " ")

        scopes = []
        for item in scope_param.split(delimiter):
            item = item.strip()
            if item and item not in scopes:
                scopes.append(item)
        if not scopes:
            raise OidcServerError.invalid_scope("", redirect_uri, state, use_fragment_in_http_error_responses)

        for scope in scopes:
            if self.scope_repository.get_scope_entity_by_identifier(scope) is None:
                raise OidcServerError.invalid_scope(scope, redirect_uri, state, use_fragment_in_http_error_responses)
        return Result(self.key, scopes)


class RequiredOpenIdScopeRule(AbstractRule):
    key = "required_openid_scope"

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        redirect_uri, state = self._redirect_context(current_result_bag)
        scopes = current_result_bag.get_or_fail(ScopeRule.key).value
        if "openid" not in scopes:
            raise OidcServerError.invalid_request(
                "scope",
                "Scope openid is required",
                redirect_uri,
                state,
                use_fragment_in_http_error_responses,
            )
        return Result(self.key, True)


class ScopeOfflineAccessRule(AbstractRule):
    key = "scope_offline_access"

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        redirect_uri, state = self._redirect_context(current_result_bag)
        client = current_result_bag.get_or_fail(ClientRule.key).value
        scopes = current_result_bag.get_or_fail(ScopeRule.key).value
        if "offline_access" not in scopes:
            return Result(self.key, False)
        if "offline_access" not in client.scopes:
            raise OidcServerError.invalid_scope(
                "offline_access", redirect_uri, state, use_fragment_in_http_error_responses
            )
        return Result(self.key, True)


class PromptRule(AbstractRule):
    key = "prompt"

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        redirect_uri, state = self._redirect_context(current_result_bag)
        prompt_param = request.param_for_methods("prompt", allowed_server_request_methods, logger)
        if prompt_param is None:
            return Result(self.key, [])

        prompt = [value for value in prompt_param.split(" ") if value]
        if "none" in prompt and len(prompt) > 1:
            raise OidcServerError.invalid_request(
                "prompt",
                "Invalid prompt parameter",
                redirect_uri,
                state,
                use_fragment_in_http_error_responses,
            )
        if "none" in prompt and data.get(DATA_LOGIN_SESSION) is None:
            raise OidcServerError.login_required(
                None, redirect_uri, state, use_fragment_in_http_error_responses
            )
        return Result(self.key, prompt)


class MaxAgeRule(AbstractRule):
    key = "max_age"

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        redirect_uri, state = self._redirect_context(current_result_bag)
        max_age = request.param_for_methods("max_age", allowed_server_request_methods, logger)
        if max_age is None:
            return None
        if not (max_age.isascii() and max_age.isdigit()):
            raise OidcServerError.invalid_request(
                "max_age",
                "max_age must be a valid integer",
                redirect_uri,
                state,
                use_fragment_in_http_error_responses,
            )

        login_session = data.get(DATA_LOGIN_SESSION)
        if login_session is None:
            return Result(self.key, {"auth_time": None, "expired": False})
        expired = int(time.time()) - login_session.authn_instant > int(max_age)
        return Result(self.key, {"auth_time": login_session.authn_instant, "expired": expired})


class RequestedClaimsRule(AbstractRule):
    key = "requested_claims"

    def __init__(self, scope_claims: dict[str, list[str]]):
        self.scope_claims = scope_claims

    def _authorized_claims(self, client) -> set[str]:
        scopes = client.scopes or list(self.scope_claims)
        authorized = {"sub"}
        for scope in scopes:
            authorized.update(self.scope_claims.get(scope, []))
        return authorized

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        redirect_uri, state = self._redirect_context(current_result_bag)
        claims_param = request.param_for_methods("claims", allowed_server_request_methods, logger)
        if claims_param is None:
            return None
        try:
            claims = json.loads(claims_param)
        except ValueError:
            claims = None
        if not isinstance(claims, dict):
            raise OidcServerError.invalid_request(
                "claims",
                "Claims parameter must be a JSON object",
                redirect_uri,
                state,
                use_fragment_in_http_error_responses,
            )

        client = current_result_bag.get_or_fail(ClientRule.key).value
        authorized = self._authorized_claims(client)
        filtered = {}
        for section in ("userinfo", "id_token"):
            if isinstance(claims.get(section), dict):
                filtered[section] = {
                    name: request for name, request in claims[section].items() if name in authorized
                }
        return Result(self.key, filtered)


class AcrValuesRule(AbstractRule):
    key = "acr_values"

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        acr_values = request.param_for_methods("acr_values", allowed_server_request_methods, logger)
        if not acr_values:
            return None
        return Result(self.key, {"essential": False, "values": [value for value in acr_values.split(" ") if value]})


class CodeChallengeRule(AbstractRule):
    key = "code_challenge"

    def __init__(self, require_for_public_clients: bool = True):
        self.require_for_public_clients = require_for_public_clients

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        redirect_uri, state = self._redirect_context(current_result_bag)
        client = current_result_bag.get_or_fail(ClientRule.key).value
        code_challenge = request.param_for_methods("code_challenge", allowed_server_request_methods, logger)

        if code_challenge is None:
            if self.require_for_public_clients and not client.is_confidential:
                raise OidcServerError.invalid_request(
                    "code_challenge",
                    "Code challenge must be provided for public clients",
                    redirect_uri,
                    state,
                    use_fragment_in_http_error_responses,
                )
            return Result(self.key, None)

        if not CODE_CHALLENGE_PATTERN.fullmatch(code_challenge):
            raise OidcServerError.invalid_request(
                "code_challenge",
                "Code challenge must follow the specifications of RFC-7636.",
                redirect_uri,
                state,
                use_fragment_in_http_error_responses,
            )
        return Result(self.key, code_challenge)


class CodeChallengeMethodRule(AbstractRule):
    key = "code_challenge_method"

    def __init__(self, code_challenge_verifiers: dict):
        self.code_challenge_verifiers = code_challenge_verifiers

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        redirect_uri, state = self._redirect_context(current_result_bag)
        if current_result_bag.get_or_fail(CodeChallengeRule.key).value is None:
            return Result(self.key, None)

        method = request.param_for_methods("code_challenge_method", allowed_server_request_methods, logger, "plain")
        if method not in self.code_challenge_verifiers:
            raise OidcServerError.invalid_request(
                "code_challenge_method",
                "Code challenge method must be one of "
                + ", ".join(f"`{name}`" for name in self.code_challenge_verifiers),
                redirect_uri,
                state,
                use_fragment_in_http_error_responses,
            )
        return Result(self.key, method)


class CodeVerifierRule(AbstractRule):
    key = "code_verifier"

    def __init__(self, require_for_public_clients: bool = True):
        self.require_for_public_clients = require_for_public_clients

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("POST",)):
        client = current_result_bag.get_or_fail(ClientRule.key).value
        code_verifier = request.param_for_methods("code_verifier", allowed_server_request_methods, logger)

        if code_verifier is None:
            if self.require_for_public_clients and not client.is_confidential:
                raise OidcServerError.invalid_request("code_verifier")
            return Result(self.key, None)

        if not CODE_CHALLENGE_PATTERN.fullmatch(code_verifier):
            raise OidcServerError.invalid_request(
                "code_verifier",
                "Code verifier must follow the specifications of RFC-7636.",
            )
        return Result(self.key, code_verifier)


class ClientAuthenticationRule(AbstractRule):
    """Confidential clients authenticate with client_secret_basic or client_secret_post."""

    key = "client_authentication"

    def __init__(self, client_repository):
        self.client_repository = client_repository

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("POST",)):
        client = current_result_bag.get_or_fail(ClientRule.key).value
        if not client.is_confidential:
            return Result(self.key, None)

        credentials = request.basic_auth_credentials()
        if credentials is not None and credentials[0] == client.identifier:
            method, secret = "client_secret_basic", credentials[1]
        else:
            method = "client_secret_post"
            secret = request.param_for_methods("client_secret", allowed_server_request_methods, logger)

        if not secret or not self.client_repository.validate_client(client.identifier, secret):
            raise OidcServerError.invalid_client(
                "Client credentials are invalid",
                use_basic_realm=method == "client_secret_basic",
            )
        return Result(self.key, method)


class ResponseTypeRule(AbstractRule):
    key = "response_type"

    _ALLOWED = ({"id_token"}, {"id_token", "token"})

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        redirect_uri, state = self._redirect_context(current_result_bag)
        response_type = request.param_for_methods("response_type", allowed_server_request_methods, logger) or ""
        types = set(response_type.split())
        if types not in self._ALLOWED:
            raise OidcServerError.invalid_request(
                "response_type",
                "Response type must be `id_token` or `id_token token`",
                redirect_uri,
                state,
                use_fragment_in_http_error_responses,
            )
        return Result(self.key, " ".join(sorted(types)))


class AddClaimsToIdTokenRule(AbstractRule):
    """Scope claims go into the ID token when no access token is returned."""

    key = "add_claims_to_id_token"

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        response_type = request.param_for_methods("response_type", allowed_server_request_methods, logger)
        return Result(self.key, response_type == "id_token")


class RequiredNonceRule(AbstractRule):
    key = "required_nonce"

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        redirect_uri, state = self._redirect_context(current_result_bag)
        nonce = request.param_for_methods("nonce", allowed_server_request_methods, logger)
        if not nonce:
            raise OidcServerError.invalid_request(
                "nonce",
                "nonce is required",
                redirect_uri,
                state,
                use_fragment_in_http_error_responses,
            )
        return Result(self.key, nonce)


class RequestParameterRule(AbstractRule):
    key = "request_parameter"

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        if request.param_for_methods("request", allowed_server_request_methods, logger) is None:
            return None
        redirect_uri, state = self._redirect_context(current_result_bag)
        raise OidcServerError.request_not_supported(
            "Request object not supported.",
            redirect_uri,
            state,
            use_fragment_in_http_error_responses,
        )


class IdTokenHintRule(AbstractRule):
    key = "id_token_hint"

    def __init__(self, jwt_builder):
        self.jwt_builder = jwt_builder

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        id_token_hint = request.param_for_methods("id_token_hint", allowed_server_request_methods, logger)
        if id_token_hint is None:
            return Result(self.key, None)
        if not id_token_hint.strip():
            raise OidcServerError.invalid_request("id_token_hint", "Received empty id_token_hint")
        try:
            # An expired ID token is still a valid logout hint
            claims = self.jwt_builder.decode(id_token_hint.strip(), options={"verify_exp": False})
        except jwt.InvalidTokenError as e:
            logger.debug("id_token_hint rejected: %s", e)
            raise OidcServerError.invalid_request("id_token_hint", "Could not verify id_token_hint") from e
        return Result(self.key, claims)


class PostLogoutRedirectUriRule(AbstractRule):
    key = "post_logout_redirect_uri"

    def __init__(self, client_repository):
        self.client_repository = client_repository

    def check_rule(self, request, current_result_bag, logger, data, use_fragment_in_http_error_responses=False,
                   allowed_server_request_methods=("GET",)):
        post_logout_redirect_uri = request.param_for_methods(
            "post_logout_redirect_uri", allowed_server_request_methods, logger
        )
        if post_logout_redirect_uri is None:
            return Result(self.key, None)

        claims = current_result_bag.get_or_fail(IdTokenHintRule.key).value
        if claims is None:
            raise OidcServerError.invalid_request(
                "id_token_hint",
                "id_token_hint is mandatory when post_logout_redirect_uri is provided",
            )

        audience = claims.get("aud") or []
        if isinstance(audience, str):
            audience = [audience]
        for client_id in audience:
            client = self.client_repository.get_client_entity(client_id)
            if client is not None and post_logout_redirect_uri in client.post_logout_redirect_uris:
                return Result(self.key, post_logout_redirect_uri)
        raise OidcServerError.invalid_request("post_logout_redirect_uri")
