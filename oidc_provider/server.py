"""
Authorization server: runs the endpoint rule sets and dispatches to the grant that claims the request.
"""
import logging
from collections.abc import Iterable
from typing import Any

from oidc_provider.exceptions import LogicFault, OidcServerError
from oidc_provider.grants import GET_AND_POST, AbstractGrant
from oidc_provider.request import ServerRequest
from oidc_provider.request_types import AuthorizationRequest, LogoutRequest
from oidc_provider.rules import DATA_DEFAULT_SCOPE, DATA_SCOPE_DELIMITER

AUTHORIZATION_REQUEST_RULES = ["state", "client_id", "redirect_uri"]
LOGOUT_REQUEST_RULES = ["state", "id_token_hint", "post_logout_redirect_uri", "ui_locales"]


class AuthorizationServer:
    def __init__(
        self,
        rules_manager,
        grants: Iterable[AbstractGrant] = (),
        default_scope: str = "",
        scope_delimiter: str = " ",
        logger: logging.Logger | None = None,
    ):
        self.rules_manager = rules_manager
        self.logger = logger or logging.getLogger(__name__)
        self._grants: dict[str, AbstractGrant] = {}
        self.rules_manager.set_data(DATA_DEFAULT_SCOPE, default_scope)
        self.rules_manager.set_data(DATA_SCOPE_DELIMITER, scope_delimiter)
        for grant in grants:
            self.enable_grant_type(grant)

    def enable_grant_type(self, grant: AbstractGrant) -> None:
        self._grants[grant.identifier] = grant

    def validate_authorization_request(
        self, request: ServerRequest, data: dict[str, Any] | None = None
    ) -> AuthorizationRequest:
        """
        Resolve state, client and redirect_uri, then hand over to the first grant that claims
        the response_type. Errors before redirect_uri is established carry no redirect.
        """
        for key, value in (data or {}).items():
            self.rules_manager.set_data(key, value)
        result_bag = self.rules_manager.check(request, AUTHORIZATION_REQUEST_RULES, False, GET_AND_POST)

        for grant in self._grants.values():
            if grant.can_respond_to_authorization_request(request):
                return grant.validate_authorization_request_with_request_rules(request, result_bag)

        params = request.all_params_for_methods(GET_AND_POST) or {}
        response_types = (params.get("response_type") or "").split()
        use_fragment = (
            "token" in response_types or "id_token" in response_types or params.get("response_mode") == "fragment"
        )
        raise OidcServerError.unsupported_response_type(
            result_bag.get_or_fail("redirect_uri").value,
            result_bag.get_or_fail("state").value,
            use_fragment,
        )

    def complete_authorization_request(self, auth_request: AuthorizationRequest) -> str:
        """Redirect location carrying the code or tokens."""
        grant = self._grants.get(auth_request.grant_type_id)
        if grant is None:
            raise LogicFault(f"No grant registered for {auth_request.grant_type_id}")
        return grant.complete_authorization_request(auth_request)

    def respond_to_access_token_request(self, request: ServerRequest) -> dict:
        for grant in self._grants.values():
            if grant.can_respond_to_access_token_request(request):
                return grant.respond_to_access_token_request(request)
        raise OidcServerError.unsupported_grant_type()

    def validate_logout_request(self, request: ServerRequest) -> LogoutRequest:
        result_bag = self.rules_manager.check(request, LOGOUT_REQUEST_RULES, False, GET_AND_POST)
        return LogoutRequest(
            id_token_hint=result_bag.get_or_fail("id_token_hint").value,
            post_logout_redirect_uri=result_bag.get_or_fail("post_logout_redirect_uri").value,
            state=result_bag.get_or_fail("state").value,
            ui_locales=result_bag.get_or_fail("ui_locales").value,
        )
