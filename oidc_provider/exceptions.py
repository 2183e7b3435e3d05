"""
Error families for the provider.

OidcServerError carries the OAuth2/OIDC error taxonomy and knows how to render itself as an
HTTP response (redirect with error parameters, or a JSON body). LogicFault marks an internal
invariant violation (deployment or programming bug) and is never translated into a protocol error.
"""
from urllib.parse import urlencode

from fastapi.responses import JSONResponse, RedirectResponse


class LogicFault(RuntimeError):
    """Internal invariant violation: unregistered rule key, missing prerequisite result, etc."""


class UniqueTokenIdentifierConstraintViolation(Exception):
    """Persistence layer rejected a token identifier because it already exists."""

    @classmethod
    def create(cls) -> "UniqueTokenIdentifierConstraintViolation":
        return cls("Could not create unique access token identifier")


class OidcServerError(Exception):
    def __init__(
        self,
        message: str,
        code: int,
        error_type: str,
        http_status: int = 400,
        hint: str | None = None,
        redirect_uri: str | None = None,
        state: str | None = None,
        use_fragment: bool = False,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.error_type = error_type
        self.http_status = http_status
        self.hint = hint
        self.redirect_uri = redirect_uri
        self.state = state
        self.use_fragment = use_fragment
        self.headers = dict(headers or {})

    def __str__(self) -> str:
        return self.description

    @property
    def description(self) -> str:
        if self.hint:
            return f"{self.message} ({self.hint})"
        return self.message

    @property
    def payload(self) -> dict:
        payload = {"error": self.error_type, "error_description": self.description}
        if self.state is not None:
            payload["state"] = self.state
        return payload

    def has_redirect(self) -> bool:
        return bool(self.redirect_uri)

    def redirect_location(self) -> str:
        """Append the error payload to redirect_uri as query string or fragment."""
        separator = "#" if self.use_fragment else "?"
        uri = self.redirect_uri or ""
        separator = "&" if separator in uri else separator
        return f"{uri}{separator}{urlencode(self.payload)}"

    def to_response(self):
        if self.has_redirect():
            return RedirectResponse(url=self.redirect_location(), status_code=302, headers=self.headers)
        return JSONResponse(self.payload, status_code=self.http_status, headers=self.headers)

    # Factories

    @classmethod
    def invalid_request(
        cls,
        parameter: str,
        hint: str | None = None,
        redirect_uri: str | None = None,
        state: str | None = None,
        use_fragment: bool = False,
    ) -> "OidcServerError":
        return cls(
            "The request is missing a required parameter, includes an invalid parameter value, "
            "includes a parameter more than once, or is otherwise malformed.",
            3,
            "invalid_request",
            400,
            hint or f"Check the `{parameter}` parameter",
            redirect_uri,
            state,
            use_fragment,
        )

    @classmethod
    def invalid_client(cls, hint: str | None = None, use_basic_realm: bool = False) -> "OidcServerError":
        headers = {"WWW-Authenticate": 'Basic realm="OAuth"'} if use_basic_realm else None
        return cls("Client authentication failed", 4, "invalid_client", 401, hint, headers=headers)

    @classmethod
    def invalid_scope(
        cls,
        scope: str,
        redirect_uri: str | None = None,
        state: str | None = None,
        use_fragment: bool = False,
    ) -> "OidcServerError":
        return cls(
            "The requested scope is invalid, unknown, or malformed",
            5,
            "invalid_scope",
            400,
            f"Check the `{scope}` scope" if scope else "Specify a scope in the request or set a default scope",
            redirect_uri,
            state,
            use_fragment,
        )

    @classmethod
    def unsupported_grant_type(cls) -> "OidcServerError":
        return cls(
            "The authorization grant type is not supported by the authorization server.",
            2,
            "unsupported_grant_type",
            400,
            "Check that all required parameters have been provided",
        )

    @classmethod
    def unsupported_response_type(
        cls,
        redirect_uri: str | None = None,
        state: str | None = None,
        use_fragment: bool = False,
    ) -> "OidcServerError":
        return cls(
            "The response type is not supported by the authorization server.",
            2,
            "unsupported_response_type",
            400,
            "Check that all required parameters have been provided",
            redirect_uri,
            state,
            use_fragment,
        )

    @classmethod
    def server_error(cls, hint: str) -> "OidcServerError":
        return cls(
            "The authorization server encountered an unexpected condition which prevented it "
            "from fulfilling the request: " + hint,
            7,
            "server_error",
            500,
        )

    @classmethod
    def invalid_grant(cls, hint: str | None = None) -> "OidcServerError":
        return cls(
            "The provided authorization grant (e.g., authorization code, resource owner credentials) "
            "or refresh token is invalid, expired, revoked, does not match the redirection URI used "
            "in the authorization request, or was issued to another client.",
            10,
            "invalid_grant",
            400,
            hint,
        )

    @classmethod
    def invalid_refresh_token(cls, hint: str | None = None) -> "OidcServerError":
        return cls("The refresh token is invalid.", 8, "invalid_grant", 400, hint)

    @classmethod
    def access_denied(
        cls,
        hint: str | None = None,
        redirect_uri: str | None = None,
        state: str | None = None,
        use_fragment: bool = False,
        headers: dict[str, str] | None = None,
    ) -> "OidcServerError":
        return cls(
            "The resource owner or authorization server denied the request.",
            9,
            "access_denied",
            401,
            hint,
            redirect_uri,
            state,
            use_fragment,
            headers,
        )

    @classmethod
    def login_required(
        cls,
        hint: str | None = None,
        redirect_uri: str | None = None,
        state: str | None = None,
        use_fragment: bool = False,
    ) -> "OidcServerError":
        return cls(
            "End-User is not already authenticated.",
            6,
            "login_required",
            400,
            hint,
            redirect_uri,
            state,
            use_fragment,
        )

    @classmethod
    def request_not_supported(
        cls,
        hint: str | None = None,
        redirect_uri: str | None = None,
        state: str | None = None,
        use_fragment: bool = False,
    ) -> "OidcServerError":
        return cls(
            "Request object not supported.",
            7,
            "request_not_supported",
            400,
            hint,
            redirect_uri,
            state,
            use_fragment,
        )
