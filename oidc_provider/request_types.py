"""
Validated authorization and logout requests, handed from the server to the HTTP layer and back.
"""
from dataclasses import dataclass, field

from oidc_provider.entities import ClientEntity, UserEntity


@dataclass
class AuthorizationRequest:
    grant_type_id: str
    client: ClientEntity
    redirect_uri: str
    scopes: list[str]
    response_type: str
    state: str | None = None
    nonce: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None
    requested_claims: dict | None = None
    acr_values: dict | None = None
    prompt: list[str] = field(default_factory=list)
    auth_time: int | None = None
    add_claims_to_id_token: bool = False
    use_fragment: bool = False
    # True when prompt=login or max_age demand a fresh login before completion
    requires_authentication: bool = False
    session_id: str | None = None
    user: UserEntity | None = None
    is_authorization_approved: bool = False

    @property
    def acr(self) -> str | None:
        if self.acr_values and self.acr_values.get("values"):
            return self.acr_values["values"][0]
        return None

    def should_return_access_token(self) -> bool:
        return "token" in self.response_type.split()


@dataclass
class LogoutRequest:
    id_token_hint: dict | None = None
    post_logout_redirect_uri: str | None = None
    state: str | None = None
    ui_locales: str | None = None
