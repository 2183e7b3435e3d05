"""
Claim release: which user claims a client may see, given granted scopes and the claims request parameter.
"""
from typing import Any

from oidc_provider.entities import UserEntity


def claims_for_scopes(user: UserEntity, scopes: list[str], scope_claims: dict[str, list[str]]) -> dict[str, Any]:
    released = {}
    for scope in scopes:
        for claim in scope_claims.get(scope, []):
            if claim in user.claims:
                released[claim] = user.claims[claim]
    return released


def requested_claims(user: UserEntity, requested: dict | None, section: str) -> dict[str, Any]:
    """Claims named in one section (userinfo or id_token) of a filtered claims request."""
    if not requested or not isinstance(requested.get(section), dict):
        return {}
    return {name: user.claims[name] for name in requested[section] if name in user.claims}
