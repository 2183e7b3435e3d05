"""
Unit tests for individual request rules.
"""
import logging
import time

import pytest

from oidc_provider.entities import ClientEntity, LoginSessionEntity
from oidc_provider.exceptions import OidcServerError
from oidc_provider.pkce import default_code_challenge_verifiers, generate_pkce
from oidc_provider.repositories import ScopeRepository
from oidc_provider.request import ServerRequest
from oidc_provider.result_bag import Result, ResultBag
from oidc_provider.rules import (
    DATA_DEFAULT_SCOPE,
    DATA_LOGIN_SESSION,
    ClientAuthenticationRule,
    ClientRule,
    CodeChallengeMethodRule,
    CodeChallengeRule,
    CodeVerifierRule,
    MaxAgeRule,
    PostLogoutRedirectUriRule,
    PromptRule,
    RedirectUriRule,
    RequestedClaimsRule,
    RequiredNonceRule,
    ResponseTypeRule,
    ScopeRule,
)

logger = logging.getLogger("test.rules")
REDIRECT_URI = "http://rp.example/cb"
SCOPE_CLAIMS = {"profile": ["name"], "email": ["email"], "phone": ["phone_number"]}


class StubClientRepository:
    def __init__(self, *clients, secret="s3cret"):
        self.clients = {client.identifier: client for client in clients}
        self.secret = secret

    def get_client_entity(self, client_id):
        return self.clients.get(client_id)

    def validate_client(self, client_id, client_secret):
        return client_id in self.clients and client_secret == self.secret


PUBLIC = ClientEntity(identifier="public", name="Public", redirect_uris=[REDIRECT_URI])
CONFIDENTIAL = ClientEntity(identifier="conf", name="Conf", redirect_uris=[REDIRECT_URI], secret="hash")


def _bag(client=PUBLIC, state="st"):
    bag = ResultBag()
    bag.add(Result("client_id", client))
    bag.add(Result("redirect_uri", REDIRECT_URI))
    bag.add(Result("state", state))
    return bag


def _get(**params):
    return ServerRequest(method="GET", query_params=params)


def test_client_rule_unknown_client():
    with pytest.raises(OidcServerError) as exc_info:
        ClientRule(StubClientRepository(PUBLIC)).check_rule(_get(client_id="nope"), ResultBag(), logger, {})
    assert exc_info.value.error_type == "invalid_client"
    assert exc_info.value.http_status == 401


def test_client_rule_falls_back_to_basic_auth_username():
    request = ServerRequest(
        method="POST",
        body_params={},
        headers={"authorization": "Basic Y29uZjpzM2NyZXQ="},  # conf:s3cret
    )
    result = ClientRule(StubClientRepository(CONFIDENTIAL)).check_rule(request, ResultBag(), logger, {}, False, ("POST",))
    assert result.value is CONFIDENTIAL


def test_redirect_uri_rule_requires_exact_match():
    bag = ResultBag()
    bag.add(Result("client_id", PUBLIC))
    with pytest.raises(OidcServerError) as exc_info:
        RedirectUriRule().check_rule(_get(redirect_uri=REDIRECT_URI + "/"), bag, logger, {})
    assert exc_info.value.error_type == "invalid_client"
    assert not exc_info.value.has_redirect()


def test_scope_rule_unknown_scope_redirects_with_state():
    rule = ScopeRule(ScopeRepository({"openid", "email"}))
    with pytest.raises(OidcServerError) as exc_info:
        rule.check_rule(_get(scope="openid admin"), _bag(), logger, {}, True)
    error = exc_info.value
    assert error.error_type == "invalid_scope"
    assert error.redirect_uri == REDIRECT_URI
    assert error.state == "st"
    assert error.redirect_location().startswith(REDIRECT_URI + "#")


def test_scope_rule_uses_default_scope_and_dedupes():
    rule = ScopeRule(ScopeRepository({"openid", "email"}))
    assert rule.check_rule(_get(), _bag(), logger, {DATA_DEFAULT_SCOPE: "openid"}).value == ["openid"]
    assert rule.check_rule(_get(scope="email openid email"), _bag(), logger, {}).value == ["email", "openid"]


def test_scope_rule_empty_without_default():
    rule = ScopeRule(ScopeRepository({"openid"}))
    with pytest.raises(OidcServerError) as exc_info:
        rule.check_rule(_get(scope="  "), _bag(), logger, {DATA_DEFAULT_SCOPE: ""})
    assert exc_info.value.error_type == "invalid_scope"


def test_prompt_none_combined_with_other_values():
    with pytest.raises(OidcServerError) as exc_info:
        PromptRule().check_rule(_get(prompt="none login"), _bag(), logger, {})
    assert exc_info.value.error_type == "invalid_request"


def test_prompt_none_without_session_is_login_required():
    with pytest.raises(OidcServerError) as exc_info:
        PromptRule().check_rule(_get(prompt="none"), _bag(), logger, {DATA_LOGIN_SESSION: None})
    assert exc_info.value.error_type == "login_required"
    assert exc_info.value.redirect_uri == REDIRECT_URI


def test_prompt_values_are_split():
    session = LoginSessionEntity(identifier="sid", user_id="1", authn_instant=int(time.time()))
    result = PromptRule().check_rule(_get(prompt="login consent"), _bag(), logger, {DATA_LOGIN_SESSION: session})
    assert result.value == ["login", "consent"]


def test_max_age_expired_session():
    session = LoginSessionEntity(identifier="sid", user_id="1", authn_instant=int(time.time()) - 120)
    result = MaxAgeRule().check_rule(_get(max_age="60"), _bag(), logger, {DATA_LOGIN_SESSION: session})
    assert result.value == {"auth_time": session.authn_instant, "expired": True}


def test_max_age_must_be_integer():
    with pytest.raises(OidcServerError):
        MaxAgeRule().check_rule(_get(max_age="soon"), _bag(), logger, {})
    session = LoginSessionEntity(identifier="sid", user_id="1", authn_instant=int(time.time()))
    for value in ("\u00b2", "-5", "1.5"):
        with pytest.raises(OidcServerError) as exc_info:
            MaxAgeRule().check_rule(_get(max_age=value), _bag(), logger, {DATA_LOGIN_SESSION: session})
        assert exc_info.value.error_type == "invalid_request"
        assert exc_info.value.redirect_uri == REDIRECT_URI
    assert MaxAgeRule().check_rule(_get(), _bag(), logger, {}) is None


def test_requested_claims_filtered_by_client_scopes():
    client = ClientEntity(identifier="c", name="c", redirect_uris=[REDIRECT_URI], scopes=["openid", "email"])
    claims = '{"userinfo": {"email": null, "phone_number": null}, "id_token": {"name": {"essential": true}}}'
    result = RequestedClaimsRule(SCOPE_CLAIMS).check_rule(_get(claims=claims), _bag(client), logger, {})
    assert result.value == {"userinfo": {"email": None}, "id_token": {}}


def test_requested_claims_must_be_json_object():
    with pytest.raises(OidcServerError) as exc_info:
        RequestedClaimsRule(SCOPE_CLAIMS).check_rule(_get(claims="[1, 2]"), _bag(), logger, {})
    assert exc_info.value.error_type == "invalid_request"


def test_code_challenge_required_for_public_client_only():
    rule = CodeChallengeRule(require_for_public_clients=True)
    with pytest.raises(OidcServerError):
        rule.check_rule(_get(), _bag(PUBLIC), logger, {})
    assert rule.check_rule(_get(), _bag(CONFIDENTIAL), logger, {}).value is None


def test_code_challenge_format():
    rule = CodeChallengeRule()
    with pytest.raises(OidcServerError):
        rule.check_rule(_get(code_challenge="too-short"), _bag(), logger, {})
    with pytest.raises(OidcServerError):
        rule.check_rule(_get(code_challenge="a" * 43 + "\n"), _bag(), logger, {})
    _, challenge = generate_pkce()
    assert rule.check_rule(_get(code_challenge=challenge), _bag(), logger, {}).value == challenge


def test_code_verifier_format():
    rule = CodeVerifierRule()
    verifier, _ = generate_pkce()
    post = ServerRequest(method="POST", body_params={"code_verifier": verifier})
    assert rule.check_rule(post, _bag(), logger, {}, False, ("POST",)).value == verifier
    padded = ServerRequest(method="POST", body_params={"code_verifier": verifier + "\n"})
    with pytest.raises(OidcServerError) as exc_info:
        rule.check_rule(padded, _bag(), logger, {}, False, ("POST",))
    assert exc_info.value.error_type == "invalid_request"


def test_code_challenge_method_defaults_to_plain_and_rejects_unknown():
    rule = CodeChallengeMethodRule(default_code_challenge_verifiers())
    bag = _bag()
    bag.add(Result("code_challenge", "x" * 43))
    assert rule.check_rule(_get(), bag, logger, {}).value == "plain"
    with pytest.raises(OidcServerError):
        rule.check_rule(_get(code_challenge_method="S512"), bag, logger, {})


def test_client_authentication_basic_and_post():
    rule = ClientAuthenticationRule(StubClientRepository(CONFIDENTIAL))
    basic = ServerRequest(method="POST", body_params={}, headers={"authorization": "Basic Y29uZjpzM2NyZXQ="})
    assert rule.check_rule(basic, _bag(CONFIDENTIAL), logger, {}, False, ("POST",)).value == "client_secret_basic"
    post = ServerRequest(method="POST", body_params={"client_secret": "s3cret"})
    assert rule.check_rule(post, _bag(CONFIDENTIAL), logger, {}, False, ("POST",)).value == "client_secret_post"


def test_client_authentication_wrong_secret():
    rule = ClientAuthenticationRule(StubClientRepository(CONFIDENTIAL))
    request = ServerRequest(method="POST", body_params={"client_secret": "wrong"})
    with pytest.raises(OidcServerError) as exc_info:
        rule.check_rule(request, _bag(CONFIDENTIAL), logger, {}, False, ("POST",))
    assert exc_info.value.error_type == "invalid_client"


def test_client_authentication_skipped_for_public_client():
    rule = ClientAuthenticationRule(StubClientRepository(PUBLIC))
    request = ServerRequest(method="POST", body_params={})
    assert rule.check_rule(request, _bag(PUBLIC), logger, {}, False, ("POST",)).value is None


def test_response_type_normalized():
    rule = ResponseTypeRule()
    assert rule.check_rule(_get(response_type="token id_token"), _bag(), logger, {}).value == "id_token token"
    with pytest.raises(OidcServerError):
        rule.check_rule(_get(response_type="code id_token"), _bag(), logger, {})


def test_required_nonce():
    with pytest.raises(OidcServerError) as exc_info:
        RequiredNonceRule().check_rule(_get(), _bag(), logger, {}, True)
    assert exc_info.value.use_fragment


def test_post_logout_redirect_uri_requires_id_token_hint():
    client = ClientEntity(
        identifier="public", name="p", redirect_uris=[], post_logout_redirect_uris=["http://rp.example/bye"]
    )
    rule = PostLogoutRedirectUriRule(StubClientRepository(client))
    bag = ResultBag()
    bag.add(Result("id_token_hint", None))
    with pytest.raises(OidcServerError):
        rule.check_rule(_get(post_logout_redirect_uri="http://rp.example/bye"), bag, logger, {})

    bag.add(Result("id_token_hint", {"aud": "public"}))
    result = rule.check_rule(_get(post_logout_redirect_uri="http://rp.example/bye"), bag, logger, {})
    assert result.value == "http://rp.example/bye"
    with pytest.raises(OidcServerError):
        rule.check_rule(_get(post_logout_redirect_uri="http://evil.example/"), bag, logger, {})
