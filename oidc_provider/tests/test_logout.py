"""
Tests for GET/POST /logout: RP-initiated logout ending the login session and notifying relying parties.
"""
import httpx
import pytest

from conftest import (
    BACKCHANNEL_LOGOUT_URI,
    POST_LOGOUT_REDIRECT_URI,
    authorize_params,
    exchange_code,
    obtain_code,
    redirect_params,
)
from oidc_provider.backchannel import BackChannelLogoutHandler
from oidc_provider.factories import build_jwt_builder, get_back_channel_logout_handler
from oidc_provider.jwt_builder import LogoutTokenBuilder
from oidc_provider.keys import default_key_store
from oidc_provider.main import app
from oidc_provider.pkce import generate_pkce


@pytest.fixture
def notified():
    """Swap the back-channel handler for one that records requests instead of sending them."""
    requests = []

    def _record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200)

    def _handler():
        return BackChannelLogoutHandler(
            LogoutTokenBuilder(build_jwt_builder(default_key_store())),
            transport=httpx.MockTransport(_record),
        )

    app.dependency_overrides[get_back_channel_logout_handler] = _handler
    yield requests
    app.dependency_overrides.pop(get_back_channel_logout_handler, None)


@pytest.fixture
def id_token(client, seeded):
    code, verifier = obtain_code(client, scope="openid")
    return exchange_code(client, code, verifier).json()["id_token"]


def test_logout_redirects_with_state_and_notifies_relying_party(client, id_token, notified):
    response = client.get(
        "/logout",
        params={"id_token_hint": id_token, "post_logout_redirect_uri": POST_LOGOUT_REDIRECT_URI, "state": "bye"},
        follow_redirects=False,
    )
    assert response.status_code == 302
    assert response.headers["location"].startswith(POST_LOGOUT_REDIRECT_URI)
    assert redirect_params(response) == {"state": "bye"}
    assert [str(request.url) for request in notified] == [BACKCHANNEL_LOGOUT_URI]
    assert b"logout_token=" in notified[0].content


def test_logout_ends_the_session(client, id_token, notified):
    client.get("/logout", params={"id_token_hint": id_token}, follow_redirects=False)
    _, challenge = generate_pkce()
    response = client.get("/authorize", params=authorize_params(code_challenge=challenge), follow_redirects=False)
    assert response.status_code == 200
    assert "Log in" in response.text


def test_logout_without_cookie_uses_sid_from_hint(client, id_token, notified):
    client.cookies.clear()
    response = client.post("/logout", data={"id_token_hint": id_token}, follow_redirects=False)
    assert response.status_code == 200
    assert "Logged out" in response.text
    assert len(notified) == 1


def test_logout_twice_notifies_once(client, id_token, notified):
    client.get("/logout", params={"id_token_hint": id_token}, follow_redirects=False)
    client.get("/logout", params={"id_token_hint": id_token}, follow_redirects=False)
    assert len(notified) == 1


def test_logout_without_anything_shows_page(client, seeded, notified):
    response = client.get("/logout")
    assert response.status_code == 200
    assert "Logged out" in response.text
    assert notified == []


def test_logout_redirect_requires_id_token_hint(client, seeded, notified):
    response = client.get("/logout", params={"post_logout_redirect_uri": POST_LOGOUT_REDIRECT_URI})
    assert response.status_code == 400
    assert "invalid_request" in response.text


def test_logout_rejects_unregistered_redirect(client, id_token, notified):
    response = client.get(
        "/logout",
        params={"id_token_hint": id_token, "post_logout_redirect_uri": "http://evil.example/"},
        follow_redirects=False,
    )
    assert response.status_code == 400
    assert "location" not in response.headers


def test_logout_rejects_forged_hint(client, seeded, notified):
    response = client.get("/logout", params={"id_token_hint": "not.a.jwt"})
    assert response.status_code == 400
