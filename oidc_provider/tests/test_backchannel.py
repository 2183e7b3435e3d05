"""
Tests for back-channel logout fan-out.
"""
import logging
import threading
from urllib.parse import parse_qs

import httpx
import jwt

from oidc_provider.backchannel import BackChannelLogoutHandler
from oidc_provider.entities import RelyingPartyAssociation
from oidc_provider.jwt_builder import BACKCHANNEL_LOGOUT_EVENT, JsonWebTokenBuilder, LogoutTokenBuilder
from oidc_provider.keys import KeyStore, generate_key

ISSUER = "https://op.example"


class RecordingTransport(httpx.MockTransport):
    """Answers per URL; records the logout token posted to each."""

    def __init__(self, statuses: dict[str, int]):
        self.statuses = statuses
        self.received: dict[str, str] = {}
        self._lock = threading.Lock()
        super().__init__(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url not in self.statuses:
            raise httpx.ConnectError("connection refused", request=request)
        form = parse_qs(request.content.decode("ascii"))
        with self._lock:
            self.received[url] = form["logout_token"][0]
        return httpx.Response(self.statuses[url])


def _handler(transport, key_store=None):
    key_store = key_store or KeyStore(generate_key())
    builder = LogoutTokenBuilder(JsonWebTokenBuilder(key_store, ISSUER))
    return BackChannelLogoutHandler(builder, concurrency=2, timeout=1.0, transport=transport), key_store


def _association(client_id, uri, session_id="sid-1"):
    return RelyingPartyAssociation(client_id=client_id, user_id="42", session_id=session_id, back_channel_logout_uri=uri)


def test_logout_token_posted_to_every_relying_party():
    transport = RecordingTransport({"https://rp1.example/bc": 200, "https://rp2.example/bc": 204})
    handler, key_store = _handler(transport)
    handler.handle([_association("rp1", "https://rp1.example/bc"), _association("rp2", "https://rp2.example/bc")])
    assert set(transport.received) == {"https://rp1.example/bc", "https://rp2.example/bc"}

    token = transport.received["https://rp1.example/bc"]
    assert jwt.get_unverified_header(token)["typ"] == "logout+jwt"
    claims = jwt.decode(token, key_store.public_key, algorithms=["RS256"], audience="rp1", issuer=ISSUER)
    assert claims["sub"] == "42"
    assert claims["sid"] == "sid-1"
    assert claims["events"] == {BACKCHANNEL_LOGOUT_EVENT: {}}
    assert "nonce" not in claims
    assert claims["jti"]


def test_failures_are_logged_and_do_not_stop_others(caplog):
    transport = RecordingTransport({"https://ok.example/bc": 200, "https://broken.example/bc": 500})
    handler, _ = _handler(transport)
    associations = [
        _association("broken", "https://broken.example/bc"),
        _association("down", "https://down.example/bc"),
        _association("ok", "https://ok.example/bc"),
    ]
    with caplog.at_level(logging.INFO, logger="oidc_provider.backchannel"):
        handler.handle(associations)

    assert "https://ok.example/bc" in transport.received
    errors = [r.getMessage() for r in caplog.records if r.levelno == logging.ERROR]
    successes = [r.getMessage() for r in caplog.records if r.levelno == logging.INFO]
    assert len(errors) == 2
    assert any(message.startswith("Backchannel Logout (index 0) - error, reason:") for message in errors)
    assert any(message.startswith("Backchannel Logout (index 1) - error, reason:") for message in errors)
    assert successes == ["Backchannel Logout (index 2) - success, status: 200"]


def test_associations_without_uri_are_skipped():
    transport = RecordingTransport({"https://rp1.example/bc": 200})
    handler, _ = _handler(transport)
    handler.handle([_association("no-uri", None), _association("rp1", "https://rp1.example/bc")])
    assert list(transport.received) == ["https://rp1.example/bc"]


def test_no_associations_makes_no_requests():
    transport = RecordingTransport({})
    handler, _ = _handler(transport)
    handler.handle([])
    assert transport.received == {}


def test_invalid_uri_is_logged_as_error(caplog):
    transport = RecordingTransport({"https://ok.example/bc": 200})
    handler, _ = _handler(transport)
    associations = [_association("bad", "http://exa mple\x00.com/bc"), _association("ok", "https://ok.example/bc")]
    with caplog.at_level(logging.INFO, logger="oidc_provider.backchannel"):
        handler.handle(associations)

    messages = {r.levelno: r.getMessage() for r in caplog.records if r.name == "oidc_provider.backchannel"}
    assert messages[logging.ERROR].startswith("Backchannel Logout (index 0) - error, reason:")
    assert messages[logging.INFO] == "Backchannel Logout (index 1) - success, status: 200"


class FailingLogoutTokenBuilder:
    def for_relying_party_association(self, association):
        raise ValueError("signing key unavailable")


def test_token_build_failure_is_logged_as_error(caplog):
    transport = RecordingTransport({"https://rp1.example/bc": 200})
    handler = BackChannelLogoutHandler(FailingLogoutTokenBuilder(), transport=transport)
    with caplog.at_level(logging.INFO, logger="oidc_provider.backchannel"):
        handler.handle([_association("rp1", "https://rp1.example/bc")])

    assert transport.received == {}
    assert [(r.levelno, r.getMessage()) for r in caplog.records if r.name == "oidc_provider.backchannel"] == [
        (logging.ERROR, "Backchannel Logout (index 0) - error, reason: signing key unavailable")
    ]
