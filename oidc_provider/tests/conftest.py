"""
Pytest configuration for oidc_provider. In-memory SQLite and a throwaway signing key, so tests don't
touch the working directory.
"""
import json
import os
import tempfile
from urllib.parse import parse_qs, urlencode, urlparse

# Must be set before any oidc_provider import reads configuration
os.environ["OIDC_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["OIDC_SIGNING_KEY_PATH"] = os.path.join(tempfile.mkdtemp(), "signing_key.pem")
for name in ("OIDC_SEED_USER", "OIDC_SEED_PASSWORD", "OIDC_CLIENT_ID"):
    os.environ.pop(name, None)

import pytest
from fastapi.testclient import TestClient

from oidc_provider.database import SessionLocal, reset_db
from oidc_provider.main import app
from oidc_provider.models import AllowedOrigin, Client, User
from oidc_provider.pkce import generate_pkce
from oidc_provider.seed import hash_password

PUBLIC_CLIENT_ID = "spa-client"
CONFIDENTIAL_CLIENT_ID = "web-client"
CONFIDENTIAL_CLIENT_SECRET = "web-secret"
REDIRECT_URI = "http://127.0.0.1:8000/callback"
POST_LOGOUT_REDIRECT_URI = "http://127.0.0.1:8000/logged-out"
BACKCHANNEL_LOGOUT_URI = "http://127.0.0.1:8000/backchannel-logout"
ALLOWED_ORIGIN = "http://127.0.0.1:8000"
USERNAME = "alice"
PASSWORD = "alice-password"
CLIENT_SCOPES = ["openid", "profile", "email", "address", "phone", "offline_access"]


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db():
    """Fresh schema per test."""
    reset_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded(db):
    """One user, one public client (with back-channel logout) and one confidential client."""
    db.add(
        User(
            username=USERNAME,
            password_hash=hash_password(PASSWORD),
            name="Alice Example",
            email="alice@example.com",
            claims=json.dumps({"email_verified": True, "phone_number": "+15550100", "locale": "en"}),
        )
    )
    db.add(
        Client(
            client_id=PUBLIC_CLIENT_ID,
            name="SPA",
            redirect_uris=json.dumps([REDIRECT_URI]),
            scopes=json.dumps(CLIENT_SCOPES),
            post_logout_redirect_uris=json.dumps([POST_LOGOUT_REDIRECT_URI]),
            back_channel_logout_uri=BACKCHANNEL_LOGOUT_URI,
        )
    )
    db.add(
        Client(
            client_id=CONFIDENTIAL_CLIENT_ID,
            name="Web",
            redirect_uris=json.dumps([REDIRECT_URI]),
            scopes=json.dumps(CLIENT_SCOPES),
            client_secret_hash=hash_password(CONFIDENTIAL_CLIENT_SECRET),
        )
    )
    db.add(AllowedOrigin(client_id=PUBLIC_CLIENT_ID, origin=ALLOWED_ORIGIN))
    db.commit()
    return db


def authorize_params(**overrides) -> dict:
    params = {
        "response_type": "code",
        "client_id": PUBLIC_CLIENT_ID,
        "redirect_uri": REDIRECT_URI,
        "scope": "openid profile email offline_access",
        "state": "xyz",
        "nonce": "n-0S6_WzA2Mj",
    }
    params.update(overrides)
    return {key: value for key, value in params.items() if value is not None}


def log_in(client: TestClient, params: dict, username: str = USERNAME, password: str = PASSWORD):
    """Submit the login form for an authorization request; returns the /login response."""
    return client.post(
        "/login",
        data={"username": username, "password": password, "return_to": urlencode(params)},
        follow_redirects=False,
    )


def redirect_params(response, fragment: bool = False) -> dict[str, str]:
    location = urlparse(response.headers["location"])
    query = parse_qs(location.fragment if fragment else location.query)
    return {key: values[0] for key, values in query.items()}


def obtain_code(client: TestClient, **overrides) -> tuple[str, str]:
    """Log in and run the code flow with PKCE; returns (code, code_verifier)."""
    code_verifier, code_challenge = generate_pkce()
    pkce = {"code_challenge": code_challenge, "code_challenge_method": "S256"}
    pkce.update(overrides)
    params = authorize_params(**pkce)
    response = log_in(client, params)
    assert response.status_code == 302
    response = client.get("/authorize", params=params, follow_redirects=False)
    assert response.status_code == 302, response.text
    return redirect_params(response)["code"], code_verifier


def exchange_code(client: TestClient, code: str, code_verifier: str | None, **extra):
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "client_id": PUBLIC_CLIENT_ID,
        "redirect_uri": REDIRECT_URI,
    }
    if code_verifier is not None:
        data["code_verifier"] = code_verifier
    data.update(extra)
    return client.post("/token", data=data)
