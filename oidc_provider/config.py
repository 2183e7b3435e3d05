"""
OIDC provider configuration. Values come from the environment; no secrets in this file.
Only the HTTP layer and the factories read these; core classes receive them through constructors.
"""
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Issuer URL (public identifier, `iss` claim)
ISSUER = os.environ.get("OIDC_ISSUER", "http://127.0.0.1:9000").rstrip("/")

# SQLite for development
DATABASE_URL = os.environ.get("OIDC_DATABASE_URL", "sqlite:///./oidc_provider.db")

# Token lifetimes (seconds)
AUTH_CODE_TTL_SECONDS = int(os.environ.get("OIDC_AUTH_CODE_TTL", "600"))
ACCESS_TOKEN_TTL_SECONDS = int(os.environ.get("OIDC_ACCESS_TOKEN_TTL", "3600"))
REFRESH_TOKEN_TTL_SECONDS = int(os.environ.get("OIDC_REFRESH_TOKEN_TTL", str(30 * 24 * 3600)))
ID_TOKEN_TTL_SECONDS = int(os.environ.get("OIDC_ID_TOKEN_TTL", "3600"))
LOGOUT_TOKEN_TTL_SECONDS = 120

# Random bytes per token identifier (hex-encoded, so identifiers are twice as long)
TOKEN_IDENTIFIER_BYTES = int(os.environ.get("OIDC_TOKEN_IDENTIFIER_BYTES", "40"))

# Scopes the provider knows about
ALLOWED_SCOPES = {"openid", "profile", "email", "address", "phone", "offline_access"}

# Claims released per scope
SCOPE_CLAIMS = {
    "profile": ["name", "family_name", "given_name", "preferred_username", "locale"],
    "email": ["email", "email_verified"],
    "address": ["address"],
    "phone": ["phone_number", "phone_number_verified"],
}

DEFAULT_SCOPE = os.environ.get("OIDC_DEFAULT_SCOPE", "")
SCOPE_DELIMITER = " "

REQUIRE_PKCE_FOR_PUBLIC_CLIENTS = _env_bool("OIDC_REQUIRE_PKCE_FOR_PUBLIC_CLIENTS", True)
REFRESH_TOKEN_ROTATION = _env_bool("OIDC_REFRESH_TOKEN_ROTATION", True)

# Clock skew allowed when checking exp/nbf/iat
TIMESTAMP_VALIDATION_LEEWAY_SECONDS = int(os.environ.get("OIDC_TIMESTAMP_LEEWAY", "0"))

# Back-channel logout fan-out
BACKCHANNEL_LOGOUT_CONCURRENCY = int(os.environ.get("OIDC_BACKCHANNEL_LOGOUT_CONCURRENCY", "5"))
BACKCHANNEL_LOGOUT_TIMEOUT_SECONDS = float(os.environ.get("OIDC_BACKCHANNEL_LOGOUT_TIMEOUT", "3"))
BACKCHANNEL_LOGOUT_VERIFY_TLS = _env_bool("OIDC_BACKCHANNEL_LOGOUT_VERIFY_TLS", True)

# Path to RSA private key PEM file for signing tokens. Generated and saved if missing.
SIGNING_KEY_PATH = os.environ.get("OIDC_SIGNING_KEY_PATH", ".oidc_signing_key.pem")
# Optional previous key for rotation: verifies old tokens and is published in JWKS, never signs.
SIGNING_KEY_PREVIOUS_PATH = os.environ.get("OIDC_SIGNING_KEY_PREVIOUS_PATH", "").strip() or None

SESSION_COOKIE_NAME = os.environ.get("OIDC_SESSION_COOKIE_NAME", "oidc_session")
SESSION_COOKIE_SECURE = _env_bool("OIDC_SESSION_COOKIE_SECURE", False)
