"""
Password hashing and environment seeding. No hardcoded credentials.
Optional: set OIDC_SEED_USER + OIDC_SEED_PASSWORD, OIDC_CLIENT_ID + OIDC_REDIRECT_URI(S).
"""
import json
import logging
import os

import bcrypt
from sqlalchemy.orm import Session

from oidc_provider.models import AllowedOrigin, Client, User

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    # Bcrypt has a 72-byte limit
    raw = password.encode("utf-8")
    if len(raw) > 72:
        raw = raw[:72]
    return bcrypt.hashpw(raw, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    raw = plain.encode("utf-8")[:72]
    return bcrypt.checkpw(raw, hashed.encode("utf-8"))


def _split_env(name: str) -> list[str]:
    return [part.strip() for part in os.environ.get(name, "").split(",") if part.strip()]


def seed_from_env(db: Session) -> None:
    """Create one user and/or one client from env if set."""
    seed_user = os.environ.get("OIDC_SEED_USER")
    seed_password = os.environ.get("OIDC_SEED_PASSWORD")
    if seed_user and seed_password:
        if db.query(User).filter(User.username == seed_user).first() is None:
            db.add(
                User(
                    username=seed_user,
                    password_hash=hash_password(seed_password),
                    email=os.environ.get("OIDC_SEED_EMAIL") or None,
                )
            )
            db.commit()
            logger.info("Seeded user: %s", seed_user)
        else:
            logger.debug("User already exists: %s", seed_user)

    client_id = os.environ.get("OIDC_CLIENT_ID")
    redirect_uris = _split_env("OIDC_REDIRECT_URIS") or _split_env("OIDC_REDIRECT_URI")
    if not client_id or not redirect_uris:
        return
    if db.query(Client).filter(Client.client_id == client_id).first() is not None:
        logger.debug("Client already exists: %s", client_id)
        return
    client_secret = os.environ.get("OIDC_CLIENT_SECRET")
    secret_hash = hash_password(client_secret) if client_secret else None
    db.add(
        Client(
            client_id=client_id,
            name=os.environ.get("OIDC_CLIENT_NAME", client_id),
            redirect_uris=json.dumps(redirect_uris),
            scopes=json.dumps(_split_env("OIDC_CLIENT_SCOPES")),
            post_logout_redirect_uris=json.dumps(_split_env("OIDC_POST_LOGOUT_REDIRECT_URIS")),
            client_secret_hash=secret_hash,
            back_channel_logout_uri=os.environ.get("OIDC_BACKCHANNEL_LOGOUT_URI") or None,
        )
    )
    for origin in _split_env("OIDC_ALLOWED_ORIGINS"):
        db.add(AllowedOrigin(client_id=client_id, origin=origin))
    db.commit()
    logger.info("Seeded client: %s (confidential=%s)", client_id, bool(secret_hash))
