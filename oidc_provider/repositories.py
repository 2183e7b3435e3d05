"""
Repositories over a SQLAlchemy session. They map ORM rows to the value objects in entities.py
and own the transactional rules the grants depend on (unique identifiers, atomic code consumption).
"""
import json
import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from oidc_provider.entities import (
    AccessTokenEntity,
    AuthCodeEntity,
    ClientEntity,
    LoginSessionEntity,
    RefreshTokenEntity,
    RelyingPartyAssociation,
    UserEntity,
)
from oidc_provider.exceptions import UniqueTokenIdentifierConstraintViolation
from oidc_provider.models import (
    AccessToken,
    AllowedOrigin,
    AuthorizationCode,
    Client,
    LoginSession,
    RefreshToken,
    RelyingPartyAssociationRecord,
    User,
)
from oidc_provider.seed import verify_password

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo; everything is stored in UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _dump_claims(claims: dict | None) -> str | None:
    return json.dumps(claims) if claims else None


def _load_claims(raw: str | None) -> dict | None:
    return json.loads(raw) if raw else None


def _persist_unique(db: Session, row) -> None:
    db.add(row)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.debug("Identifier collision on %s", type(row).__tablename__)
        raise UniqueTokenIdentifierConstraintViolation.create() from e


class ClientRepository:
    def __init__(self, db: Session):
        self.db = db

    def _to_entity(self, client: Client) -> ClientEntity:
        origins = self.db.scalars(
            select(AllowedOrigin.origin).where(AllowedOrigin.client_id == client.client_id)
        ).all()
        return ClientEntity(
            identifier=client.client_id,
            name=client.name,
            redirect_uris=client.get_redirect_uris_list(),
            scopes=client.get_scopes_list(),
            secret=client.client_secret_hash,
            is_enabled=client.is_enabled,
            auth_source=client.auth_source,
            post_logout_redirect_uris=client.get_post_logout_redirect_uris_list(),
            back_channel_logout_uri=client.back_channel_logout_uri,
            allowed_origins=list(origins),
        )

    def find_by_id(self, client_id: str) -> ClientEntity | None:
        """Any registered client, enabled or not."""
        client = self.db.query(Client).filter(Client.client_id == client_id).first()
        return self._to_entity(client) if client else None

    def get_client_entity(self, client_id: str) -> ClientEntity | None:
        """Enabled client by id, or None."""
        client = self.find_by_id(client_id)
        if client is None or not client.is_enabled:
            return None
        return client

    def validate_client(self, client_id: str, client_secret: str | None) -> bool:
        client = self.get_client_entity(client_id)
        if client is None:
            return False
        if not client.is_confidential:
            return True
        if not client_secret:
            return False
        return verify_password(client_secret, client.secret)


class AllowedOriginRepository:
    def __init__(self, db: Session):
        self.db = db

    def has(self, origin: str) -> bool:
        return self.db.query(AllowedOrigin).filter(AllowedOrigin.origin == origin).first() is not None


class ScopeRepository:
    """Scopes are configuration, not rows."""

    def __init__(self, allowed_scopes: set[str] | frozenset[str]):
        self._allowed_scopes = frozenset(allowed_scopes)

    def get_scope_entity_by_identifier(self, identifier: str) -> str | None:
        return identifier if identifier in self._allowed_scopes else None


class UserRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_user_entity_by_identifier(self, identifier: str) -> UserEntity | None:
        try:
            user_id = int(identifier)
        except (TypeError, ValueError):
            return None
        user = self.db.query(User).filter(User.id == user_id).first()
        if user is None:
            return None
        return UserEntity(identifier=str(user.id), claims=user.get_claims())

    def get_user_entity_by_credentials(self, username: str, password: str) -> UserEntity | None:
        user = self.db.query(User).filter(User.username == username).first()
        if user is None or not verify_password(password, user.password_hash):
            return None
        return UserEntity(identifier=str(user.id), claims=user.get_claims())


class AuthCodeRepository:
    def __init__(self, db: Session):
        self.db = db

    def persist_new_auth_code(self, auth_code: AuthCodeEntity) -> None:
        _persist_unique(
            self.db,
            AuthorizationCode(
                identifier=auth_code.identifier,
                client_id=auth_code.client_id,
                user_id=auth_code.user_id,
                scopes=json.dumps(auth_code.scopes),
                expires_at=auth_code.expires_at,
                is_revoked=auth_code.is_revoked,
                redirect_uri=auth_code.redirect_uri,
                nonce=auth_code.nonce,
                code_challenge=auth_code.code_challenge,
                code_challenge_method=auth_code.code_challenge_method,
                requested_claims=_dump_claims(auth_code.requested_claims),
                auth_time=auth_code.auth_time,
                acr=auth_code.acr,
                session_id=auth_code.session_id,
            ),
        )

    def find_by_id(self, identifier: str) -> AuthCodeEntity | None:
        row = self.db.get(AuthorizationCode, identifier)
        if row is None:
            return None
        return AuthCodeEntity(
            identifier=row.identifier,
            client_id=row.client_id,
            user_id=row.user_id,
            scopes=json.loads(row.scopes),
            expires_at=_aware(row.expires_at),
            redirect_uri=row.redirect_uri,
            nonce=row.nonce,
            code_challenge=row.code_challenge,
            code_challenge_method=row.code_challenge_method,
            requested_claims=_load_claims(row.requested_claims),
            auth_time=row.auth_time,
            acr=row.acr,
            session_id=row.session_id,
            is_revoked=row.is_revoked,
        )

    def consume_auth_code(self, identifier: str) -> bool:
        """Atomically mark the code revoked. False when it was already revoked (or unknown)."""
        result = self.db.execute(
            update(AuthorizationCode)
            .where(AuthorizationCode.identifier == identifier, AuthorizationCode.is_revoked.is_(False))
            .values(is_revoked=True)
        )
        self.db.commit()
        return result.rowcount == 1


class AccessTokenRepository:
    def __init__(self, db: Session):
        self.db = db

    def persist_new_access_token(self, access_token: AccessTokenEntity) -> None:
        _persist_unique(
            self.db,
            AccessToken(
                identifier=access_token.identifier,
                client_id=access_token.client_id,
                user_id=access_token.user_id,
                scopes=json.dumps(access_token.scopes),
                expires_at=access_token.expires_at,
                is_revoked=access_token.is_revoked,
                auth_code_id=access_token.auth_code_id,
                requested_claims=_dump_claims(access_token.requested_claims),
            ),
        )

    def find_by_id(self, identifier: str) -> AccessTokenEntity | None:
        row = self.db.get(AccessToken, identifier)
        if row is None:
            return None
        return AccessTokenEntity(
            identifier=row.identifier,
            client_id=row.client_id,
            user_id=row.user_id,
            scopes=json.loads(row.scopes),
            expires_at=_aware(row.expires_at),
            auth_code_id=row.auth_code_id,
            requested_claims=_load_claims(row.requested_claims),
            issued_at=_aware(row.created_at),
            is_revoked=row.is_revoked,
        )

    def revoke_access_token(self, identifier: str) -> None:
        self.db.execute(update(AccessToken).where(AccessToken.identifier == identifier).values(is_revoked=True))
        self.db.commit()

    def revoke_by_auth_code_id(self, auth_code_id: str) -> None:
        self.db.execute(update(AccessToken).where(AccessToken.auth_code_id == auth_code_id).values(is_revoked=True))
        self.db.commit()

    def is_access_token_revoked(self, identifier: str) -> bool:
        """Unknown identifiers count as revoked."""
        row = self.db.get(AccessToken, identifier)
        return row is None or row.is_revoked


class RefreshTokenRepository:
    def __init__(self, db: Session):
        self.db = db

    def persist_new_refresh_token(self, refresh_token: RefreshTokenEntity) -> None:
        _persist_unique(
            self.db,
            RefreshToken(
                identifier=refresh_token.identifier,
                access_token_id=refresh_token.access_token_id,
                client_id=refresh_token.client_id,
                user_id=refresh_token.user_id,
                scopes=json.dumps(refresh_token.scopes),
                expires_at=refresh_token.expires_at,
                is_revoked=refresh_token.is_revoked,
                auth_code_id=refresh_token.auth_code_id,
            ),
        )

    def find_by_id(self, identifier: str) -> RefreshTokenEntity | None:
        row = self.db.get(RefreshToken, identifier)
        if row is None:
            return None
        return RefreshTokenEntity(
            identifier=row.identifier,
            access_token_id=row.access_token_id,
            client_id=row.client_id,
            user_id=row.user_id,
            scopes=json.loads(row.scopes),
            expires_at=_aware(row.expires_at),
            auth_code_id=row.auth_code_id,
            is_revoked=row.is_revoked,
        )

    def revoke_refresh_token(self, identifier: str) -> None:
        self.db.execute(update(RefreshToken).where(RefreshToken.identifier == identifier).values(is_revoked=True))
        self.db.commit()

    def revoke_by_auth_code_id(self, auth_code_id: str) -> None:
        self.db.execute(
            update(RefreshToken).where(RefreshToken.auth_code_id == auth_code_id).values(is_revoked=True)
        )
        self.db.commit()


class SessionRepository:
    """Login sessions and the relying parties that received tokens under them."""

    def __init__(self, db: Session):
        self.db = db

    def create_session(self, identifier: str, user_id: str, authn_instant: int) -> LoginSessionEntity:
        self.db.add(LoginSession(identifier=identifier, user_id=user_id, authn_instant=authn_instant))
        self.db.commit()
        return LoginSessionEntity(identifier=identifier, user_id=user_id, authn_instant=authn_instant)

    def get_valid_session(self, identifier: str | None) -> LoginSessionEntity | None:
        if not identifier:
            return None
        row = self.db.get(LoginSession, identifier)
        if row is None or not row.is_valid:
            return None
        return LoginSessionEntity(
            identifier=row.identifier,
            user_id=row.user_id,
            authn_instant=row.authn_instant,
            is_valid=row.is_valid,
        )

    def refresh_authn_instant(self, identifier: str, authn_instant: int) -> None:
        self.db.execute(
            update(LoginSession).where(LoginSession.identifier == identifier).values(authn_instant=authn_instant)
        )
        self.db.commit()

    def invalidate_session(self, identifier: str) -> None:
        self.db.execute(update(LoginSession).where(LoginSession.identifier == identifier).values(is_valid=False))
        self.db.commit()

    def add_association(self, association: RelyingPartyAssociation) -> None:
        row = (
            self.db.query(RelyingPartyAssociationRecord)
            .filter(
                RelyingPartyAssociationRecord.session_id == association.session_id,
                RelyingPartyAssociationRecord.client_id == association.client_id,
            )
            .first()
        )
        if row is None:
            self.db.add(
                RelyingPartyAssociationRecord(
                    session_id=association.session_id,
                    client_id=association.client_id,
                    user_id=association.user_id,
                    back_channel_logout_uri=association.back_channel_logout_uri,
                )
            )
        else:
            row.user_id = association.user_id
            row.back_channel_logout_uri = association.back_channel_logout_uri
        self.db.commit()

    def get_associations(self, session_id: str) -> list[RelyingPartyAssociation]:
        rows = (
            self.db.query(RelyingPartyAssociationRecord)
            .filter(RelyingPartyAssociationRecord.session_id == session_id)
            .order_by(RelyingPartyAssociationRecord.id)
            .all()
        )
        return [
            RelyingPartyAssociation(
                client_id=row.client_id,
                user_id=row.user_id,
                session_id=row.session_id,
                back_channel_logout_uri=row.back_channel_logout_uri,
            )
            for row in rows
        ]

    def clear_associations(self, session_id: str) -> None:
        self.db.query(RelyingPartyAssociationRecord).filter(
            RelyingPartyAssociationRecord.session_id == session_id
        ).delete()
        self.db.commit()
