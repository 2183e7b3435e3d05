"""
RSA signing keys: current key signs, an optional previous key still verifies (rotation).
Load from file or generate and persist; no key material in code.
"""
import base64
import functools
import logging
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey, generate_private_key

logger = logging.getLogger(__name__)

_KEY_BITS = 2048
KID_CURRENT = "oidc-provider-key"
KID_PREVIOUS = "oidc-provider-key-prev"


def generate_key() -> RSAPrivateKey:
    return generate_private_key(65537, _KEY_BITS, default_backend())


def _serialize_private(key: RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _load_private(path: Path) -> RSAPrivateKey | None:
    try:
        return serialization.load_pem_private_key(path.read_bytes(), password=None, backend=default_backend())
    except (OSError, ValueError, TypeError, UnsupportedAlgorithm) as e:
        logger.warning("Failed to load signing key from %s: %s", path, e)
        return None


def load_or_create_signing_key(path: str) -> RSAPrivateKey:
    """Load RSA private key from path, or generate and save."""
    p = Path(path)
    if p.exists():
        key = _load_private(p)
        if key is not None:
            return key
        logger.warning("Generating new signing key in place of unreadable %s", path)
    key = generate_key()
    try:
        p.write_bytes(_serialize_private(key))
        logger.info("Generated and saved signing key to %s", path)
    except OSError as e:
        logger.warning("Could not save signing key to %s: %s", path, e)
    return key


def public_key_to_jwk(public_key: RSAPublicKey, kid: str) -> dict:
    """Export an RSA public key to JWK with the given kid."""
    numbers = public_key.public_numbers()

    def _b64(value: int) -> str:
        raw = value.to_bytes((value.bit_length() + 7) // 8, "big")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    return {"kty": "RSA", "kid": kid, "alg": "RS256", "use": "sig", "n": _b64(numbers.n), "e": _b64(numbers.e)}


class KeyStore:
    def __init__(
        self,
        signing_key: RSAPrivateKey,
        kid: str = KID_CURRENT,
        previous_key: RSAPrivateKey | None = None,
        previous_kid: str = KID_PREVIOUS,
    ):
        self._signing_key = signing_key
        self._kid = kid
        self._keys_by_kid: dict[str, RSAPrivateKey] = {kid: signing_key}
        if previous_key is not None:
            self._keys_by_kid[previous_kid] = previous_key

    @property
    def kid(self) -> str:
        return self._kid

    @property
    def signing_key(self) -> RSAPrivateKey:
        return self._signing_key

    @property
    def public_key(self) -> RSAPublicKey:
        return self._signing_key.public_key()

    def public_key_for_kid(self, kid: str | None) -> RSAPublicKey | None:
        """Public key for a JWT header kid; the current key when the header has none."""
        if kid is None:
            return self.public_key
        private_key = self._keys_by_kid.get(kid)
        return private_key.public_key() if private_key is not None else None

    def jwks(self) -> dict:
        return {"keys": [public_key_to_jwk(key.public_key(), kid) for kid, key in self._keys_by_kid.items()]}

    @classmethod
    def from_paths(cls, signing_key_path: str, previous_key_path: str | None = None) -> "KeyStore":
        previous = None
        if previous_key_path and Path(previous_key_path).exists():
            previous = _load_private(Path(previous_key_path))
            if previous is not None:
                logger.info("Loaded previous signing key (kid=%s) for rotation", KID_PREVIOUS)
        return cls(load_or_create_signing_key(signing_key_path), previous_key=previous)


@functools.lru_cache(maxsize=1)
def default_key_store() -> KeyStore:
    """Key store built from configuration, loaded once per process."""
    from oidc_provider.config import SIGNING_KEY_PATH, SIGNING_KEY_PREVIOUS_PATH

    return KeyStore.from_paths(SIGNING_KEY_PATH, SIGNING_KEY_PREVIOUS_PATH)
