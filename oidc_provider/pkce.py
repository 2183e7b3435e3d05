"""
PKCE (RFC 7636) code challenge verifiers.
"""
import hashlib
import hmac
import re
import secrets
from base64 import urlsafe_b64encode

# Shared by code_challenge and code_verifier
CODE_CHALLENGE_PATTERN = re.compile(r"[A-Za-z0-9\-._~]{43,128}")


def s256_challenge(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce() -> tuple[str, str]:
    """
    Generate code_verifier and code_challenge (S256).
    Returns (code_verifier, code_challenge). Verifier is 43 chars (256 bits entropy).
    """
    code_verifier = secrets.token_urlsafe(32)
    return code_verifier, s256_challenge(code_verifier)


class PlainVerifier:
    method = "plain"

    def verify_code_challenge(self, code_verifier: str, code_challenge: str) -> bool:
        return hmac.compare_digest(code_verifier.encode("ascii"), code_challenge.encode("ascii"))


class S256Verifier:
    method = "S256"

    def verify_code_challenge(self, code_verifier: str, code_challenge: str) -> bool:
        return hmac.compare_digest(s256_challenge(code_verifier).encode("ascii"), code_challenge.encode("ascii"))


def default_code_challenge_verifiers() -> dict:
    return {verifier.method: verifier for verifier in (S256Verifier(), PlainVerifier())}
