"""PKCE (Proof Key for Code Exchange) helpers.

RFC 7636 defines PKCE to protect public OAuth clients.  The client sends a
*code challenge* to the authorization endpoint and later proves possession of
the matching *code verifier* when redeeming the authorization code.

Both transformations allowed by the RFC are verified here (``plain`` and
``S256``); the generation helpers are used by tests and by first-party
clients.

This module intentionally performs **no logging** of verifiers or challenges.
"""

from __future__ import annotations

import base64
import hmac
import secrets
from hashlib import sha256
from typing import Final

# RFC-7636 §4.1 mandates the verifier length between 43 and 128 characters.
_VERIFIER_LEN: Final[int] = 64
_ALLOWED_CHARS: Final[str] = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789"
    "-._~"
)

METHOD_PLAIN: Final[str] = "plain"
METHOD_S256: Final[str] = "S256"
SUPPORTED_METHODS: Final[tuple[str, ...]] = (METHOD_PLAIN, METHOD_S256)


def generate_code_verifier(length: int = _VERIFIER_LEN) -> str:
    """Generate a high-entropy code verifier.

    Parameters
    ----------
    length:
        Desired length between 43 and 128 characters (default 64).

    Returns
    -------
    str
        The generated code verifier.
    """
    if not 43 <= length <= 128:
        raise ValueError("code verifier length must be 43-128 characters")
    return "".join(secrets.choice(_ALLOWED_CHARS) for _ in range(length))


def code_challenge_s256(verifier: str) -> str:
    """Compute the *S256* PKCE code challenge for a given verifier.

    Returns
    -------
    str
        Base64url-encoded SHA-256 hash without padding.
    """
    digest = sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_code_challenge(verifier: str, challenge: str, method: str | None) -> bool:
    """Return *True* when *verifier* matches the stored *challenge*.

    A missing *method* means ``plain`` (RFC 7636 §4.3).  Unknown methods
    never verify.
    """
    method = method or METHOD_PLAIN
    if method == METHOD_S256:
        try:
            computed = code_challenge_s256(verifier)
        except UnicodeEncodeError:
            return False
    elif method == METHOD_PLAIN:
        computed = verifier
    else:
        return False
    return hmac.compare_digest(computed.encode(), challenge.encode())
