"""Authorization for the collection trigger endpoint.

Scheduled deliveries carry an ``Upstash-Signature`` header: an HS256 JWT
signed with the scheduler's signing key, whose ``sub`` claim is the
destination URL and whose ``body`` claim is the base64url SHA-256 of the
request body. Two keys are accepted (current and next) so the scheduler can
rotate keys without downtime. Manual and cron callers may instead send
``Authorization: Bearer <CRON_SECRET>``.
"""

import base64
import hmac
import json
import time
import uuid
from typing import Mapping

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import hmac as crypto_hmac

SIGNATURE_HEADER = "upstash-signature"
ISSUER = "Upstash"


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _body_hash(body: bytes) -> str:
    digest = hashes.Hash(hashes.SHA256())
    digest.update(body)
    return _b64url_encode(digest.finalize())


def _mac(signing_key: str, signing_input: bytes) -> crypto_hmac.HMAC:
    mac = crypto_hmac.HMAC(signing_key.encode("utf-8"), hashes.SHA256())
    mac.update(signing_input)
    return mac


def sign_request(
    signing_key: str,
    url: str,
    body: bytes = b"",
    now: int | None = None,
    ttl: int = 300,
) -> str:
    """Produce a signature token the way the scheduler does."""
    now = int(time.time()) if now is None else now
    header = {"alg": "HS256", "typ": "JWT"}
    claims = {
        "iss": ISSUER,
        "sub": url,
        "iat": now,
        "nbf": now,
        "exp": now + ttl,
        "jti": uuid.uuid4().hex,
        "body": _body_hash(body),
    }
    signing_input = ".".join(
        _b64url_encode(json.dumps(part, separators=(",", ":")).encode("utf-8"))
        for part in (header, claims)
    )
    signature = _mac(signing_key, signing_input.encode("ascii")).finalize()
    return f"{signing_input}.{_b64url_encode(signature)}"


def verify_signature(
    signing_key: str,
    token: str,
    url: str,
    body: bytes = b"",
    now: int | None = None,
    clock_tolerance: int = 0,
) -> bool:
    """Verify a signature token against one key.

    Returns True if valid, False on any failure (bad signature, wrong URL,
    expired, tampered body, malformed token).
    """
    try:
        header_b64, claims_b64, signature_b64 = token.split(".")
        header = json.loads(_b64url_decode(header_b64))
        if header.get("alg") != "HS256":
            return False

        signing_input = f"{header_b64}.{claims_b64}".encode("ascii")
        _mac(signing_key, signing_input).verify(_b64url_decode(signature_b64))

        claims = json.loads(_b64url_decode(claims_b64))
        now = int(time.time()) if now is None else now
        if claims.get("iss") != ISSUER:
            return False
        if claims.get("sub") != url:
            return False
        if now - clock_tolerance > int(claims["exp"]):
            return False
        if now + clock_tolerance < int(claims.get("nbf", 0)):
            return False
        return hmac.compare_digest(
            str(claims.get("body", "")).rstrip("="), _body_hash(body)
        )
    except (InvalidSignature, ValueError, KeyError, TypeError, AttributeError):
        return False


def verify_with_rotation(
    current_key: str,
    next_key: str | None,
    token: str,
    url: str,
    body: bytes = b"",
    now: int | None = None,
) -> bool:
    """Accept a token signed with either the current or the next signing key."""
    if verify_signature(current_key, token, url, body, now=now):
        return True
    return bool(next_key) and verify_signature(next_key, token, url, body, now=now)


def check_bearer(authorization: str | None, secret: str | None) -> bool:
    if not secret or not authorization:
        return False
    return hmac.compare_digest(authorization, f"Bearer {secret}")


def authorize(headers: Mapping[str, str], url: str, body: bytes, settings) -> bool:
    """Decide whether a trigger request may run a collection cycle.

    A signed request is judged on its signature alone when signing keys are
    configured; otherwise the bearer secret is checked.
    """
    signature = headers.get(SIGNATURE_HEADER)
    current_key = settings.qstash_current_signing_key
    if signature and current_key:
        return verify_with_rotation(
            current_key, settings.qstash_next_signing_key, signature, url, body
        )
    return check_bearer(headers.get("authorization"), settings.cron_secret)
