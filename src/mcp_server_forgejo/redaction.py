"""Credential masking helpers.

A raw credential never leaves the process: logs, error payloads and cache keys
only ever see ``mask_token()`` or ``token_fingerprint()`` output.
"""

import hashlib
from typing import Any, Iterable, Optional, Set

_registered_secrets: Set[str] = set()


def mask_token(token: str) -> str:
    """Mask a token for display, showing at most its first and last four characters."""
    if not token:
        return ""
    length = len(token)
    if length <= 4:
        return "*" * length
    if length <= 16:
        return token[:2] + "*" * (length - 4) + token[-2:]
    return token[:4] + "*" * (length - 8) + token[-4:]


def token_fingerprint(token: str) -> str:
    """Stable, non-reversible identifier for a token (``sha256:<16 hex>``)."""
    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
    return f"sha256:{digest[:16]}"


def token_cache_key(token: str) -> str:
    """Full-length digest used as the auth cache key."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def register_secret(value: Optional[str]) -> None:
    """Mark ``value`` for redaction in logs and error payloads."""
    if value and value.strip():
        _registered_secrets.add(value)
        stripped = value.strip()
        if stripped != value:
            _registered_secrets.add(stripped)


def registered_secrets() -> Set[str]:
    return set(_registered_secrets)


def clear_secrets() -> None:
    """Forget all registered secrets (useful for testing)."""
    _registered_secrets.clear()


def redact(text: str, secrets: Optional[Iterable[str]] = None) -> str:
    """Replace every occurrence of each secret in ``text`` with its masked form."""
    candidates = registered_secrets() if secrets is None else set(secrets) | registered_secrets()
    # Longest first so a secret that contains another is masked whole
    for secret in sorted(candidates, key=len, reverse=True):
        if secret and secret in text:
            text = text.replace(secret, mask_token(secret))
    return text


def redact_value(value: Any, secrets: Optional[Iterable[str]] = None) -> Any:
    """Recursively redact strings inside JSON-like structures."""
    if secrets is not None:
        secrets = tuple(secrets)
    if isinstance(value, str):
        return redact(value, secrets)
    if isinstance(value, dict):
        return {key: redact_value(item, secrets) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact_value(item, secrets) for item in value]
    return value
