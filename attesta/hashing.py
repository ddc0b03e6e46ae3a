"""
Attesta Hashing

All digests are SHA-256. Raw 32-byte digests are used on the signing path;
the ``sha256:`` hex form is used for display and audit records.
"""

import hashlib
import json
from typing import Any, Union


def sha256_digest(data: Union[bytes, str]) -> bytes:
    """Raw 32-byte SHA-256 digest. Strings are hashed as UTF-8."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).digest()


def sha256_hex(data: Union[bytes, str]) -> str:
    """
    SHA-256 in display form.

    Returns:
        Hash string in format "sha256:abcdef..."
    """
    return f"sha256:{sha256_digest(data).hex()}"


def canonicalize(obj: Any) -> bytes:
    """
    Canonical JSON bytes for an action document.

    Keys sorted, compact separators, UTF-8 without escaping. Floats are
    rejected because their textual form is not stable across encoders;
    amounts belong in integers or strings.
    """
    _reject_floats(obj)
    return json.dumps(
        obj, sort_keys=True, separators=(',', ':'), ensure_ascii=False
    ).encode('utf-8')


def _reject_floats(value: Any) -> None:
    if isinstance(value, float):
        raise ValueError("Floats are not allowed in canonical actions")
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, str):
                raise ValueError(f"Object keys must be strings, got {type(k).__name__}")
            _reject_floats(v)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _reject_floats(item)


def action_digest(action: dict) -> bytes:
    """
    Message hash bound into an authorization proof.

    action_digest = SHA-256(canonical JSON(action))
    """
    return sha256_digest(canonicalize(action))


def short_hex(data: bytes, length: int = 16) -> str:
    """Truncated hex for log lines."""
    return data.hex()[:length]
