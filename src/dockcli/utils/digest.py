"""Digest parsing and conversion utilities."""

import base64
import re
from typing import Any

# Regex pattern for valid digest format (algorithm:hex)
DIGEST_PATTERN = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-fA-F0-9]{32,}$")

_HEX_LENGTHS = {"sha256": 64, "sha384": 96, "sha512": 128}


def validate_digest(digest: str) -> bool:
    """Validate digest format.

    Args:
        digest: Digest string to validate

    Returns:
        True if valid digest format with a supported algorithm
    """
    if not isinstance(digest, str):
        return False

    if not DIGEST_PATTERN.match(digest):
        return False

    # Check algorithm and encoded length
    algorithm, encoded = digest.split(":", 1)
    expected = _HEX_LENGTHS.get(algorithm)
    return expected is not None and len(encoded) == expected


def digest_hex(digest: str) -> str:
    """Return the hex part of a sha256 digest.

    Raises:
        ValueError: If digest is not a valid sha256 digest
    """
    if not validate_digest(digest) or not digest.startswith("sha256:"):
        raise ValueError(f"Invalid sha256 digest: {digest}")
    return digest.split(":", 1)[1]


def digest_from_hashes(hashes: dict[str, Any]) -> str:
    """Build a "sha256:hex" digest from a TUF hashes mapping (base64 values).

    Raises:
        ValueError: If no usable sha256 hash is present
    """
    encoded = hashes.get("sha256")
    if not isinstance(encoded, str):
        raise ValueError("target has no sha256 hash")
    try:
        raw = base64.b64decode(encoded, validate=True)
    except ValueError as e:
        raise ValueError(f"invalid sha256 hash encoding: {e}") from e
    if len(raw) != 32:
        raise ValueError("sha256 hash has wrong length")
    return f"sha256:{raw.hex()}"
