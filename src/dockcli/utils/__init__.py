"""Utility functions for the dockcli client."""

from .digest import digest_from_hashes, digest_hex, validate_digest
from .sortorder import natural_key, natural_less

__all__ = [
    "digest_from_hashes",
    "digest_hex",
    "natural_key",
    "natural_less",
    "validate_digest",
]
