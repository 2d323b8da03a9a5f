"""Content trust: signed target lookup, verification and signing."""

from .notary import NotaryRepository, trust_server
from .resolver import (
    TrustedReference,
    match_released_signatures,
    tag_trusted,
    trusted_reference,
)
from .signer import NotarySigner, PushResultCollector, sign_and_publish

__all__ = [
    "NotaryRepository",
    "NotarySigner",
    "PushResultCollector",
    "TrustedReference",
    "match_released_signatures",
    "sign_and_publish",
    "tag_trusted",
    "trust_server",
    "trusted_reference",
]
