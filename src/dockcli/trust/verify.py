"""Signature, threshold and expiry checks for TUF metadata served by notary."""

import base64
import binascii
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from ..exceptions import TrustVerificationError

logger = logging.getLogger(__name__)

_TIMESTAMP = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(\.\d+)?(Z|[+-]\d{2}:\d{2})$")


def canonical_json(obj: Any) -> bytes:
    """Serialize with sorted keys and no insignificant whitespace."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def parse_expires(value: str) -> datetime:
    """Parse an RFC 3339 timestamp, tolerating nanosecond precision.

    Raises:
        TrustVerificationError: If the timestamp is malformed
    """
    match = _TIMESTAMP.match(value or "")
    if match is None:
        raise TrustVerificationError(f"invalid expiry timestamp: {value!r}")
    base, fraction, zone = match.groups()
    micros = (fraction or ".")[1:7].ljust(6, "0")
    zone = "+00:00" if zone == "Z" else zone
    return datetime.fromisoformat(f"{base}.{micros}{zone}")


def load_public_key(key: Dict[str, Any]):
    """Build a cryptography public key from a TUF key object.

    Raises:
        TrustVerificationError: If the key type or encoding is unsupported
    """
    keytype = key.get("keytype", "")
    public = (key.get("keyval") or {}).get("public", "")
    try:
        raw = base64.b64decode(public, validate=True)
        if keytype == "ed25519":
            return ed25519.Ed25519PublicKey.from_public_bytes(raw)
        if keytype in ("ecdsa", "rsa"):
            return serialization.load_der_public_key(raw)
        if keytype in ("ecdsa-x509", "rsa-x509"):
            return x509.load_pem_x509_certificate(raw).public_key()
    except (binascii.Error, ValueError) as e:
        raise TrustVerificationError(f"invalid {keytype} public key: {e}") from e
    raise TrustVerificationError(f"unsupported key type: {keytype!r}")


def verify_signature(public_key, method: str, signature: bytes, message: bytes) -> bool:
    """Check one signature; returns False rather than raising on mismatch."""
    try:
        if isinstance(public_key, ed25519.Ed25519PublicKey):
            if method != "eddsa":
                return False
            public_key.verify(signature, message)
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            if method != "ecdsa":
                return False
            # Signatures are raw r||s
            half = len(signature) // 2
            if half == 0 or len(signature) % 2:
                return False
            r = int.from_bytes(signature[:half], "big")
            s = int.from_bytes(signature[half:], "big")
            public_key.verify(encode_dss_signature(r, s), message, ec.ECDSA(hashes.SHA256()))
        elif isinstance(public_key, rsa.RSAPublicKey):
            if method == "rsapss":
                pad = padding.PSS(
                    mgf=padding.MGF1(hashes.SHA256()),
                    salt_length=padding.PSS.DIGEST_LENGTH,
                )
            elif method == "rsapkcs1v15":
                pad = padding.PKCS1v15()
            else:
                return False
            public_key.verify(signature, message, pad, hashes.SHA256())
        else:
            return False
    except InvalidSignature:
        return False
    return True


def verify_role(
    document: Dict[str, Any],
    role: str,
    keys: Dict[str, Dict[str, Any]],
    keyids: Iterable[str],
    threshold: int,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Verify a signed metadata document for a role.

    Args:
        document: Full metadata ({"signed": ..., "signatures": [...]})
        role: Role name, for messages
        keys: Key objects by key ID
        keyids: Key IDs authorized for the role
        threshold: Number of distinct valid signatures required
        now: Reference time for the expiry check

    Returns:
        The "signed" portion

    Raises:
        TrustVerificationError: If too few valid signatures or expired
    """
    signed = document.get("signed")
    if not isinstance(signed, dict):
        raise TrustVerificationError(f"{role}: metadata has no signed section")
    if threshold < 1:
        raise TrustVerificationError(f"{role}: invalid signature threshold {threshold}")

    message = canonical_json(signed)
    authorized = set(keyids)
    valid = set()
    for sig in document.get("signatures") or []:
        keyid = sig.get("keyid", "")
        if keyid not in authorized or keyid in valid or keyid not in keys:
            continue
        try:
            signature = base64.b64decode(sig.get("sig", ""), validate=True)
        except binascii.Error:
            continue
        try:
            public_key = load_public_key(keys[keyid])
        except TrustVerificationError as e:
            logger.debug("%s: skipping signature by %s: %s", role, keyid, e)
            continue
        if verify_signature(public_key, sig.get("method", ""), signature, message):
            valid.add(keyid)

    if len(valid) < threshold:
        raise TrustVerificationError(
            f"potential malicious behavior - trust data has insufficient signatures "
            f"for {role}: {len(valid)} of {threshold} required"
        )

    now = now or datetime.now(timezone.utc)
    if parse_expires(signed.get("expires", "")) <= now:
        raise TrustVerificationError(f"remote repository out-of-date: {role} expired")
    return signed
