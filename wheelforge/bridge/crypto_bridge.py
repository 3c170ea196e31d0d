"""Crypto bridge — Ed25519 signing via PyNaCl (libsodium).

Keys travel as hex strings: a 32-byte seed for signing keys and a
32-byte verify key for public keys. Verification fails closed: any
malformed input returns ``False`` rather than raising.
"""

from __future__ import annotations

import hashlib
import logging

import nacl.signing
from nacl.exceptions import BadSignatureError

logger = logging.getLogger(__name__)


def generate_keypair() -> tuple[str, str]:
    """Generate an Ed25519 signing key-pair.

    Returns
    -------
    tuple[str, str]
        ``(private_key_hex, public_key_hex)``
    """
    sk = nacl.signing.SigningKey.generate()
    return (sk.encode().hex(), sk.verify_key.encode().hex())


def public_key_for(private_key: str) -> str:
    """Derive the hex public key for a hex private key (seed)."""
    try:
        sk = nacl.signing.SigningKey(bytes.fromhex(private_key))
    except ValueError as exc:
        raise ValueError(f"Invalid Ed25519 private key: {exc}") from exc
    return sk.verify_key.encode().hex()


def sign_data(data: bytes, private_key: str) -> str:
    """Sign *data* with *private_key* and return the hex-encoded signature.

    Parameters
    ----------
    data:
        Raw bytes to sign (typically canonical JSON of a statement).
    private_key:
        Hex-encoded private key (seed) returned by ``generate_keypair()``.

    Returns
    -------
    str
        Hex-encoded signature (128 hex chars = 64 bytes for Ed25519).
    """
    try:
        sk = nacl.signing.SigningKey(bytes.fromhex(private_key))
    except ValueError as exc:
        raise ValueError(f"Invalid Ed25519 private key: {exc}") from exc
    return sk.sign(data).signature.hex()


def verify_data(data: bytes, signature: str, public_key: str) -> bool:
    """Verify that *signature* is valid for *data* under *public_key*.

    Returns ``False`` if the signature is empty, malformed, or invalid.
    """
    if not signature or not public_key:
        return False
    try:
        vk = nacl.signing.VerifyKey(bytes.fromhex(public_key))
        vk.verify(data, bytes.fromhex(signature))
    except (BadSignatureError, ValueError, TypeError) as exc:
        logger.debug("Signature verification failed: %s", exc)
        return False
    return True


def key_fingerprint(public_key: str) -> str:
    """First 16 hex characters of SHA-256(public_key).

    Recorded alongside attestations so a key rotation is visible without
    embedding the full key.
    """
    if not public_key:
        return ""
    return hashlib.sha256(public_key.encode("utf-8")).hexdigest()[:16]
