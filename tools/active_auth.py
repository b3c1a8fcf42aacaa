# /tools/active_auth.py
"""
Active Authentication (ICAO 9303 part 11, ISO/IEC 9796-2 scheme 1 style).

The chip proves possession of the DG15 private key by signing a challenge. In
the registration protocol the challenge is the last eight bytes of the
identity key, which binds the ZK proof to this particular chip.

The message representative is built by hand and exponentiated with plain
`pow`, because no padding mode in `cryptography` produces this format:

    01 || prepared (random) || H(prepared || challenge) || trailer
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from typing import Callable, Dict, Union

from tools.cert_extract import extract_modulus
from tools.security_object import AA_PUBLIC_EXPONENT, ActiveAuthenticationKey
from tools.tlv import TLVReader

logger = logging.getLogger(__name__)

SHA256_LENGTH = 32
SHA1_LENGTH = 20

_HASHES: Dict[int, Callable] = {
    SHA256_LENGTH: hashlib.sha256,
    SHA1_LENGTH: hashlib.sha1,
}
_TRAILERS: Dict[int, bytes] = {
    SHA256_LENGTH: b"\x34\xcc",
    SHA1_LENGTH: b"\x33\xcc",
}
TRAILER_LENGTH = 2
CHALLENGE_LENGTH = 8
DG15_TAG = 0x6F


def _hash_for(hash_length: int) -> Callable:
    try:
        return _HASHES[hash_length]
    except KeyError:
        raise ValueError(f"Unsupported hash length {hash_length}; expected 32 (SHA-256) or 20 (SHA-1)") from None


def _modulus_int(modulus: bytes) -> int:
    n = int.from_bytes(modulus, "big")
    if n <= 1:
        raise ValueError("RSA modulus must be greater than 1")
    return n


def sign(challenge: bytes, modulus: bytes, private_exponent: int, hash_length: int = SHA256_LENGTH) -> bytes:
    """Return the AA signature over `challenge`, as wide as the modulus."""
    hash_fn = _hash_for(hash_length)
    n = _modulus_int(modulus)
    width = len(modulus)
    prepared_length = width - TRAILER_LENGTH - hash_length - 1
    if prepared_length <= 0:
        raise ValueError(f"Modulus of {width} bytes is too short for a {hash_length}-byte digest")

    prepared = secrets.token_bytes(prepared_length)
    digest = hash_fn(prepared + challenge).digest()
    message = b"\x01" + prepared + digest + _TRAILERS[hash_length]
    signature = pow(int.from_bytes(message, "big"), private_exponent, n)
    return signature.to_bytes(width, "big")


def verify(challenge: bytes, signature: bytes, modulus: bytes, hash_length: int = SHA256_LENGTH) -> bool:
    """
    Check an AA signature. A bad signature is `False`, never an exception;
    only an unusable modulus or hash length raises `ValueError`.
    """
    if not signature or not modulus:
        return False
    hash_fn = _hash_for(hash_length)
    n = _modulus_int(modulus)

    width = len(modulus)
    deciphered = pow(int.from_bytes(signature, "big"), AA_PUBLIC_EXPONENT, n).to_bytes(width, "big")
    body = deciphered[:-TRAILER_LENGTH]
    prepared = body[1:len(body) - hash_length]
    digest = body[len(body) - hash_length:]
    expected = hash_fn(prepared + challenge).digest()
    valid = hmac.compare_digest(digest, expected)
    logger.debug(f"AA verification over {len(challenge)}-byte challenge: {'ok' if valid else 'mismatch'}")
    return valid


def modulus_from_dg15(dg15: bytes) -> bytes:
    """RSA modulus from DG15 (with or without its 0x6F application tag)."""
    reader = TLVReader(dg15)
    spki = reader.value(DG15_TAG, "DG15") if reader.peek_tag() == DG15_TAG else bytes(dg15)
    return extract_modulus(spki)


def challenge_from_identity_key(identity_key: Union[int, bytes, str]) -> bytes:
    """Last eight bytes of the identity key, taken as a 32-byte big-endian value."""
    if isinstance(identity_key, str):
        identity_key = int(identity_key, 16)
    if isinstance(identity_key, int):
        identity_key = identity_key.to_bytes(32, "big")
    return bytes(identity_key)[-CHALLENGE_LENGTH:]


def sign_document(challenge: bytes, aa_key: ActiveAuthenticationKey, hash_length: int = SHA256_LENGTH) -> bytes:
    return sign(challenge, aa_key.modulus, aa_key.private_exponent, hash_length)
