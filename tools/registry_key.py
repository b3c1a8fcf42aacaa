# /tools/registry_key.py
"""
Registry key derivation for document signer certificates and AA keys.

The on-chain registry indexes certificates by a ZK-friendly hash of five field
elements packed from the RSA modulus. The hash itself (Poseidon) lives in the
prover toolchain and is passed in as `hasher`; this module only reproduces the
packing, which must match the registry contract bit for bit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

from tools.cert_extract import extract_modulus, extract_public_key_info, extract_tbs, load_certificate
from tools.errors import InvalidModulusLength

logger = logging.getLogger(__name__)

MIN_MODULUS_LENGTH = 120
WINDOW_LENGTH = 32
WINDOW_STEP = 24
ELEMENT_COUNT = 5
CHUNK_BITS = 64
CHUNK_MASK = (1 << CHUNK_BITS) - 1

Hasher = Callable[[Sequence[int]], int]


def decompose_modulus(modulus: bytes) -> List[int]:
    """
    Five field elements taken from the tail of the modulus.

    Each element is a 32-byte window ending 24 bytes before the previous one.
    Its three low 64-bit chunks are re-concatenated in reverse chunk order, so
    only the low 24 bytes of every window contribute.
    """
    if len(modulus) < MIN_MODULUS_LENGTH:
        raise InvalidModulusLength(
            f"Modulus must be at least {MIN_MODULUS_LENGTH} bytes, got {len(modulus)}"
        )
    elements = []
    position = len(modulus)
    for _ in range(ELEMENT_COUNT):
        element = int.from_bytes(modulus[max(position - WINDOW_LENGTH, 0):position], "big")
        reordered = 0
        for j in range(3):
            reordered = (reordered << CHUNK_BITS) | ((element >> (CHUNK_BITS * j)) & CHUNK_MASK)
        elements.append(reordered)
        position -= WINDOW_STEP
    return elements


def derive_key(modulus: bytes, hasher: Hasher) -> int:
    return hasher(decompose_modulus(modulus))


def certificate_key(certificate: Union[bytes, str], hasher: Hasher) -> int:
    """Registry key of a certificate: the packed hash of its RSA modulus."""
    spki = extract_public_key_info(extract_tbs(load_certificate(certificate)))
    modulus = extract_modulus(spki)
    logger.debug(f"Certificate modulus is {len(modulus)} bytes")
    return derive_key(modulus, hasher)


def registry_key_hex(key: int) -> str:
    return f"0x{key:064x}"


# ----- Registry collaborator -----

@dataclass(frozen=True)
class LeafProof:
    """Sparse Merkle tree proof for one registry key."""
    key: int
    exists: bool
    siblings: Tuple[int, ...] = ()
    value: Optional[int] = None


class RegistryClient(Protocol):
    """What the engine needs from the on-chain registry. Implemented outside this package."""

    def read_root(self) -> int:
        ...

    def read_leaf(self, key: int) -> LeafProof:
        ...

    def submit_proof(self, proof: Mapping[str, Any]) -> str:
        ...


def lookup_modulus(client: RegistryClient, modulus: bytes, hasher: Hasher) -> LeafProof:
    key = derive_key(modulus, hasher)
    logger.info(f"Looking up registry key {registry_key_hex(key)}")
    return client.read_leaf(key)
