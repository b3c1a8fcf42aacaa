# /tools/cert_extract.py
"""
Field extraction from DER X.509 certificates.

The circuits that consume our fixtures address certificate fields by byte
offset, so everything here works on the raw encoding rather than on a parsed
`cryptography` object: the TBS slice, the SPKI slice, the RSA modulus, the
validity offsets inside the TBS and the RSA-PSS salt length.

Every failure is a `MalformedCertificate` carrying the offset where the walk
stopped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Optional, Tuple, Union

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding

from tools.errors import MalformedCertificate, UnsupportedSignatureAlgorithm
from tools.icao_asn1 import OID_MGF1, OID_RSA_ENCRYPTION, OID_RSASSA_PSS, OID_SHA1, PSS_DEFAULT_SALT_LENGTH
from tools.tlv import (
    TAG_BIT_STRING,
    TAG_CONTEXT_0,
    TAG_CONTEXT_1,
    TAG_CONTEXT_2,
    TAG_INTEGER,
    TAG_NULL,
    TAG_OID,
    TAG_SEQUENCE,
    TIME_TAGS,
    TLVNode,
    TLVReader,
    decode_integer,
    decode_oid,
)

logger = logging.getLogger(__name__)

RSA_FAMILY_PREFIX = "1.2.840.113549.1.1."


class SignatureScheme(str, Enum):
    PKCS1V15 = "RSA-PKCS1v1_5"
    PSS = "RSA-PSS"


@dataclass(frozen=True)
class Certificate:
    """Read-only view of the byte-level material the document builder needs."""
    der: bytes
    tbs_bytes: bytes
    signature_algorithm_oid: str
    signature_algorithm_params: Optional[bytes]
    signature_value: bytes
    subject_public_key_info: bytes
    modulus: Optional[bytes]
    not_before_offset: int
    not_after_offset: int
    issuer: bytes
    subject: bytes
    serial_number: int

    @property
    def scheme(self) -> SignatureScheme:
        return _scheme_for_oid(self.signature_algorithm_oid)

    @property
    def salt_length(self) -> int:
        if self.scheme is not SignatureScheme.PSS:
            raise UnsupportedSignatureAlgorithm(
                f"Certificate is signed with {self.signature_algorithm_oid}, not RSASSA-PSS"
            )
        return salt_length_from_pss_params(self.signature_algorithm_params)


class _TbsLayout(NamedTuple):
    serial: TLVNode
    issuer: TLVNode
    not_before: TLVNode
    not_after: TLVNode
    subject: TLVNode
    spki: TLVNode


def _reader(data: bytes) -> TLVReader:
    return TLVReader(data, error=MalformedCertificate)


def _walk_tbs(tbs: bytes) -> _TbsLayout:
    reader = _reader(tbs).enter(TAG_SEQUENCE, "tbsCertificate SEQUENCE")
    reader.skip_optional(TAG_CONTEXT_0)
    serial = reader.read(TAG_INTEGER, "serialNumber")
    reader.skip(TAG_SEQUENCE, "signature AlgorithmIdentifier")
    issuer = reader.read(TAG_SEQUENCE, "issuer Name")
    validity = reader.enter(TAG_SEQUENCE, "validity SEQUENCE")
    times = []
    for label in ("notBefore", "notAfter"):
        tag = validity.peek_tag()
        if tag not in TIME_TAGS:
            raise MalformedCertificate(f"Expected {label} Time", validity.offset, TIME_TAGS[0], tag)
        times.append(validity.read(tag, label))
    subject = reader.read(TAG_SEQUENCE, "subject Name")
    spki = reader.read(TAG_SEQUENCE, "subjectPublicKeyInfo")
    return _TbsLayout(serial, issuer, times[0], times[1], subject, spki)


def _slice(data: bytes, node: TLVNode) -> bytes:
    return data[node.offset:node.end]


def _scheme_for_oid(oid: str) -> SignatureScheme:
    if oid == OID_RSASSA_PSS:
        return SignatureScheme.PSS
    if oid.startswith(RSA_FAMILY_PREFIX):
        return SignatureScheme.PKCS1V15
    raise UnsupportedSignatureAlgorithm(f"Signature algorithm {oid} is not an RSA scheme")


# ----- Certificate level -----

def load_certificate(data: Union[bytes, str]) -> bytes:
    """Accept PEM or DER certificate data and return DER bytes. Nothing touches the filesystem."""
    if isinstance(data, str):
        data = data.encode("ascii")
    if data.lstrip().startswith(b"-----BEGIN"):
        return x509.load_pem_x509_certificate(data).public_bytes(Encoding.DER)
    return bytes(data)


def extract_tbs(cert: bytes) -> bytes:
    """TBSCertificate with its own tag and length, exactly the bytes the issuer signed."""
    return _reader(cert).enter(TAG_SEQUENCE, "Certificate SEQUENCE").expect(TAG_SEQUENCE, "tbsCertificate")


def extract_signature(cert: bytes) -> bytes:
    reader = _reader(cert).enter(TAG_SEQUENCE, "Certificate SEQUENCE")
    reader.skip(TAG_SEQUENCE, "tbsCertificate")
    reader.skip(TAG_SEQUENCE, "signatureAlgorithm")
    bits = reader.value(TAG_BIT_STRING, "signatureValue BIT STRING")
    if not bits:
        raise MalformedCertificate("Empty signatureValue", reader.offset, TAG_BIT_STRING)
    if bits[0] != 0:
        logger.warning(f"signatureValue declares {bits[0]} unused bits; ignoring")
    return bits[1:]


def extract_signature_algorithm(cert: bytes) -> Tuple[str, Optional[bytes]]:
    """
    Outer signatureAlgorithm as `(dotted_oid, parameters)`.

    `parameters` is the whole encoded element, or None when absent or NULL.
    """
    reader = _reader(cert).enter(TAG_SEQUENCE, "Certificate SEQUENCE")
    reader.skip(TAG_SEQUENCE, "tbsCertificate")
    algorithm = reader.enter(TAG_SEQUENCE, "signatureAlgorithm")
    oid_offset = algorithm.offset
    oid = decode_oid(algorithm.value(TAG_OID, "algorithm OID"), oid_offset)
    if algorithm.at_end():
        return oid, None
    tag = algorithm.peek_tag()
    params = algorithm.expect(tag, "algorithm parameters")
    return oid, (None if tag == TAG_NULL else params)


def extract_salt_length(cert: bytes) -> int:
    oid, params = extract_signature_algorithm(cert)
    if oid != OID_RSASSA_PSS:
        raise UnsupportedSignatureAlgorithm(f"Certificate is signed with {oid}, not RSASSA-PSS")
    return salt_length_from_pss_params(params)


def salt_length_from_pss_params(params: Optional[bytes]) -> int:
    """Read `[2] saltLength` from encoded RSASSA-PSS-params; 32 when it is not present."""
    if not params:
        return PSS_DEFAULT_SALT_LENGTH
    reader = _reader(params).enter(TAG_SEQUENCE, "RSASSA-PSS-params")
    while not reader.at_end():
        node = reader.read(what="RSASSA-PSS-params field")
        if node.tag == TAG_CONTEXT_2:
            inner = TLVReader(reader.buffer, node.value_offset, node.end, MalformedCertificate)
            return decode_integer(inner.value(TAG_INTEGER, "saltLength"))
    return PSS_DEFAULT_SALT_LENGTH


def _algorithm_oid(reader: TLVReader, what: str) -> str:
    algorithm = reader.enter(TAG_SEQUENCE, what)
    offset = algorithm.offset
    return decode_oid(algorithm.value(TAG_OID, f"{what} OID"), offset)


def hash_algorithms_from_pss_params(params: Optional[bytes]) -> Tuple[str, str]:
    """
    `(hashAlgorithm, MGF1 hash)` OIDs from encoded RSASSA-PSS-params.

    Absent fields take the RFC 4055 defaults (SHA-1 for both).
    """
    hash_oid = mgf_hash_oid = OID_SHA1
    if not params:
        return hash_oid, mgf_hash_oid
    reader = _reader(params).enter(TAG_SEQUENCE, "RSASSA-PSS-params")
    while not reader.at_end():
        node = reader.read(what="RSASSA-PSS-params field")
        inner = TLVReader(reader.buffer, node.value_offset, node.end, MalformedCertificate)
        if node.tag == TAG_CONTEXT_0:
            hash_oid = _algorithm_oid(inner, "hashAlgorithm")
        elif node.tag == TAG_CONTEXT_1:
            mgf = inner.enter(TAG_SEQUENCE, "maskGenAlgorithm")
            mgf_offset = mgf.offset
            mgf_oid = decode_oid(mgf.value(TAG_OID, "maskGenAlgorithm OID"), mgf_offset)
            if mgf_oid != OID_MGF1:
                raise UnsupportedSignatureAlgorithm(f"Mask generation function {mgf_oid} is not MGF1")
            mgf_hash_oid = _algorithm_oid(mgf, "MGF1 hash")
    return hash_oid, mgf_hash_oid


def detect_signature_scheme(cert: bytes) -> SignatureScheme:
    oid, _ = extract_signature_algorithm(cert)
    return _scheme_for_oid(oid)


# ----- TBS level -----

def extract_public_key_info(tbs: bytes) -> bytes:
    return _slice(tbs, _walk_tbs(tbs).spki)


def extract_issuer_and_serial(tbs: bytes) -> Tuple[bytes, int]:
    """Encoded issuer Name and the serial number, as CMS IssuerAndSerialNumber needs them."""
    layout = _walk_tbs(tbs)
    serial = decode_integer(tbs[layout.serial.value_offset:layout.serial.end])
    return _slice(tbs, layout.issuer), serial


def find_validity_offsets(tbs: bytes) -> Tuple[int, int]:
    """Offsets (inside the TBS) of the notBefore and notAfter time values, past their 2-byte headers."""
    layout = _walk_tbs(tbs)
    return layout.not_before.offset + 2, layout.not_after.offset + 2


def find_expiration_offset(tbs: bytes) -> int:
    offset = find_validity_offsets(tbs)[1]
    logger.debug(f"notAfter value at TBS offset {offset}")
    return offset


def find_modulus_offset_in_tbs(tbs: bytes, modulus: bytes) -> int:
    offset = bytes(tbs).find(bytes(modulus))
    if offset < 0 or not modulus:
        raise MalformedCertificate("Modulus not present in TBS", 0)
    return offset


# ----- SPKI level -----

def _spki_algorithm(spki: bytes) -> str:
    reader = _reader(spki).enter(TAG_SEQUENCE, "subjectPublicKeyInfo")
    algorithm = reader.enter(TAG_SEQUENCE, "SPKI algorithm")
    offset = algorithm.offset
    return decode_oid(algorithm.value(TAG_OID, "SPKI algorithm OID"), offset)


def extract_modulus(spki: bytes) -> bytes:
    """RSA modulus from a SubjectPublicKeyInfo, without the INTEGER sign byte."""
    reader = _reader(spki).enter(TAG_SEQUENCE, "subjectPublicKeyInfo")
    reader.skip(TAG_SEQUENCE, "SPKI algorithm")
    bits = reader.enter(TAG_BIT_STRING, "subjectPublicKey BIT STRING")
    bits.read_byte("unused-bits octet")
    key = bits.enter(TAG_SEQUENCE, "RSAPublicKey SEQUENCE")
    modulus = key.value(TAG_INTEGER, "modulus INTEGER")
    if len(modulus) > 1 and modulus[0] == 0:
        modulus = modulus[1:]
    logger.debug(f"Extracted {len(modulus)}-byte modulus")
    return modulus


def parse_certificate(data: Union[bytes, str]) -> Certificate:
    der = load_certificate(data)
    tbs = extract_tbs(der)
    layout = _walk_tbs(tbs)
    spki = _slice(tbs, layout.spki)
    oid, params = extract_signature_algorithm(der)
    modulus = extract_modulus(spki) if _spki_algorithm(spki) in (OID_RSA_ENCRYPTION, OID_RSASSA_PSS) else None
    return Certificate(
        der=der,
        tbs_bytes=tbs,
        signature_algorithm_oid=oid,
        signature_algorithm_params=params,
        signature_value=extract_signature(der),
        subject_public_key_info=spki,
        modulus=modulus,
        not_before_offset=layout.not_before.offset + 2,
        not_after_offset=layout.not_after.offset + 2,
        issuer=_slice(tbs, layout.issuer),
        subject=_slice(tbs, layout.subject),
        serial_number=decode_integer(tbs[layout.serial.value_offset:layout.serial.end]),
    )
