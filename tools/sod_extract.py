# /tools/sod_extract.py
"""
Read-side helpers for EF.SOD (CMS SignedData wrapping an LDSSecurityObject).

`extract_certificate` walks the raw bytes with a cursor, since it only has to
skip to the certificate set. Everything that needs the signer info works on the
node tree, which is also what the PSS patch in `security_object` rewrites.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

from pyasn1.codec.der import decoder

from tools.errors import CertificateIndexNotFound, MalformedEncoding
from tools.icao_asn1 import OID_SIGNED_DATA, LDSSecurityObject
from tools.tlv import (
    TAG_CONTEXT_0,
    TAG_INTEGER,
    TAG_NULL,
    TAG_OCTET_STRING,
    TAG_OID,
    TAG_SEQUENCE,
    TAG_SET,
    Asn1Node,
    TLVReader,
    decode_oid,
    encode_oid,
    parse_tree,
)

logger = logging.getLogger(__name__)

# ContentInfo -> content [0] -> SignedData
SIGNED_DATA_PATH = (1, 0)


def extract_certificate(sod: bytes, index: int = 0) -> bytes:
    """Return the `index`-th certificate of the SOD's certificate set, DER encoded."""
    reader = TLVReader(sod).enter(TAG_SEQUENCE, "ContentInfo SEQUENCE")
    reader.skip(TAG_OID, "contentType")
    signed_data = reader.enter(TAG_CONTEXT_0, "content [0]").enter(TAG_SEQUENCE, "SignedData SEQUENCE")
    signed_data.skip(TAG_INTEGER, "SignedData version")
    signed_data.skip(TAG_SET, "digestAlgorithms")
    signed_data.skip(TAG_SEQUENCE, "encapContentInfo")
    if signed_data.peek_tag() != TAG_CONTEXT_0:
        raise CertificateIndexNotFound(index, 0)
    certificates = signed_data.enter(TAG_CONTEXT_0, "certificates [0]")
    count = 0
    while not certificates.at_end():
        certificate = certificates.expect(TAG_SEQUENCE, "Certificate")
        if count == index:
            logger.debug(f"SOD certificate[{index}] is {len(certificate)} bytes")
            return certificate
        count += 1
    raise CertificateIndexNotFound(index, count)


def _tree(sod) -> Asn1Node:
    return sod if isinstance(sod, Asn1Node) else parse_tree(sod)


def _signed_data(tree: Asn1Node) -> Asn1Node:
    content_type = tree.child(0)
    if content_type.tag != TAG_OID or content_type.value != encode_oid(OID_SIGNED_DATA):
        raise MalformedEncoding("ContentInfo is not signedData", 0, TAG_OID, content_type.tag)
    return tree.at(SIGNED_DATA_PATH)


def locate_signer_info(sod) -> Tuple[Tuple[int, ...], Asn1Node]:
    """Path and node of the first SignerInfo. signerInfos is always the last SignedData field."""
    tree = _tree(sod)
    signed_data = _signed_data(tree)
    last = len(signed_data.children) - 1
    signer_infos = signed_data.child(last)
    if signer_infos.tag != TAG_SET:
        raise MalformedEncoding("signerInfos SET not found", 0, TAG_SET, signer_infos.tag)
    return SIGNED_DATA_PATH + (last, 0), signer_infos.child(0)


def signer_info_fields(signer_info: Asn1Node) -> Dict[str, int]:
    """Child index of each SignerInfo field; `signedAttrs` is optional."""
    fields = {"version": 0, "sid": 1, "digestAlgorithm": 2}
    position = 3
    if signer_info.child(position).tag == TAG_CONTEXT_0:
        fields["signedAttrs"] = position
        position += 1
    fields["signatureAlgorithm"] = position
    fields["signature"] = position + 1
    signature = signer_info.child(position + 1)
    if signature.tag != TAG_OCTET_STRING:
        raise MalformedEncoding("SignerInfo signature is not an OCTET STRING", 0, TAG_OCTET_STRING, signature.tag)
    return fields


def _signer_field(sod, name: str) -> Asn1Node:
    _, signer_info = locate_signer_info(sod)
    fields = signer_info_fields(signer_info)
    if name not in fields:
        raise MalformedEncoding(f"SignerInfo has no {name}", 0)
    return signer_info.child(fields[name])


def extract_signed_attributes(sod) -> bytes:
    """Signed attributes re-tagged as a SET, i.e. the exact bytes the signature covers."""
    return _signer_field(sod, "signedAttrs").retag(TAG_SET).encode()


def read_signed_attribute(sod, oid: str) -> Optional[bytes]:
    """Content octets of the first value of a signed attribute, or None if it is absent."""
    wanted = encode_oid(oid)
    for attribute in _signer_field(sod, "signedAttrs").children:
        if attribute.child(0).value == wanted:
            return attribute.child(1).child(0).value
    return None


def read_signature(sod) -> bytes:
    return _signer_field(sod, "signature").value


def read_signature_algorithm(sod) -> Tuple[str, Optional[bytes]]:
    """Signer-info signature algorithm as `(dotted_oid, encoded_parameters_or_None)`."""
    algorithm = _signer_field(sod, "signatureAlgorithm")
    oid = decode_oid(algorithm.child(0).value)
    if len(algorithm.children) < 2 or algorithm.child(1).tag == TAG_NULL:
        return oid, None
    return oid, algorithm.child(1).encode()


def extract_encapsulated_content(sod) -> bytes:
    """The LDSSecurityObject DER carried in encapContentInfo.eContent."""
    encap = _signed_data(_tree(sod)).child(2)
    if encap.tag != TAG_SEQUENCE or len(encap.children) < 2:
        raise MalformedEncoding("encapContentInfo has no eContent", 0, TAG_SEQUENCE, encap.tag)
    content = encap.child(1).child(0)
    if content.tag != TAG_OCTET_STRING:
        raise MalformedEncoding("eContent is not an OCTET STRING", 0, TAG_OCTET_STRING, content.tag)
    return content.value


def read_lds_security_object(sod) -> Tuple[str, Dict[int, bytes]]:
    """`(hash_algorithm_oid, {data_group_number: digest})` from the encapsulated LDS object."""
    lds, _ = decoder.decode(extract_encapsulated_content(sod), asn1Spec=LDSSecurityObject())
    hashes = {
        int(entry["dataGroupNumber"]): bytes(entry["dataGroupHashValue"])
        for entry in lds["dataGroupHashValues"]
    }
    return str(lds["hashAlgorithm"]["algorithm"]), hashes


def read_data_group_hashes(sod) -> Dict[int, bytes]:
    return read_lds_security_object(sod)[1]


def read_digest_algorithm(sod) -> str:
    """Dotted OID of the signer-info digest algorithm."""
    return decode_oid(_signer_field(sod, "digestAlgorithm").child(0).value)
