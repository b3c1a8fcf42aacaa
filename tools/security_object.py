# /tools/security_object.py
"""
Builders for DG15 (Active Authentication public key) and EF.SOD.

The SOD is a CMS SignedData over an ICAO LDSSecurityObject. It is first
assembled with pyasn1-modules and signed with PKCS#1 v1.5. Two things are then
done on the raw node tree, because the pyasn1 DER encoder cannot do them:

* the certificate set is grafted in caller order (DER would sort a SET OF),
  so index 0 is always the signing certificate;
* for RSA-PSS document signers the signer-info algorithm is rewritten to
  RSASSA-PSS with explicit parameters and the signature is replaced.

Circuits parse the result at fixed offsets, so the byte layout here is part of
the contract. Changes that move bytes must bump `SecurityObjectLayout.version`.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional, Tuple

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from pyasn1.codec.der import decoder, encoder
from pyasn1.type import tag, univ, useful
from pyasn1_modules import rfc5280, rfc5652

from tools.cert_extract import (
    SignatureScheme,
    detect_signature_scheme,
    extract_issuer_and_serial,
    extract_salt_length,
    extract_tbs,
    load_certificate,
)
from tools.errors import UnsupportedSignatureAlgorithm
from tools.icao_asn1 import (
    OID_LDS_SECURITY_OBJECT,
    OID_MGF1,
    OID_RSA_ENCRYPTION,
    OID_RSASSA_PSS,
    OID_SHA256,
    DataGroupHash,
    LDSSecurityObject,
)
from tools.sod_extract import SIGNED_DATA_PATH, locate_signer_info, signer_info_fields
from tools.tlv import (
    TAG_BIT_STRING,
    TAG_CONTEXT_0,
    TAG_CONTEXT_1,
    TAG_CONTEXT_2,
    TAG_INTEGER,
    TAG_OCTET_STRING,
    TAG_SEQUENCE,
    TAG_SET,
    Asn1Node,
    algorithm_identifier,
    encode_integer,
    parse_tree,
    sequence,
    wrap,
)

logger = logging.getLogger(__name__)

DG15_TAG = 0x6F
AA_PUBLIC_EXPONENT = 65537


# ----- Data model -----

@dataclass(frozen=True)
class SecurityObjectLayout:
    """Dummy data groups hashed into the SOD so downstream offsets stay fixed."""
    version: str
    padding_data_groups: Tuple[int, ...]
    filler: bytes


LAYOUTS: Dict[str, SecurityObjectLayout] = {
    "v1": SecurityObjectLayout("v1", (2, 3, 4, 5), b"\xff" * 10),
}
DEFAULT_LAYOUT = LAYOUTS["v1"]


def get_layout(version: str) -> SecurityObjectLayout:
    try:
        return LAYOUTS[version]
    except KeyError:
        raise ValueError(f"Unknown security object layout: {version!r} (known: {sorted(LAYOUTS)})") from None


@dataclass(frozen=True)
class SigningMaterial:
    """Document signer certificate (DER), its private key, and the certificate to embed."""
    certificate: bytes
    private_key: rsa.RSAPrivateKey
    embedded_certificate: Optional[bytes] = None

    @classmethod
    def from_pem(
        cls,
        certificate_pem: bytes,
        private_key_pem: bytes,
        embedded_certificate_pem: Optional[bytes] = None,
    ) -> "SigningMaterial":
        key = serialization.load_pem_private_key(private_key_pem, password=None)
        if not isinstance(key, rsa.RSAPrivateKey):
            raise UnsupportedSignatureAlgorithm(f"Document signer key must be RSA, got {type(key).__name__}")
        embedded = load_certificate(embedded_certificate_pem) if embedded_certificate_pem else None
        return cls(load_certificate(certificate_pem), key, embedded)

    @classmethod
    def from_files(
        cls, certificate_path: str, private_key_path: str, embedded_certificate_path: Optional[str] = None
    ) -> "SigningMaterial":
        with open(certificate_path, "rb") as f:
            certificate = f.read()
        with open(private_key_path, "rb") as f:
            private_key = f.read()
        embedded = None
        if embedded_certificate_path:
            with open(embedded_certificate_path, "rb") as f:
                embedded = f.read()
        return cls.from_pem(certificate, private_key, embedded)

    def certificates(self) -> Tuple[bytes, ...]:
        """Certificates to embed, signer first; a second entry only when it differs."""
        if self.embedded_certificate and self.embedded_certificate != self.certificate:
            return self.certificate, self.embedded_certificate
        return (self.certificate,)


@dataclass(frozen=True)
class ActiveAuthenticationKey:
    modulus: bytes
    public_exponent: int
    private_key: rsa.RSAPrivateKey = field(repr=False)
    encoded: bytes

    @classmethod
    def from_private_key(cls, private_key: rsa.RSAPrivateKey) -> "ActiveAuthenticationKey":
        numbers = private_key.public_key().public_numbers()
        width = (private_key.key_size + 7) // 8
        return cls(
            modulus=numbers.n.to_bytes(width, "big"),
            public_exponent=numbers.e,
            private_key=private_key,
            encoded=encode_dg15(numbers.n, numbers.e),
        )

    @property
    def private_exponent(self) -> int:
        return self.private_key.private_numbers().d

    def private_key_pem(self) -> str:
        return self.private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode("ascii")


@dataclass(frozen=True)
class SecurityObject:
    data_group_hashes: Dict[int, bytes]
    signing_certificate: bytes
    embedded_certificate: Optional[bytes]
    signature_algorithm: SignatureScheme
    salt_length: Optional[int]
    signature_value: bytes
    signing_time: datetime
    encoded: bytes


# ----- DG15 -----

def encode_dg15(modulus: int, public_exponent: int = AA_PUBLIC_EXPONENT) -> bytes:
    """
    6F { SEQ { SEQ { rsaEncryption, NULL }, BIT STRING { 00, SEQ { n, e } } } }

    Assembled by hand so the modulus lands at a predictable offset.
    """
    rsa_key = wrap(TAG_SEQUENCE, wrap(TAG_INTEGER, encode_integer(modulus)) + wrap(TAG_INTEGER, encode_integer(public_exponent)))
    spki = wrap(TAG_SEQUENCE, algorithm_identifier(OID_RSA_ENCRYPTION).encode() + wrap(TAG_BIT_STRING, b"\x00" + rsa_key))
    return wrap(DG15_TAG, spki)


def build_active_authentication_key(key_size: int = 2048) -> ActiveAuthenticationKey:
    """Fresh per-document RSA key pair for Active Authentication, wrapped as DG15."""
    private_key = rsa.generate_private_key(public_exponent=AA_PUBLIC_EXPONENT, key_size=key_size)
    aa_key = ActiveAuthenticationKey.from_private_key(private_key)
    logger.info(f"Generated {key_size}-bit Active Authentication key ({len(aa_key.encoded)}-byte DG15)")
    return aa_key


# ----- LDS security object -----

def _sha256_algorithm() -> rfc5280.AlgorithmIdentifier:
    algorithm = rfc5280.AlgorithmIdentifier()
    algorithm["algorithm"] = univ.ObjectIdentifier(OID_SHA256)
    algorithm["parameters"] = univ.Any(encoder.encode(univ.Null("")))
    return algorithm


def hash_data_groups(
    data_groups: Mapping[int, bytes], layout: SecurityObjectLayout = DEFAULT_LAYOUT
) -> Dict[int, bytes]:
    """SHA-256 of each data group plus the layout's padding groups, in ascending order."""
    hashes_by_number = {number: hashlib.sha256(data).digest() for number, data in data_groups.items()}
    filler_hash = hashlib.sha256(layout.filler).digest()
    for number in layout.padding_data_groups:
        hashes_by_number.setdefault(number, filler_hash)
    return dict(sorted(hashes_by_number.items()))


def encode_lds_security_object(data_group_hashes: Mapping[int, bytes]) -> bytes:
    lds = LDSSecurityObject()
    lds["version"] = 0
    lds["hashAlgorithm"] = _sha256_algorithm()
    for number in sorted(data_group_hashes):
        entry = DataGroupHash()
        entry["dataGroupNumber"] = number
        entry["dataGroupHashValue"] = data_group_hashes[number]
        lds["dataGroupHashValues"].append(entry)
    return encoder.encode(lds)


# ----- CMS SignedData -----

def _attribute(oid: univ.ObjectIdentifier, value) -> rfc5652.Attribute:
    attribute = rfc5652.Attribute()
    attribute["attrType"] = oid
    attribute["attrValues"].append(univ.Any(encoder.encode(value)))
    return attribute


def _signed_attributes(lds_der: bytes, signing_time: datetime):
    signed_attrs = rfc5652.SignedAttributes().subtype(
        implicitTag=tag.Tag(tag.tagClassContext, tag.tagFormatSimple, 0)
    )
    signed_attrs.append(_attribute(rfc5652.id_contentType, univ.ObjectIdentifier(OID_LDS_SECURITY_OBJECT)))
    signed_attrs.append(_attribute(rfc5652.id_signingTime, useful.UTCTime(signing_time.strftime("%y%m%d%H%M%SZ"))))
    signed_attrs.append(_attribute(rfc5652.id_messageDigest, univ.OctetString(hashlib.sha256(lds_der).digest())))
    return signed_attrs


def _as_set(signed_attrs_der: bytes) -> bytes:
    """Signed attributes are signed as a universal SET, not with their [0] tag."""
    return bytes([TAG_SET]) + signed_attrs_der[1:]


def _build_signed_data(lds_der: bytes, material: SigningMaterial, signing_time: datetime) -> Tuple[bytes, bytes]:
    """PKCS#1 v1.5 ContentInfo without certificates. Returns (der, signature)."""
    issuer_der, serial = extract_issuer_and_serial(extract_tbs(material.certificate))
    issuer, _ = decoder.decode(issuer_der, asn1Spec=rfc5280.Name())

    signer_info = rfc5652.SignerInfo()
    signer_info["version"] = 1
    signer_info["sid"]["issuerAndSerialNumber"]["issuer"] = issuer
    signer_info["sid"]["issuerAndSerialNumber"]["serialNumber"] = serial
    signer_info["digestAlgorithm"] = _sha256_algorithm()
    signed_attrs = _signed_attributes(lds_der, signing_time)
    signer_info["signedAttrs"] = signed_attrs
    signer_info["signatureAlgorithm"]["algorithm"] = univ.ObjectIdentifier(OID_RSA_ENCRYPTION)
    signer_info["signatureAlgorithm"]["parameters"] = univ.Any(encoder.encode(univ.Null("")))
    signature = material.private_key.sign(
        _as_set(encoder.encode(signed_attrs)), padding.PKCS1v15(), hashes.SHA256()
    )
    signer_info["signature"] = signature

    signed_data = rfc5652.SignedData()
    signed_data["version"] = 1
    signed_data["digestAlgorithms"].append(_sha256_algorithm())
    signed_data["encapContentInfo"]["eContentType"] = univ.ObjectIdentifier(OID_LDS_SECURITY_OBJECT)
    signed_data["encapContentInfo"]["eContent"] = lds_der
    signed_data["signerInfos"].append(signer_info)

    content_info = rfc5652.ContentInfo()
    content_info["contentType"] = rfc5652.id_signedData
    content_info["content"] = encoder.encode(signed_data)
    return encoder.encode(content_info), signature


def _graft_certificates(root: Asn1Node, certificates: Tuple[bytes, ...]) -> Asn1Node:
    signed_data = root.at(SIGNED_DATA_PATH)
    certificate_set = Asn1Node.of(TAG_CONTEXT_0, *(Asn1Node.opaque(cert) for cert in certificates))
    # version, digestAlgorithms, encapContentInfo, then [0] certificates
    return root.replace_at(SIGNED_DATA_PATH, signed_data.insert(3, certificate_set))


def _pss_parameters(salt_length: int) -> Asn1Node:
    return sequence(
        Asn1Node.of(TAG_CONTEXT_0, algorithm_identifier(OID_SHA256)),
        Asn1Node.of(TAG_CONTEXT_1, algorithm_identifier(OID_MGF1, algorithm_identifier(OID_SHA256))),
        Asn1Node.of(TAG_CONTEXT_2, Asn1Node.integer(salt_length)),
    )


def apply_pss_patch(sod: Asn1Node, private_key: rsa.RSAPrivateKey, salt_length: int) -> Tuple[Asn1Node, bytes]:
    """
    Rewrite the first signer-info of a SignedData tree to RSASSA-PSS and re-sign it.

    Returns the new tree and the new signature.
    """
    path, signer_info = locate_signer_info(sod)
    fields = signer_info_fields(signer_info)
    signed_attrs = signer_info.child(fields["signedAttrs"]).retag(TAG_SET).encode()
    signature = private_key.sign(
        signed_attrs,
        padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=salt_length),
        hashes.SHA256(),
    )
    patched = signer_info.replace(
        fields["signatureAlgorithm"], algorithm_identifier(OID_RSASSA_PSS, _pss_parameters(salt_length))
    ).replace(fields["signature"], Asn1Node.primitive(TAG_OCTET_STRING, signature))
    logger.debug(f"Patched signer info to RSASSA-PSS (salt={salt_length}, signature={len(signature)} bytes)")
    return sod.replace_at(path, patched), signature


def build_security_object(
    data_groups: Mapping[int, bytes],
    signing_material: SigningMaterial,
    scheme: Optional[SignatureScheme] = None,
    layout: SecurityObjectLayout = DEFAULT_LAYOUT,
    signing_time: Optional[datetime] = None,
) -> SecurityObject:
    """
    Hash the data groups and produce a signed EF.SOD.

    `scheme` defaults to whatever the signing certificate itself is signed with.
    Asking for RSA-PSS with a certificate that is not RSA-PSS raises
    `UnsupportedSignatureAlgorithm`.
    """
    certificate_scheme = detect_signature_scheme(signing_material.certificate)
    if scheme is None:
        scheme = certificate_scheme
    elif scheme is SignatureScheme.PSS and certificate_scheme is not SignatureScheme.PSS:
        raise UnsupportedSignatureAlgorithm("RSA-PSS signing requires an RSA-PSS document signer certificate")
    signing_time = signing_time or datetime.now(timezone.utc)

    data_group_hashes = hash_data_groups(data_groups, layout)
    lds_der = encode_lds_security_object(data_group_hashes)
    der, signature = _build_signed_data(lds_der, signing_material, signing_time)
    tree = _graft_certificates(parse_tree(der), signing_material.certificates())

    salt_length = None
    if scheme is SignatureScheme.PSS:
        salt_length = extract_salt_length(signing_material.certificate)
        tree, signature = apply_pss_patch(tree, signing_material.private_key, salt_length)

    encoded = tree.encode()
    logger.info(
        f"Built SOD: {len(encoded)} bytes, {scheme.value}, data groups {sorted(data_group_hashes)}, layout {layout.version}"
    )
    return SecurityObject(
        data_group_hashes=data_group_hashes,
        signing_certificate=signing_material.certificate,
        embedded_certificate=signing_material.embedded_certificate,
        signature_algorithm=scheme,
        salt_length=salt_length,
        signature_value=signature,
        signing_time=signing_time,
        encoded=encoded,
    )

