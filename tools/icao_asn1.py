# /tools/icao_asn1.py
"""
Object identifiers and pyasn1 schemas for the ICAO 9303 security object.

The CMS envelope itself comes from pyasn1-modules (RFC 5652); only the
LDSSecurityObject payload is ICAO specific and has to be declared here.
"""

from pyasn1.type import namedtype, univ
from pyasn1_modules import rfc5280

# --- Algorithms ---
OID_RSA_ENCRYPTION = "1.2.840.113549.1.1.1"
OID_SHA256_WITH_RSA = "1.2.840.113549.1.1.11"
OID_RSASSA_PSS = "1.2.840.113549.1.1.10"
OID_MGF1 = "1.2.840.113549.1.1.8"
OID_SHA256 = "2.16.840.1.101.3.4.2.1"
OID_SHA1 = "1.3.14.3.2.26"

# --- CMS ---
OID_SIGNED_DATA = "1.2.840.113549.1.7.2"
OID_CONTENT_TYPE = "1.2.840.113549.1.9.3"
OID_MESSAGE_DIGEST = "1.2.840.113549.1.9.4"
OID_SIGNING_TIME = "1.2.840.113549.1.9.5"

# --- ICAO ---
OID_LDS_SECURITY_OBJECT = "2.23.136.1.1.1"

PSS_DEFAULT_SALT_LENGTH = 32

# Hash OIDs the verifier understands, keyed to hashlib names.
HASH_NAMES = {
    OID_SHA256: "sha256",
    OID_SHA1: "sha1",
}


class DataGroupHash(univ.Sequence):
    componentType = namedtype.NamedTypes(
        namedtype.NamedType("dataGroupNumber", univ.Integer()),
        namedtype.NamedType("dataGroupHashValue", univ.OctetString()),
    )


class DataGroupHashValues(univ.SequenceOf):
    componentType = DataGroupHash()


class LDSSecurityObject(univ.Sequence):
    """ICAO 9303 part 10: version, hash algorithm and the data group digests."""
    componentType = namedtype.NamedTypes(
        namedtype.NamedType("version", univ.Integer()),
        namedtype.NamedType("hashAlgorithm", rfc5280.AlgorithmIdentifier()),
        namedtype.NamedType("dataGroupHashValues", DataGroupHashValues()),
    )
