# /tests/test_sod_extract.py
import pytest

from tools.errors import CertificateIndexNotFound, MalformedEncoding
from tools.icao_asn1 import OID_LDS_SECURITY_OBJECT, OID_SHA256
from tools.mrz import MRZRecord, build_dg1
from tools.security_object import build_security_object
from tools.sod_extract import (
    SIGNED_DATA_PATH,
    extract_certificate,
    locate_signer_info,
    read_data_group_hashes,
    read_digest_algorithm,
    read_signature,
    signer_info_fields,
)
from tools.tlv import TAG_CONTEXT_0, TAG_SEQUENCE, Asn1Node, parse_tree


@pytest.fixture(scope="module")
def sod(signing_material, aa_key):
    return build_security_object({1: build_dg1(MRZRecord()), 15: aa_key.encoded}, signing_material)


def test_certificates_keep_caller_order(sod, dsc_der):
    assert extract_certificate(sod.encoded) == dsc_der
    assert extract_certificate(sod.encoded, 0) == sod.signing_certificate
    assert extract_certificate(sod.encoded, 1) == sod.embedded_certificate
    assert sod.embedded_certificate != dsc_der


def test_missing_certificate_index(sod):
    with pytest.raises(CertificateIndexNotFound) as exc_info:
        extract_certificate(sod.encoded, 2)
    assert exc_info.value.index == 2
    assert exc_info.value.available == 2


def test_sod_without_certificate_set(sod):
    tree = parse_tree(sod.encoded)
    signed_data = tree.at(SIGNED_DATA_PATH)
    assert signed_data.child(3).tag == TAG_CONTEXT_0
    stripped = Asn1Node.of(TAG_SEQUENCE, *(c for i, c in enumerate(signed_data.children) if i != 3))
    encoded = tree.replace_at(SIGNED_DATA_PATH, stripped).encode()

    with pytest.raises(CertificateIndexNotFound) as exc_info:
        extract_certificate(encoded)
    assert exc_info.value.available == 0
    # Signer info is still found without the certificate set
    assert read_signature(encoded) == sod.signature_value


def test_signer_info_location(sod):
    path, signer_info = locate_signer_info(sod.encoded)
    assert path == SIGNED_DATA_PATH + (4, 0)
    assert signer_info_fields(signer_info) == {
        "version": 0,
        "sid": 1,
        "digestAlgorithm": 2,
        "signedAttrs": 3,
        "signatureAlgorithm": 4,
        "signature": 5,
    }
    assert read_digest_algorithm(sod.encoded) == OID_SHA256


def test_tree_and_bytes_inputs_agree(sod):
    tree = parse_tree(sod.encoded)
    assert read_data_group_hashes(tree) == read_data_group_hashes(sod.encoded) == sod.data_group_hashes


def test_wrong_content_type(sod):
    tree = parse_tree(sod.encoded)
    forged = tree.replace(0, Asn1Node.oid(OID_LDS_SECURITY_OBJECT))
    with pytest.raises(MalformedEncoding, match="not signedData"):
        locate_signer_info(forged)


def test_garbage_is_malformed():
    with pytest.raises(MalformedEncoding):
        extract_certificate(b"\x30\x03\x02\x01\x01")
    with pytest.raises(MalformedEncoding):
        extract_certificate(b"not a sod")
