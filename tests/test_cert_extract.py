# /tests/test_cert_extract.py
import logging
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from tools.cert_extract import (
    SignatureScheme,
    detect_signature_scheme,
    extract_issuer_and_serial,
    extract_modulus,
    extract_public_key_info,
    extract_salt_length,
    extract_signature,
    extract_signature_algorithm,
    extract_tbs,
    find_expiration_offset,
    find_modulus_offset_in_tbs,
    find_validity_offsets,
    hash_algorithms_from_pss_params,
    load_certificate,
    parse_certificate,
    salt_length_from_pss_params,
)
from tools.errors import MalformedCertificate, MalformedEncoding, UnsupportedSignatureAlgorithm
from tools.icao_asn1 import OID_RSASSA_PSS, OID_SHA1, OID_SHA256, OID_SHA256_WITH_RSA


def _utc_time(value: datetime) -> bytes:
    return value.strftime("%y%m%d%H%M%SZ").encode("ascii")


@pytest.fixture(scope="module")
def ec_cert_der() -> bytes:
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "UnitTest EC")])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.DER)


def test_tbs_and_signature_match_cryptography(pki, dsc_der):
    assert extract_tbs(dsc_der) == pki.dsc_cert.tbs_certificate_bytes
    assert extract_signature(dsc_der) == pki.dsc_cert.signature


def test_pem_input_is_converted_to_der(pki, dsc_der):
    pem = pki.dsc_cert.public_bytes(serialization.Encoding.PEM)
    assert load_certificate(pem) == dsc_der
    assert load_certificate(pem.decode("ascii")) == dsc_der
    assert load_certificate(dsc_der) == dsc_der


def test_signature_scheme_detection(dsc_der, pss_dsc_der):
    assert detect_signature_scheme(dsc_der) is SignatureScheme.PKCS1V15
    assert detect_signature_scheme(pss_dsc_der) is SignatureScheme.PSS


def test_signature_algorithm_parameters(dsc_der, pss_dsc_der):
    oid, params = extract_signature_algorithm(dsc_der)
    assert oid == OID_SHA256_WITH_RSA
    assert params is None

    oid, params = extract_signature_algorithm(pss_dsc_der)
    assert oid == OID_RSASSA_PSS
    assert params is not None and params[0] == 0x30


def test_salt_length(dsc_der, pss_dsc_der):
    assert extract_salt_length(pss_dsc_der) == 32
    with pytest.raises(UnsupportedSignatureAlgorithm):
        extract_salt_length(dsc_der)


def test_modulus_and_its_offset(pki, dsc_der):
    tbs = extract_tbs(dsc_der)
    modulus = extract_modulus(extract_public_key_info(tbs))
    expected = pki.dsc_cert.public_key().public_numbers().n.to_bytes(256, "big")
    assert modulus == expected

    offset = find_modulus_offset_in_tbs(tbs, modulus)
    assert tbs[offset:offset + len(modulus)] == modulus
    with pytest.raises(MalformedCertificate):
        find_modulus_offset_in_tbs(tbs, b"\x00" * 300)


def test_issuer_and_serial(pki, dsc_der):
    issuer, serial = extract_issuer_and_serial(extract_tbs(dsc_der))
    assert serial == pki.dsc_cert.serial_number
    assert issuer == pki.dsc_cert.issuer.public_bytes()


def test_validity_offsets_point_at_time_values(pki, dsc_der):
    tbs = extract_tbs(dsc_der)
    not_before, not_after = find_validity_offsets(tbs)
    assert tbs[not_before:not_before + 13] == _utc_time(pki.dsc_cert.not_valid_before_utc)
    assert tbs[not_after:not_after + 13] == _utc_time(pki.dsc_cert.not_valid_after_utc)
    assert find_expiration_offset(tbs) == not_after


def test_parse_certificate(pki, pss_dsc_der):
    cert = parse_certificate(pss_dsc_der)
    assert cert.scheme is SignatureScheme.PSS
    assert cert.salt_length == 32
    assert cert.serial_number == pki.pss_dsc_cert.serial_number
    assert cert.subject == pki.pss_dsc_cert.subject.public_bytes()
    assert cert.modulus == pki.pss_dsc_key.public_key().public_numbers().n.to_bytes(256, "big")
    assert cert.tbs_bytes[cert.not_after_offset:cert.not_after_offset + 13] == _utc_time(
        pki.pss_dsc_cert.not_valid_after_utc
    )


def test_non_rsa_certificate(ec_cert_der):
    with pytest.raises(UnsupportedSignatureAlgorithm):
        detect_signature_scheme(ec_cert_der)
    assert parse_certificate(ec_cert_der).modulus is None


def test_truncated_certificate_is_malformed():
    with pytest.raises(MalformedCertificate) as exc_info:
        extract_tbs(b"\x30\x05\x02\x01")
    assert isinstance(exc_info.value, MalformedEncoding)
    assert exc_info.value.offset == 0


def test_declared_salt_is_read_not_defaulted(salt64_signing_material):
    certificate = salt64_signing_material.certificate
    assert extract_salt_length(certificate) == 64
    assert parse_certificate(certificate).salt_length == 64


def test_salt_defaults_to_32_when_absent():
    # RSASSA-PSS-params with every field omitted
    assert salt_length_from_pss_params(bytes.fromhex("3000")) == 32
    assert salt_length_from_pss_params(None) == 32


def test_pss_hash_algorithms(pss_dsc_der):
    _, params = extract_signature_algorithm(pss_dsc_der)
    assert hash_algorithms_from_pss_params(params) == (OID_SHA256, OID_SHA256)
    assert hash_algorithms_from_pss_params(bytes.fromhex("3000")) == (OID_SHA1, OID_SHA1)


def test_unused_bits_octet_only_warns(pki, dsc_der, caplog):
    # The BIT STRING content starts right after its header at the tail of the certificate
    signature_length = len(pki.dsc_cert.signature)
    unused_bits_offset = len(dsc_der) - signature_length - 1
    assert dsc_der[unused_bits_offset] == 0
    patched = dsc_der[:unused_bits_offset] + b"\x03" + dsc_der[unused_bits_offset + 1:]

    with caplog.at_level(logging.WARNING, logger="tools.cert_extract"):
        signature = extract_signature(patched)
    assert signature == pki.dsc_cert.signature
    assert len(signature) == 256
    assert "3 unused bits" in caplog.text


def test_generalized_time_expiration(pki):
    # Dates from 2050 on are encoded as GeneralizedTime
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(pki.dsc_cert.subject)
        .issuer_name(pki.csca_cert.subject)
        .public_key(pki.dsc_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(datetime(2055, 1, 1, tzinfo=timezone.utc))
        .sign(pki.csca_key, hashes.SHA256())
    )
    tbs = extract_tbs(cert.public_bytes(serialization.Encoding.DER))
    offset = find_expiration_offset(tbs)
    assert tbs[offset - 2] == 0x18
    assert tbs[offset:offset + 15] == b"20550101000000Z"
    assert tbs[find_validity_offsets(tbs)[0] - 2] == 0x17
