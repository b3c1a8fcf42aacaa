# /tests/conftest.py
"""
Shared test PKI.

A Country Signing CA (CSCA) issues two Document Signer certificates (DSC):
one signed with PKCS#1 v1.5 and one with RSASSA-PSS (salt 32). Keys are
generated once per session because RSA generation dominates test time.
"""
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID

from tools.security_object import ActiveAuthenticationKey, SigningMaterial


class PKI(NamedTuple):
    csca_cert: x509.Certificate
    csca_key: rsa.RSAPrivateKey
    dsc_cert: x509.Certificate
    dsc_key: rsa.RSAPrivateKey
    pss_dsc_cert: x509.Certificate
    pss_dsc_key: rsa.RSAPrivateKey


def _name(organization: str) -> x509.Name:
    return x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "UT"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
    ])


def issue_certificate(
    subject, issuer, public_key, signing_key, issuer_public_key, ca=False, pss=False, days=1825, salt_length=32, not_after=None
):
    """Certificate valid from yesterday, with SKI/AKI so issuer matching has key ids to use."""
    now = datetime.now(timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(not_after or now + timedelta(days=days))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
        .add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_public_key), critical=False)
    )
    if pss:
        return builder.sign(
            signing_key,
            hashes.SHA256(),
            rsa_padding=padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=salt_length),
        )
    return builder.sign(signing_key, hashes.SHA256())


def generate_test_pki() -> PKI:
    csca_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    csca_subject = _name("UnitTest CSCA")
    csca_cert = issue_certificate(
        csca_subject, csca_subject, csca_key.public_key(), csca_key, csca_key.public_key(), ca=True, days=3650
    )

    dsc_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    dsc_cert = issue_certificate(
        _name("UnitTest DS"), csca_subject, dsc_key.public_key(), csca_key, csca_key.public_key()
    )

    pss_dsc_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pss_dsc_cert = issue_certificate(
        _name("UnitTest DS PSS"), csca_subject, pss_dsc_key.public_key(), csca_key, csca_key.public_key(), pss=True
    )
    return PKI(csca_cert, csca_key, dsc_cert, dsc_key, pss_dsc_cert, pss_dsc_key)


def der(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.DER)


def pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


def key_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


# --------------------------------------------------------------------------
# Fixtures
# --------------------------------------------------------------------------
@pytest.fixture(scope="session")
def pki() -> PKI:
    return generate_test_pki()


@pytest.fixture(scope="session")
def aa_key() -> ActiveAuthenticationKey:
    """1024-bit AA key: 128-byte modulus, above the registry minimum of 120."""
    return ActiveAuthenticationKey.from_private_key(
        rsa.generate_private_key(public_exponent=65537, key_size=1024)
    )


@pytest.fixture(scope="session")
def signing_material(pki) -> SigningMaterial:
    """PKCS#1 v1.5 signer with the CSCA embedded as the second SOD certificate."""
    return SigningMaterial(der(pki.dsc_cert), pki.dsc_key, der(pki.csca_cert))


@pytest.fixture(scope="session")
def pss_signing_material(pki) -> SigningMaterial:
    return SigningMaterial(der(pki.pss_dsc_cert), pki.pss_dsc_key, der(pki.csca_cert))


@pytest.fixture(scope="session")
def csca_dir(pki, tmp_path_factory):
    directory = tmp_path_factory.mktemp("csca")
    (directory / "test_csca.der").write_bytes(der(pki.csca_cert))
    return directory


@pytest.fixture(scope="session")
def dsc_der(pki) -> bytes:
    return der(pki.dsc_cert)


@pytest.fixture(scope="session")
def pss_dsc_der(pki) -> bytes:
    return der(pki.pss_dsc_cert)


@pytest.fixture(scope="session")
def signer_dir(pki, tmp_path_factory):
    """PASSPORT_CERT_DIR layout: dsc_cert.pem, dsc_key.pem and an embedded certificate."""
    directory = tmp_path_factory.mktemp("rsapss")
    (directory / "dsc_cert.pem").write_bytes(pem(pki.pss_dsc_cert))
    (directory / "dsc_key.pem").write_bytes(key_pem(pki.pss_dsc_key))
    (directory / "embedded.pem").write_bytes(pem(pki.csca_cert))
    return directory


@pytest.fixture(scope="session")
def foreign_csca() -> x509.Certificate:
    """A CSCA that issued none of the test DSCs."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=1024)
    subject = _name("Foreign CSCA")
    return issue_certificate(subject, subject, key.public_key(), key, key.public_key(), ca=True)


@pytest.fixture(scope="session")
def salt64_signing_material(pki) -> SigningMaterial:
    """RSA-PSS signer whose certificate declares a 64-byte salt, so the default of 32 cannot mask it."""
    cert = issue_certificate(
        _name("UnitTest DS PSS64"),
        pki.csca_cert.subject,
        pki.pss_dsc_key.public_key(),
        pki.csca_key,
        pki.csca_key.public_key(),
        pss=True,
        salt_length=64,
    )
    return SigningMaterial(der(cert), pki.pss_dsc_key, der(pki.csca_cert))
