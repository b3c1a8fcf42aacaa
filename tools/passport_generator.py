# /tools/passport_generator.py
"""
End-to-end generation of a synthetic ePassport: DG1, DG15 and a signed SOD,
plus the JSON envelope the registration scripts and circuits consume.

Each document gets its own Active Authentication key. The private half stays on
`GeneratedPassport.aa_key` and in `PassportDocument.aaPrivateKey`, which is
excluded from every serialization.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding
from pydantic import BaseModel, Field

from tools.active_auth import sign_document
from tools.cert_extract import SignatureScheme
from tools.mrz import MRZRecord, build_dg1, random_mrz_record
from tools.security_object import (
    DEFAULT_LAYOUT,
    ActiveAuthenticationKey,
    SecurityObject,
    SecurityObjectLayout,
    SigningMaterial,
    build_active_authentication_key,
    build_security_object,
)

logger = logging.getLogger(__name__)


class PassportDocument(BaseModel):
    """Public passport envelope. Binary fields are base64, the AA signature is hex."""
    dg1: str
    dg15: str
    sod: str
    documentNumber: str
    dateOfBirth: str
    documentExpiryDate: str
    nationality: str
    gender: str
    firstName: str
    lastName: str
    documentType: str
    issuingAuthority: str
    signature: str = ""
    passportImageRaw: str = ""
    dscCertificate: Optional[str] = None
    dscSerialNumber: Optional[str] = None
    aaPrivateKey: Optional[str] = Field(default=None, exclude=True, repr=False)

    def public_json(self) -> str:
        return self.model_dump_json()


@dataclass(frozen=True)
class GeneratedPassport:
    record: MRZRecord
    document: PassportDocument
    aa_key: ActiveAuthenticationKey
    security_object: SecurityObject

    @property
    def dg1(self) -> bytes:
        return base64.b64decode(self.document.dg1)

    @property
    def dg15(self) -> bytes:
        return self.aa_key.encoded

    @property
    def sod(self) -> bytes:
        return self.security_object.encoded


def expand_mrz_date(value: str) -> str:
    """YYMMDD to ISO date; years below 50 are 20YY, the rest 19YY."""
    year = int(value[:2])
    century = "20" if year < 50 else "19"
    return f"{century}{value[:2]}-{value[2:4]}-{value[4:6]}"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def generate_passport(
    signing_material: SigningMaterial,
    record: Optional[MRZRecord] = None,
    layout: SecurityObjectLayout = DEFAULT_LAYOUT,
    scheme: Optional[SignatureScheme] = None,
    aa_key: Optional[ActiveAuthenticationKey] = None,
    aa_key_size: int = 2048,
    signing_time: Optional[datetime] = None,
) -> GeneratedPassport:
    """
    Build and sign one passport.

    `record` defaults to a random holder. `aa_key` may be supplied to reuse an
    existing key (tests do this to avoid RSA key generation).
    """
    record = record or random_mrz_record()
    aa_key = aa_key or build_active_authentication_key(aa_key_size)

    dg1 = build_dg1(record)
    security_object = build_security_object(
        {1: dg1, 15: aa_key.encoded},
        signing_material,
        scheme=scheme,
        layout=layout,
        signing_time=signing_time,
    )

    dsc = x509.load_der_x509_certificate(signing_material.certificate)
    document = PassportDocument(
        dg1=_b64(dg1),
        dg15=_b64(aa_key.encoded),
        sod=_b64(security_object.encoded),
        documentNumber=record.document_number,
        dateOfBirth=expand_mrz_date(record.date_of_birth),
        documentExpiryDate=expand_mrz_date(record.expiry_date),
        nationality=record.nationality,
        gender=record.sex,
        firstName=record.given_names,
        lastName=record.surname,
        documentType=record.document_type,
        issuingAuthority=record.issuing_country,
        dscCertificate=dsc.public_bytes(Encoding.PEM).decode("ascii"),
        dscSerialNumber=format(dsc.serial_number, "x"),
        aaPrivateKey=aa_key.private_key_pem(),
    )
    logger.info(
        f"Generated passport: {security_object.signature_algorithm.value} SOD, "
        f"{len(dg1)}-byte DG1, {len(aa_key.encoded)}-byte DG15"
    )
    return GeneratedPassport(record, document, aa_key, security_object)


def sign_challenge(passport: GeneratedPassport, challenge: bytes) -> GeneratedPassport:
    """Return a copy of `passport` whose document carries the AA signature over `challenge`."""
    signature = sign_document(challenge, passport.aa_key)
    document = passport.document.model_copy(update={"signature": signature.hex()})
    return GeneratedPassport(passport.record, document, passport.aa_key, passport.security_object)
