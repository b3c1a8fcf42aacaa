# /routers/generate.py
"""
FastAPI endpoint that issues synthetic ePassports signed by the configured DSC.
"""
import dataclasses
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException

import config
from models import GenerateRequest, PassportDocument
from routers.verify import parse_hex
from tools.errors import InvalidMRZCharacter, InvalidMRZLength, PassportCodecError
from tools.mrz import MRZRecord, random_mrz_record
from tools.passport_generator import generate_passport, sign_challenge
from tools.security_object import SigningMaterial, get_layout

logger = logging.getLogger(__name__)

router = APIRouter()

# Request field -> MRZRecord field
_MRZ_FIELDS = {
    "documentType": "document_type",
    "issuingCountry": "issuing_country",
    "surname": "surname",
    "givenNames": "given_names",
    "documentNumber": "document_number",
    "nationality": "nationality",
    "dateOfBirth": "date_of_birth",
    "sex": "sex",
    "expiryDate": "expiry_date",
    "personalNumber": "personal_number",
}


def _record_from_request(req: GenerateRequest) -> MRZRecord:
    """Random holder unless a surname is given; any supplied field overrides the base."""
    base = MRZRecord() if req.surname else random_mrz_record()
    overrides = {
        record_field: getattr(req, request_field).upper()
        for request_field, record_field in _MRZ_FIELDS.items()
        if getattr(req, request_field) is not None
    }
    return dataclasses.replace(base, **overrides)


def _load_signing_material() -> SigningMaterial:
    cert_path, key_path = config.get_dsc_paths()
    return SigningMaterial.from_files(cert_path, key_path, config.get_embedded_cert_path())


@router.post(
    "/passport/generate",
    response_model=PassportDocument,
    summary="Generate a signed synthetic ePassport (DG1, DG15, SOD)",
)
async def generate(req: Optional[GenerateRequest] = None):
    req = req or GenerateRequest()

    try:
        material = _load_signing_material()
        layout = get_layout(config.SOD_LAYOUT_VERSION)
    except (ValueError, PassportCodecError) as e:
        logger.error(f"Signing material unavailable: {e}")
        raise HTTPException(status_code=500, detail=f"Server is misconfigured: {e}")

    try:
        challenge = parse_hex(req.challenge) if req.challenge else None
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid challenge hex: {e}")

    try:
        passport = generate_passport(
            material,
            _record_from_request(req),
            layout=layout,
            aa_key_size=config.AA_KEY_SIZE,
        )
    except (InvalidMRZLength, InvalidMRZCharacter) as e:
        raise HTTPException(status_code=400, detail=f"Invalid MRZ data: {e}")
    except PassportCodecError as e:
        logger.exception("Document signer material could not be used")
        raise HTTPException(status_code=500, detail=f"Failed to build SOD: {e}")

    if challenge is not None:
        passport = sign_challenge(passport, challenge)
    return passport.document
