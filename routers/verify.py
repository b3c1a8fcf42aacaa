# /routers/verify.py
"""
FastAPI endpoints for ePassport Passive and Active Authentication.
The heavy verification logic lives in tools.epassport_verifier and tools.active_auth.
"""
import base64
import binascii
import logging

from fastapi import APIRouter, HTTPException

import config
from models import VerifyAARequest, VerifyRequest
from tools import active_auth
from tools.epassport_verifier import (
    EPassportVerifier,
    InvalidBase64Error,
    SODParseError,
)
from tools.errors import PassportCodecError

logger = logging.getLogger(__name__)

router = APIRouter()

# Pre-load verifier with trust anchors from config.CSCA_DIR
CSCA_CERTS = EPassportVerifier.load_csca_from_dir(config.get_csca_dir())
VERIFIER = EPassportVerifier(CSCA_CERTS)
logger.info(f"Passport verifier initialized with {len(CSCA_CERTS)} CSCA certificates")


def parse_hex(value: str) -> bytes:
    value = value.strip()
    if value[:2].lower() == "0x":
        value = value[2:]
    return bytes.fromhex(value)


@router.post("/passport/verify", summary="Run Passive Authentication on DG1, DG15 and SOD")
async def verify(req: VerifyRequest):
    """
    Verifies the trust chain, the SOD signature and the data group hashes.
    Returns full verification details; a failed check is a 200 with
    `passive_authentication_passed: false`.
    """
    if not req.dg1:
        raise HTTPException(status_code=400, detail="Missing required field: dg1")
    if not req.sod:
        raise HTTPException(status_code=400, detail="Missing required field: sod")

    if not VERIFIER.csca_certs:
        raise HTTPException(
            status_code=500,
            detail="Server is misconfigured: No CSCA certificates loaded for trust validation.",
        )

    try:
        return VERIFIER.verify(req.dg1, req.dg15, req.sod)
    except InvalidBase64Error as e:
        raise HTTPException(status_code=400, detail=f"Invalid Base64 input: {e}")
    except SODParseError as e:
        raise HTTPException(status_code=422, detail=f"Failed to parse SOD or extract DSC: {e}")
    except RuntimeError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.exception("Unexpected error during ePassport verification")
        raise HTTPException(status_code=500, detail=f"Internal server error: {type(e).__name__}")


@router.post("/passport/verify-aa", summary="Verify an Active Authentication signature against DG15")
async def verify_active_authentication(req: VerifyAARequest):
    try:
        dg15 = base64.b64decode(req.dg15, validate=True)
        challenge = parse_hex(req.challenge)
        signature = parse_hex(req.signature)
    except (binascii.Error, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid input encoding: {e}")

    try:
        modulus = active_auth.modulus_from_dg15(dg15)
    except PassportCodecError as e:
        raise HTTPException(status_code=422, detail=f"Failed to read RSA key from DG15: {e}")

    try:
        valid = active_auth.verify(challenge, signature, modulus)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Failed to read RSA key from DG15: {e}")
    logger.info(f"Active Authentication check over {len(challenge)}-byte challenge: valid={valid}")
    return {"valid": valid, "modulus_length": len(modulus)}
