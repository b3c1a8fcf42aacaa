# /models.py
from pydantic import BaseModel, Field
from typing import Optional

from tools.passport_generator import PassportDocument  # noqa: F401  (response model)


class GenerateRequest(BaseModel):
    """
    Request model for /passport/generate.

    Every MRZ field is optional; when `surname` is omitted a random holder is
    generated. Dates are YYMMDD. `challenge` (hex) signs an Active
    Authentication response into the returned document.
    """
    documentType: str = "P"
    issuingCountry: str = "ITA"
    surname: Optional[str] = None
    givenNames: Optional[str] = None
    documentNumber: Optional[str] = None
    nationality: Optional[str] = None
    dateOfBirth: Optional[str] = Field(default=None, pattern=r"^\d{6}$")
    sex: Optional[str] = None
    expiryDate: Optional[str] = Field(default=None, pattern=r"^\d{6}$")
    personalNumber: Optional[str] = None
    challenge: Optional[str] = None


class VerifyRequest(BaseModel):
    """
    Request model for /passport/verify.

    Fields:
    - dg1: base64-encoded DG1 bytes (required)
    - dg15: base64-encoded DG15 bytes (optional; checked against the SOD when present)
    - sod: base64-encoded SOD bytes (required)
    """
    dg1: str
    sod: str
    dg15: Optional[str] = None


class VerifyAARequest(BaseModel):
    """Active Authentication check: base64 DG15, hex challenge and hex signature."""
    dg15: str
    challenge: str
    signature: str
