# /tools/errors.py
"""
Exception taxonomy shared by the passport codec and authentication tools.

Parsing errors always carry the byte offset where decoding stopped so a failing
fixture can be inspected with a hex dump. Signature verification never raises;
it returns a boolean the caller must check.
"""

from __future__ import annotations

from typing import Optional


class PassportCodecError(Exception):
    """Base class for every error raised by the tools package."""
    pass


class MalformedEncoding(PassportCodecError):
    """Raised when a TLV element does not have the expected tag or length."""

    def __init__(
        self,
        message: str,
        offset: int,
        expected_tag: Optional[int] = None,
        actual_tag: Optional[int] = None,
    ) -> None:
        self.offset = offset
        self.expected_tag = expected_tag
        self.actual_tag = actual_tag
        detail = f"{message} (offset={offset}"
        if expected_tag is not None:
            detail += f", expected=0x{expected_tag:02x}"
        if actual_tag is not None:
            detail += f", got=0x{actual_tag:02x}"
        super().__init__(detail + ")")


class MalformedCertificate(MalformedEncoding):
    """Raised when an X.509 certificate cannot be walked to the requested field."""
    pass


class InvalidMRZLength(PassportCodecError):
    """Raised when an encoded MRZ line is not exactly 44 characters."""

    def __init__(self, line_number: int, length: int) -> None:
        self.line_number = line_number
        self.length = length
        super().__init__(f"MRZ line {line_number} must be 44 characters, got {length}")


class InvalidMRZCharacter(PassportCodecError):
    """Raised when an MRZ field contains characters outside A-Z, 0-9 and '<'."""
    pass


class InvalidModulusLength(PassportCodecError):
    """Raised when a modulus is too short for registry key derivation."""
    pass


class CertificateIndexNotFound(PassportCodecError):
    """Raised when the SOD carries fewer certificates than requested."""

    def __init__(self, index: int, available: int) -> None:
        self.index = index
        self.available = available
        super().__init__(f"Certificate index {index} not found in SOD ({available} present)")


class UnsupportedSignatureAlgorithm(PassportCodecError):
    """Raised when an RSA-PSS operation is requested on a non RSA-PSS certificate."""
    pass
