# /tools/epassport_verifier.py
"""
Passive Authentication (ePassport) verification utility.

Checks a generated (or real) document the way a reader would. It performs:

1) Loading CSCA trust anchors (PEM or DER X.509 certificates)
2) Parsing the EF.SOD and extracting the Document Signer Certificate (DSC)
3) Finding and validating the issuing CSCA for the DSC (AKI/SKI/Subject heuristics)
4) Verifying the DSC signature with the CSCA public key
5) Verifying the SOD signature with the DSC (PKCS#1 v1.5 or RSASSA-PSS)
6) Verifying DG1 and DG15 hash integrity against the LDS security object

Usage:
    from tools.epassport_verifier import EPassportVerifier
    verifier = EPassportVerifier(EPassportVerifier.load_csca_from_dir("/path/to/csca/dir"))
    result = verifier.verify(dg1_b64, dg15_b64, sod_b64)
"""

from __future__ import annotations

import base64
import binascii
import glob
import hashlib
import hmac
import logging
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.types import CertificatePublicKeyTypes
from cryptography.x509.oid import ExtensionOID
from pyasn1.error import PyAsn1Error

from tools.cert_extract import hash_algorithms_from_pss_params, salt_length_from_pss_params
from tools.errors import PassportCodecError
from tools.icao_asn1 import HASH_NAMES, OID_MESSAGE_DIGEST, OID_RSASSA_PSS, OID_SHA1, OID_SHA256
from tools.sod_extract import (
    extract_certificate,
    extract_encapsulated_content,
    extract_signed_attributes,
    read_digest_algorithm,
    read_lds_security_object,
    read_signature,
    read_signature_algorithm,
    read_signed_attribute,
)
from tools.tlv import parse_tree

# A logger is used instead of prints so callers decide how verbose a failed
# verification should be; candidate selection is traced at DEBUG.
logger = logging.getLogger(__name__)

_CMS_HASHES = {
    OID_SHA256: hashes.SHA256,
    OID_SHA1: hashes.SHA1,
}


# ----- Custom Exceptions -----

class InvalidBase64Error(Exception):
    """Raised when input data cannot be decoded from Base64."""
    pass


class SODParseError(Exception):
    """Raised when the Security Object Document (SOD) cannot be parsed."""
    pass


# ----- Utility Functions -----

def _strip_base64_prefix(b64: str) -> str:
    """
    WHY: Input data might come from a web source with a data URI prefix
    (e.g., 'data:application/octet-stream;base64,'). Only the part after the
    comma is Base64.
    """
    return b64.split(",", 1)[1] if "," in b64 else b64


def _decode_b64(b64: str) -> bytes:
    return base64.b64decode(_strip_base64_prefix(b64), validate=True)


def _bhex(b: Optional[bytes]) -> Optional[str]:
    return b.hex() if isinstance(b, (bytes, bytearray)) else None


def _get_aki_keyid(cert: x509.Certificate) -> Optional[bytes]:
    """
    WHY: The Authority Key Identifier (AKI) names the issuer's key. It is the
    most reliable link from a DSC to the CSCA that signed it.
    """
    try:
        aki = cert.extensions.get_extension_for_oid(ExtensionOID.AUTHORITY_KEY_IDENTIFIER).value
    except x509.ExtensionNotFound:
        logger.debug(f"AKI missing: subject={cert.subject.rfc4514_string()}, serial={cert.serial_number}")
        return None
    keyid = aki.key_identifier
    logger.debug(
        f"AKI lookup: subject={cert.subject.rfc4514_string()}, serial={cert.serial_number}, keyid={_bhex(keyid)}"
    )
    return keyid


def _get_ski_keyid(cert: x509.Certificate) -> Optional[bytes]:
    """
    WHY: The Subject Key Identifier (SKI) is this certificate's own key id.
    A parent's SKI should match its child's AKI.
    """
    try:
        ski = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_KEY_IDENTIFIER).value
    except x509.ExtensionNotFound:
        logger.debug(f"SKI missing: subject={cert.subject.rfc4514_string()}, serial={cert.serial_number}")
        return None
    return ski.digest


def _find_issuer_candidates(dsc_cert: x509.Certificate, csca_certs: List[x509.Certificate]) -> List[x509.Certificate]:
    """
    WHY: Given a DSC we need the CSCA that issued it. Candidates are ordered so
    the signature check usually succeeds on the first try:

    1. subject == DSC issuer and SKI == DSC AKI
    2. subject == DSC issuer
    3. SKI == DSC AKI (key rollover under a new name)
    4. everything else
    """
    issuer_name = dsc_cert.issuer
    aki_keyid = _get_aki_keyid(dsc_cert)

    subj_matches = [c for c in csca_certs if c.subject == issuer_name]
    ski_map = {c: _get_ski_keyid(c) for c in csca_certs}

    logger.debug(
        f"Issuer matching: dsc_issuer={issuer_name.rfc4514_string()}, dsc_aki={_bhex(aki_keyid)}, subj_matches={len(subj_matches)}"
    )

    candidates: List[x509.Certificate] = []
    if aki_keyid:
        candidates.extend(c for c in subj_matches if ski_map.get(c) == aki_keyid)
    candidates.extend(c for c in subj_matches if c not in candidates)
    if aki_keyid:
        candidates.extend(c for c in csca_certs if ski_map.get(c) == aki_keyid and c not in candidates)
    candidates.extend(c for c in csca_certs if c not in candidates)

    if logger.isEnabledFor(logging.DEBUG):
        lines = [
            f"  - subject={c.subject.rfc4514_string()} | SKI={_bhex(ski_map.get(c))} | "
            f"subj_match={c.subject == issuer_name} | ski==aki={aki_keyid is not None and ski_map.get(c) == aki_keyid}"
            for c in candidates
        ]
        logger.debug("Issuer candidates (priority order):\n" + ("\n".join(lines) if lines else "  <none>"))
    return candidates


def _verify_certificate_signature(
    cert_to_verify: x509.Certificate, issuer_public_key: CertificatePublicKeyTypes
) -> bool:
    """
    WHY: Confirms the issuer's key signed this certificate. The padding comes
    from the certificate itself, so RSASSA-PSS certificates are checked with
    their declared salt length rather than a guess.
    """
    sig_hash_algo = cert_to_verify.signature_hash_algorithm
    try:
        if isinstance(issuer_public_key, ec.EllipticCurvePublicKey):
            issuer_public_key.verify(
                cert_to_verify.signature,
                cert_to_verify.tbs_certificate_bytes,
                ec.ECDSA(sig_hash_algo),
            )
            logger.debug("Certificate signature verified using ECDSA.")
            return True

        if isinstance(issuer_public_key, rsa.RSAPublicKey):
            rsa_padding = cert_to_verify.signature_algorithm_parameters
            issuer_public_key.verify(
                cert_to_verify.signature,
                cert_to_verify.tbs_certificate_bytes,
                rsa_padding,
                sig_hash_algo,
            )
            logger.debug(f"Certificate signature verified using {type(rsa_padding).__name__}.")
            return True

        logger.error(f"Unsupported issuer key type for verification: {type(issuer_public_key)}")
        return False

    except InvalidSignature:
        logger.debug("InvalidSignature: certificate signature verification failed.")
        return False
    except (TypeError, ValueError, UnsupportedAlgorithm) as e:
        # Key type and signature algorithm do not fit together; treat as a mismatch.
        logger.debug(f"Certificate signature check not applicable: {e}")
        return False


def _within_validity(cert: x509.Certificate, now_utc: datetime) -> bool:
    return cert.not_valid_before_utc <= now_utc <= cert.not_valid_after_utc


def _hash_integrity(name: str, data: Optional[bytes], expected: Optional[bytes], hash_name: str) -> Tuple[bool, Dict]:
    if data is None:
        return True, {"status": "NOT_PROVIDED", "sod_expected_hash": _bhex(expected)}
    calculated = hashlib.new(hash_name, data).digest()
    matches = expected is not None and hmac.compare_digest(calculated, expected)
    if expected is None:
        logger.warning(f"No {name} hash found in SOD")
    return matches, {
        "status": "VALID" if matches else "INVALID",
        f"{name.lower()}_calculated_{hash_name}": calculated.hex(),
        "sod_expected_hash": _bhex(expected) or "",
    }


# ----- The Main Verifier Class -----
class EPassportVerifier:
    """Encapsulates the entire Passive Authentication verification logic."""

    def __init__(self, csca_certs: Optional[List[x509.Certificate]] = None) -> None:
        self.csca_certs: List[x509.Certificate] = csca_certs or []

    @staticmethod
    def load_csca_from_dir(csca_dir: Optional[str]) -> List[x509.Certificate]:
        """
        WHY: Populates the trust store from an explicit directory. Files may be
        PEM or DER; anything that does not parse as a certificate is skipped
        with a warning.
        """
        certs: List[x509.Certificate] = []
        if not csca_dir or not os.path.isdir(csca_dir):
            logger.error("CSCA_DIR is not set or not a directory. Passive Authentication will fail.")
            return certs
        logger.info(f"Loading CSCA certificates from: {csca_dir}")
        for cert_path in sorted(glob.glob(os.path.join(csca_dir, "*.*"))):
            with open(cert_path, "rb") as f:
                data = f.read()
            try:
                if b"-----BEGIN CERTIFICATE-----" in data:
                    certs.append(x509.load_pem_x509_certificate(data))
                else:
                    certs.append(x509.load_der_x509_certificate(data))
            except ValueError as e:
                logger.warning(f"Could not load certificate {os.path.basename(cert_path)}: {e}")
        logger.info(f"Loaded {len(certs)} CSCA certificates.")
        return certs

    def _verify_sod_signature(self, sod_tree, dsc_cert: x509.Certificate) -> Tuple[bool, Dict]:
        """
        WHY: With a trusted DSC, its key must have signed the SOD's signed
        attributes, and the message-digest attribute must cover the LDS
        security object. Together these pin every data group hash.
        """
        details: Dict = {"algorithm": None, "salt_length": None, "message_digest_ok": False}
        try:
            digest_oid = read_digest_algorithm(sod_tree)
            hash_cls = _CMS_HASHES.get(digest_oid)
            if hash_cls is None:
                logger.warning(f"Unsupported SOD digest algorithm {digest_oid}")
                return False, details

            content = extract_encapsulated_content(sod_tree)
            expected_digest = read_signed_attribute(sod_tree, OID_MESSAGE_DIGEST)
            actual_digest = hashlib.new(HASH_NAMES[digest_oid], content).digest()
            details["message_digest_ok"] = expected_digest is not None and hmac.compare_digest(
                expected_digest, actual_digest
            )

            sig_oid, sig_params = read_signature_algorithm(sod_tree)
            if sig_oid == OID_RSASSA_PSS:
                salt_length = salt_length_from_pss_params(sig_params)
                pss_hash_oid, mgf_hash_oid = hash_algorithms_from_pss_params(sig_params)
                details.update(algorithm="RSA-PSS", salt_length=salt_length)
                if pss_hash_oid != digest_oid or mgf_hash_oid not in _CMS_HASHES:
                    logger.warning(
                        f"RSASSA-PSS params (hash {pss_hash_oid}, MGF1 {mgf_hash_oid}) do not match digest {digest_oid}"
                    )
                    return False, details
                sod_padding = padding.PSS(mgf=padding.MGF1(_CMS_HASHES[mgf_hash_oid]()), salt_length=salt_length)
            else:
                sod_padding = padding.PKCS1v15()
                details["algorithm"] = "RSA-PKCS1v1_5"

            public_key = dsc_cert.public_key()
            if not isinstance(public_key, rsa.RSAPublicKey):
                logger.warning(f"DSC key type {type(public_key).__name__} is not supported for SOD verification")
                return False, details
            public_key.verify(
                read_signature(sod_tree), extract_signed_attributes(sod_tree), sod_padding, hash_cls()
            )
        except InvalidSignature:
            logger.warning("SOD signature did not verify with the DSC public key.")
            return False, details
        except PassportCodecError as e:
            logger.warning(f"SOD signer info could not be read: {e}")
            return False, details

        logger.debug("SOD signature verified successfully.")
        return details["message_digest_ok"], details

    def verify(self, dg1_b64: str, dg15_b64: Optional[str], sod_b64: str) -> dict:
        """
        WHY: Runs the full Passive Authentication workflow and reports each
        step separately so a failing fixture shows exactly which link broke.
        """
        if not self.csca_certs:
            raise RuntimeError("No CSCA certificates loaded for trust validation.")

        # --- STEP 1: Decode Inputs ---
        try:
            dg1_bytes = _decode_b64(dg1_b64)
            dg15_bytes = _decode_b64(dg15_b64) if dg15_b64 else None
            sod_bytes = _decode_b64(sod_b64)
        except (binascii.Error, ValueError) as e:
            raise InvalidBase64Error(str(e))

        # --- STEP 2: Parse SOD and Extract DSC ---
        try:
            sod_tree = parse_tree(sod_bytes)
            dsc_cert = x509.load_der_x509_certificate(extract_certificate(sod_bytes, 0))
            hash_oid, dg_hashes = read_lds_security_object(sod_tree)
            logger.debug(
                f"Extracted DSC: subject={dsc_cert.subject.rfc4514_string()}, serial={dsc_cert.serial_number}"
            )
        except (PassportCodecError, PyAsn1Error, ValueError) as e:
            raise SODParseError(str(e))

        # --- STEP 3: Trust Chain Validation ---
        now_utc = datetime.now(timezone.utc)
        issuer_csca: Optional[x509.Certificate] = None
        dsc_signature_is_valid = False
        csca_is_valid = False

        for idx, cand in enumerate(_find_issuer_candidates(dsc_cert, self.csca_certs)):
            if _verify_certificate_signature(dsc_cert, cand.public_key()):
                issuer_csca = cand
                dsc_signature_is_valid = True
                csca_is_valid = _within_validity(cand, now_utc)
                logger.debug(f"Selected CSCA candidate[{idx}] based on successful DSC signature verification.")
                break
            logger.debug(f"CSCA candidate[{idx}] did not verify DSC signature.")

        dsc_is_valid = _within_validity(dsc_cert, now_utc)

        if issuer_csca is None:
            chain_valid = False
            chain_failure_reason = "Issuing CSCA not found in trust store or signature mismatch."
        else:
            chain_valid = csca_is_valid and dsc_is_valid and dsc_signature_is_valid
            if not csca_is_valid:
                chain_failure_reason = "CSCA certificate has expired or is not yet valid."
            elif not dsc_is_valid:
                chain_failure_reason = "DSC certificate has expired or is not yet valid."
            else:
                chain_failure_reason = None

        # --- STEP 4: Verify SOD Signature ---
        sod_signature_valid = False
        sod_details: Dict = {}
        if chain_valid:
            sod_signature_valid, sod_details = self._verify_sod_signature(sod_tree, dsc_cert)

        # --- STEP 5: Verify Data Group Hash Integrity ---
        hash_name = HASH_NAMES.get(hash_oid)
        if hash_name is None:
            raise SODParseError(f"Unsupported LDS hash algorithm {hash_oid}")
        dg1_matches, dg1_details = _hash_integrity("DG1", dg1_bytes, dg_hashes.get(1), hash_name)
        dg15_matches, dg15_details = _hash_integrity("DG15", dg15_bytes, dg_hashes.get(15), hash_name)

        # --- STEP 6: Final Verdict and Response ---
        passive_auth_passed = chain_valid and sod_signature_valid and dg1_matches and dg15_matches

        return {
            "passive_authentication_passed": passive_auth_passed,
            "details": {
                "trust_chain": {
                    "status": "VALID" if chain_valid else "INVALID",
                    "failure_reason": chain_failure_reason,
                    "csca_found": issuer_csca is not None,
                    "csca_subject": issuer_csca.subject.rfc4514_string() if issuer_csca else None,
                    "dsc_signature_verified_by_csca": dsc_signature_is_valid,
                    "csca_validity_period_ok": csca_is_valid,
                    "dsc_validity_period_ok": dsc_is_valid,
                },
                "sod_signature": {
                    "status": "VALID" if sod_signature_valid else "INVALID",
                    "dsc_subject": dsc_cert.subject.rfc4514_string(),
                    "dsc_serial": dsc_cert.serial_number,
                    **sod_details,
                },
                "dg1_hash_integrity": dg1_details,
                "dg15_hash_integrity": dg15_details,
            },
        }
