# /config.py
import os
import logging
from typing import Optional, Tuple

# --- Environment & Ports ---
WEBHOOK_PORT = int(os.getenv("WEBHOOK_PORT", "8000"))
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Document Signer Material ---
# One DSC signs many passports. Paths are relative to PASSPORT_CERT_DIR unless absolute.
PASSPORT_CERT_DIR = os.getenv("PASSPORT_CERT_DIR", os.path.join(os.path.dirname(__file__), "data", "rsapss"))
DSC_CERT_FILE = os.getenv("DSC_CERT_FILE", "dsc_cert.pem")
DSC_KEY_FILE = os.getenv("DSC_KEY_FILE", "dsc_key.pem")
# Certificate embedded in the SOD after the signer; unset means the signer only.
EMBEDDED_CERT_FILE = os.getenv("EMBEDDED_CERT_FILE") or None

# --- CSCA Trust Store ---
CSCA_DIR = os.getenv("CSCA_DIR", os.path.join(PASSPORT_CERT_DIR, "csca"))

# --- Document Layout ---
SOD_LAYOUT_VERSION = os.getenv("SOD_LAYOUT_VERSION", "v1")
AA_KEY_SIZE = int(os.getenv("AA_KEY_SIZE", "2048"))


def _resolve(filename: str) -> str:
    return filename if os.path.isabs(filename) else os.path.join(PASSPORT_CERT_DIR, filename)


# --- Key Loading ---
def get_dsc_paths() -> Tuple[str, str]:
    """Returns (certificate, private key) paths of the document signer, which must exist."""
    cert_path = _resolve(DSC_CERT_FILE)
    key_path = _resolve(DSC_KEY_FILE)
    for label, path in (("certificate", cert_path), ("private key", key_path)):
        if not os.path.isfile(path):
            raise ValueError(f"FATAL: Document signer {label} not found at {path}.")
    return cert_path, key_path


def get_embedded_cert_path() -> Optional[str]:
    """Returns the path of the extra certificate to embed in the SOD, if one is configured."""
    if not EMBEDDED_CERT_FILE:
        return None
    path = _resolve(EMBEDDED_CERT_FILE)
    if not os.path.isfile(path):
        raise ValueError(f"FATAL: EMBEDDED_CERT_FILE points to a missing file: {path}.")
    return path


def get_csca_dir() -> str:
    """Returns the CSCA trust store directory; the verifier reports an empty store itself."""
    if not os.path.isdir(CSCA_DIR):
        logging.warning(f"CSCA trust store directory does not exist: {CSCA_DIR}")
    return CSCA_DIR
