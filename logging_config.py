"""
Custom logging configuration for uvicorn that keeps key material out of logs.
"""
import logging
import re
from typing import Any, Dict

import config

_PEM_PRIVATE_KEY = re.compile(
    r"-----BEGIN (?:RSA |EC |ENCRYPTED )?PRIVATE KEY-----.*?-----END (?:RSA |EC |ENCRYPTED )?PRIVATE KEY-----",
    re.DOTALL,
)
# Long hex runs are exponents, moduli or signatures. 64 digits still lets registry keys through.
_LONG_HEX = re.compile(r"\b(?:0x)?[0-9a-fA-F]{65,}\b")


def mask_secrets(text: str) -> str:
    text = _PEM_PRIVATE_KEY.sub("[PRIVATE KEY REDACTED]", text)
    return _LONG_HEX.sub(lambda m: f"{m.group(0)[:8]}...[{len(m.group(0))} hex]", text)


class KeyMaterialFilter(logging.Filter):
    """Filter that masks PEM private keys and long hex values in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = mask_secrets(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: mask_secrets(v) if isinstance(v, str) else v for k, v in record.args.items()}
            else:
                record.args = tuple(mask_secrets(a) if isinstance(a, str) else a for a in record.args)
        return True


LOGGING_CONFIG: Dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "mask_keys": {
            "()": KeyMaterialFilter,
        },
    },
    "formatters": {
        "default": {
            "()": "uvicorn.logging.DefaultFormatter",
            "format": "%(levelprefix)s %(name)s: %(message)s",
            "use_colors": None,
        },
        "access": {
            "()": "uvicorn.logging.AccessFormatter",
            "format": '%(levelprefix)s %(client_addr)s - "%(request_line)s" %(status_code)s',
        },
    },
    "handlers": {
        "default": {
            "formatter": "default",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "filters": ["mask_keys"],
        },
        "access": {
            "formatter": "access",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "uvicorn": {
            "handlers": ["default"],
            "level": "INFO",
        },
        "uvicorn.error": {
            "level": "INFO",
        },
        "uvicorn.access": {
            "handlers": ["access"],
            "level": "INFO",
            "propagate": False,
        },
        "tools": {
            "handlers": ["default"],
            "level": config.LOG_LEVEL,
            "propagate": False,
        },
        "routers": {
            "handlers": ["default"],
            "level": config.LOG_LEVEL,
            "propagate": False,
        },
    },
}
