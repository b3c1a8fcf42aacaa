# /tools/mrz.py
"""
Machine Readable Zone (TD3, two lines of 44 characters) and its DG1 wrapper.
"""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from tools.errors import InvalidMRZCharacter, InvalidMRZLength
from tools.tlv import wrap

logger = logging.getLogger(__name__)

MRZ_LINE_LENGTH = 44
# Line 1 is "{type}<{country}" (5 characters) followed by the name field.
MRZ_NAME_FIELD_LENGTH = 39
DOCUMENT_NUMBER_LENGTH = 9
PERSONAL_NUMBER_LENGTH = 14

DG1_TAG = 0x61
MRZ_INFO_TAG = 0x5F1F

CHECK_DIGIT_WEIGHTS = (7, 3, 1)
_MRZ_CHARSET = re.compile(r"^[A-Z0-9<]*$")

ROMAN_NAMES = (
    ("CAESAR", "GAIUS JULIUS"),
    ("CICERO", "MARCUS TULLIUS"),
    ("AUGUSTUS", "GAIUS OCTAVIUS"),
    ("ANTONIUS", "MARCUS"),
    ("SCIPIO", "PUBLIUS CORNELIUS"),
    ("BRUTUS", "MARCUS JUNIUS"),
    ("POMPEIUS", "GNAEUS MAGNUS"),
    ("CATO", "MARCUS PORCIUS"),
    ("SULLA", "LUCIUS CORNELIUS"),
    ("GRACCHUS", "TIBERIUS SEMPRONIUS"),
    ("MARIUS", "GAIUS"),
    ("HADRIAN", "PUBLIUS AELIUS"),
    ("TRAJAN", "MARCUS ULPIUS"),
    ("AURELIUS", "MARCUS"),
    ("NERO", "LUCIUS DOMITIUS"),
    ("TIBERIUS", "CLAUDIUS"),
    ("CALIGULA", "GAIUS JULIUS"),
    ("VESPASIAN", "TITUS FLAVIUS"),
    ("SENECA", "LUCIUS ANNAEUS"),
    ("PLINY", "GAIUS SECUNDUS"),
)


@dataclass(frozen=True)
class MRZRecord:
    """Holder data as printed in the MRZ. Dates are YYMMDD strings."""
    document_type: str = "P"
    issuing_country: str = "ITA"
    surname: str = "ERIKSSON"
    given_names: str = "ANNA MARIA"
    document_number: str = "L898902C3"
    nationality: str = "ITA"
    date_of_birth: str = "740812"
    sex: str = "F"
    expiry_date: str = "120415"
    personal_number: str = "ZE184226B"


def _char_value(char: str) -> int:
    if char == "<":
        return 0
    if char.isdigit():
        return int(char)
    if "A" <= char <= "Z":
        return ord(char) - ord("A") + 10
    raise InvalidMRZCharacter(f"Character {char!r} is not allowed in the MRZ")


def check_digit(data: str) -> int:
    """ICAO 9303 check digit: weights 7,3,1 repeating, sum modulo 10."""
    total = 0
    for index, char in enumerate(data):
        total += _char_value(char) * CHECK_DIGIT_WEIGHTS[index % 3]
    return total % 10


def _field(name: str, value: str) -> str:
    value = value.replace(" ", "<")
    if not _MRZ_CHARSET.match(value):
        raise InvalidMRZCharacter(f"{name} {value!r} contains characters outside A-Z, 0-9 and '<'")
    return value


def _name_field(surname: str, given_names: str) -> str:
    names = f"{surname}<<{given_names}"
    if len(names) <= MRZ_NAME_FIELD_LENGTH:
        return names
    surname_part = f"{surname}<<"
    if len(surname_part) >= MRZ_NAME_FIELD_LENGTH:
        return surname[:MRZ_NAME_FIELD_LENGTH - 2] + "<<"
    return surname_part + given_names[:MRZ_NAME_FIELD_LENGTH - len(surname_part)]


def build_mrz_lines(record: MRZRecord) -> Tuple[str, str]:
    document_type = _field("document_type", record.document_type)
    country = _field("issuing_country", record.issuing_country)
    surname = _field("surname", record.surname)
    given_names = _field("given_names", record.given_names)
    number = _field("document_number", record.document_number).ljust(DOCUMENT_NUMBER_LENGTH, "<")
    nationality = _field("nationality", record.nationality)
    birth = _field("date_of_birth", record.date_of_birth)
    sex = _field("sex", record.sex)
    expiry = _field("expiry_date", record.expiry_date)
    personal = _field("personal_number", record.personal_number).ljust(PERSONAL_NUMBER_LENGTH, "<")

    line1 = f"{document_type}<{country}{_name_field(surname, given_names)}".ljust(MRZ_LINE_LENGTH, "<")
    composite = (
        f"{number}{check_digit(number)}"
        f"{nationality}"
        f"{birth}{check_digit(birth)}"
        f"{sex}"
        f"{expiry}{check_digit(expiry)}"
        f"{personal}{check_digit(personal)}"
    )
    line2 = f"{composite}{check_digit(composite)}"

    for line_number, line in ((1, line1), (2, line2)):
        if len(line) != MRZ_LINE_LENGTH:
            raise InvalidMRZLength(line_number, len(line))
    return line1, line2


def build_dg1(record: MRZRecord) -> bytes:
    """DG1 = 61 5B 5F1F 58 followed by the 88 MRZ characters."""
    line1, line2 = build_mrz_lines(record)
    logger.debug(f"MRZ line 1: {line1}")
    return wrap(DG1_TAG, wrap(MRZ_INFO_TAG, (line1 + line2).encode("ascii")))


def random_mrz_record(rng: Optional[random.Random] = None) -> MRZRecord:
    """A plausible holder with a famous Roman name. Not for anything security relevant."""
    rng = rng or random.Random()
    surname, given_names = rng.choice(ROMAN_NAMES)
    letters = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    document_number = rng.choice(letters) + rng.choice(letters) + f"{rng.randrange(10_000_000):07d}"
    year = rng.randrange(1950, 2006) % 100
    date_of_birth = f"{year:02d}{rng.randint(1, 12):02d}{rng.randint(1, 28):02d}"
    return MRZRecord(
        issuing_country="ITA",
        surname=surname,
        given_names=given_names,
        document_number=document_number,
        nationality="ITA",
        date_of_birth=date_of_birth,
        sex=rng.choice("MF"),
        expiry_date="351231",
        personal_number=f"P{rng.randrange(100_000_000):08d}",
    )
