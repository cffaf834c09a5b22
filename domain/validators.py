# domain/validators.py
"""
Checksums and formats of Belgian/European business identifiers.

- IBAN (ISO 13616, mod 97)
- OGM/VCS structured payment reference (+++123/4567/89012+++)
- Belgian enterprise VAT number (BE + 10 digits, mod 97)
- Peppol participant id (scheme:identifier)
"""

import re
from typing import Optional

_OGM_DIGITS = re.compile(r"^\+{3}(\d{3})/(\d{4})/(\d{5})\+{3}$|^\*{3}(\d{3})/(\d{4})/(\d{5})\*{3}$")
_PEPPOL_ID = re.compile(r"^(\d{4}):(.+)$")
_BE_PEPPOL_IDENTIFIER = re.compile(r"^BE\d{10}$")


def normalize_iban(iban: Optional[str]) -> Optional[str]:
    if iban is None:
        return None
    return re.sub(r"\s+", "", iban).upper() or None


def is_valid_iban(iban: Optional[str]) -> bool:
    """Mod-97 check: move the first 4 chars to the end, letters → 10..35."""
    value = normalize_iban(iban)
    if not value or len(value) < 15 or len(value) > 34:
        return False
    if not re.match(r"^[A-Z]{2}\d{2}[A-Z0-9]+$", value):
        return False

    rearranged = value[4:] + value[:4]
    numeric = "".join(str(int(ch, 36)) for ch in rearranged)
    return int(numeric) % 97 == 1


def ogm_digits(reference: Optional[str]) -> Optional[str]:
    """
    Extracts the 12 digits of a structured communication.

    Accepts `+++123/4567/89012+++`, `***123/4567/89012***` or 12 bare digits
    (separators allowed). Returns None when the text is not OGM-shaped.
    """
    if not reference:
        return None
    text = reference.strip()
    match = _OGM_DIGITS.match(text)
    if match:
        return "".join(group for group in match.groups() if group)
    digits = re.sub(r"[\s/.\-]", "", text)
    if re.fullmatch(r"\d{12}", digits):
        return digits
    return None


def looks_like_ogm(reference: Optional[str]) -> bool:
    return ogm_digits(reference) is not None


def is_valid_ogm(reference: Optional[str]) -> bool:
    """First 10 digits mod 97 (0 → 97) must equal the last 2."""
    digits = ogm_digits(reference)
    if digits is None:
        return False
    base, check = int(digits[:10]), int(digits[10:])
    remainder = base % 97
    return (remainder or 97) == check


def format_ogm(base: int) -> str:
    """Builds a structured communication from a 10-digit base."""
    remainder = base % 97 or 97
    digits = f"{base:010d}{remainder:02d}"
    return f"+++{digits[:3]}/{digits[3:7]}/{digits[7:]}+++"


def normalize_vat_number(vat_number: Optional[str]) -> Optional[str]:
    """Uppercase, no spaces/dots/dashes: `be 0123.456.789` → `BE0123456789`."""
    if vat_number is None:
        return None
    value = re.sub(r"[\s.\-]", "", vat_number).upper()
    return value or None


def is_valid_belgian_vat(vat_number: Optional[str]) -> bool:
    """BE + 10 digits; 97 - (first 8 digits mod 97) equals the last 2."""
    value = normalize_vat_number(vat_number)
    if not value or not re.fullmatch(r"BE[01]\d{9}", value):
        return False
    digits = value[2:]
    return 97 - (int(digits[:8]) % 97) == int(digits[8:])


def is_valid_peppol_id(peppol_id: Optional[str]) -> bool:
    """
    `scheme:identifier` with a 4-digit ICD scheme.

    Scheme 0208 (Belgian enterprise number) requires `BE` + 10 digits.
    """
    if not peppol_id:
        return False
    match = _PEPPOL_ID.match(peppol_id.strip())
    if not match:
        return False
    scheme, identifier = match.group(1), match.group(2)
    if not identifier.strip():
        return False
    if scheme == "0208":
        return bool(_BE_PEPPOL_IDENTIFIER.match(identifier))
    return True
