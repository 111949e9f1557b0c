"""Spanish fiscal identifier (NIF / NIE / CIF) validator.

Pure Python — no network, no DB. Every function is total: malformed input
yields False / TaxIdType.INVALID, never an exception.

Formats (after normalization to 9 uppercase alphanumerics):
  - NIF:  00000000A        8 digits + check letter
  - NIE:  X0000000A        X/Y/Z + 7 digits + check letter
  - CIF:  A0000000C        organization letter + 7 digits + control digit/letter

Reference: Real Decreto 1065/2007 (NIF), Orden EHA/451/2008 (CIF letters).
"""

from __future__ import annotations

import re

from src.models.enums import TaxIdType
from src.schemas.tax_id import TaxIdResult

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_NON_ALNUM = re.compile(r"[^A-Z0-9]")

_NIF_PATTERN = re.compile(r"^[0-9]{8}[A-Z]$")
_NIE_PATTERN = re.compile(r"^[XYZ][0-9]{7}[A-Z]$")
_CIF_PATTERN = re.compile(r"^[ABCDEFGHJNPQRSUVW][0-9]{7}[0-9A-Z]$")

# DNI check letters, indexed by number mod 23
NIF_LETTERS = "TRWAGMYFPDXBNJZSQVHLCKE"

NIE_PREFIX: dict[str, str] = {"X": "0", "Y": "1", "Z": "2"}

# CIF control letters, indexed by control digit
CIF_CONTROL_LETTERS = "JABCDEFGHI"

# Organizations whose control character is always a letter
# (non-profits, public bodies, foreign entities, religious orders).
# The remaining letters accept either representation.
CIF_LETTER_ONLY = frozenset("NPQRSW")

_TYPE_DESCRIPTIONS: dict[TaxIdType, str] = {
    TaxIdType.NIF: "Número de Identificación Fiscal (DNI)",
    TaxIdType.NIE: "Número de Identidad de Extranjero",
    TaxIdType.CIF: "Código de Identificación Fiscal",
    TaxIdType.INVALID: "Formato no válido",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_tax_id(raw: str | None) -> str:
    """Uppercase and drop every character outside [A-Z0-9]."""
    if not raw:
        return ""
    return _NON_ALNUM.sub("", raw.upper())


def mask_tax_id(raw: str | None) -> str:
    """Keep the first four characters for logs and audit events."""
    clean = normalize_tax_id(raw)
    return clean[:4] + "*" * max(len(clean) - 4, 0)


def _dni_letter(number: int) -> str:
    return NIF_LETTERS[number % 23]


def _cif_control_digit(digits: str) -> int:
    total = 0
    for i, char in enumerate(digits):
        digit = int(char)
        if i % 2 == 0:
            doubled = digit * 2
            total += doubled // 10 + doubled % 10
        else:
            total += digit
    return (10 - total % 10) % 10


# ---------------------------------------------------------------------------
# Per-variant checks (expect a normalized string)
# ---------------------------------------------------------------------------


def validate_nif(nif: str) -> bool:
    """Check the DNI letter of an 8-digit + letter NIF."""
    if not _NIF_PATTERN.match(nif):
        return False
    return _dni_letter(int(nif[:8])) == nif[8]


def validate_nie(nie: str) -> bool:
    """Check a NIE by mapping its prefix to a digit and reusing the DNI table."""
    if not _NIE_PATTERN.match(nie):
        return False
    number = int(NIE_PREFIX[nie[0]] + nie[1:8])
    return _dni_letter(number) == nie[8]


def validate_cif(cif: str) -> bool:
    """Check the control character of a CIF.

    Known looseness: outside ``CIF_LETTER_ONLY`` both the numeric and the
    letter form of the control value are accepted, even for organization
    types that officially only use digits.
    """
    if not _CIF_PATTERN.match(cif):
        return False
    control_digit = _cif_control_digit(cif[1:8])
    control_letter = CIF_CONTROL_LETTERS[control_digit]
    control = cif[8]
    if cif[0] in CIF_LETTER_ONLY:
        return control == control_letter
    return control in (str(control_digit), control_letter)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def classify_tax_id(raw: str | None) -> TaxIdType:
    """Classify by shape only (no checksum)."""
    clean = normalize_tax_id(raw)
    if len(clean) != 9:
        return TaxIdType.INVALID
    if _NIF_PATTERN.match(clean):
        return TaxIdType.NIF
    if _NIE_PATTERN.match(clean):
        return TaxIdType.NIE
    if _CIF_PATTERN.match(clean):
        return TaxIdType.CIF
    return TaxIdType.INVALID


def validate_tax_id(raw: str | None) -> bool:
    """True iff the identifier has a known shape and a correct check character."""
    clean = normalize_tax_id(raw)
    tax_id_type = classify_tax_id(clean)
    if tax_id_type is TaxIdType.NIF:
        return validate_nif(clean)
    if tax_id_type is TaxIdType.NIE:
        return validate_nie(clean)
    if tax_id_type is TaxIdType.CIF:
        return validate_cif(clean)
    return False


def format_tax_id(raw: str | None) -> str:
    """Human-readable form: ``12345678-Z`` for NIF, ``B-1234567-4`` for letter-led ids."""
    clean = normalize_tax_id(raw)
    if len(clean) == 9:
        if _NIF_PATTERN.match(clean):
            return f"{clean[:8]}-{clean[8]}"
        if re.match(r"^[A-Z][0-9]{7}[0-9A-Z]$", clean):
            return f"{clean[0]}-{clean[1:8]}-{clean[8]}"
    return clean


def describe_tax_id_type(tax_id_type: TaxIdType) -> str:
    return _TYPE_DESCRIPTIONS[tax_id_type]


def decode_tax_id(raw: str | None) -> TaxIdResult:
    """Validate a fiscal identifier and explain the outcome.

    Args:
        raw: Identifier as typed by the user (spaces, dashes and case are ignored).

    Returns:
        TaxIdResult with the normalized value, detected type and, when
        invalid, a Spanish error message suitable for forms.
    """
    clean = normalize_tax_id(raw)
    tax_id_type = classify_tax_id(clean)

    if not clean:
        return TaxIdResult(valid=False, tax_id=clean, tax_id_type=tax_id_type, error="NIF/CIF/NIE vacío")

    if tax_id_type is TaxIdType.INVALID:
        return TaxIdResult(
            valid=False,
            tax_id=clean,
            tax_id_type=tax_id_type,
            error="Formato de NIF/CIF/NIE inválido",
        )

    if not validate_tax_id(clean):
        return TaxIdResult(
            valid=False,
            tax_id=clean,
            tax_id_type=tax_id_type,
            formatted=format_tax_id(clean),
            error="Carácter de control no válido",
        )

    return TaxIdResult(
        valid=True,
        tax_id=clean,
        tax_id_type=tax_id_type,
        formatted=format_tax_id(clean),
    )
