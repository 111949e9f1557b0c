"""Deterministic data decoders — Spanish fiscal identifiers."""

from src.decoders.tax_id import classify_tax_id, decode_tax_id, validate_tax_id

__all__ = ["classify_tax_id", "decode_tax_id", "validate_tax_id"]
