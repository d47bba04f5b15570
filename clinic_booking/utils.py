"""Shared text utilities used across the booking engine."""

import re
import unicodedata


def normalize_text(value: str) -> str:
    """Lowercase, strip accents, and collapse whitespace.

    Examples:
        >>> normalize_text("  Próximo   VIERNES ")
        'proximo viernes'
    """
    decomposed = unicodedata.normalize("NFD", value or "")
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return re.sub(r"\s+", " ", stripped.lower()).strip()


def extract_digits(value: str) -> str:
    """Keep only the digits of a free-text phone number.

    Examples:
        >>> extract_digits("(829) 555-0142")
        '8295550142'
    """
    return re.sub(r"[^\d]", "", value or "")

