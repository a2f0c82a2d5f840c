from __future__ import annotations

from typing import Optional

UKRAINIAN_APOSTROPHE = "\u02bc"

_APOSTROPHE_LIKE = ("'", "\u2019", "\u02c8")
_DASHES = ("\u2013", "\u2014")


def normalize_apostrophes(text: Optional[str]) -> Optional[str]:
    """Replace ASCII and typographic apostrophe look-alikes with U+02BC."""
    if text is None:
        return None
    for ch in _APOSTROPHE_LIKE:
        text = text.replace(ch, UKRAINIAN_APOSTROPHE)
    return text


def normalize_whitespace_and_dashes(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    text = text.replace("\u00a0", " ")
    for dash in _DASHES:
        text = text.replace(dash, "-")
    return text.strip()


def normalize(text: Optional[str]) -> Optional[str]:
    text = normalize_whitespace_and_dashes(text)
    text = normalize_apostrophes(text)
    return text.strip() if text is not None else None


def strip_accents(text: str) -> str:
    return text.replace("\u0301", "")
