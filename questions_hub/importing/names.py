"""
Ukrainian author name helpers.

Author strings in packages often look like "Станіслав Мерлян (Одеса) у
редакції Едуарда Голуба". The main author is already nominative; names after
"у/в редакції" or "за ідеєю" are genitive and are converted back with a small
suffix table. Names that match no rule are returned unchanged.
"""

from __future__ import annotations

import re
from typing import List, Tuple

_REDAKCIYA = re.compile(r"\s+[ув]\s+редакції\s+", re.IGNORECASE)
_ZA_IDEYEYU = re.compile(r"\s+за\s+ідеєю\s+", re.IGNORECASE)
_CITY_IN_PARENTHESES = re.compile(r"\s*\([^)]*\)\s*")

_CONSONANTS = frozenset("бвгґджзйклмнпрстфхцчшщБВГҐДЖЗЙКЛМНПРСТФХЦЧШЩ")

# (genitive suffix, nominative suffix), evaluated top to bottom; first match wins.
LAST_NAME_RULES: Tuple[Tuple[str, str], ...] = (
    ("ського", "ський"),
    ("цького", "цький"),
    ("зького", "зький"),
    ("ської", "ська"),
    ("цької", "цька"),
)

GENERIC_RULES: Tuple[Tuple[str, str], ...] = (
    ("ії", "ія"),  # Наталії
    ("ього", "ій"),
    ("ого", "ий"),
    ("ві", "ва"),  # Реві
    ("ви", "ва"),  # Реви
    ("ʼї", "ʼя"),  # Дарʼї
    ("'ї", "'я"),
    ("ини", "ина"),  # Катерини
    ("ени", "ена"),  # Олени
    ("ія", "ій"),  # Сергія
    ("ря", "р"),  # Ігоря
    ("ця", "ць"),
)


def _apply_rules(name: str, rules: Tuple[Tuple[str, str], ...]) -> Tuple[str, bool]:
    for suffix, replacement in rules:
        if name.endswith(suffix):
            return name[: -len(suffix)] + replacement, True
    return name, False


def convert_to_nominative(genitive: str) -> str:
    if not genitive or not genitive.strip() or len(genitive) < 3:
        return genitive
    name = genitive.strip()
    converted, matched = _apply_rules(name, GENERIC_RULES)
    if matched:
        return converted
    # Consonant-stem masculine names: Станіслава -> Станіслав
    if name.endswith("а") and len(name) > 1 and name[-2] in _CONSONANTS:
        return name[:-1]
    return name


def convert_first_name_to_nominative(genitive: str) -> str:
    if not genitive or not genitive.strip():
        return genitive
    return convert_to_nominative(genitive.strip())


def convert_last_name_to_nominative(genitive: str) -> str:
    if not genitive or not genitive.strip():
        return genitive
    name = genitive.strip()
    converted, matched = _apply_rules(name, LAST_NAME_RULES)
    if matched:
        return converted
    return convert_to_nominative(name)


def convert_full_name_to_nominative(genitive_full_name: str) -> str:
    parts = genitive_full_name.split()
    if not parts:
        return genitive_full_name
    if len(parts) == 1:
        return convert_to_nominative(parts[0])
    converted = []
    for idx, part in enumerate(parts):
        if idx == 0:
            converted.append(convert_first_name_to_nominative(part))
        elif idx == len(parts) - 1:
            converted.append(convert_last_name_to_nominative(part))
        else:
            converted.append(convert_to_nominative(part))
    return " ".join(converted)


def strip_city(name: str) -> str:
    return _CITY_IN_PARENTHESES.sub(" ", name).strip()


def split_and_normalize_authors(author_text: str) -> List[str]:
    """
    Split an author string on "у/в редакції" and "за ідеєю" and return clean
    nominative names. Only the parts after the first one are converted.
    """
    expanded: List[str] = []
    for part in _REDAKCIYA.split(author_text):
        expanded.extend(_ZA_IDEYEYU.split(part))

    results: List[str] = []
    for idx, part in enumerate(expanded):
        part = part.strip().rstrip(".,;")
        if not part.strip():
            continue
        clean = strip_city(part)
        if not clean:
            continue
        if idx > 0:
            clean = convert_full_name_to_nominative(clean)
        if clean.strip():
            results.append(clean)
    return results
