"""
Text normalisation helpers shared by the sheet mappers, the directory and
the access policy. Spreadsheet cells are edited by hand and often carry
directionality marks, stray whitespace or a leading apostrophe.
"""

from __future__ import annotations

import re

_RTL_MARKS = re.compile("[\u200e\u200f]")
_NUMERIC = re.compile(r"^-?\d+(\.\d+)?$")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_SLUG_SEPARATORS = re.compile(r"[^\w]+", re.UNICODE)


def strip_rtl_marks(value: str) -> str:
    """Remove LRM/RLM marks often introduced by copy/paste."""
    return _RTL_MARKS.sub("", value)


def normalize_id(raw: object) -> str:
    """
    Canonical form of an id-like cell value.

    Trims, strips directionality marks and the leading apostrophe Sheets uses
    to force text, and canonicalises numeric strings ("01" -> "1", "1.0" -> "1").
    """
    if raw is None:
        return ""
    value = strip_rtl_marks(str(raw)).strip()
    if value.startswith("'"):
        value = value[1:].strip()
    if _NUMERIC.match(value):
        if "." not in value:
            return str(int(value))
        number = float(value)
        value = str(int(number)) if number.is_integer() else repr(number)
    return value


def norm(value: object) -> str:
    """Lowercase + trim normalisation, safe for unknown inputs."""
    return strip_rtl_marks(str(value if value is not None else "")).strip().lower()


def is_valid_email(value: object) -> bool:
    return bool(_EMAIL.match(str(value or "").strip()))


def slugify(value: str) -> str:
    slug = _SLUG_SEPARATORS.sub("-", value.strip().lower())
    return slug.replace("_", "-").strip("-")
