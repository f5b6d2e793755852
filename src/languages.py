"""Supported conversation languages."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from .errors import ValidationError


class LanguageCode(str, Enum):
    HINDI = "hi"
    ENGLISH = "en"
    TAMIL = "ta"
    TELUGU = "te"
    URDU = "ur"
    MARATHI = "mr"
    BENGALI = "bn"


SUPPORTED_LANGUAGES = {
    LanguageCode.HINDI: "हिन्दी",
    LanguageCode.ENGLISH: "English",
    LanguageCode.TAMIL: "தமிழ்",
    LanguageCode.TELUGU: "తెలుగు",
    LanguageCode.URDU: "اردو",
    LanguageCode.MARATHI: "मराठी",
    LanguageCode.BENGALI: "বাংলা",
}


def parse_language(value: Any, *, field: str = "language") -> LanguageCode:
    """Return the ``LanguageCode`` for *value* or raise ``ValidationError``.

    Accepts enum members or strings (case and surrounding whitespace ignored).
    """
    if isinstance(value, LanguageCode):
        return value
    raw = str(value or "").strip().lower()
    if not raw:
        raise ValidationError(f"Missing required parameter: {field}", field=field)
    try:
        return LanguageCode(raw)
    except ValueError:
        raise ValidationError(f"Unsupported language code for {field}: {raw!r}", field=field) from None


def try_parse_language(value: Any) -> Optional[LanguageCode]:
    """Lenient variant used for provider-reported languages; unknown codes yield None."""
    try:
        return parse_language(value)
    except ValidationError:
        return None


def display_name(code: LanguageCode) -> str:
    return SUPPORTED_LANGUAGES.get(code, code.value)
