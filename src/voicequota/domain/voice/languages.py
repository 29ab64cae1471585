"""Languages accepted for voice input."""

from __future__ import annotations

from typing import NamedTuple

__all__ = (
    "SUPPORTED_LANGUAGES",
    "Language",
    "is_supported",
    "transcription_language",
)


class Language(NamedTuple):
    code: str
    name: str
    native_name: str
    region: str
    transcription_code: str
    """Closest language the transcription model understands."""


# Languages spoken in Balochistan, KPK and Gilgit-Baltistan, plus the common languages of Pakistan.
SUPPORTED_LANGUAGES: dict[str, Language] = {
    language.code: language
    for language in (
        Language("en", "English", "English", "Common", "en"),
        Language("ur", "Urdu", "اردو", "Common", "ur"),
        Language("ps", "Pashto", "پښتو", "KPK", "ps"),
        Language("hi", "Hindko", "ہندکو", "KPK", "hi"),
        Language("sd", "Sindhi", "سنڌي", "Sindh", "sd"),  # also used for Saraiki
        Language("bal", "Balochi", "بلوچی", "Balochistan", "fa"),
        Language("brh", "Brahui", "براہوئی", "Balochistan", "fa"),
        Language("bft", "Balti", "བལྟི", "Gilgit-Baltistan", "bo"),
        Language("scl", "Shina", "شینا", "Gilgit-Baltistan", "ur"),
        Language("bsk", "Burushaski", "بروشسکی", "Gilgit-Baltistan", "ur"),
        Language("khw", "Khowar", "کھوار", "Gilgit-Baltistan/Chitral", "ur"),
        Language("wbl", "Wakhi", "وخی", "Gilgit-Baltistan", "fa"),
        Language("pa", "Punjabi", "پنجابی", "Punjab", "pa"),
    )
}


def is_supported(code: str) -> bool:
    return code in SUPPORTED_LANGUAGES


def transcription_language(code: str) -> str:
    """Map a supported language code to the transcription model's language code.

    Raises:
        KeyError: If the code is not supported
    """
    return SUPPORTED_LANGUAGES[code].transcription_code
