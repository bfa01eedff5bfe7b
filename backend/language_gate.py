"""
Spanish-residue filter for report text.

Inspectors often dictate in Spanish, while the customer only reads English.
Text is translated when it is entered (``ensure_english``) and the finished
report is checked again, without correction, before it is exported, emailed or
saved (``require_english``).

Detection is a pure function over a ``GateVocabulary``; the word lists are
data and can be extended through ``gate_vocabulary.json`` without touching
the pipeline.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol

import settings
from exceptions import LanguageGateError, TranslationError

logger = logging.getLogger(__name__)

MAX_REPORTED_ISSUES = 5

DEFAULT_CHARACTERS = "áéíóúñüÁÉÍÓÚÑÜ¿¡"

DEFAULT_TERMS = [
    "inexistente",
    "dañado",
    "dañada",
    "roto",
    "rota",
    "corrosión",
    "tejas",
    "techo",
    "goteras",
    "gotera",
    "canaleta",
    "canaletas",
    "tapajunta",
    "tapajuntas",
    "chimenea",
    "humedad",
    "moho",
    "impermeabilización",
    "bajante",
    "deteriorado",
    "agrietado",
    "desprendido",
    "oxidado",
]

# Terms that start common English words ("rotor", "rotation") only match as
# whole tokens. Every other term matches as a word prefix, so plurals and
# inflections ("chimeneas", "mohosos") are caught.
DEFAULT_WHOLE_TOKEN_TERMS = [
    "roto",
    "rota",
    "techo",
    "tejas",
]

# Words that only justify a translation attempt at data entry. Some of them
# ("no") are valid English, so they never block an export.
DEFAULT_HINT_TERMS = [
    "no",
    "existe",
    "falta",
    "suelto",
    "suelta",
]

ACCENT_MAP: Dict[str, str] = {
    "á": "a",
    "é": "e",
    "í": "i",
    "ó": "o",
    "ú": "u",
    "ü": "u",
    "ñ": "n",
    "Á": "A",
    "É": "E",
    "Í": "I",
    "Ó": "O",
    "Ú": "U",
    "Ü": "U",
    "Ñ": "N",
}
STRIPPED_PUNCTUATION = "¿¡"

_QUOTES_RE = re.compile(r"[\"“”]")
_LABEL_RE = re.compile(r"^(translation|translated text|english|output):\s*", re.IGNORECASE)
_LEADING_STARS_RE = re.compile(r"^\*+\s*")
_TRAILING_STARS_RE = re.compile(r"\s*\*+$")


@dataclass
class GateVocabulary:
    characters: str = DEFAULT_CHARACTERS
    terms: List[str] = field(default_factory=lambda: list(DEFAULT_TERMS))
    hint_terms: List[str] = field(default_factory=lambda: list(DEFAULT_HINT_TERMS))
    whole_token_terms: List[str] = field(default_factory=lambda: list(DEFAULT_WHOLE_TOKEN_TERMS))
    min_length: int = 20

    def __post_init__(self) -> None:
        whole = [*self.whole_token_terms]
        self._strict = _compile_detector(self.characters, self.terms, whole)
        # hint terms ("no") are common English prefixes, so never stems
        self._loose = _compile_detector(
            self.characters, [*self.terms, *self.hint_terms], [*whole, *self.hint_terms]
        )

    def flags(self, text: str) -> bool:
        return bool(text) and bool(self._strict.search(text))

    def hints(self, text: str) -> bool:
        return bool(text) and bool(self._loose.search(text))


def _alternation(words: Iterable[str]) -> str:
    return "|".join(re.escape(w) for w in sorted(words, key=len, reverse=True))


def _compile_detector(
    characters: str, terms: Iterable[str], whole_tokens: Iterable[str] = ()
) -> "re.Pattern[str]":
    parts = []
    if characters:
        parts.append("[" + re.escape(characters) + "]")
    words = {t.strip().lower() for t in terms if t and t.strip()}
    whole = words & {t.strip().lower() for t in whole_tokens if t}
    stems = words - whole
    # \b works for accented letters because str patterns are Unicode-aware
    if whole:
        parts.append(r"\b(?:" + _alternation(whole) + r")\b")
    if stems:
        parts.append(r"\b(?:" + _alternation(stems) + ")")
    if not parts:
        return re.compile(r"(?!x)x")
    return re.compile("|".join(parts), re.IGNORECASE)


def load_gate_vocabulary(path: Optional[str] = None) -> GateVocabulary:
    """Defaults, extended by the optional JSON file.

    ``{"characters": "...", "terms": [...], "hint_terms": [...],
    "whole_token_terms": [...], "min_length": 20, "replace": false}`` --
    lists are appended to the defaults unless ``replace`` is true.
    """
    path = path or settings.GATE_VOCABULARY_PATH
    vocabulary = GateVocabulary()
    if not os.path.exists(path):
        return vocabulary
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f) or {}
    except (OSError, ValueError) as exc:
        logger.error("Failed to load %s: %s", path, exc)
        return vocabulary

    replace = bool(data.get("replace"))
    characters = data.get("characters", "")
    terms = data.get("terms") or []
    hint_terms = data.get("hint_terms") or []
    whole_token_terms = data.get("whole_token_terms") or []
    return GateVocabulary(
        characters=characters if replace else vocabulary.characters + characters,
        terms=list(terms) if replace else [*vocabulary.terms, *terms],
        hint_terms=list(hint_terms) if replace else [*vocabulary.hint_terms, *hint_terms],
        whole_token_terms=(
            list(whole_token_terms) if replace
            else [*vocabulary.whole_token_terms, *whole_token_terms]
        ),
        min_length=int(data.get("min_length", vocabulary.min_length)),
    )


VOCABULARY = load_gate_vocabulary()


# ===================== Detection & cleanup =====================

def detect_spanish(text: str, vocabulary: Optional[GateVocabulary] = None) -> bool:
    return (vocabulary or VOCABULARY).flags(text or "")


def needs_translation(text: str, vocabulary: Optional[GateVocabulary] = None) -> bool:
    return (vocabulary or VOCABULARY).hints(text or "")


def strip_spanish_characters(text: str) -> str:
    if not text:
        return text
    cleaned = "".join(ACCENT_MAP.get(ch, ch) for ch in text)
    for ch in STRIPPED_PUNCTUATION:
        cleaned = cleaned.replace(ch, "")
    return cleaned


def clean_translation_output(text: str) -> str:
    text = _QUOTES_RE.sub("", text or "")
    text = _LABEL_RE.sub("", text.strip())
    text = _LEADING_STARS_RE.sub("", text)
    text = _TRAILING_STARS_RE.sub("", text)
    return text.strip()


def clean_field_text(text: str, capitalize: bool = True) -> str:
    """Quotes removed, whitespace collapsed, first letter upper-cased."""
    text = _QUOTES_RE.sub("", text or "")
    text = re.sub(r"\s+", " ", text).strip()
    if capitalize and text:
        text = text[0].upper() + text[1:]
    return text


# ===================== Correction pipeline =====================

class Translator(Protocol):
    def translate(self, text: str, strict: bool = False) -> str:
        ...


def ensure_english(
    text: str,
    translator: Translator,
    vocabulary: Optional[GateVocabulary] = None,
) -> str:
    """Translate ``text`` to English with at most one strict retry.

    Raises TranslationError when the translator fails; callers must then drop
    the whole edit instead of storing untranslated text.
    """
    vocabulary = vocabulary or VOCABULARY
    if not text or not text.strip():
        return text

    if not vocabulary.hints(text) and len(text) > vocabulary.min_length:
        return text

    try:
        translated = clean_translation_output(translator.translate(text)) or text
        if vocabulary.flags(translated):
            logger.warning("Spanish detected in translation, retrying with stronger prompt...")
            retried = clean_translation_output(translator.translate(translated, strict=True))
            translated = retried or translated
    except TranslationError:
        raise
    except Exception as exc:
        logger.exception("Translation error")
        raise TranslationError(
            "Translation failed. Please check your internet connection and try again."
        ) from exc

    return strip_spanish_characters(translated)


# ===================== Blocking guard =====================

@dataclass
class GateReport:
    valid: bool
    issues: List[str]


def validate_no_spanish(
    sections: Iterable,
    final_notes: str,
    vocabulary: Optional[GateVocabulary] = None,
) -> GateReport:
    vocabulary = vocabulary or VOCABULARY
    issues: List[str] = []

    for index, section in enumerate(sections, start=1):
        if vocabulary.flags(section.issue):
            issues.append(f'Section {index} Issue: "{section.issue}"')
        if vocabulary.flags(section.description):
            issues.append(f"Section {index} Description contains Spanish")
        if section.title and vocabulary.flags(section.title):
            issues.append(f"Section {index} Title contains Spanish")

    if vocabulary.flags(final_notes or ""):
        issues.append("Final Notes contain Spanish")

    return GateReport(valid=not issues, issues=issues)


def require_english(record, action: str, vocabulary: Optional[GateVocabulary] = None) -> None:
    """Raise LanguageGateError when ``record`` may not be ``action``-ed yet."""
    report = validate_no_spanish(record.sections, record.final_notes, vocabulary)
    if report.valid:
        return
    logger.warning("Spanish detected before %s: %s", action, report.issues)
    shown = report.issues[:MAX_REPORTED_ISSUES]
    more = len(report.issues) - len(shown)
    message = (
        f"Spanish words detected in report. Please review and re-translate sections "
        f"before {action}: " + "; ".join(shown)
    )
    if more > 0:
        message += f" (and {more} more)"
    raise LanguageGateError(message, issues=report.issues)