"""Text normalization for multilingual fuzzy matching.

Canonicalizes strings before similarity scoring so that "Café Müller GmbH"
and "Cafe Muller Gesellschaft mit beschränkter Haftung" compare equal.

Pipeline (order matters):
1. Diacritic folding via a fixed substitution table
2. Lowercase
3. Business-suffix canonicalization (longest match first, word-bounded)
4. Optional special-character stripping (optionally keeping '@'), followed by
   a second suffix pass for forms the stripping exposed ("Pvt. Ltd.")
5. Whitespace collapse, trailing-period trim, outer trim

All functions are pure: no I/O, no state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace

# ── Substitution tables ─────────────────────────────────────────────────────

DIACRITIC_MAP: dict[str, str] = {
    # Latin-1 / Latin Extended-A
    "à": "a", "á": "a", "â": "a", "ã": "a", "ä": "a", "å": "a", "æ": "ae",
    "ç": "c",
    "è": "e", "é": "e", "ê": "e", "ë": "e",
    "ì": "i", "í": "i", "î": "i", "ï": "i",
    "ñ": "n",
    "ò": "o", "ó": "o", "ô": "o", "õ": "o", "ö": "o", "ø": "o", "œ": "oe",
    "ù": "u", "ú": "u", "û": "u", "ü": "u",
    "ý": "y", "ÿ": "y",
    "ß": "ss",
    "À": "A", "Á": "A", "Â": "A", "Ã": "A", "Ä": "A", "Å": "A", "Æ": "AE",
    "Ç": "C",
    "È": "E", "É": "E", "Ê": "E", "Ë": "E",
    "Ì": "I", "Í": "I", "Î": "I", "Ï": "I",
    "Ñ": "N",
    "Ò": "O", "Ó": "O", "Ô": "O", "Õ": "O", "Ö": "O", "Ø": "O", "Œ": "OE",
    "Ù": "U", "Ú": "U", "Û": "U", "Ü": "U",
    "Ý": "Y", "Ÿ": "Y",
    "ẞ": "SS",
    # Polish
    "ą": "a", "ć": "c", "ę": "e", "ł": "l", "ń": "n", "ś": "s", "ź": "z", "ż": "z",
    "Ą": "A", "Ć": "C", "Ę": "E", "Ł": "L", "Ń": "N", "Ś": "S", "Ź": "Z", "Ż": "Z",
    # Czech / Slovak
    "č": "c", "ď": "d", "ě": "e", "ň": "n", "ř": "r", "š": "s", "ť": "t", "ů": "u", "ž": "z",
    "Č": "C", "Ď": "D", "Ě": "E", "Ň": "N", "Ř": "R", "Š": "S", "Ť": "T", "Ů": "U", "Ž": "Z",
    # Turkish
    "ğ": "g", "ı": "i", "ş": "s",
    "Ğ": "G", "İ": "I", "Ş": "S",
    # Icelandic
    "þ": "th", "ð": "d",
    "Þ": "TH", "Ð": "D",
}

# Keys are matched after lowercasing, so only lowercase forms are listed.
# Both accented and diacritic-folded spellings are present because step 1
# may be switched off.
BUSINESS_SUFFIX_MAP: dict[str, str] = {
    "corporation": "corp",
    "incorporated": "inc",
    "limited": "ltd",
    "company": "co",
    "gesellschaft mit beschränkter haftung": "gmbh",
    "gesellschaft mit beschrankter haftung": "gmbh",
    "aktiengesellschaft": "ag",
    "sociedad anónima": "sa",
    "sociedad anonima": "sa",
    "société anonyme": "sa",
    "societe anonyme": "sa",
    "sociedade anônima": "sa",
    "sociedade anonima": "sa",
    "limited liability company": "llc",
    "limited liability partnership": "llp",
    "public limited company": "plc",
    "corp.": "corp",
    "inc.": "inc",
    "ltd.": "ltd",
    "co.": "co",
    "llc.": "llc",
    "llp.": "llp",
    "plc.": "plc",
    "s.a.": "sa",
    "s.a.r.l.": "sarl",
    "gmbh.": "gmbh",
    "ag.": "ag",
    "limited company": "ltd",
    "pvt ltd": "pvt",
    "private limited": "pvt",
    "pty ltd": "pty",
    "proprietary limited": "pty",
}


def _suffix_pattern(suffix: str) -> re.Pattern[str]:
    # Word gaps match any run of whitespace.
    body = r"\s+".join(re.escape(word) for word in suffix.split(" "))
    return re.compile(rf"(?<!\w){body}(?!\w)", re.IGNORECASE)


# Longest first so multi-word forms win over their single-word tails.
# sorted() is stable, so equal-length keys keep table order.
_SUFFIX_PATTERNS: list[tuple[str, re.Pattern[str], str]] = [
    (suffix, _suffix_pattern(suffix), canonical)
    for suffix, canonical in sorted(
        BUSINESS_SUFFIX_MAP.items(), key=lambda item: len(item[0]), reverse=True
    )
]

_SPECIAL_CHARS = re.compile(r"[^a-zA-Z0-9\s]")
_SPECIAL_CHARS_KEEP_AT = re.compile(r"[^a-zA-Z0-9\s@]")
_WHITESPACE = re.compile(r"\s+")
_TRAILING_PERIODS = re.compile(r"[\s.]+$")


# ── Options and results ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class NormalizationOptions:
    """Switches for each pipeline stage."""

    remove_diacritics: bool = True
    normalize_business_suffixes: bool = True
    lowercase: bool = True
    remove_special_chars: bool = False
    normalize_whitespace: bool = True
    preserve_at_symbol: bool = False


DEFAULT_OPTIONS = NormalizationOptions()
EMAIL_OPTIONS = NormalizationOptions(normalize_business_suffixes=False, preserve_at_symbol=True)
COMPANY_OPTIONS = NormalizationOptions()
PERSON_OPTIONS = NormalizationOptions(normalize_business_suffixes=False)
SEARCH_OPTIONS = NormalizationOptions(remove_special_chars=True)


@dataclass
class NormalizationChanges:
    diacritics_removed: int = 0
    suffixes_normalized: list[str] = field(default_factory=list)
    special_chars_removed: int = 0


@dataclass
class NormalizationResult:
    original: str
    normalized: str
    changes: NormalizationChanges


# ── Pipeline stages ─────────────────────────────────────────────────────────


def remove_diacritics(text: str) -> str:
    return "".join(DIACRITIC_MAP.get(char, char) for char in text)


def normalize_business_suffixes(text: str) -> tuple[str, list[str]]:
    """Replace legal-entity suffixes with their canonical short form.

    Returns:
        Tuple of (rewritten text, list of "suffix -> canonical" changes).
    """
    applied: list[str] = []
    for suffix, pattern, canonical in _SUFFIX_PATTERNS:
        text, count = pattern.subn(canonical, text)
        if count:
            applied.append(f"{suffix} -> {canonical}")
    return text, applied


def remove_special_chars(text: str, preserve_at_symbol: bool = False) -> str:
    pattern = _SPECIAL_CHARS_KEEP_AT if preserve_at_symbol else _SPECIAL_CHARS
    return pattern.sub("", text)


def normalize_whitespace(text: str) -> str:
    text = _WHITESPACE.sub(" ", text)
    return _TRAILING_PERIODS.sub("", text).strip()


# ── Public API ──────────────────────────────────────────────────────────────


def normalize_with_metadata(
    text: str,
    options: NormalizationOptions | None = None,
    **overrides: bool,
) -> NormalizationResult:
    """Normalize text and report what each stage changed.

    Args:
        text: Input string.
        options: Stage switches (defaults to DEFAULT_OPTIONS).
        **overrides: Individual option overrides, e.g. ``lowercase=False``.

    Returns:
        NormalizationResult with the original, normalized text and a
        breakdown of diacritics removed, suffixes rewritten, and special
        characters stripped.
    """
    opts = options or DEFAULT_OPTIONS
    if overrides:
        opts = replace(opts, **overrides)

    normalized = text
    changes = NormalizationChanges()

    if opts.remove_diacritics:
        folded = remove_diacritics(normalized)
        changes.diacritics_removed = sum(
            1 for char in normalized if char in DIACRITIC_MAP
        )
        normalized = folded

    if opts.lowercase:
        normalized = normalized.lower()

    if opts.normalize_business_suffixes:
        normalized, changes.suffixes_normalized = normalize_business_suffixes(normalized)

    if opts.remove_special_chars:
        before = len(normalized)
        normalized = remove_special_chars(normalized, opts.preserve_at_symbol)
        changes.special_chars_removed = before - len(normalized)
        if opts.normalize_business_suffixes:
            # Stripping can expose a suffix, e.g. "pvt. ltd." -> "pvt ltd".
            normalized, exposed = normalize_business_suffixes(normalized)
            changes.suffixes_normalized.extend(exposed)

    if opts.normalize_whitespace:
        normalized = normalize_whitespace(normalized)

    return NormalizationResult(original=text, normalized=normalized.strip(), changes=changes)


def normalize(text: str, options: NormalizationOptions | None = None, **overrides: bool) -> str:
    """Normalize text for matching. Returns "" for ""."""
    if not text:
        return ""
    return normalize_with_metadata(text, options, **overrides).normalized


def normalize_email(email: str) -> str:
    """Normalize an email address: no suffix rewriting, '@' preserved."""
    return normalize(email, EMAIL_OPTIONS)


def normalize_company_name(name: str) -> str:
    return normalize(name, COMPANY_OPTIONS)


def normalize_person_name(name: str) -> str:
    return normalize(name, PERSON_OPTIONS)


def normalize_for_search(text: str) -> str:
    """Most aggressive normalization: suffixes rewritten, punctuation dropped."""
    return normalize(text, SEARCH_OPTIONS)


def normalize_for_field(text: str, field_name: str) -> str:
    """Pick the normalizer variant appropriate to a field by its name.

    - names containing "email" use email normalization
    - names containing "account", or exactly "name", use company normalization
    - names containing firstname/lastname/fullname use person normalization
    - anything else uses search normalization
    """
    lowered = field_name.lower()
    if "email" in lowered:
        return normalize_email(text)
    if "account" in lowered or lowered == "name":
        return normalize_company_name(text)
    if "firstname" in lowered or "lastname" in lowered or "fullname" in lowered:
        return normalize_person_name(text)
    return normalize_for_search(text)
