"""
Deterministic text canonicalization used by every matching step.

All functions are pure and never raise on empty or malformed input.
"""

import re
import unicodedata
from typing import Optional

# Trailing tokens that carry no identity: legal forms and generic
# childcare descriptors. Dotted forms (L.L.C., Inc.) collapse onto these.
LEGAL_SUFFIXES = frozenset({
    "inc", "incorporated",
    "llc", "pllc", "llp", "lp",
    "corp", "corporation",
    "co", "company",
    "ltd", "limited",
    "center", "centre", "ctr",
    "childcare", "daycare",
})

# Two-token spellings of the generic descriptors
MULTI_TOKEN_SUFFIXES = (
    ("child", "care"),
    ("day", "care"),
)

STREET_ABBREVIATIONS = {
    "street": "st", "str": "st",
    "avenue": "ave", "av": "ave",
    "road": "rd",
    "drive": "dr",
    "lane": "ln",
    "boulevard": "blvd",
    "court": "ct",
    "circle": "cir",
    "place": "pl",
    "highway": "hwy",
    "route": "rte",
    "north": "n", "south": "s", "east": "e", "west": "w",
    "apartment": "apt",
    "suite": "ste",
}

_DOTTED_ABBREVIATION = re.compile(r"\b((?:[a-z0-9]\.){2,})")
_APOSTROPHES = re.compile(r"['’`]")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def _fold(raw) -> str:
    """Lower-cased ASCII rendition of arbitrary input."""
    if raw is None:
        return ""
    text = unicodedata.normalize("NFKD", str(raw))
    text = text.encode("ascii", "ignore").decode("ascii")
    return text.strip().lower()


def _strip_trailing_suffixes(tokens: list[str]) -> list[str]:
    # Always keep at least one token so "Daycare Inc" does not vanish
    while len(tokens) > 1:
        if len(tokens) > 2 and tuple(tokens[-2:]) in MULTI_TOKEN_SUFFIXES:
            tokens = tokens[:-2]
        elif tokens[-1] in LEGAL_SUFFIXES:
            tokens = tokens[:-1]
        else:
            break
    return tokens


def normalize(raw) -> str:
    """
    Canonicalize a provider/vendor name for comparison.

    - Trim and lower-case (accents folded to ASCII)
    - Strip trailing legal suffixes (Inc, LLC, Corp, Co, Ltd, Center,
      Childcare, Daycare and their punctuated variants)
    - Collapse punctuation and whitespace to single spaces

    Idempotent: normalize(normalize(x)) == normalize(x).
    """
    text = _fold(raw)
    if not text:
        return ""

    # "l.l.c." -> "llc" before punctuation becomes whitespace
    text = _DOTTED_ABBREVIATION.sub(lambda m: m.group(1).replace(".", "") + " ", text)
    text = _APOSTROPHES.sub("", text)

    tokens = _NON_ALNUM.sub(" ", text).split()
    return " ".join(_strip_trailing_suffixes(tokens))


def name_tokens(normalized_name: str) -> set[str]:
    """Token set of an already-normalized name."""
    return set(normalized_name.split()) if normalized_name else set()


def normalize_address(address: Optional[str]) -> str:
    """Normalize a street address: abbreviate street types and directionals."""
    text = _fold(address)
    if not text:
        return ""
    tokens = _NON_ALNUM.sub(" ", _APOSTROPHES.sub("", text)).split()
    return " ".join(STREET_ABBREVIATIONS.get(t, t) for t in tokens)


def normalize_zip(zip_code) -> str:
    """First five digits of a ZIP code, or empty string."""
    if zip_code is None:
        return ""
    digits = re.sub(r"\D", "", str(zip_code))
    # Spreadsheets drop the leading zero of New England ZIPs (03101 -> 3101)
    if len(digits) in (4, 8):
        digits = "0" + digits
    return digits[:5] if len(digits) >= 5 else ""


def normalize_city(city: Optional[str]) -> str:
    """Upper-cased city with punctuation removed."""
    text = _fold(city)
    if not text:
        return ""
    return " ".join(_NON_ALNUM.sub(" ", text).split()).upper()


def normalize_license(license_number) -> str:
    """Upper-cased alphanumerics of a license number."""
    text = _fold(license_number)
    return _NON_ALNUM.sub("", text).upper()
