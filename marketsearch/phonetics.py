"""Utilities for term normalization and phonetic encoding.

Two-step pipeline used by the search flow:

    1) :func:`normalize_term` cleans the user text (lowercase, strip
       punctuation, collapse whitespace). The normalized string is what the
       trigram and full-text channels see, and what the cache key is built from.
    2) :func:`phonetic_codes` accepts the normalized string, transliterates it
       to ASCII and emits double metaphone codes for every token long enough to
       carry a sound, so that misspellings such as ``"fone"`` still align with
       catalog tokens like ``"phone"``.

The codes are compared against ``dmetaphone``/``dmetaphone_alt`` of the product
name tokens on the PostgreSQL side, and against codes precomputed at snapshot
load time for the in-memory catalog.
"""
from __future__ import annotations

import logging
import re
from typing import Iterable

from metaphone import doublemetaphone
from unidecode import unidecode

logger = logging.getLogger(__name__)

# Keeps only letters/digits/spaces during normalization.
_NON_WORD_RE = re.compile(r"[^\w ]+|_")
# After transliteration we keep only Latin letters/digits/spaces for metaphone.
_ASCII_ALNUM_SPACE_RE = re.compile(r"[^0-9a-zA-Z ]+")


def normalize_term(text: str | None) -> str:
    """Normalize free-form input prior to matching and cache-key hashing.

    1. Lowercase the input.
    2. Replace everything except letters, digits and spaces with a space.
    3. Collapse multiple spaces and trim.

    Repeated letters are deliberately kept: trigram similarity against catalog
    names such as ``"apple"`` relies on them.
    """

    lowered = (text or "").lower()
    cleaned = _NON_WORD_RE.sub(" ", lowered)
    compact = " ".join(cleaned.split())
    logger.debug("normalize_term raw=%r compact=%r", text, compact)
    return compact


def phonetic_tokens(text: str, min_length: int = 3) -> list[str]:
    """Split text into ASCII tokens eligible for phonetic encoding."""

    transliterated = unidecode(text or "").lower()
    ascii_only = _ASCII_ALNUM_SPACE_RE.sub(" ", transliterated)
    return [token for token in ascii_only.split() if len(token) >= min_length]


def _metaphone_tokens(tokens: Iterable[str]) -> list[str]:
    phonetics: list[str] = []
    for token in tokens:
        primary, secondary = doublemetaphone(token)
        for code in (primary, secondary):
            if code and code not in phonetics:
                phonetics.append(code)
    return phonetics


def phonetic_codes(normalized_text: str, min_length: int = 3) -> list[str]:
    """Generate double metaphone codes from **already normalized** text.

    Tokens shorter than ``min_length`` are skipped, so ``"tv"`` never produces
    a code. The result preserves first-seen order and holds no duplicates, which
    keeps the bound SQL parameter stable for identical terms.

    Encoder errors result in an empty list: a term without codes simply does not
    use the phonetic channel.
    """

    if not normalized_text:
        return []
    tokens = phonetic_tokens(normalized_text, min_length)
    try:
        codes = _metaphone_tokens(tokens)
    except (ValueError, IndexError) as exc:
        logger.warning("phonetic conversion failed for %r: %s", normalized_text, exc)
        return []
    logger.debug("phonetic_codes normalized=%r tokens=%s codes=%s", normalized_text, tokens, codes)
    return codes
