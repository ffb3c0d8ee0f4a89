"""Python counterparts of the PostgreSQL matching functions.

The in-memory catalog has to answer the same four match channels as the SQL
store. These helpers follow the ``pg_trgm`` and ``tsvector`` semantics closely
enough that ranking order agrees between the two backends:

* :func:`trigrams` pads every word with two leading and one trailing space,
  exactly like ``show_trgm``.
* :func:`similarity` is the Jaccard ratio of the two trigram sets.
* :func:`word_similarity` is directional: the share of the needle's trigrams
  found in the haystack.
* :func:`lexical_rank` stems with the Snowball English stemmer (the stemmer
  behind the ``english`` text search configuration) and weights hits by field.
"""
from __future__ import annotations

import re
from functools import lru_cache
from typing import Dict, Iterable, Mapping, Set

from nltk.stem.snowball import SnowballStemmer

_WORD_RE = re.compile(r"[0-9a-z]+")

# ts_rank default weights for the D, C, B, A labels.
FIELD_WEIGHTS = {"A": 1.0, "B": 0.4, "C": 0.2, "D": 0.1}
# Scales the mean field weight into the range ts_rank produces.
_RANK_SCALE = 0.1

STOPWORDS = {
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "in",
    "is", "it", "of", "on", "or", "the", "to", "with", "without",
}

_stemmer = SnowballStemmer("english")


def _words(text: str) -> list[str]:
    return _WORD_RE.findall((text or "").lower())


@lru_cache(maxsize=4096)
def _word_trigrams(word: str) -> frozenset[str]:
    padded = f"  {word} "
    return frozenset(padded[i : i + 3] for i in range(len(padded) - 2))


def trigrams(text: str) -> Set[str]:
    grams: Set[str] = set()
    for word in _words(text):
        grams |= _word_trigrams(word)
    return grams


def similarity(left: str, right: str) -> float:
    left_grams = trigrams(left)
    right_grams = trigrams(right)
    if not left_grams or not right_grams:
        return 0.0
    shared = len(left_grams & right_grams)
    return shared / (len(left_grams) + len(right_grams) - shared)


def word_similarity(needle: str, haystack: str) -> float:
    needle_grams = trigrams(needle)
    if not needle_grams:
        return 0.0
    return len(needle_grams & trigrams(haystack)) / len(needle_grams)


def stem_tokens(text: str) -> list[str]:
    return [_stemmer.stem(word) for word in _words(text) if word not in STOPWORDS]


def build_document(fields: Mapping[str, str | None]) -> Dict[str, float]:
    """Map every stem in the labelled fields to the best field weight it has.

    ``fields`` maps a weight label (``"A"``..``"D"``) to the text indexed under
    it, mirroring the ``setweight(to_tsvector(...))`` chain of the
    ``search_vector`` column.
    """

    document: Dict[str, float] = {}
    for label, text in fields.items():
        weight = FIELD_WEIGHTS[label]
        for stem in stem_tokens(text or ""):
            if weight > document.get(stem, 0.0):
                document[stem] = weight
    return document


def lexical_rank(query_stems: Iterable[str], document: Mapping[str, float]) -> float:
    """Rank like ``plainto_tsquery``: every query stem must be present.

    Returns ``0.0`` when any stem is missing or the query has no stems.
    """

    stems = list(dict.fromkeys(query_stems))
    if not stems:
        return 0.0
    weights = [document.get(stem, 0.0) for stem in stems]
    if not all(weights):
        return 0.0
    return _RANK_SCALE * sum(weights) / len(weights)
