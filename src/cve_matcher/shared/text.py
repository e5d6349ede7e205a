from __future__ import annotations

import re

# English stop words plus words that say nothing about a vendor or product
STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "if", "in",
    "into", "is", "it", "no", "not", "of", "on", "or", "such", "that", "the",
    "their", "then", "there", "these", "they", "this", "to", "was", "will", "with",
    "software", "inc", "incorporated", "corp", "corporation", "ltd", "llc", "co",
    "com", "org", "net", "www", "http", "https", "project", "foundation",
    "community", "team", "developers",
})

MAX_TEXT_LENGTH = 1000

_RX_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")
_RX_SUBWORD = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")
_RX_CLEANSE = re.compile(r"[^A-Za-z0-9 ._:/-]")


def _words(text: str) -> list[str]:
    words: list[str] = []
    for chunk in _RX_NON_ALNUM.split(text):
        if not chunk:
            continue
        for sub in _RX_SUBWORD.findall(chunk):
            lowered = sub.lower()
            if lowered not in STOP_WORDS:
                words.append(lowered)
    return words


def normalize(text: str) -> str:
    """Lower-case, split camel case and digit runs, and drop stop words.

    "ApacheStruts2" -> "apache struts 2". Idempotent.
    """
    return " ".join(_words(text))


def tokenize(text: str) -> list[str]:
    """Return the normalized tokens followed by adjacent-pair concatenations, without duplicates.

    "Struts2" -> ["struts", "2", "struts2"]
    """
    words = _words(text)
    pairs = [a + b for a, b in zip(words, words[1:])]
    return list(dict.fromkeys(words + pairs))


def cleanse(text: str) -> str:
    """Replace characters outside [A-Za-z0-9 ._:/-] and cap length at a word boundary."""
    cleaned = _RX_CLEANSE.sub(" ", text)
    if len(cleaned) > MAX_TEXT_LENGTH:
        cut = cleaned.rfind(" ", 0, MAX_TEXT_LENGTH)
        cleaned = cleaned[: cut if cut > 0 else MAX_TEXT_LENGTH]
    return cleaned.strip()
