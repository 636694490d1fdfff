"""
Text chunking and keyword extraction for ingestion.
"""

from __future__ import annotations

import re

import hypermem.config as config

SENTENCE_BREAKS = (". ", "! ", "? ")

STOPWORDS = frozenset(
    """
    a an the and or but if because as what which this that these those am is are
    was were be been being have has had having do does did doing i you he she it
    we they me him her us them my your his its our their mine yours hers ours
    theirs in on at to for of with by from up about into through during before
    after above below between under again further then once here there when where
    why how all each few more most other some such no nor not only own same so
    than too very just now can will dont should im youre hes shes theyre ive
    youve weve theyve id youd hed shed wed theyd ill youll hell shell well
    theyll isnt arent wasnt werent hasnt havent hadnt doesnt didnt wont wouldnt
    shant shouldnt cant cannot couldnt mustnt lets thats whos whats heres theres
    whens wheres whys hows
    """.split()
)

_MENTION_RE = re.compile(r"<@[!&]?\d+>|<#\d+>")
_URL_RE = re.compile(r"https?://\S+")
_PUNCT_RE = re.compile(r"[^\w\s]")


def _break_index(text: str, max_length: int) -> int:
    """Where to cut text so the head fits in max_length."""
    min_index = max_length * 0.5

    index = text.rfind("\n", 0, max_length + 1)
    if index >= min_index:
        return index

    best = -1
    for marker in SENTENCE_BREAKS:
        found = text.rfind(marker, 0, max_length + 1)
        if found > best:
            best = found
    if best >= 0 and best + 1 >= min_index:
        return best + 1  # keep the punctuation with its sentence

    index = text.rfind(" ", 0, max_length + 1)
    if index >= min_index:
        return index
    return max_length


def chunk_text(text: str, max_length: int = config.DOCUMENT_CHUNK_SIZE) -> list[str]:
    """
    Split text into stripped chunks of at most max_length characters.

    Cuts prefer a newline, then a sentence end, then a space, but only in
    the back half of the window; otherwise the text is cut hard.
    """
    if max_length < 1:
        raise ValueError("max_length must be positive")
    chunks = []
    remaining = (text or "").strip()
    while remaining:
        if len(remaining) <= max_length:
            chunks.append(remaining)
            break
        cut = _break_index(remaining, max_length)
        chunks.append(remaining[:cut].strip())
        remaining = remaining[cut:].strip()
    return chunks


def extract_keywords(text: str, limit: int = 5) -> list[str]:
    cleaned = _MENTION_RE.sub("", text or "")
    cleaned = _URL_RE.sub("", cleaned)
    cleaned = _PUNCT_RE.sub(" ", cleaned).lower()

    keywords: list[str] = []
    for word in cleaned.split():
        if len(word) < 3 or word in STOPWORDS or word in keywords:
            continue
        keywords.append(word)
        if len(keywords) >= limit:
            break
    return keywords
