"""Query term highlighting for search results."""

import re

from chunkhub.constants.search import (
    HIGHLIGHT_CLOSE_TAG,
    HIGHLIGHT_MIN_TERM_LENGTH,
    HIGHLIGHT_OPEN_TAG,
)
from chunkhub.search.query import ParsedQuery

# Tags and character references are copied through untouched.
_PROTECTED_SPLIT_RE = re.compile(r"(<[^>]*>|&#?\w+;)")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_WORD_RE = re.compile(r"\w+")


def highlight_terms(query: ParsedQuery) -> list[str]:
    """Terms worth highlighting: phrases and residual words, never negated ones.

    Longest first, so a phrase wins over a word it contains.
    """
    candidates = list(query.quote_words or [])
    for term in query.residual_terms:
        candidates.extend(_WORD_RE.findall(term))

    negated = {word.lower() for word in query.negated_words or []}
    terms: dict[str, None] = {}
    for term in candidates:
        lowered = term.lower()
        if len(lowered) >= HIGHLIGHT_MIN_TERM_LENGTH and lowered not in negated:
            terms[lowered] = None
    return sorted(terms, key=lambda t: (-len(t), t))


def _pattern(terms: list[str]) -> re.Pattern[str] | None:
    if not terms:
        return None
    return re.compile("|".join(re.escape(term) for term in terms), re.IGNORECASE)


def _wrap(text: str, pattern: re.Pattern[str]) -> str:
    return pattern.sub(lambda m: f"{HIGHLIGHT_OPEN_TAG}{m.group(0)}{HIGHLIGHT_CLOSE_TAG}", text)


def highlight_markup(markup: str, terms: list[str]) -> str:
    """Wrap term occurrences in emphasis tags, touching text nodes only."""
    pattern = _pattern(terms)
    if pattern is None:
        return markup

    parts = _PROTECTED_SPLIT_RE.split(markup)
    return "".join(
        part if index % 2 else _wrap(part, pattern) for index, part in enumerate(parts)
    )


def highlight_snippet(plain_content: str, terms: list[str], max_sentences: int) -> str | None:
    """The best matching sentences, in document order, with terms emphasized.

    Sentences are ranked by how many distinct terms they contain. Returns None
    when no sentence matches.
    """
    pattern = _pattern(terms)
    if pattern is None:
        return None

    sentences = [s for s in _SENTENCE_SPLIT_RE.split(plain_content) if s.strip()]
    scored = []
    for position, sentence in enumerate(sentences):
        matched = {m.group(0).lower() for m in pattern.finditer(sentence)}
        if matched:
            scored.append((len(matched), position))

    if not scored:
        return None

    best = sorted(scored, key=lambda item: (-item[0], item[1]))[:max_sentences]
    chosen = sorted(position for _, position in best)
    return " ... ".join(_wrap(sentences[position], pattern) for position in chosen)
