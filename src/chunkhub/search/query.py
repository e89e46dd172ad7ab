"""Query parsing: quoted phrases, negated terms and residual terms."""

import re
from dataclasses import dataclass, field

from chunkhub.constants.search import NEGATION_MARKER

_PHRASE_RE = re.compile(r'"(.*?)"')


@dataclass(frozen=True)
class ParsedQuery:
    """Structured view of a raw query string.

    ``query`` is the raw string, unmodified, and is what downstream retrieval
    embeds. Empty phrase and negation lists are None so callers can skip that
    handling with a single check.
    """

    query: str
    quote_words: list[str] | None = None
    negated_words: list[str] | None = None
    residual_terms: list[str] = field(default_factory=list)

    @property
    def has_structure(self) -> bool:
        return self.quote_words is not None or self.negated_words is not None


def parse_query(raw: str) -> ParsedQuery:
    """Parse a raw query string.

    Rules:
    - Text between double quotes becomes a phrase. Backslashes are stripped from
      the input first, so an escaped quote cannot be expressed.
    - Whitespace-separated tokens starting with ``-`` become negated terms with
      the marker removed.
    - Everything else, outside quotes, is a residual term.

    Never raises.
    """
    unescaped = raw.replace("\\", "")

    quote_words = [m.group(1) for m in _PHRASE_RE.finditer(unescaped) if m.group(1)]

    negated_words: list[str] = []
    for token in raw.split():
        if token.startswith(NEGATION_MARKER):
            stripped = token[len(NEGATION_MARKER) :]
            if stripped:
                negated_words.append(stripped)

    residual_terms: list[str] = []
    for token in _PHRASE_RE.sub(" ", unescaped).split():
        if token.startswith(NEGATION_MARKER):
            continue
        token = token.strip('"')
        if token:
            residual_terms.append(token)

    return ParsedQuery(
        query=raw,
        quote_words=quote_words or None,
        negated_words=negated_words or None,
        residual_terms=residual_terms,
    )
