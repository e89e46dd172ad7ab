"""Plain-text extraction from chunk markup."""

import re

from bs4 import BeautifulSoup

_WHITESPACE_RE = re.compile(r"\s+")


def html_to_text(markup: str) -> str:
    """Strip markup and collapse whitespace.

    Script and style bodies are dropped. Plain text passes through with only
    its whitespace normalized.

    Args:
        markup: HTML fragment or plain text.

    Returns:
        Text used for embedding, lexical indexing and highlighting.
    """
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text(separator=" ")
    return _WHITESPACE_RE.sub(" ", text).strip()
