"""Query parsing, hybrid ranking and recommendations."""

from chunkhub.search.query import ParsedQuery, parse_query

__all__ = ["ParsedQuery", "parse_query"]
