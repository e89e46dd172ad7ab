"""Property-based tests for query parsing and score fusion.

Tests for:
- Any query string parses, and its match expression stays well quoted
- Fused rankings are ordered and cover both inputs
- Score adjustments stay within their bounds
"""

from datetime import datetime, timedelta, timezone

from hypothesis import given, settings, strategies as st

from chunkhub.search.fts import build_match_expression
from chunkhub.search.query import parse_query
from chunkhub.search.ranking import RRFRanker, recency_boost, weighted_fusion

hit_lists = st.lists(
    st.tuples(
        st.text(alphabet="abcdefgh", min_size=1, max_size=4),
        st.floats(min_value=-100, max_value=100, allow_nan=False),
    ),
    max_size=15,
    unique_by=lambda hit: hit[0],
)


class TestQueryParsing:
    @given(raw=st.text(max_size=60))
    @settings(max_examples=200, deadline=None)
    def test_any_query_parses(self, raw):
        """Parsing never raises and keeps the raw string for embedding."""
        parsed = parse_query(raw)

        assert parsed.query == raw
        assert all(parsed.residual_terms)

    @given(raw=st.text(alphabet='ab "-\\!', max_size=40))
    @settings(max_examples=200, deadline=None)
    def test_match_expression_quotes_are_balanced(self, raw):
        """Every term is quoted, with embedded quotes doubled."""
        expression = build_match_expression(parse_query(raw))

        if expression is not None:
            assert expression.count('"') % 2 == 0


class TestFusion:
    @given(semantic=hit_lists, lexical=hit_lists)
    @settings(max_examples=100, deadline=None)
    def test_rrf_is_ordered_union(self, semantic, lexical):
        fused = RRFRanker().merge(semantic, lexical)

        scores = [score for _, score in fused]
        assert scores == sorted(scores, reverse=True)
        assert {chunk_id for chunk_id, _ in fused} == {
            chunk_id for chunk_id, _ in semantic + lexical
        }

    @given(
        semantic=hit_lists,
        lexical=hit_lists,
        weights=st.tuples(
            st.floats(min_value=0, max_value=5), st.floats(min_value=0, max_value=5)
        ),
    )
    @settings(max_examples=100, deadline=None)
    def test_weighted_scores_are_bounded(self, semantic, lexical, weights):
        fused = weighted_fusion(semantic, lexical, weights)

        upper = weights[0] + weights[1] + 1e-9
        assert all(-1e-9 <= score <= upper for _, score in fused)


class TestRecency:
    @given(
        age_days=st.floats(min_value=-1000, max_value=100000),
        weight=st.floats(min_value=0, max_value=10),
    )
    @settings(max_examples=100, deadline=None)
    def test_boost_never_exceeds_weight(self, age_days, weight):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)

        boost = recency_boost(now - timedelta(days=age_days), now, weight, 30.0)

        assert 0.0 <= boost <= weight
