"""FTS5 lexical index tests."""

from datetime import datetime, timezone

import pytest

from chunkhub.chunks.schemas import Chunk, ChunkFilters, TimeRange
from chunkhub.search.fts import build_match_expression
from chunkhub.search.query import parse_query


@pytest.fixture
def indexed(store, lexical_index, dataset):
    """Three chunks stored and indexed."""
    chunks = [
        Chunk(
            id="fox",
            dataset_id=dataset.id,
            plain_content="The quick brown fox jumps over the lazy dog",
            link="https://a.example",
            tag_set=["animals"],
            metadata={"lang": "english"},
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
            vector_point_id="p-fox",
        ),
        Chunk(
            id="cat",
            dataset_id=dataset.id,
            plain_content="A lazy cat sleeps in the sun",
            link="https://b.example",
            tag_set=["animals", "pets"],
            metadata={"lang": "english"},
            timestamp=datetime(2024, 6, 1, tzinfo=timezone.utc),
            vector_point_id="p-cat",
        ),
        Chunk(
            id="code",
            dataset_id=dataset.id,
            plain_content="Brown paper packages tied up with string",
            metadata={"lang": "german"},
            vector_point_id="p-code",
        ),
    ]
    for chunk in chunks:
        store.insert(chunk)
        lexical_index.upsert(chunk)
    return {chunk.id: chunk for chunk in chunks}


def ids(hits):
    return [chunk_id for chunk_id, _ in hits]


class TestMatchExpression:
    def test_residual_terms_are_ored(self):
        assert build_match_expression(parse_query("fox dog")) == '("fox" OR "dog")'

    def test_negation_applies_to_residual_terms(self):
        expression = build_match_expression(parse_query("fox dog -cat"))

        assert expression == '("fox" OR "dog") NOT "cat"'

    def test_phrases_required_and_negations_excluded(self):
        expression = build_match_expression(parse_query('"brown fox" -cat'))

        assert expression == '("brown fox") NOT "cat"'

    def test_quotes_are_escaped(self):
        expression = build_match_expression(parse_query('say"hi'))

        assert expression == '("say""hi")'

    def test_only_negations_matches_nothing(self):
        assert build_match_expression(parse_query("-cat")) is None

    def test_punctuation_only_terms_are_ignored(self):
        assert build_match_expression(parse_query("!!! ???")) is None


class TestLexicalSearch:
    def test_residual_terms(self, lexical_index, indexed, dataset):
        hits = lexical_index.search(parse_query("lazy"), ChunkFilters(), 10, dataset.id)

        assert set(ids(hits)) == {"fox", "cat"}
        assert all(score > 0 for _, score in hits)

    def test_phrase_must_match(self, lexical_index, indexed, dataset):
        hits = lexical_index.search(parse_query('"brown fox"'), ChunkFilters(), 10, dataset.id)

        assert ids(hits) == ["fox"]

    def test_negated_term_excludes(self, lexical_index, indexed, dataset):
        hits = lexical_index.search(parse_query("lazy -cat"), ChunkFilters(), 10, dataset.id)

        assert ids(hits) == ["fox"]

    def test_more_matching_terms_rank_higher(self, lexical_index, indexed, dataset):
        hits = lexical_index.search(parse_query("lazy brown fox"), ChunkFilters(), 10, dataset.id)

        assert ids(hits)[0] == "fox"

    def test_tag_filter(self, lexical_index, indexed, dataset):
        filters = ChunkFilters(tags=["pets"])

        hits = lexical_index.search(parse_query("lazy"), filters, 10, dataset.id)

        assert ids(hits) == ["cat"]

    def test_link_filter(self, lexical_index, indexed, dataset):
        filters = ChunkFilters(links=["https://a.example"])

        hits = lexical_index.search(parse_query("lazy"), filters, 10, dataset.id)

        assert ids(hits) == ["fox"]

    def test_time_range_filter(self, lexical_index, indexed, dataset):
        filters = ChunkFilters(
            time_range=TimeRange(start=datetime(2024, 3, 1, tzinfo=timezone.utc))
        )

        hits = lexical_index.search(parse_query("lazy"), filters, 10, dataset.id)

        assert ids(hits) == ["cat"]

    def test_naive_time_bounds_are_utc(self, lexical_index, indexed, dataset, non_utc_host):
        instant = datetime(2024, 1, 1)
        filters = ChunkFilters(time_range=TimeRange(start=instant, end=instant))

        hits = lexical_index.search(parse_query("lazy"), filters, 10, dataset.id)

        assert ids(hits) == ["fox"]
        assert lexical_index.count(parse_query("lazy"), filters, dataset.id) == 1

    def test_metadata_substring_filter(self, lexical_index, indexed, dataset):
        filters = ChunkFilters(metadata={"lang": "germ"})

        hits = lexical_index.search(parse_query("brown"), filters, 10, dataset.id)

        assert ids(hits) == ["code"]
        assert lexical_index.count(parse_query("brown"), filters, dataset.id) == 1

    def test_count_ignores_limit(self, lexical_index, indexed, dataset):
        hits = lexical_index.search(parse_query("lazy brown"), ChunkFilters(), 1, dataset.id)

        assert len(hits) == 1
        assert lexical_index.count(parse_query("lazy brown"), ChunkFilters(), dataset.id) == 3

    def test_upsert_replaces_and_delete_removes(self, lexical_index, indexed, dataset):
        updated = indexed["cat"].model_copy(update={"plain_content": "A sleepy tiger"})

        lexical_index.upsert(updated)
        assert lexical_index.search(parse_query("tiger"), ChunkFilters(), 10, dataset.id)
        assert ids(
            lexical_index.search(parse_query("lazy"), ChunkFilters(), 10, dataset.id)
        ) == ["fox"]

        lexical_index.delete("cat", dataset.id)
        assert lexical_index.search(parse_query("tiger"), ChunkFilters(), 10, dataset.id) == []
