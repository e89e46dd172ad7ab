"""Hybrid ranker tests."""

from datetime import datetime, timedelta, timezone

import pytest

from chunkhub.chunks.schemas import ChunkCreate, ChunkFilters, SearchMode, TimeRange
from chunkhub.constants.search import PAGE_SIZE
from chunkhub.errors import ValidationFault
from chunkhub.search.query import parse_query


def axis(index: int, dim: int = 256) -> list[float]:
    vector = [0.0] * dim
    vector[index] = 1.0
    return vector


def result_ids(page):
    return [result.chunk.id for result in page.results]


@pytest.fixture
async def corpus(chunk_service, dataset_config):
    """A few chunks with unrelated content, keyed by a short name."""
    requests = {
        "cats": ChunkCreate(chunk_html="<p>Cats sleep on warm windows</p>", tag_set=["pets"]),
        "dogs": ChunkCreate(chunk_html="<p>Dogs chase balls in the park</p>", tag_set=["pets"]),
        "stocks": ChunkCreate(
            chunk_html="<p>Stock markets fell sharply today</p>", tag_set=["finance"]
        ),
    }
    chunks = {}
    for name, request in requests.items():
        chunks[name] = (await chunk_service.create(dataset_config, request)).chunk
    return chunks


@pytest.fixture
async def paged_corpus(chunk_service, dataset_config):
    """25 lexically similar chunks with orthogonal vectors."""
    for i in range(25):
        await chunk_service.create(
            dataset_config,
            ChunkCreate(chunk_html=f"alpha entry {i}", chunk_vector=axis(i)),
        )


class TestSemantic:
    async def test_best_match_first(self, hybrid_ranker, corpus, dataset_config):
        page = await hybrid_ranker.search(
            "cats sleep", SearchMode.SEMANTIC, ChunkFilters(), 1, dataset_config
        )

        assert result_ids(page)[0] == corpus["cats"].id
        assert [r.rank for r in page.results] == list(range(1, len(page.results) + 1))
        assert page.total_pages == 1

    async def test_filters_apply(self, hybrid_ranker, corpus, dataset_config):
        page = await hybrid_ranker.search(
            "cats sleep", SearchMode.SEMANTIC, ChunkFilters(tags=["finance"]), 1, dataset_config
        )

        assert result_ids(page) == [corpus["stocks"].id]

    async def test_duplicates_surface_through_root(
        self, chunk_service, hybrid_ranker, dataset_config
    ):
        root = (await chunk_service.create(dataset_config, ChunkCreate(chunk_html="twin"))).chunk
        await chunk_service.create(dataset_config, ChunkCreate(chunk_html="twin"))

        page = await hybrid_ranker.search(
            "twin", SearchMode.SEMANTIC, ChunkFilters(), 1, dataset_config
        )

        assert result_ids(page) == [root.id]

    async def test_pagination(self, hybrid_ranker, paged_corpus, dataset_config):
        first = await hybrid_ranker.search(
            "alpha", SearchMode.SEMANTIC, ChunkFilters(), 1, dataset_config
        )
        last = await hybrid_ranker.search(
            "alpha", SearchMode.SEMANTIC, ChunkFilters(), 3, dataset_config
        )

        assert len(first.results) == 10
        assert len(last.results) == 5
        assert first.total_pages == 3
        assert last.page == 3
        assert not set(result_ids(first)) & set(result_ids(last))


class TestFulltext:
    async def test_matches_and_highlights(self, hybrid_ranker, corpus, dataset_config):
        page = await hybrid_ranker.search(
            "park", SearchMode.FULLTEXT, ChunkFilters(), 1, dataset_config
        )

        assert result_ids(page) == [corpus["dogs"].id]
        result = page.results[0]
        assert result.highlight == "Dogs chase balls in the <b>park</b>"
        assert result.chunk.raw_markup == "<p>Dogs chase balls in the <b>park</b></p>"
        assert corpus["dogs"].raw_markup == "<p>Dogs chase balls in the park</p>"

    async def test_duplicates_are_returned(self, chunk_service, hybrid_ranker, dataset_config):
        await chunk_service.create(dataset_config, ChunkCreate(chunk_html="twin"))
        await chunk_service.create(dataset_config, ChunkCreate(chunk_html="twin"))

        page = await hybrid_ranker.search(
            "twin", SearchMode.FULLTEXT, ChunkFilters(), 1, dataset_config
        )

        assert len(page.results) == 2

    async def test_no_match(self, hybrid_ranker, corpus, dataset_config):
        page = await hybrid_ranker.search(
            "zebra", SearchMode.FULLTEXT, ChunkFilters(), 1, dataset_config
        )

        assert page.results == []
        assert page.total_pages == 0

    async def test_pagination(self, hybrid_ranker, paged_corpus, dataset_config):
        last = await hybrid_ranker.search(
            "alpha", SearchMode.FULLTEXT, ChunkFilters(), 3, dataset_config
        )

        assert len(last.results) == 5
        assert last.total_pages == 3

    async def test_weight_scales_score(self, chunk_service, hybrid_ranker, dataset_config):
        light = (
            await chunk_service.create(
                dataset_config, ChunkCreate(chunk_html="breaking news one", chunk_vector=axis(1))
            )
        ).chunk
        heavy = (
            await chunk_service.create(
                dataset_config,
                ChunkCreate(chunk_html="breaking news two", chunk_vector=axis(2), weight=2.0),
            )
        ).chunk

        page = await hybrid_ranker.search(
            "breaking", SearchMode.FULLTEXT, ChunkFilters(), 1, dataset_config
        )

        assert result_ids(page) == [heavy.id, light.id]
        assert page.results[0].score == pytest.approx(2 * page.results[1].score)

    async def test_weight_lifts_chunk_from_a_later_page(
        self, chunk_service, hybrid_ranker, dataset_config, lexical_index
    ):
        for i in range(PAGE_SIZE + 1):
            await chunk_service.create(
                dataset_config,
                ChunkCreate(chunk_html=f"alpha alpha entry {i}", chunk_vector=axis(i)),
            )
        heavy = (
            await chunk_service.create(
                dataset_config,
                ChunkCreate(
                    chunk_html="alpha entry with a much longer body of text",
                    chunk_vector=axis(50),
                    weight=50.0,
                ),
            )
        ).chunk

        raw = lexical_index.search(
            parse_query("alpha"), ChunkFilters(), 20, dataset_config.dataset_id
        )
        page = await hybrid_ranker.search(
            "alpha", SearchMode.FULLTEXT, ChunkFilters(), 1, dataset_config
        )

        assert raw[-1][0] == heavy.id
        assert result_ids(page)[0] == heavy.id
        assert len(page.results) == PAGE_SIZE

    async def test_recency_bias_prefers_newer(self, chunk_service, hybrid_ranker, dataset_config):
        now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        old = (
            await chunk_service.create(
                dataset_config,
                ChunkCreate(
                    chunk_html="breaking news one",
                    chunk_vector=axis(1),
                    time_stamp=(now - timedelta(days=365)).isoformat(),
                ),
            )
        ).chunk
        new = (
            await chunk_service.create(
                dataset_config,
                ChunkCreate(
                    chunk_html="breaking news two",
                    chunk_vector=axis(2),
                    time_stamp=now.isoformat(),
                ),
            )
        ).chunk

        page = await hybrid_ranker.search(
            "breaking",
            SearchMode.FULLTEXT,
            ChunkFilters(),
            1,
            dataset_config,
            recency_bias=True,
            now=now,
        )

        assert result_ids(page) == [new.id, old.id]
        assert page.results[0].score > page.results[1].score


class TestHybrid:
    async def test_cross_encoder_reranks_union(
        self, hybrid_ranker, reranker, corpus, dataset_config
    ):
        page = await hybrid_ranker.search(
            "dogs park", SearchMode.HYBRID, ChunkFilters(), 1, dataset_config
        )

        assert result_ids(page)[0] == corpus["dogs"].id
        assert len(reranker.calls) == 1
        query, documents, model_name = reranker.calls[0]
        assert query == "dogs park"
        assert model_name == dataset_config.rerank_model
        assert "Dogs chase balls in the park" in documents

    async def test_rrf_without_cross_encoder(
        self, hybrid_ranker, reranker, corpus, dataset_config
    ):
        page = await hybrid_ranker.search(
            "dogs park",
            SearchMode.HYBRID,
            ChunkFilters(),
            1,
            dataset_config,
            cross_encoder=False,
        )

        assert reranker.calls == []
        assert result_ids(page)[0] == corpus["dogs"].id

    async def test_weights_take_precedence_and_are_deterministic(
        self, hybrid_ranker, reranker, corpus, dataset_config
    ):
        runs = [
            await hybrid_ranker.search(
                "cats sleep",
                SearchMode.HYBRID,
                ChunkFilters(),
                1,
                dataset_config,
                weights=(0.7, 0.3),
            )
            for _ in range(2)
        ]

        assert reranker.calls == []
        assert result_ids(runs[0]) == result_ids(runs[1])
        assert [r.score for r in runs[0].results] == [r.score for r in runs[1].results]
        assert result_ids(runs[0])[0] == corpus["cats"].id

    async def test_total_pages_uses_larger_count(
        self, hybrid_ranker, paged_corpus, dataset_config
    ):
        page = await hybrid_ranker.search(
            "alpha", SearchMode.HYBRID, ChunkFilters(), 1, dataset_config, cross_encoder=False
        )

        assert page.total_pages == 3
        assert len(page.results) == 10


class TestTimeRange:
    @pytest.mark.parametrize("mode", [SearchMode.FULLTEXT, SearchMode.SEMANTIC])
    async def test_naive_bounds_match_naive_timestamp(
        self, chunk_service, hybrid_ranker, dataset_config, non_utc_host, mode
    ):
        chunk = (
            await chunk_service.create(
                dataset_config,
                ChunkCreate(chunk_html="noon report", time_stamp="2024-01-01T12:00:00"),
            )
        ).chunk
        await chunk_service.create(
            dataset_config,
            ChunkCreate(chunk_html="evening report", time_stamp="2024-01-01T17:00:00"),
        )
        instant = datetime(2024, 1, 1, 12)
        filters = ChunkFilters(time_range=TimeRange(start=instant, end=instant))

        page = await hybrid_ranker.search("report", mode, filters, 1, dataset_config)

        assert result_ids(page) == [chunk.id]


class TestValidation:
    async def test_page_below_one(self, hybrid_ranker, dataset_config):
        with pytest.raises(ValidationFault):
            await hybrid_ranker.search("x", SearchMode.HYBRID, ChunkFilters(), 0, dataset_config)

    async def test_negative_weights(self, hybrid_ranker, dataset_config):
        with pytest.raises(ValidationFault):
            await hybrid_ranker.search(
                "x", SearchMode.HYBRID, ChunkFilters(), 1, dataset_config, weights=(-1.0, 1.0)
            )
