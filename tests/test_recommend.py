"""Recommendation engine tests."""

import pytest

from chunkhub.chunks.schemas import ChunkCreate, ChunkFilters
from chunkhub.errors import ConsistencyFault, NotFoundFault, ValidationFault


def vec(*components: float, dim: int = 256) -> list[float]:
    vector = list(components) + [0.0] * (dim - len(components))
    norm = sum(x * x for x in vector) ** 0.5
    return [x / norm for x in vector]


@pytest.fixture
async def chunks(chunk_service, dataset_config):
    """Two near neighbours, one far chunk and a duplicate of the first."""
    vectors = {
        "a": vec(1, 0),
        "b": vec(1, 0.6),
        "c": vec(0, 1),
        "a-dup": vec(1, 0),
    }
    created = {}
    for name, vector in vectors.items():
        result = await chunk_service.create(
            dataset_config, ChunkCreate(chunk_html=f"chunk {name}", chunk_vector=vector)
        )
        created[name] = result.chunk
    assert created["a-dup"].vector_point_id is None
    return created


def result_ids(results):
    return [result.chunk.id for result in results]


async def test_nearest_first_and_positives_excluded(recommender, chunks, dataset_config):
    results = await recommender.recommend([chunks["a"].id], dataset_config)

    assert result_ids(results) == [chunks["b"].id, chunks["c"].id]
    assert [r.rank for r in results] == [1, 2]
    assert results[0].score > results[1].score


async def test_duplicate_positive_uses_root_point(recommender, chunks, dataset_config):
    results = await recommender.recommend([chunks["a-dup"].id], dataset_config)

    ids = result_ids(results)
    assert chunks["a"].id not in ids
    assert chunks["a-dup"].id not in ids
    assert ids[0] == chunks["b"].id


async def test_limit(recommender, chunks, dataset_config):
    results = await recommender.recommend([chunks["a"].id], dataset_config, limit=1)

    assert result_ids(results) == [chunks["b"].id]


async def test_no_positives(recommender, dataset_config):
    with pytest.raises(ValidationFault):
        await recommender.recommend([], dataset_config)


async def test_unknown_positive(recommender, chunks, dataset_config):
    with pytest.raises(NotFoundFault):
        await recommender.recommend([chunks["a"].id, "missing"], dataset_config)


async def test_orphan_points_are_cleaned_up(
    chunk_service, recommender, temp_vector_index, dataset_config
):
    dataset_id = dataset_config.dataset_id
    real = (
        await chunk_service.create(
            dataset_config, ChunkCreate(chunk_html="real", chunk_vector=vec(1, 0))
        )
    ).chunk
    temp_vector_index.upsert("orphan", vec(1, 0.5), {"chunk_id": "gone"}, dataset_id)

    with pytest.raises(ConsistencyFault):
        await recommender.recommend([real.id], dataset_config)

    assert temp_vector_index.get_vector("orphan", dataset_id) is None
    assert temp_vector_index.count(ChunkFilters(), dataset_id) == 1
