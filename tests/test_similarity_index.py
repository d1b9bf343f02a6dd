"""Tests for cosine similarity and the in-memory similarity index."""

import pytest

from helpdesk.core import VectorStoreException
from helpdesk.infrastructure.vectorstore import IndexEntry, InMemorySimilarityIndex, cosine_similarity


def test_cosine_similarity_bounds():
    assert cosine_similarity([1, 0], [2, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 3]) == pytest.approx(0.0)
    assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)
    assert cosine_similarity([0, 0], [1, 1]) == 0.0


async def test_search_orders_by_similarity_then_id():
    index = InMemorySimilarityIndex()
    await index.upsert("b", [1.0, 0.0, 0.0], is_published=True)
    await index.upsert("a", [2.0, 0.0, 0.0], is_published=True)
    await index.upsert("c", [1.0, 1.0, 0.0], is_published=True)
    await index.upsert("d", [0.0, 0.0, 1.0], is_published=True)

    hits = await index.search([1.0, 0.0, 0.0], k=3)

    assert [h.article_id for h in hits] == ["a", "b", "c"]
    assert hits[0].similarity == pytest.approx(1.0)
    assert hits[2].similarity == pytest.approx(0.7071, abs=1e-4)


async def test_published_only_filters_drafts():
    index = InMemorySimilarityIndex()
    await index.upsert("draft", [1.0, 0.0], is_published=False)
    await index.upsert("live", [0.5, 0.5], is_published=True)

    assert [h.article_id for h in await index.search([1.0, 0.0], k=5)] == ["draft", "live"]
    assert [h.article_id for h in await index.search([1.0, 0.0], k=5, published_only=True)] == ["live"]


async def test_upsert_replaces_and_remove_ignores_unknown():
    index = InMemorySimilarityIndex()
    await index.upsert("a", [1.0, 0.0])
    await index.upsert("a", [0.0, 1.0], is_published=True)
    await index.remove("missing")

    hits = await index.search([0.0, 1.0], k=5, published_only=True)
    assert await index.count() == 1
    assert hits[0].similarity == pytest.approx(1.0)

    await index.remove("a")
    assert await index.search([0.0, 1.0]) == []


async def test_load_replaces_contents():
    index = InMemorySimilarityIndex()
    await index.upsert("old", [1.0, 0.0])

    await index.load([IndexEntry("x", [1.0, 0.0], True), IndexEntry("y", [0.0, 1.0], False)])

    assert await index.count() == 2
    assert [h.article_id for h in await index.search([1.0, 0.0], k=1)] == ["x"]


async def test_dimension_mismatch_rejected():
    index = InMemorySimilarityIndex(dimension=3)
    with pytest.raises(VectorStoreException):
        await index.upsert("a", [1.0, 0.0])
