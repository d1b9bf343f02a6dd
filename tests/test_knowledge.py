"""Tests for pattern extraction, article dedup, knowledge search and feedback."""

import json
from datetime import timedelta

import pytest

from helpdesk.core import ResourceNotFoundException, ValidationException
from helpdesk.learning.application import (
    FeedbackService, KnowledgeService, PatternExtractor, PatternLibrary,
)
from helpdesk.learning.domain import ArticleDraft, ExtractedPattern, parse_article
from helpdesk.learning.infrastructure import SQLAlchemyKnowledgeStore

from tests.conftest import PASSWORD_ARTICLE, PASSWORD_PATTERN, PRINTER_ARTICLE, make_snapshot


async def _resolved(store: SQLAlchemyKnowledgeStore, *ticket_ids):
    async with store.transaction() as repos:
        return [await repos.tickets.get_resolved_ticket(t) for t in ticket_ids]


def _draft(payload=PASSWORD_ARTICLE, **overrides) -> ArticleDraft:
    return parse_article(json.dumps(dict(payload, **overrides)))


async def _persist(generator, draft, category, source_ticket_ids, snapshot, repos):
    prepared = await generator.resolve(await generator.prepare(draft))
    return await generator.persist(prepared, category, source_ticket_ids, snapshot, repos)


@pytest.fixture
async def password_tickets(add_ticket):
    for i in range(1, 4):
        await add_ticket(
            f"T-{i}",
            "Password expired",
            "Cannot log in after password expiry",
            comments=["Verified identity", "Reset the password from the portal"],
        )
    return ["T-1", "T-2", "T-3"]


# ========== Ticket store ==========

async def test_ticket_store_reads_resolved_tickets_with_comments(store, add_ticket):
    await add_ticket("T-1", "Password expired", comments=["First", "Second"])
    await add_ticket("T-2", "Still open", resolved=False)

    [ticket, open_ticket] = await _resolved(store, "T-1", "T-2")

    assert open_ticket is None
    assert [c.body for c in ticket.comments] == ["First", "Second"]
    assert ticket.resolved_at.tzinfo is not None


async def test_recent_resolved_tickets_filters_window_and_category(store, add_ticket, clock):
    await add_ticket("T-1", "Password expired", resolved_days_ago=2, resolution_notes="Reset")
    await add_ticket("T-2", "Printer jam", category="hardware", resolved_days_ago=2, resolution_notes="Cleared")
    await add_ticket("T-3", "Old password ticket", resolved_days_ago=45, resolution_notes="Reset")

    async with store.transaction() as repos:
        recent = await repos.tickets.get_recent_resolved_tickets(
            clock.now - timedelta(days=30), category="account"
        )

    assert [t.id for t in recent] == ["T-1"]


# ========== Extraction ==========

async def test_extractor_skips_small_batches(completion, fake_llm, store, password_tickets, snapshot):
    tickets = await _resolved(store, "T-1", "T-2")

    patterns = await PatternExtractor(completion).extract(tickets, snapshot)

    assert patterns == []
    assert "pattern_extraction" not in fake_llm.calls


async def test_extractor_rejects_mixed_categories(completion, store, add_ticket, password_tickets, snapshot):
    await add_ticket("T-9", "Printer jam", category="hardware", resolution_notes="Cleared the tray")
    tickets = await _resolved(store, "T-1", "T-2", "T-9")

    with pytest.raises(ValidationException):
        await PatternExtractor(completion).extract(tickets, snapshot)


async def test_extractor_parses_model_output(completion, store, password_tickets, snapshot):
    tickets = await _resolved(store, *password_tickets)

    patterns = await PatternExtractor(completion).extract(tickets, snapshot)

    assert len(patterns) == 1
    assert patterns[0].is_promotable


async def test_pattern_library_folds_near_duplicates(embeddings, store):
    library = PatternLibrary(embeddings, similarity_threshold=0.9)
    extracted = ExtractedPattern.model_validate(PASSWORD_PATTERN)

    async with store.transaction() as repos:
        vector = await library.embed(extracted)
        first, created = await library.record(extracted, vector, "account", "T-1", repos)
        second, created_again = await library.record(extracted, vector, "account", "T-2", repos)
        other_category, created_elsewhere = await library.record(extracted, vector, "hr", "T-3", repos)

    assert created and not created_again and created_elsewhere
    assert second.id == first.id
    assert second.frequency == 2
    assert second.source_ticket_ids == ["T-1", "T-2"]
    assert other_category.id != first.id


# ========== Article dedup ==========

async def test_duplicate_draft_merges_sources(generator, store, index, snapshot):
    draft = _draft()

    async with store.transaction() as repos:
        first = await _persist(generator, draft, "account", ["T-1"], snapshot, repos)
        second = await _persist(generator, draft, "account", ["T-2", "T-1"], snapshot, repos)
        third = await _persist(generator, draft, "account", ["T-2"], snapshot, repos)

    assert first.created
    assert second.merged and third.merged
    assert second.article.id == first.article.id
    assert third.article.source_ticket_ids == ["T-1", "T-2"]
    assert await index.count() == 1


async def test_different_topic_creates_new_article(generator, store, index, snapshot):
    async with store.transaction() as repos:
        password = await _persist(generator, _draft(), "account", ["T-1"], snapshot, repos)
        printer = await _persist(generator, _draft(PRINTER_ARTICLE), "hardware", ["T-2"], snapshot, repos)

    assert password.created and printer.created
    assert password.article.id != printer.article.id
    assert await index.count() == 2


async def test_drafts_absorb_duplicates_but_stay_unpublished(generator, store, index):
    snapshot = make_snapshot(article_approval_required=True)
    draft = _draft()

    async with store.transaction() as repos:
        first = await _persist(generator, draft, "account", ["T-1"], snapshot, repos)
        second = await _persist(generator, draft, "account", ["T-2"], snapshot, repos)

    assert not first.article.is_published
    assert second.merged
    assert second.article.source_ticket_ids == ["T-1", "T-2"]


async def test_duplicate_drafts_from_one_item_fold_together(generator, store, index, snapshot, fake_llm):
    first = await generator.resolve(await generator.prepare(_draft()))
    second = await generator.prepare(_draft(title="Resetting a forgotten password"))
    second = await generator.resolve(second, earlier=[first])

    assert second.duplicate_of is first
    assert second.vector is None
    async with store.transaction() as repos:
        created = await generator.persist(first, "account", ["T-1"], snapshot, repos)
        folded = await generator.persist(second, "account", ["T-1"], snapshot, repos)

    assert created.created and folded.merged
    assert folded.article.id == created.article.id
    assert await index.count() == 1
    # dedup for both drafts, article embedding for the first only
    assert fake_llm.calls["embedding"] == 3


@pytest.mark.parametrize("confidence,approval_required,published", [
    (70, False, True),
    (69, False, False),
    (95, True, False),
])
def test_publish_policy(generator, confidence, approval_required, published):
    draft = _draft(confidence=confidence)
    snapshot = make_snapshot(article_approval_required=approval_required)
    assert generator.should_publish(draft, snapshot) is published


# ========== Search, review and feedback ==========

@pytest.fixture
def knowledge_service(store, index, embeddings) -> KnowledgeService:
    return KnowledgeService(store, index, embeddings, retrieval_threshold=0.3, top_k=5)


async def _stored_article(generator, store, payload=PASSWORD_ARTICLE, approval_required=False):
    snapshot = make_snapshot(article_approval_required=approval_required)
    async with store.transaction() as repos:
        outcome = await _persist(generator, _draft(payload), "account", ["T-1"], snapshot, repos)
    return outcome.article


async def test_search_returns_only_published_articles(generator, store, knowledge_service):
    draft = await _stored_article(generator, store, approval_required=True)

    assert await knowledge_service.search("forgot my password, account locked") == []

    await knowledge_service.publish(draft.id)
    results = await knowledge_service.search("forgot my password, account locked")

    assert [a.id for a, _ in results] == [draft.id]
    assert results[0][1] >= 0.3


async def test_search_rejects_blank_query(knowledge_service):
    with pytest.raises(ValidationException):
        await knowledge_service.search("   ")


async def test_hydrate_index_restores_embeddings(generator, store, index, knowledge_service):
    article = await _stored_article(generator, store)
    await index.remove(article.id)

    assert await knowledge_service.hydrate_index() == 1
    hits = await index.search([1.0] + [0.0] * 7, k=1, published_only=True)
    assert hits[0].article_id == article.id


async def test_feedback_updates_effectiveness(generator, store):
    article = await _stored_article(generator, store)
    feedback = FeedbackService(store)

    assert await feedback.record_feedback(article.id, 5) == 1.0
    assert await feedback.record_feedback(article.id, 3, "partly helpful") == 0.8
    assert await feedback.recompute_all() == 1


async def test_feedback_validation(generator, store):
    article = await _stored_article(generator, store)
    feedback = FeedbackService(store)

    with pytest.raises(ValidationException):
        await feedback.record_feedback(article.id, 6)
    with pytest.raises(ResourceNotFoundException):
        await feedback.record_feedback("00000000-0000-0000-0000-000000000000", 4)
    with pytest.raises(ResourceNotFoundException):
        await feedback.recompute_effectiveness("not-a-uuid")


async def test_unknown_article_lookup(knowledge_service):
    with pytest.raises(ResourceNotFoundException):
        await knowledge_service.get_article("not-a-uuid")
