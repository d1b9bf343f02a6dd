"""End-to-end: resolved tickets become knowledge, and new tickets are scored against it."""

import pytest

from helpdesk.config import CallKind
from helpdesk.core import ProviderException, ValidationException
from helpdesk.governance.domain import RateLimitPolicy
from helpdesk.triage.application import TriageService
from helpdesk.triage.domain import TicketInput

from tests.conftest import make_snapshot


PASSWORD_TRANSCRIPT = [
    "User reports the password expired over the weekend",
    "Verified identity with the employee id",
    "Reset the password from the admin portal and unlocked the account",
    "User signed in successfully",
]


@pytest.fixture
def triage(embeddings, index, store):
    def _build(snapshot):
        return TriageService(embeddings, index, store, snapshot_provider=lambda: snapshot, retrieval_threshold=0.3)
    return _build


async def test_password_tickets_become_one_article_used_for_triage(
    build_queue, add_ticket, store, triage
):
    for i in range(1, 6):
        await add_ticket(
            f"PW-{i}",
            "Password reset needed",
            "Locked out of my account after the password expired",
            comments=PASSWORD_TRANSCRIPT,
            resolved_days_ago=i,
        )
    snapshot = make_snapshot(article_approval_required=False)
    queue = build_queue(snapshot)

    seeded = await queue.seed_historical_tickets(days=90)
    report = await queue.run_sweep()

    assert seeded["enqueued"] == 5
    assert report.completed == 5
    assert report.articles_created == 1
    assert report.articles_merged == 4
    assert report.articles_published == 1

    async with store.transaction() as repos:
        article_ids = await repos.articles.list_ids()
        article = await repos.articles.get(article_ids[0])
        patterns = await repos.patterns.list_by_category("account")

    assert len(article_ids) == 1
    assert article.is_published
    assert sorted(article.source_ticket_ids) == [f"PW-{i}" for i in range(1, 6)]
    assert len(patterns) == 1
    assert patterns[0].frequency == 5
    assert (await queue.status())["completed"] == 5

    score = await triage(snapshot).score_ticket(TicketInput(
        title="Can't log in, invalid credentials",
        description="Since this morning the portal rejects my password when I sign in.",
    ))

    assert score.knowledge_refs[0].article_id == article.id
    assert score.knowledge_refs[0].similarity >= 0.3
    assert score.confidence >= 0.7
    assert score.should_auto_respond
    assert not score.requires_escalation


async def test_triage_degrades_without_knowledge_when_quota_denied(triage, governor, fake_llm):
    governor.configure(RateLimitPolicy.from_preset("Generous").with_limits(max_requests_per_minute=1))
    governor.acquire(CallKind.COMPLETION, 10)
    snapshot = make_snapshot(confidence_threshold=0.5)

    score = await triage(snapshot).score_ticket(TicketInput(
        title="Outlook error 0x800CCC0E after update",
        description="Since the 10.4 update Outlook shows 'Cannot connect to server' when sending mail.",
    ))

    assert not score.knowledge_available
    assert score.knowledge_refs == []
    assert score.confidence <= 0.4
    assert not score.should_auto_respond
    assert fake_llm.calls["embedding"] == 0


async def test_triage_degrades_when_provider_down(triage, fake_llm):
    async def failing_embedding(text):
        raise ProviderException("upstream 503")
    fake_llm.generate_embedding = failing_embedding

    score = await triage(make_snapshot()).score_ticket(TicketInput(title="VPN keeps dropping"))

    assert not score.knowledge_available
    assert score.confidence <= 0.4


async def test_triage_escalates_security_incident(triage):
    snapshot = make_snapshot(escalation_team_id="security-team")

    score = await triage(snapshot).score_ticket(TicketInput(
        title="Ransomware on the file server",
        description="Suspicious encrypted files on the server and the backup; all users affected, data loss.",
        priority="urgent",
    ))

    assert score.complexity >= 70
    assert score.requires_escalation
    assert score.suggested_team_id == "security-team"
    assert not score.should_auto_respond


async def test_triage_requires_title(triage):
    with pytest.raises(ValidationException):
        await triage(make_snapshot()).score_ticket(TicketInput(title="  "))
