"""
Learning Queue Service
=======================

Orchestrates the per-ticket pipeline (extract -> record patterns ->
generate / dedup articles -> persist) with retry bookkeeping.

A sweep claims up to `batch_size` items and processes them with at most
`concurrency` in flight. Each item is claimed once per sweep in its own
transaction. Model calls for an item run before any write; its results
are then written in a single transaction together with the completed
state, so a failed item leaves no partial knowledge behind. Failures are
recorded on the item and never abort the sweep. A quota denial defers
the item without using up an attempt, and a denial on a windowed limit
stops further claims for the rest of the sweep.
"""

import asyncio
import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from helpdesk.config import CallKind, LearningStatus, MIN_EXTRACTION_BATCH, MAX_EXTRACTION_BATCH
from helpdesk.core import (
    ApplicationException, QuotaDeniedException, ResourceNotFoundException, ValidationException
)
from helpdesk.governance.domain import AISettingsSnapshot, RateCostGovernor
from helpdesk.infrastructure.vectorstore import ISimilarityIndex
from helpdesk.learning.application.services import (
    ArticleGenerator, IKnowledgeStore, PatternExtractor, PatternLibrary, PreparedArticle,
)
from helpdesk.learning.domain import (
    ExtractedPattern, LearningQueueItem, ResolvedTicket, extraction_batch_size,
    resolution_quality_score, utcnow,
)
from helpdesk.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

SnapshotProvider = Callable[[], AISettingsSnapshot]
Clock = Callable[[], datetime]


@dataclass
class LearningQueueConfig:
    """Sweep sizing and retry parameters."""
    batch_size: int = 10
    concurrency: int = 2
    max_attempts: int = 3
    stale_after: timedelta = timedelta(minutes=30)
    context_days: int = 30
    backfill_days: int = 90

    @classmethod
    def from_settings(cls, settings) -> "LearningQueueConfig":
        return cls(
            batch_size=settings.learning_batch_size,
            concurrency=settings.learning_worker_concurrency,
            max_attempts=settings.learning_max_attempts,
            stale_after=timedelta(minutes=settings.learning_stale_after_minutes),
            context_days=settings.learning_context_days,
            backfill_days=settings.learning_backfill_days,
        )


@dataclass
class SweepReport:
    """Statistics for one sweep."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    settings_version: int = 0
    claimed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    deferred: int = 0
    patterns_found: int = 0
    articles_created: int = 0
    articles_merged: int = 0
    articles_published: int = 0
    halted_reason: Optional[str] = None
    skipped_reason: Optional[str] = None
    cancelled: bool = False

    def to_dict(self) -> dict:
        data = dataclasses.asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


@dataclass
class _ItemResult:
    patterns_found: int = 0
    articles_created: int = 0
    articles_merged: int = 0
    articles_published: int = 0
    created_article_ids: List[str] = field(default_factory=list)


@dataclass
class _LearningPlan:
    """Model output for one item, gathered before the write transaction."""
    patterns: List[Tuple[ExtractedPattern, List[float]]] = field(default_factory=list)
    articles: List[PreparedArticle] = field(default_factory=list)


class LearningQueueService:
    """
    Learning queue: enqueue, historical backfill, sweeps and status.

    Args:
        store: Unit of work over the learning tables
        extractor: Pattern extraction
        patterns: Pattern record dedup
        generator: Article generation and dedup
        index: Similarity index (cleaned up when an item rolls back)
        governor: Rate / cost governor, consulted before each claim
        snapshot_provider: Returns the current settings snapshot
        config: Sweep parameters
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        store: IKnowledgeStore,
        extractor: PatternExtractor,
        patterns: PatternLibrary,
        generator: ArticleGenerator,
        index: ISimilarityIndex,
        governor: RateCostGovernor,
        snapshot_provider: SnapshotProvider,
        config: Optional[LearningQueueConfig] = None,
        clock: Optional[Clock] = None
    ):
        self._store = store
        self._extractor = extractor
        self._patterns = patterns
        self._generator = generator
        self._index = index
        self._governor = governor
        self._snapshot_provider = snapshot_provider
        self._config = config or LearningQueueConfig()
        self._clock = clock or utcnow

        self._sweep_lock = asyncio.Lock()
        self._stop = asyncio.Event()
        self._category_locks: Dict[str, asyncio.Lock] = {}
        self.last_report: Optional[SweepReport] = None

    @property
    def config(self) -> LearningQueueConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._sweep_lock.locked()

    # ========== Enqueue / backfill ==========

    async def enqueue(self, ticket_id: str) -> LearningQueueItem:
        """
        Queue a newly resolved ticket. Re-enqueueing returns the existing item.

        Raises:
            ResourceNotFoundException: Ticket missing or not resolved
            ValidationException: Ticket has no resolution text
        """
        async with self._store.transaction() as repos:
            existing = await repos.queue.get_by_ticket_id(ticket_id)
            if existing is not None:
                return existing

            ticket = await repos.tickets.get_resolved_ticket(ticket_id)
            if ticket is None:
                raise ResourceNotFoundException("ResolvedTicket", ticket_id)
            if not ticket.has_resolution:
                raise ValidationException(
                    "Ticket has no resolution text to learn from", {"ticket_id": ticket_id}
                )

            now = self._clock()
            item = await repos.queue.add(LearningQueueItem(ticket_id=ticket_id, created_at=now, updated_at=now))

        logger.info("Ticket enqueued for learning", extra={"ticket_id": ticket_id})
        return item

    async def seed_historical_tickets(self, days: Optional[int] = None) -> dict:
        """
        Queue resolved tickets from the last `days` days that are not queued yet.

        Idempotent: tickets already present in the queue (in any state) are
        skipped, as are tickets without resolution text.
        """
        days = days or self._config.backfill_days
        if days < 1:
            raise ValidationException("days must be at least 1")

        now = self._clock()
        enqueued = skipped_existing = skipped_invalid = 0

        async with self._store.transaction() as repos:
            tickets = await repos.tickets.get_recent_resolved_tickets(now - timedelta(days=days))
            existing = await repos.queue.existing_ticket_ids([t.id for t in tickets])
            for ticket in tickets:
                if ticket.id in existing:
                    skipped_existing += 1
                    continue
                if not ticket.has_resolution:
                    skipped_invalid += 1
                    continue
                await repos.queue.add(LearningQueueItem(ticket_id=ticket.id, created_at=now, updated_at=now))
                existing.add(ticket.id)
                enqueued += 1

        result = {
            "days": days,
            "scanned": len(tickets),
            "enqueued": enqueued,
            "skipped_existing": skipped_existing,
            "skipped_without_resolution": skipped_invalid,
        }
        logger.info("Historical tickets seeded", extra=result)
        return result

    # ========== Sweep ==========

    def cancel(self) -> bool:
        """Stop the running sweep before its next item. Returns False when idle."""
        if not self.is_running:
            return False
        self._stop.set()
        logger.info("Learning sweep cancellation requested")
        return True

    async def run_sweep(
        self,
        snapshot: Optional[AISettingsSnapshot] = None,
        batch_size: Optional[int] = None
    ) -> SweepReport:
        """
        Claim and process up to `batch_size` items.

        Args:
            snapshot: Settings generation for the whole sweep (current if omitted)
            batch_size: Override for the configured batch size

        Returns:
            SweepReport for this run
        """
        snapshot = snapshot or self._snapshot_provider()
        report = SweepReport(started_at=self._clock(), settings_version=snapshot.version)

        if self._sweep_lock.locked():
            report.skipped_reason = "a sweep is already running"
            report.finished_at = self._clock()
            return report

        async with self._sweep_lock:
            if not snapshot.workflow.auto_learn_enabled:
                report.skipped_reason = "auto-learn disabled"
                report.finished_at = self._clock()
                logger.info("Learning sweep skipped", extra={"reason": report.skipped_reason})
                self.last_report = report
                return report

            self._stop.clear()
            limit = batch_size or self._config.batch_size
            with log_latency(logger, "learning_sweep", batch_size=limit, settings_version=snapshot.version):
                await self._sweep(snapshot, report, limit)

            report.cancelled = self._stop.is_set() and report.halted_reason is None
            report.finished_at = self._clock()
            self.last_report = report

        logger.info("Learning sweep finished", extra=report.to_dict())
        return report

    async def _sweep(self, snapshot: AISettingsSnapshot, report: SweepReport, limit: int) -> None:
        now = self._clock()
        async with self._store.transaction() as repos:
            exhausted = await repos.queue.fail_exhausted_stale(
                now, now - self._config.stale_after, self._config.max_attempts
            )
        if exhausted:
            report.failed += exhausted
            logger.warning("Abandoned items failed at attempt cap", extra={"items": exhausted})

        slots = asyncio.Semaphore(self._config.concurrency)
        tasks: List[asyncio.Task] = []
        # An item that fails or is deferred goes back to pending; it waits for the next sweep
        claimed_ticket_ids: List[str] = []

        while report.claimed < limit and not self._stop.is_set():
            await slots.acquire()
            if self._stop.is_set():
                slots.release()
                break

            # Consulted once a slot is free so earlier items' calls are counted
            decision = self._governor.peek(CallKind.COMPLETION)
            if not decision.allowed and decision.halts_sweep:
                slots.release()
                report.halted_reason = decision.reason
                logger.warning("Learning sweep halted by governor", extra={"reason": decision.reason})
                break

            now = self._clock()
            async with self._store.transaction() as repos:
                item = await repos.queue.claim_next(
                    now, now - self._config.stale_after, self._config.max_attempts,
                    exclude_ticket_ids=claimed_ticket_ids
                )
            if item is None:
                slots.release()
                break

            report.claimed += 1
            claimed_ticket_ids.append(item.ticket_id)
            logger.info(
                "Queue item claimed",
                extra={"ticket_id": item.ticket_id, "attempts": item.attempts}
            )
            tasks.append(asyncio.create_task(self._run_item(item, snapshot, report, slots)))

        for outcome in await asyncio.gather(*tasks, return_exceptions=True):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Queue item bookkeeping failed",
                    extra={"error_type": type(outcome).__name__, "error": str(outcome)}
                )

    async def _run_item(
        self,
        item: LearningQueueItem,
        snapshot: AISettingsSnapshot,
        report: SweepReport,
        slots: asyncio.Semaphore
    ) -> None:
        try:
            result = await self._process_item(item, snapshot)
            report.completed += 1
            report.patterns_found += result.patterns_found
            report.articles_created += result.articles_created
            report.articles_merged += result.articles_merged
            report.articles_published += result.articles_published
        except ValidationException as e:
            await self._record_permanent_failure(item, e.message)
            report.failed += 1
        except QuotaDeniedException as e:
            await self._record_deferral(item, f"quota denied: {e.reason}")
            report.deferred += 1
            if e.halts_sweep:
                report.halted_reason = e.reason
                self._stop.set()
        except ApplicationException as e:
            status = await self._record_failure(item, e.message)
            self._count_failure(report, status)
        except Exception as e:
            logger.exception("Unexpected error processing queue item", extra={"ticket_id": item.ticket_id})
            status = await self._record_failure(item, f"{type(e).__name__}: {e}")
            self._count_failure(report, status)
        finally:
            slots.release()

    @staticmethod
    def _count_failure(report: SweepReport, status: str) -> None:
        if status == LearningStatus.FAILED:
            report.failed += 1
        else:
            report.retried += 1

    async def _record_failure(self, item: LearningQueueItem, error: str) -> str:
        now = self._clock()
        status = item.fail(error, self._config.max_attempts, now)
        async with self._store.transaction() as repos:
            await repos.queue.save(item)
        logger.warning(
            "Queue item failed",
            extra={"ticket_id": item.ticket_id, "attempts": item.attempts, "status": status, "error": error}
        )
        return status

    async def _record_deferral(self, item: LearningQueueItem, reason: str) -> None:
        item.defer(reason, self._clock())
        async with self._store.transaction() as repos:
            await repos.queue.save(item)
        logger.info(
            "Queue item deferred",
            extra={"ticket_id": item.ticket_id, "deferrals": item.deferrals, "reason": reason}
        )

    async def _record_permanent_failure(self, item: LearningQueueItem, error: str) -> None:
        item.fail_permanently(error, self._config.max_attempts, self._clock())
        async with self._store.transaction() as repos:
            await repos.queue.save(item)
        logger.warning(
            "Queue item rejected",
            extra={"ticket_id": item.ticket_id, "attempts": item.attempts, "error": error}
        )

    def _category_lock(self, category: str) -> asyncio.Lock:
        lock = self._category_locks.get(category)
        if lock is None:
            lock = self._category_locks[category] = asyncio.Lock()
        return lock

    async def _load_batch(self, item: LearningQueueItem) -> List[ResolvedTicket]:
        """The item's ticket first, then recent resolved tickets of its category."""
        since = self._clock() - timedelta(days=self._config.context_days)
        async with self._store.transaction() as repos:
            ticket = await repos.tickets.get_resolved_ticket(item.ticket_id)
            if ticket is None:
                raise ValidationException("Ticket not found or not resolved", {"ticket_id": item.ticket_id})
            if not ticket.has_resolution:
                raise ValidationException("Ticket has no resolution text", {"ticket_id": item.ticket_id})
            recent = await repos.tickets.get_recent_resolved_tickets(
                since, category=ticket.category, exclude_ids=[ticket.id], limit=MAX_EXTRACTION_BATCH - 1
            )
        return [ticket] + [t for t in recent if t.has_resolution]

    async def _process_item(self, item: LearningQueueItem, snapshot: AISettingsSnapshot) -> _ItemResult:
        """
        Learn from one claimed item.

        Model calls run first with no transaction open. The writes (patterns,
        articles, completed state) then happen in one transaction under the
        category lock.
        """
        candidates = await self._load_batch(item)
        ticket = candidates[0]
        size = extraction_batch_size(snapshot.rate_policy.effective_max_tokens, candidates)
        batch = candidates[:size]

        if len(batch) >= MIN_EXTRACTION_BATCH:
            plan = await self._plan_from_batch(ticket, batch, snapshot)
        else:
            if len(candidates) >= MIN_EXTRACTION_BATCH:
                logger.info(
                    "Extraction batch exceeds request token cap, learning from the ticket alone",
                    extra={"ticket_id": ticket.id, "candidates": len(candidates), "fits": size,
                           "max_tokens_per_request": snapshot.rate_policy.effective_max_tokens}
                )
            plan = await self._plan_from_ticket(ticket, snapshot)

        result = _ItemResult(patterns_found=len(plan.patterns))
        async with self._category_lock(ticket.category):
            resolved: List[PreparedArticle] = []
            for prepared in plan.articles:
                resolved.append(await self._generator.resolve(prepared, earlier=resolved))

            try:
                async with self._store.transaction() as repos:
                    now = self._clock()
                    for extracted, vector in plan.patterns:
                        await self._patterns.record(extracted, vector, ticket.category, ticket.id, repos, now)
                    for prepared in resolved:
                        outcome = await self._generator.persist(
                            prepared, ticket.category, [ticket.id], snapshot, repos, now
                        )
                        self._tally(outcome, result)

                    completed = dataclasses.replace(item)
                    completed.complete(self._clock())
                    await repos.queue.save(completed)
            except BaseException:
                for article_id in result.created_article_ids:
                    await self._index.remove(article_id)
                raise

        item.status, item.processed_at, item.last_error = completed.status, completed.processed_at, None
        logger.info(
            "Queue item completed",
            extra={
                "ticket_id": item.ticket_id,
                "attempts": item.attempts,
                "batch_size": len(batch),
                "patterns": result.patterns_found,
                "articles_created": result.articles_created,
                "articles_merged": result.articles_merged,
            }
        )
        return result

    async def _plan_from_batch(
        self, ticket: ResolvedTicket, batch: List[ResolvedTicket], snapshot: AISettingsSnapshot
    ) -> _LearningPlan:
        plan = _LearningPlan()
        patterns = await self._extractor.extract(batch, snapshot)
        for extracted in patterns:
            plan.patterns.append((extracted, await self._patterns.embed(extracted)))

        for extracted in patterns:
            if not extracted.is_promotable:
                logger.info(
                    "Pattern below promotion gate",
                    extra={"problem_type": extracted.problem_type, "frequency": extracted.frequency,
                           "success_rate": extracted.success_rate}
                )
                continue
            draft = await self._generator.draft_from_pattern(extracted, ticket.category, snapshot)
            plan.articles.append(await self._generator.prepare(draft))
        return plan

    async def _plan_from_ticket(self, ticket: ResolvedTicket, snapshot: AISettingsSnapshot) -> _LearningPlan:
        plan = _LearningPlan()
        score = resolution_quality_score(ticket)
        if score < snapshot.workflow.min_resolution_score:
            logger.info(
                "Resolution below quality gate, no article",
                extra={"ticket_id": ticket.id, "quality_score": score,
                       "min_resolution_score": snapshot.workflow.min_resolution_score}
            )
            return plan
        draft = await self._generator.draft_from_ticket(ticket, snapshot)
        plan.articles.append(await self._generator.prepare(draft))
        return plan


    @staticmethod
    def _tally(outcome, result: _ItemResult) -> None:
        if outcome.merged:
            result.articles_merged += 1
            return
        result.articles_created += 1
        result.created_article_ids.append(outcome.article.id)
        if outcome.article.is_published:
            result.articles_published += 1

    # ========== Status ==========

    async def status(self, recent_errors: int = 10) -> dict:
        """Queue counts, most recent errors and the last sweep report."""
        now = self._clock()
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        async with self._store.transaction() as repos:
            counts = await repos.queue.status_counts(today_start)
            failures = await repos.queue.recent_failures(recent_errors)
        return {
            **counts,
            "running": self.is_running,
            "recent_errors": [
                {
                    "ticket_id": f.ticket_id,
                    "status": f.status,
                    "attempts": f.attempts,
                    "last_error": f.last_error,
                    "updated_at": f.updated_at.isoformat(),
                }
                for f in failures
            ],
            "last_sweep": self.last_report.to_dict() if self.last_report else None,
        }
