"""Map findings onto discussion threads.

Per fingerprint, a thread moves through:

    (no thread) ──create──▶ ACTIVE ──fingerprint absent──▶ FIXED
                               ▲                              │
                               └───────── re-triggered ───────┘

Threads are matched by the fingerprint in their tag, never by wording, so
running the same plan twice creates nothing new. The ledger thread is kept
apart: it is created once (closed), overwritten in place on later runs and
never auto-resolved.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Protocol

from prwarden_core.formatter import format_finding, format_ledger, format_retriggered
from prwarden_core.models import (
    OPEN_STATUSES,
    RESOLVED_STATUSES,
    Finding,
    PlanResult,
    Side,
    Thread,
    ThreadStatus,
    ThreadTag,
)
from prwarden_core.utils.resilience import Retrier

logger = logging.getLogger(__name__)


class CommentStore(Protocol):
    async def create_thread(
        self,
        content: str,
        tag: ThreadTag,
        file_path: str | None = None,
        line_start: int | None = None,
        line_end: int | None = None,
        side: Side = Side.RIGHT,
        status: ThreadStatus = ThreadStatus.ACTIVE,
    ) -> str: ...

    async def reply_to_thread(self, thread_id: str, content: str) -> None: ...

    async def set_thread_status(self, thread_id: str, status: ThreadStatus) -> None: ...

    async def update_comment(self, thread_id: str, comment_id: str, content: str) -> None: ...

    async def list_threads(self) -> list[Thread]: ...


@dataclass
class ReconcileOutcome:
    created: int = 0
    retriggered: int = 0
    reactivated: int = 0
    resolved: int = 0
    ledger_thread_id: str | None = None
    ledger_created: bool = False


def line_range(finding: Finding) -> tuple[int | None, int | None]:
    """Return (start, end) for anchoring a thread, both set or both None."""
    if not finding.file_path or not finding.anchored or finding.line_start < 1:
        return None, None
    return finding.line_start, max(finding.line_end, finding.line_start)


class ThreadReconciler:
    def __init__(
        self,
        store: CommentStore,
        retrier: Retrier | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.retrier = retrier or Retrier("comment store")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def reconcile(self, result: PlanResult, threads: list[Thread]) -> ReconcileOutcome:
        """Apply create / re-trigger / resolve transitions and upsert the ledger.

        ``threads`` is the thread list read once before planning. Mutations
        are applied one at a time, each through the retrier.
        """
        outcome = ReconcileOutcome()

        by_fingerprint: dict[str, list[Thread]] = defaultdict(list)
        ledger: Thread | None = None
        for thread in threads:
            if not thread.is_bot:
                continue
            if thread.is_ledger:
                if ledger is None:
                    ledger = thread
                else:
                    logger.warning("Ignoring duplicate ledger thread %s (keeping %s)", thread.id, ledger.id)
                continue
            by_fingerprint[thread.fingerprint].append(thread)

        # The k-th finding with a fingerprint pairs with the k-th thread carrying it.
        unmatched = {fp: list(group) for fp, group in by_fingerprint.items()}
        for finding in result.findings:
            candidates = unmatched.get(finding.fingerprint)
            if candidates:
                await self._retrigger(finding, candidates.pop(0), outcome)
            else:
                await self._create(finding, result.iteration, outcome)

        present = {f.fingerprint for f in result.findings}
        for fingerprint, group in by_fingerprint.items():
            if fingerprint in present:
                continue
            for thread in group:
                if thread.status in OPEN_STATUSES:
                    logger.debug("Resolving thread %s: fingerprint %s no longer reported", thread.id, fingerprint[:12])
                    await self.retrier.run(self.store.set_thread_status, thread.id, ThreadStatus.FIXED)
                    outcome.resolved += 1

        await self._upsert_ledger(result, ledger, outcome)

        logger.info(
            "Reconciled iteration %d: %d created, %d re-triggered (%d reactivated), %d resolved",
            result.iteration,
            outcome.created,
            outcome.retriggered,
            outcome.reactivated,
            outcome.resolved,
        )
        return outcome

    async def _retrigger(self, finding: Finding, thread: Thread, outcome: ReconcileOutcome) -> None:
        await self.retrier.run(self.store.reply_to_thread, thread.id, format_retriggered(finding))
        outcome.retriggered += 1
        if thread.status in RESOLVED_STATUSES:
            await self.retrier.run(self.store.set_thread_status, thread.id, ThreadStatus.ACTIVE)
            outcome.reactivated += 1

    async def _create(self, finding: Finding, iteration: int, outcome: ReconcileOutcome) -> None:
        line_start, line_end = line_range(finding)
        tag = ThreadTag(
            fingerprint=finding.fingerprint,
            file_path=finding.file_path,
            line=finding.line,
            finding_id=finding.id,
            iteration=iteration,
        )
        await self.retrier.run(
            self.store.create_thread,
            format_finding(finding),
            tag,
            file_path=finding.file_path or None,
            line_start=line_start,
            line_end=line_end,
            side=Side.LEFT if finding.is_deleted else Side.RIGHT,
            status=ThreadStatus.ACTIVE,
        )
        outcome.created += 1

    async def _upsert_ledger(self, result: PlanResult, ledger: Thread | None, outcome: ReconcileOutcome) -> None:
        content = format_ledger(result.findings, self._clock())
        if ledger is not None and ledger.comments:
            await self.retrier.run(self.store.update_comment, ledger.id, ledger.comments[0].id, content)
            outcome.ledger_thread_id = ledger.id
            return

        tag = ThreadTag(fingerprint="", iteration=result.iteration, status=ThreadStatus.CLOSED, ledger=True)
        outcome.ledger_thread_id = await self.retrier.run(
            self.store.create_thread, content, tag, status=ThreadStatus.CLOSED
        )
        outcome.ledger_created = True
