"""Tests for ThreadReconciler against an in-memory comment store."""

import asyncio
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from prwarden_core.errors import TransientError
from prwarden_core.formatter import LEDGER_MARKER, RETRIGGERED_PREFIX, parse_ledger
from prwarden_core.models import (
    Category,
    Finding,
    PlanResult,
    Severity,
    Side,
    Thread,
    ThreadComment,
    ThreadStatus,
    ThreadTag,
)
from prwarden_core.reconciler import ThreadReconciler, line_range
from prwarden_core.utils.resilience import Retrier

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryStore:
    """Comment store double that records every mutation."""

    def __init__(self, fail_times=0):
        self.threads: dict[str, Thread] = {}
        self.created = []
        self.calls = []
        self._next = 1
        self._fail_times = fail_times

    def _maybe_fail(self):
        if self._fail_times:
            self._fail_times -= 1
            raise TransientError("503")

    def _comment_id(self):
        self._next += 1
        return str(self._next)

    async def list_threads(self):
        return [replace(t, comments=list(t.comments)) for t in self.threads.values()]

    async def create_thread(
        self, content, tag, file_path=None, line_start=None, line_end=None, side=Side.RIGHT, status=ThreadStatus.ACTIVE
    ):
        self._maybe_fail()
        thread_id = f"t{self._next}"
        self.threads[thread_id] = Thread(
            id=thread_id,
            status=status,
            comments=[ThreadComment(self._comment_id(), content, "prwarden")],
            tag=replace(tag, status=status),
            file_path=file_path,
            line=line_end,
        )
        self.created.append(
            {"content": content, "tag": tag, "file_path": file_path, "start": line_start, "end": line_end, "side": side}
        )
        self.calls.append(("create", thread_id))
        return thread_id

    async def reply_to_thread(self, thread_id, content):
        self._maybe_fail()
        self.threads[thread_id].comments.append(ThreadComment(self._comment_id(), content, "prwarden"))
        self.calls.append(("reply", thread_id))

    async def set_thread_status(self, thread_id, status):
        self._maybe_fail()
        self.threads[thread_id].status = status
        self.calls.append(("status", thread_id, status))

    async def update_comment(self, thread_id, comment_id, content):
        self._maybe_fail()
        thread = self.threads[thread_id]
        thread.comments = [
            ThreadComment(c.id, content, c.author) if c.id == comment_id else c for c in thread.comments
        ]
        self.calls.append(("update", thread_id))


def make_finding(fingerprint="f" * 64, path="src/a.py", n=1, **overrides):
    values = dict(
        id=f"{fingerprint[:12]}-{n}",
        title="Issue",
        severity=Severity.WARN,
        category=Category.CORRECTNESS,
        file_path=path,
        line_start=10,
        line_start_offset=0,
        line_end=12,
        line_end_offset=4,
        rationale="because",
        recommendation="fix it",
        fingerprint=fingerprint,
    )
    values.update(overrides)
    return Finding(**values)


def make_result(findings, iteration=1):
    errors = sum(1 for f in findings if f.severity == Severity.ERROR)
    warnings = sum(1 for f in findings if f.severity == Severity.WARN)
    return PlanResult(iteration, findings, errors, warnings, warn_budget=3)


async def _no_sleep(_delay):
    return None


def reconcile(store, findings, iteration=1):
    reconciler = ThreadReconciler(store, Retrier("store", sleep=_no_sleep), clock=lambda: NOW)

    async def _run():
        threads = await store.list_threads()
        return await reconciler.reconcile(make_result(findings, iteration), threads)

    return asyncio.run(_run())


def finding_threads(store):
    return [t for t in store.threads.values() if not t.is_ledger]


def ledger_threads(store):
    return [t for t in store.threads.values() if t.is_ledger]


class TestCreate:
    def test_new_finding_creates_thread(self):
        store = InMemoryStore()
        outcome = reconcile(store, [make_finding()])
        assert outcome.created == 1
        [thread] = finding_threads(store)
        assert thread.status == ThreadStatus.ACTIVE
        assert thread.tag.fingerprint == "f" * 64
        assert thread.tag.finding_id == "ffffffffffff-1"
        assert thread.tag.iteration == 1
        assert thread.comments[0].content.startswith("🤖 AI Review — Correctness/Warn")

    def test_thread_anchored_to_line_range_on_right_side(self):
        store = InMemoryStore()
        reconcile(store, [make_finding()])
        created = store.created[0]
        assert (created["file_path"], created["start"], created["end"]) == ("src/a.py", 10, 12)
        assert created["side"] == Side.RIGHT

    def test_deleted_file_finding_uses_left_side(self):
        store = InMemoryStore()
        reconcile(store, [make_finding(is_deleted=True)])
        assert store.created[0]["side"] == Side.LEFT

    def test_metadata_finding_is_unanchored(self):
        store = InMemoryStore()
        reconcile(store, [make_finding(path="")])
        created = store.created[0]
        assert (created["file_path"], created["start"], created["end"]) == (None, None, None)

    def test_unanchored_finding_posted_at_file_level(self):
        store = InMemoryStore()
        reconcile(store, [make_finding(line_start=500, line_end=500, anchored=False)])
        created = store.created[0]
        assert (created["file_path"], created["start"], created["end"]) == ("src/a.py", None, None)

    def test_one_thread_per_finding_with_shared_fingerprint(self):
        store = InMemoryStore()
        outcome = reconcile(store, [make_finding(n=1), make_finding(n=2)])
        assert outcome.created == 2
        assert len(finding_threads(store)) == 2


class TestLineRange:
    def test_start_and_end_supplied_together(self):
        assert line_range(make_finding(line_start=3, line_end=7)) == (3, 7)

    def test_end_before_start_clamped(self):
        assert line_range(make_finding(line_start=8, line_end=2)) == (8, 8)

    def test_invalid_start_omits_both(self):
        assert line_range(make_finding(line_start=0, line_end=5)) == (None, None)

    def test_no_file_omits_both(self):
        assert line_range(make_finding(path="")) == (None, None)

    def test_unanchored_omits_both(self):
        assert line_range(make_finding(line_start=500, line_end=500, anchored=False)) == (None, None)


class TestIdempotence:
    def test_second_run_creates_nothing(self):
        store = InMemoryStore()
        findings = [make_finding(), make_finding(fingerprint="e" * 64, path="src/b.py")]
        reconcile(store, findings)
        threads_after_first = len(store.threads)

        outcome = reconcile(store, findings)

        assert outcome.created == 0
        assert outcome.retriggered == 2
        assert outcome.resolved == 0
        assert len(store.threads) == threads_after_first

    def test_repeated_runs_with_shared_fingerprint_stay_stable(self):
        store = InMemoryStore()
        findings = [make_finding(n=1), make_finding(n=2)]
        for _ in range(3):
            reconcile(store, findings)
        assert len(finding_threads(store)) == 2

    def test_retrigger_appends_rendering(self):
        store = InMemoryStore()
        reconcile(store, [make_finding()])
        reconcile(store, [make_finding()])
        [thread] = finding_threads(store)
        assert len(thread.comments) == 2
        assert thread.comments[1].content.startswith(RETRIGGERED_PREFIX)

    def test_active_thread_status_untouched_on_retrigger(self):
        store = InMemoryStore()
        reconcile(store, [make_finding()])
        store.calls.clear()
        outcome = reconcile(store, [make_finding()])
        assert outcome.reactivated == 0
        assert not [c for c in store.calls if c[0] == "status"]


class TestResolveAndReactivate:
    def test_absent_fingerprint_resolved(self):
        store = InMemoryStore()
        reconcile(store, [make_finding()])
        outcome = reconcile(store, [])
        assert outcome.resolved == 1
        assert finding_threads(store)[0].status == ThreadStatus.FIXED

    def test_already_fixed_thread_not_resolved_again(self):
        store = InMemoryStore()
        reconcile(store, [make_finding()])
        reconcile(store, [])
        store.calls.clear()
        outcome = reconcile(store, [])
        assert outcome.resolved == 0
        assert not [c for c in store.calls if c[0] == "status"]

    def test_wont_fix_thread_left_alone(self):
        store = InMemoryStore()
        reconcile(store, [make_finding()])
        finding_threads(store)[0].status = ThreadStatus.WONT_FIX
        reconcile(store, [])
        assert finding_threads(store)[0].status == ThreadStatus.WONT_FIX

    @pytest.mark.parametrize("status", [ThreadStatus.CLOSED, ThreadStatus.FIXED])
    def test_resolved_thread_reactivated(self, status):
        store = InMemoryStore()
        reconcile(store, [make_finding()])
        finding_threads(store)[0].status = status

        outcome = reconcile(store, [make_finding()])

        [thread] = finding_threads(store)
        assert thread.status == ThreadStatus.ACTIVE
        assert thread.comments[-1].content.startswith(RETRIGGERED_PREFIX)
        assert outcome.reactivated == 1
        assert outcome.created == 0

    def test_human_threads_never_touched(self):
        store = InMemoryStore()
        store.threads["h1"] = Thread(id="h1", status=ThreadStatus.ACTIVE, comments=[ThreadComment("1", "LGTM", "bob")])
        reconcile(store, [])
        assert store.threads["h1"].status == ThreadStatus.ACTIVE
        assert len(store.threads["h1"].comments) == 1

    def test_other_fingerprints_unaffected(self):
        store = InMemoryStore()
        a = make_finding(fingerprint="a" * 64)
        b = make_finding(fingerprint="b" * 64, path="src/b.py")
        reconcile(store, [a, b])
        outcome = reconcile(store, [a])
        statuses = {t.tag.fingerprint: t.status for t in finding_threads(store)}
        assert statuses == {"a" * 64: ThreadStatus.ACTIVE, "b" * 64: ThreadStatus.FIXED}
        assert outcome.resolved == 1


class TestLedger:
    def test_created_closed_on_first_run(self):
        store = InMemoryStore()
        outcome = reconcile(store, [make_finding()])
        [ledger] = ledger_threads(store)
        assert ledger.status == ThreadStatus.CLOSED
        assert outcome.ledger_created is True
        assert outcome.ledger_thread_id == ledger.id
        assert ledger.comments[0].content.startswith(LEDGER_MARKER)

    def test_lists_current_findings(self):
        store = InMemoryStore()
        reconcile(store, [make_finding(severity=Severity.ERROR)])
        state = parse_ledger(ledger_threads(store)[0].comments[0].content)
        assert state["fingerprints"] == [
            {"fingerprint": "f" * 64, "filePath": "src/a.py", "line": 10, "severity": "Error"}
        ]
        assert state["updatedAt"] == NOW.isoformat()

    def test_overwritten_in_place(self):
        store = InMemoryStore()
        reconcile(store, [make_finding()])
        outcome = reconcile(store, [])
        [ledger] = ledger_threads(store)
        assert len(ledger.comments) == 1
        assert parse_ledger(ledger.comments[0].content)["fingerprints"] == []
        assert outcome.ledger_created is False

    def test_never_auto_resolved(self):
        store = InMemoryStore()
        reconcile(store, [make_finding()])
        ledger_threads(store)[0].status = ThreadStatus.ACTIVE
        reconcile(store, [])
        assert ledger_threads(store)[0].status == ThreadStatus.ACTIVE

    def test_exactly_one_ledger_across_runs(self):
        store = InMemoryStore()
        for findings in ([make_finding()], [], [make_finding()]):
            reconcile(store, findings)
        assert len(ledger_threads(store)) == 1


class TestRetries:
    def test_transient_store_failures_retried(self):
        store = InMemoryStore(fail_times=2)
        outcome = reconcile(store, [make_finding()])
        assert outcome.created == 1
        assert len(finding_threads(store)) == 1

    def test_persistent_failure_propagates(self):
        store = InMemoryStore(fail_times=100)
        with pytest.raises(TransientError):
            reconcile(store, [make_finding()])
