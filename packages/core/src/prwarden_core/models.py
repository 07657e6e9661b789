"""Data model shared by the planner, the reconciler and the platform adapters.

Kept free of any SDK imports so the engine can be exercised with plain
in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Severity(str, Enum):
    INFO = "Info"
    WARN = "Warn"
    ERROR = "Error"


class Category(str, Enum):
    SECURITY = "Security"
    CORRECTNESS = "Correctness"
    STYLE = "Style"
    PERFORMANCE = "Performance"
    DOCS = "Docs"
    TESTS = "Tests"


class ThreadStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    FIXED = "fixed"
    WONT_FIX = "wontFix"
    CLOSED = "closed"


# Statuses a re-triggered finding pulls back to ACTIVE.
RESOLVED_STATUSES = frozenset({ThreadStatus.FIXED, ThreadStatus.CLOSED})

# Statuses the reconciler is allowed to auto-resolve.
OPEN_STATUSES = frozenset({ThreadStatus.ACTIVE, ThreadStatus.PENDING})


class Side(str, Enum):
    LEFT = "LEFT"  # original content
    RIGHT = "RIGHT"  # new content


@dataclass(frozen=True)
class FileDiff:
    """One changed file of a revision, produced once per iteration.

    ``left_lines`` and ``right_lines`` hold the line numbers a review comment
    may be anchored to on each side; None means not known, so any line is
    accepted.
    """

    path: str
    text: str
    content_hash: str
    is_binary: bool = False
    is_deleted: bool = False
    left_lines: frozenset[int] | None = None
    right_lines: frozenset[int] | None = None

    def covers(self, line_start: int, line_end: int, side: Side = Side.RIGHT) -> bool:
        lines = self.left_lines if side == Side.LEFT else self.right_lines
        if lines is None:
            return True
        return all(n in lines for n in range(line_start, max(line_end, line_start) + 1))


@dataclass(frozen=True)
class DiffChunk:
    file_path: str
    content: str
    index: int
    total_chunks: int
    start_line: int
    context: str

    @property
    def display_name(self) -> str:
        if self.total_chunks > 1:
            return f"{self.file_path} (chunk {self.index + 1}/{self.total_chunks}: {self.context})"
        return self.file_path


@dataclass(frozen=True)
class Finding:
    """A reviewed issue with a stable identity.

    ``fingerprint`` depends only on the file path and diff content hash (or on
    the PR description for metadata findings), never on the model's wording.
    """

    id: str
    title: str
    severity: Severity
    category: Category
    file_path: str
    line_start: int
    line_start_offset: int
    line_end: int
    line_end_offset: int
    rationale: str
    recommendation: str
    fingerprint: str
    fix_example: str | None = None
    is_deleted: bool = False
    # False when the line range lies outside the lines the diff can anchor to.
    anchored: bool = True

    @property
    def line(self) -> int:
        return self.line_start


@dataclass(frozen=True)
class ThreadTag:
    """Metadata persisted on a platform thread so later runs can recognise it."""

    fingerprint: str
    file_path: str = ""
    line: int = 0
    finding_id: str = ""
    iteration: int = 0
    status: ThreadStatus = ThreadStatus.ACTIVE
    ledger: bool = False


@dataclass
class ThreadComment:
    id: str
    content: str
    author: str = ""


@dataclass
class Thread:
    """A discussion thread as read back from the comment store.

    ``tag`` is None for threads not created by prwarden (e.g. human reviews).
    """

    id: str
    status: ThreadStatus
    comments: list[ThreadComment] = field(default_factory=list)
    tag: ThreadTag | None = None
    file_path: str | None = None
    line: int | None = None

    @property
    def is_bot(self) -> bool:
        return self.tag is not None

    @property
    def is_ledger(self) -> bool:
        return self.tag is not None and self.tag.ledger

    @property
    def fingerprint(self) -> str | None:
        if self.tag is None or self.tag.ledger:
            return None
        return self.tag.fingerprint


@dataclass(frozen=True)
class ExistingComment:
    """A comment already present on a file, passed to the model to avoid repeats."""

    author: str
    content: str
    file_path: str
    line: int | None
    thread_status: str


@dataclass(frozen=True)
class PullRequestMetadata:
    title: str
    description: str
    commit_messages: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ReviewContext:
    repo: str
    number: int
    iteration: int
    base_sha: str
    head_sha: str
    metadata: PullRequestMetadata
    is_draft: bool = False


@dataclass(frozen=True)
class FileFailure:
    path: str
    kind: str  # "malformed" | "error"
    message: str


@dataclass
class PlanResult:
    iteration: int
    findings: list[Finding]
    error_count: int
    warning_count: int
    warn_budget: int
    failures: list[FileFailure] = field(default_factory=list)
    reviewed_files: list[str] = field(default_factory=list)
    skipped_files: list[str] = field(default_factory=list)

    @property
    def approve(self) -> bool:
        return self.error_count == 0 and self.warning_count <= self.warn_budget
