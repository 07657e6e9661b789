"""GitHub-backed comment store.

GitHub has no native thread status or metadata, so both live in the hidden
tag on a thread's root comment (see ``prwarden_core.formatter.render_tag``):

- a thread anchored to a file is a pull-request review comment and its
  replies (``in_reply_to_id``); thread id ``review:{root id}``
- a thread with no file (metadata findings, the ledger) is an issue comment;
  replies are issue comments carrying a hidden reply-to marker; thread id
  ``issue:{root id}``

A line GitHub will not anchor to (422) falls back to a file-level comment,
and a file GitHub will not anchor to falls back to an issue comment.

Threads without a tag (human comments) are listed too, so their text can be
shown to the model, but the reconciler never touches them.
"""

from __future__ import annotations

import itertools
import logging
import re
from dataclasses import replace

from github import GithubException
from rich.console import Console

from prwarden_core.formatter import parse_tag, strip_tag, with_tag
from prwarden_core.gh.pull_request import call_github
from prwarden_core.models import Side, Thread, ThreadComment, ThreadStatus, ThreadTag

console = Console()
logger = logging.getLogger(__name__)

REVIEW = "review"
ISSUE = "issue"

# Status GitHub answers with for a line or path that is not part of the diff.
UNPROCESSABLE = 422

_REPLY_TO_RE = re.compile(r"\n*<!-- prwarden-reply-to: (issue:\d+) -->")


def _split_id(thread_id: str) -> tuple[str, int]:
    kind, _, raw = thread_id.partition(":")
    if kind not in (REVIEW, ISSUE) or not raw.isdigit():
        raise ValueError(f"Not a GitHub thread id: {thread_id!r}")
    return kind, int(raw)


def _author(comment) -> str:
    return comment.user.login if comment.user is not None else ""


class GitHubCommentStore:
    def __init__(self, repo, pr):
        self.repo = repo
        self.pr = pr
        self._commit = None

    async def list_threads(self) -> list[Thread]:
        review_comments = await call_github(lambda: list(self.pr.get_review_comments()))
        issue_comments = await call_github(lambda: list(self.pr.get_issue_comments()))
        return self._review_threads(review_comments) + self._issue_threads(issue_comments)

    async def create_thread(
        self,
        content: str,
        tag: ThreadTag,
        file_path: str | None = None,
        line_start: int | None = None,
        line_end: int | None = None,
        side: Side = Side.RIGHT,
        status: ThreadStatus = ThreadStatus.ACTIVE,
    ) -> str:
        body = with_tag(content, replace(tag, status=status))
        if not file_path:
            comment = await call_github(self.pr.create_issue_comment, body)
            return f"{ISSUE}:{comment.id}"

        commit = await self._head_commit()
        if line_end is not None:
            kwargs = {"line": line_end, "side": side.value}
            if line_start is not None and line_start != line_end:
                kwargs.update(start_line=line_start, start_side=side.value)
            try:
                comment = await call_github(self.pr.create_review_comment, body, commit, file_path, **kwargs)
                return f"{REVIEW}:{comment.id}"
            except GithubException as e:
                if e.status != UNPROCESSABLE:
                    raise
                logger.warning(
                    "GitHub rejected %s lines %s-%s (%s); posting at file level",
                    file_path,
                    line_start,
                    line_end,
                    e.data,
                )

        try:
            comment = await call_github(self.pr.create_review_comment, body, commit, file_path, subject_type="file")
        except GithubException as e:
            if e.status != UNPROCESSABLE:
                raise
            logger.warning(
                "GitHub rejected a file comment on %s (%s); posting on the pull request", file_path, e.data
            )
            comment = await call_github(self.pr.create_issue_comment, body)
            return f"{ISSUE}:{comment.id}"
        return f"{REVIEW}:{comment.id}"

    async def reply_to_thread(self, thread_id: str, content: str) -> None:
        kind, root_id = _split_id(thread_id)
        if kind == REVIEW:
            await call_github(self.pr.create_review_comment_reply, root_id, content)
        else:
            body = f"{content.rstrip()}\n\n<!-- prwarden-reply-to: {thread_id} -->"
            await call_github(self.pr.create_issue_comment, body)

    async def set_thread_status(self, thread_id: str, status: ThreadStatus) -> None:
        kind, root_id = _split_id(thread_id)
        root = await self._get_comment(kind, root_id)
        tag = parse_tag(root.body)
        if tag is None:
            raise ValueError(f"Thread {thread_id} was not created by prwarden; refusing to change its status")
        await call_github(root.edit, with_tag(root.body, replace(tag, status=status)))

    async def update_comment(self, thread_id: str, comment_id: str, content: str) -> None:
        kind, _ = _split_id(thread_id)
        comment = await self._get_comment(kind, int(comment_id))
        tag = parse_tag(comment.body)
        await call_github(comment.edit, with_tag(content, tag) if tag is not None else content)

    async def _get_comment(self, kind: str, comment_id: int):
        if kind == REVIEW:
            return await call_github(self.pr.get_review_comment, comment_id)
        return await call_github(self.pr.get_issue_comment, comment_id)

    async def _head_commit(self):
        if self._commit is None:
            self._commit = await call_github(self.repo.get_commit, self.pr.head.sha)
        return self._commit

    @staticmethod
    def _review_threads(comments: list) -> list[Thread]:
        roots: dict[int, Thread] = {}
        threads: list[Thread] = []
        for c in comments:
            parent = getattr(c, "in_reply_to_id", None)
            if parent is not None and parent in roots:
                roots[parent].comments.append(ThreadComment(str(c.id), strip_tag(c.body), _author(c)))
                continue
            tag = parse_tag(c.body)
            # c.line is None once the line is outdated (e.g. after a force-push).
            line = c.line if c.line is not None else getattr(c, "original_line", None)
            thread = Thread(
                id=f"{REVIEW}:{c.id}",
                status=tag.status if tag else ThreadStatus.ACTIVE,
                comments=[ThreadComment(str(c.id), strip_tag(c.body), _author(c))],
                tag=tag,
                file_path=c.path,
                line=line,
            )
            roots[c.id] = thread
            threads.append(thread)
        return threads

    @staticmethod
    def _issue_threads(comments: list) -> list[Thread]:
        threads: dict[str, Thread] = {}
        replies = []
        for c in comments:
            match = _REPLY_TO_RE.search(c.body or "")
            if match:
                replies.append((match.group(1), c))
                continue
            tag = parse_tag(c.body)
            thread_id = f"{ISSUE}:{c.id}"
            threads[thread_id] = Thread(
                id=thread_id,
                status=tag.status if tag else ThreadStatus.ACTIVE,
                comments=[ThreadComment(str(c.id), strip_tag(c.body), _author(c))],
                tag=tag,
            )
        for thread_id, c in replies:
            if thread_id in threads:
                body = _REPLY_TO_RE.sub("", c.body)
                threads[thread_id].comments.append(ThreadComment(str(c.id), body, _author(c)))
            else:
                logger.debug("Dropping reply %s to unknown thread %s", c.id, thread_id)
        return list(threads.values())


class ShadowCommentStore:
    """Reads from a real store; prints every mutation instead of posting it."""

    _status_color = {
        ThreadStatus.ACTIVE: "yellow",
        ThreadStatus.PENDING: "yellow",
        ThreadStatus.FIXED: "green",
        ThreadStatus.WONT_FIX: "dim",
        ThreadStatus.CLOSED: "dim",
    }

    def __init__(self, inner, out: Console | None = None):
        self.inner = inner
        self.console = out or console
        self._ids = itertools.count(1)

    async def list_threads(self) -> list[Thread]:
        return await self.inner.list_threads()

    async def create_thread(
        self,
        content: str,
        tag: ThreadTag,
        file_path: str | None = None,
        line_start: int | None = None,
        line_end: int | None = None,
        side: Side = Side.RIGHT,
        status: ThreadStatus = ThreadStatus.ACTIVE,
    ) -> str:
        thread_id = f"shadow:{next(self._ids)}"
        if tag.ledger:
            self.console.print(f"[dim]Shadow: would create the ledger thread ({status.value})[/dim]")
            return thread_id
        where = file_path or "(pull request)"
        if line_start is not None:
            where += f"  lines {line_start}-{line_end}" if line_start != line_end else f"  line {line_start}"
        self.console.print(f"[bold cyan]NEW[/bold cyan] {where}  [dim]{side.value}[/dim]")
        self.console.print(f"  {content.strip()}\n")
        return thread_id

    async def reply_to_thread(self, thread_id: str, content: str) -> None:
        first_line = content.strip().splitlines()[0] if content.strip() else ""
        self.console.print(f"[bold]REPLY[/bold] {thread_id}: {first_line}")

    async def set_thread_status(self, thread_id: str, status: ThreadStatus) -> None:
        color = self._status_color.get(status, "white")
        self.console.print(f"[bold]STATUS[/bold] {thread_id} → [{color}]{status.value}[/{color}]")

    async def update_comment(self, thread_id: str, comment_id: str, content: str) -> None:
        self.console.print(f"[dim]Shadow: would update comment {comment_id} on {thread_id}[/dim]")
