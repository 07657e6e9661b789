"""Fan out per-file reviews, fingerprint the results and compute the verdict.

Planning performs no comment-store writes. Every file is reviewed in its own
asyncio task; a failing file contributes zero findings and is recorded in
``PlanResult.failures`` instead of aborting the plan.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import replace

from prwarden_core.chunker import chunk_diff
from prwarden_core.errors import MalformedResponseError
from prwarden_core.fingerprint import fingerprint_file, fingerprint_metadata
from prwarden_core.formatter import strip_tag
from prwarden_core.models import (
    ExistingComment,
    FileDiff,
    FileFailure,
    Finding,
    PlanResult,
    ReviewContext,
    Severity,
    Side,
    Thread,
)
from prwarden_core.providers.base import BaseReviewer, RawFinding
from prwarden_core.utils.code import detect_language, detect_programming_language
from prwarden_core.utils.size import format_size, parse_size

logger = logging.getLogger(__name__)

# Metadata findings are not anchored to a file.
METADATA_PATH = ""


def group_existing_comments(threads: list[Thread]) -> dict[str, list[ExistingComment]]:
    """Index the comments of every file-anchored thread by file path. The ledger is left out."""
    grouped: dict[str, list[ExistingComment]] = defaultdict(list)
    for thread in threads:
        if thread.is_ledger:
            continue
        path = thread.file_path or (thread.tag.file_path if thread.tag else "")
        if not path:
            continue
        for comment in thread.comments:
            grouped[path].append(
                ExistingComment(
                    author=comment.author,
                    content=strip_tag(comment.content).strip(),
                    file_path=path,
                    line=thread.line,
                    thread_status=thread.status.value,
                )
            )
    return grouped


def to_findings(raw_findings: list[RawFinding], fingerprint: str, default_path: str, is_deleted: bool) -> list[Finding]:
    return [
        Finding(
            id=f"{fingerprint[:12]}-{n}",
            title=raw.title,
            severity=raw.severity,
            category=raw.category,
            file_path=raw.file or default_path,
            line_start=raw.line_start,
            line_start_offset=raw.line_start_offset,
            line_end=raw.line_end,
            line_end_offset=raw.line_end_offset,
            rationale=raw.rationale,
            recommendation=raw.recommendation,
            fix_example=raw.fix_example,
            fingerprint=fingerprint,
            is_deleted=is_deleted,
        )
        for n, raw in enumerate(raw_findings, 1)
    ]


def anchor(finding: Finding, diff: FileDiff) -> Finding:
    """Mark ``finding`` unanchored when its line range cannot take a review comment on ``diff``."""
    if finding.file_path != diff.path:
        return replace(finding, anchored=False)
    side = Side.LEFT if diff.is_deleted else Side.RIGHT
    if finding.line_start >= 1 and not diff.covers(finding.line_start, finding.line_end, side):
        logger.debug(
            "%s: lines %d-%d are outside the diff; posting at file level",
            diff.path,
            finding.line_start,
            finding.line_end,
        )
        return replace(finding, anchored=False)
    return finding


class ReviewPlanner:
    def __init__(self, reviewer: BaseReviewer, config: dict):
        self.reviewer = reviewer
        self.max_files = int(config.get("max_files_to_review", 50))
        self.max_diff_bytes = parse_size(config.get("max_diff_bytes", "500KB"))
        self.max_prompt_bytes = parse_size(config.get("max_prompt_diff_bytes", "16KB"))
        self.max_issues = int(config.get("max_issues_per_file", 5))
        self.max_commit_messages = int(config.get("max_commit_messages", 50))
        self.max_concurrent = max(1, int(config.get("max_concurrent_reviews", 8)))
        self.warn_budget = int(config.get("warn_budget", 3))
        self.language_threshold = float(config.get("japanese_detection_threshold", 0.3))

    async def plan(
        self,
        context: ReviewContext,
        iteration: int,
        diffs: list[FileDiff],
        existing_threads: list[Thread],
        policy: str,
    ) -> PlanResult:
        if len(diffs) > self.max_files:
            logger.warning(
                "PR has %d changed files; reviewing only the first %d (max_files_to_review)",
                len(diffs),
                self.max_files,
            )
        selected = diffs[: self.max_files]

        to_review: list[FileDiff] = []
        skipped: list[str] = []
        for diff in selected:
            if diff.is_binary:
                logger.info("Skipping binary file %s", diff.path)
                skipped.append(diff.path)
            elif len(diff.text) > self.max_diff_bytes:
                logger.warning(
                    "Skipping %s: diff is %s, above the %s limit",
                    diff.path,
                    format_size(len(diff.text)),
                    format_size(self.max_diff_bytes),
                )
                skipped.append(diff.path)
            else:
                to_review.append(diff)

        language = detect_language(context.metadata.description, self.language_threshold)
        comments_by_file = group_existing_comments(existing_threads)
        semaphore = asyncio.Semaphore(self.max_concurrent)

        file_tasks = [
            self._review_file(policy, diff, language, comments_by_file.get(diff.path, []), semaphore)
            for diff in to_review
        ]
        metadata_task = self._review_metadata(policy, context, language)
        *file_results, metadata_result = await asyncio.gather(*file_tasks, metadata_task)

        findings: list[Finding] = []
        failures: list[FileFailure] = []
        for file_findings, failure in file_results:
            findings.extend(file_findings)
            if failure is not None:
                failures.append(failure)
        metadata_findings, metadata_failure = metadata_result
        findings.extend(metadata_findings)
        if metadata_failure is not None:
            failures.append(metadata_failure)

        error_count = sum(1 for f in findings if f.severity == Severity.ERROR)
        warning_count = sum(1 for f in findings if f.severity == Severity.WARN)
        result = PlanResult(
            iteration=iteration,
            findings=findings,
            error_count=error_count,
            warning_count=warning_count,
            warn_budget=self.warn_budget,
            failures=failures,
            reviewed_files=[d.path for d in to_review],
            skipped_files=skipped,
        )
        logger.info(
            "Iteration %d: %d finding(s), %d error(s), %d warning(s), %d failure(s); approve=%s",
            iteration,
            len(findings),
            error_count,
            warning_count,
            len(failures),
            result.approve,
        )
        return result

    async def _review_file(
        self,
        policy: str,
        diff: FileDiff,
        language: str,
        existing_comments: list[ExistingComment],
        semaphore: asyncio.Semaphore,
    ) -> tuple[list[Finding], FileFailure | None]:
        async with semaphore:
            programming_language = detect_programming_language(diff.path)
            try:
                if len(diff.text) <= self.max_prompt_bytes:
                    raw = await self.reviewer.review_file(
                        policy, diff, language, programming_language, existing_comments
                    )
                else:
                    raw = []
                    for chunk in chunk_diff(diff, self.max_prompt_bytes):
                        raw.extend(
                            await self.reviewer.review_file(
                                policy, diff, language, programming_language, existing_comments, chunk=chunk
                            )
                        )
            except MalformedResponseError as e:
                logger.error("Malformed review response for %s: %s", diff.path, e)
                return [], FileFailure(diff.path, "malformed", str(e))
            except Exception as e:
                logger.error("Review failed for %s: %s", diff.path, e)
                return [], FileFailure(diff.path, "error", str(e))

        if len(raw) > self.max_issues:
            logger.warning(
                "%s: model reported %d issues; keeping the first %d (max_issues_per_file)",
                diff.path,
                len(raw),
                self.max_issues,
            )
            raw = raw[: self.max_issues]

        fingerprint = fingerprint_file(diff.path, diff.content_hash)
        return [anchor(f, diff) for f in to_findings(raw, fingerprint, diff.path, diff.is_deleted)], None

    async def _review_metadata(
        self, policy: str, context: ReviewContext, language: str
    ) -> tuple[list[Finding], FileFailure | None]:
        metadata = context.metadata
        if len(metadata.commit_messages) > self.max_commit_messages:
            metadata = replace(metadata, commit_messages=metadata.commit_messages[: self.max_commit_messages])
        try:
            raw = await self.reviewer.review_metadata(policy, metadata, language)
        except MalformedResponseError as e:
            logger.error("Malformed metadata review response: %s", e)
            return [], FileFailure(METADATA_PATH, "malformed", str(e))
        except Exception as e:
            logger.error("Metadata review failed: %s", e)
            return [], FileFailure(METADATA_PATH, "error", str(e))

        fingerprint = fingerprint_metadata(metadata.description)
        # Metadata findings are never anchored to a file, whatever the model says.
        findings = to_findings(raw, fingerprint, METADATA_PATH, is_deleted=False)
        return [replace(f, file_path=METADATA_PATH) for f in findings], None
