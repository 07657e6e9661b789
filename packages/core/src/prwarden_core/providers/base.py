"""Base reviewer implementing the Template Method pattern.

All providers share the same review algorithm:
    review_file() / review_metadata()
        → _build_system_prompt() + _build_*_prompt()
        → _call_with_retry() → _call_api()   ← only this differs per provider
        → _parse()                          ← strict schema validation

Subclasses implement two things only:
  - __init__: validate and store the async SDK client
  - _call_api: make one raw API call and return the text response, None for a
    refusal, or raise TransientError for a retryable failure

Model output is untrusted. _parse validates every finding against RawFinding
and raises MalformedResponseError on anything that does not fit, so a broken
response is never mistaken for "no issues found".
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from prwarden_core.errors import MalformedResponseError
from prwarden_core.models import Category, DiffChunk, ExistingComment, FileDiff, PullRequestMetadata, Severity
from prwarden_core.utils.code import language_display_name
from prwarden_core.utils.resilience import Retrier

logger = logging.getLogger(__name__)

# Subclasses may override as a class attribute.
_MAX_TOKENS = 4096
_MAX_EXISTING_COMMENTS = 20

_LANGUAGE_NAMES = {"en": "English", "ja": "Japanese"}


class RawFinding(BaseModel):
    """One finding exactly as the model reported it.

    Every field must be present; ``file`` and ``fix_example`` may be null.
    Severity and category are matched case-insensitively against the enums and
    anything else is rejected rather than defaulted.
    """

    model_config = ConfigDict(extra="ignore")

    title: str
    severity: Severity
    category: Category
    file: str | None
    line_start: int
    line_start_offset: int
    line_end: int
    line_end_offset: int
    rationale: str
    recommendation: str
    fix_example: str | None = None

    @field_validator("severity", "category", mode="before")
    @classmethod
    def _normalise_case(cls, value):
        if isinstance(value, str):
            return value.strip().capitalize()
        return value


class BaseReviewer(ABC):
    MAX_TOKENS: int = _MAX_TOKENS

    def __init__(self, retrier: Retrier | None = None):
        self.retrier = retrier or Retrier(self.__class__.__name__)

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    async def review_file(
        self,
        policy: str,
        diff: FileDiff,
        language: str,
        programming_language: str,
        existing_comments: list[ExistingComment],
        chunk: DiffChunk | None = None,
    ) -> list[RawFinding]:
        """Review one file (or one chunk of it) and return the validated findings.

        Returns [] when the model refuses. Raises MalformedResponseError for
        unparseable output and TransientError / CircuitOpenError when the
        provider stays unavailable.
        """
        system = self._build_system_prompt(policy, language)
        user = self._build_file_prompt(diff, programming_language, existing_comments, chunk)
        raw = await self._call_with_retry(system, user)
        if raw is None:
            logger.warning(
                "%s: model refused to review %s; treating as no findings", self.__class__.__name__, diff.path
            )
            return []
        return self._parse(raw)

    async def review_metadata(self, policy: str, metadata: PullRequestMetadata, language: str) -> list[RawFinding]:
        """Review the PR title, description and commit messages."""
        system = self._build_system_prompt(policy, language)
        user = self._build_metadata_prompt(metadata)
        raw = await self._call_with_retry(system, user)
        if raw is None:
            logger.warning("%s: model refused the metadata review; treating as no findings", self.__class__.__name__)
            return []
        return self._parse(raw)

    # ------------------------------------------------------------------ #
    # Implemented by each provider                                       #
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def _call_api(self, system_prompt: str, user_prompt: str) -> str | None:
        """Make a single API call and return the raw text response.

        Return None when the model refused or the response was content-filtered.
        Raise TransientError for timeouts, connection errors, 429 and 5xx so the
        retrier can back off; let anything else propagate.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    async def _call_with_retry(self, system_prompt: str, user_prompt: str) -> str | None:
        return await self.retrier.run(self._call_api, system_prompt, user_prompt)

    def _build_system_prompt(self, policy: str, language: str) -> str:
        language_name = _LANGUAGE_NAMES.get(language, "English")
        return f"""You are a strict and precise senior code reviewer.
Review the input below and report issues according to the policy.

{policy}

Rules:
- Focus on added lines (starting with '+') for direct violations.
- Also consider implications of removed lines (starting with '-') — e.g. deleted null checks,
  removed error handling, dropped permission guards.
- Do not repeat issues already raised in the existing comments.
- Do not comment on code that already follows best practices.
- Avoid assumptions when context is unclear. Be concise and actionable.
- Write titles, rationales and recommendations in {language_name}."""

    def _build_file_prompt(
        self,
        diff: FileDiff,
        programming_language: str,
        existing_comments: list[ExistingComment],
        chunk: DiffChunk | None = None,
    ) -> str:
        name = chunk.display_name if chunk is not None else diff.path
        body = chunk.content if chunk is not None else diff.text
        if diff.is_deleted:
            state = "deleted in this PR (report line numbers of the original file)"
        else:
            state = "added or modified"
        return f"""You are reviewing `{name}` ({language_display_name(diff.path)}), {state}.
{self._build_existing_comments_section(existing_comments)}
## Diff
{body}

{self._output_format(diff.path)}"""

    def _build_metadata_prompt(self, metadata: PullRequestMetadata) -> str:
        commits = "\n".join(f"- {m.strip().splitlines()[0]}" for m in metadata.commit_messages if m.strip())
        return f"""You are reviewing the metadata of a pull request, not its code.
Check that the title, description and commit messages follow the hygiene rules of the policy.

## Title
{metadata.title}

## Description
{metadata.description or "(empty)"}

## Commit messages
{commits or "(none)"}

{self._output_format("")}"""

    @staticmethod
    def _build_existing_comments_section(existing_comments: list[ExistingComment]) -> str:
        if not existing_comments:
            return ""
        lines = ["", "## Existing comments on this file"]
        for c in existing_comments[:_MAX_EXISTING_COMMENTS]:
            where = f"line {c.line}" if c.line else "file"
            text = " ".join(c.content.split())[:300]
            lines.append(f"- [{c.thread_status}] {c.author or 'unknown'} ({where}): {text}")
        return "\n".join(lines) + "\n"

    @staticmethod
    def _output_format(file_path: str) -> str:
        return f"""### Output Format:
Respond with **only** a valid JSON object:

{{
  "issues": [
    {{
      "title": "<short summary>",
      "severity": "<Info|Warn|Error>",
      "category": "<Security|Correctness|Style|Performance|Docs|Tests>",
      "file": "{file_path}",
      "line_start": <first line in the actual file, 1-based>,
      "line_start_offset": <column where the issue starts, 0-based>,
      "line_end": <last line in the actual file, 1-based>,
      "line_end_offset": <column where the issue ends, 0-based>,
      "rationale": "<why this is a problem>",
      "recommendation": "<what to do instead>",
      "fix_example": "<code showing the fix, or null>"
    }}
  ]
}}

Severity guide:
- Error: security vulnerability, data loss risk, crash — must be fixed
- Warn: logic bug, missing error handling, significant performance issue — should be fixed
- Info: readability, naming, documentation

If there are no issues, return: {{"issues": []}}
Do not return any text outside the JSON object."""

    def _parse(self, raw: str) -> list[RawFinding]:
        """Parse and validate the model's raw text response.

        Accepts {"issues": [...]} or a bare list. Raises MalformedResponseError
        for anything else.
        """
        # Only the outer ```json fence; backticks inside values stay.
        cleaned = re.sub(r"^```(?:json)?\s*", "", raw.strip())
        cleaned = re.sub(r"\s*```$", "", cleaned.strip())
        try:
            payload = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(
                f"{self.__class__.__name__}: response is not valid JSON ({e.msg}): {raw[:200]!r}"
            ) from e

        if isinstance(payload, dict):
            payload = payload.get("issues")
        if not isinstance(payload, list):
            raise MalformedResponseError(
                f"{self.__class__.__name__}: expected a list of issues, got {type(payload).__name__}"
            )

        findings = []
        for index, item in enumerate(payload):
            try:
                findings.append(RawFinding.model_validate(item))
            except ValidationError as e:
                raise MalformedResponseError(
                    f"{self.__class__.__name__}: issue #{index} does not match the schema: {e}"
                ) from e
        return findings
