"""Wire formats for thread comments.

Three kinds of text end up on the platform:

- finding comments, rendered for humans (``format_finding``)
- the ledger comment, a hidden machine-readable snapshot of all active
  findings (``format_ledger`` / ``parse_ledger``)
- the thread tag, an HTML comment appended to a thread's root comment so a
  later run can tell which finding the thread represents
  (``render_tag`` / ``parse_tag``). HTML comments are not displayed by
  GitHub's markdown renderer.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone

from prwarden_core.models import Finding, ThreadStatus, ThreadTag
from prwarden_core.utils.code import fence_language

LEDGER_MARKER = "<!-- prwarden-ledger -->"
FOOTER = "_I'm a bot; reply here to discuss. Run `prwarden review --shadow` to preview without posting._"
RETRIGGERED_PREFIX = "Re-triggered: "

_TAG_RE = re.compile(r"\n*<!-- prwarden-tag: (\{.*?\}) -->", re.DOTALL)
_LEDGER_BLOCK_RE = re.compile(re.escape(LEDGER_MARKER) + r"\s*```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)


def format_finding(finding: Finding) -> str:
    category = getattr(finding.category, "value", finding.category)
    severity = getattr(finding.severity, "value", finding.severity)
    lines = [
        f"🤖 AI Review — {category}/{severity}",
        "",
        finding.rationale,
        "",
        f"**Recommendation**: {finding.recommendation}",
    ]
    if not finding.anchored and finding.file_path and finding.line_start >= 1:
        lines[1:1] = ["", f"_{_line_label(finding)} of `{finding.file_path}` (outside the changed lines)_"]
    if finding.fix_example and finding.fix_example.strip():
        lines += ["", f"```{fence_language(finding.file_path)}", finding.fix_example.rstrip("\n"), "```"]
    lines += ["", FOOTER]
    return "\n".join(lines) + "\n"


def _line_label(finding: Finding) -> str:
    if finding.line_end > finding.line_start:
        return f"Lines {finding.line_start}-{finding.line_end}"
    return f"Line {finding.line_start}"


def format_retriggered(finding: Finding) -> str:
    return RETRIGGERED_PREFIX + format_finding(finding)


def format_ledger(findings: list[Finding], updated_at: datetime | None = None) -> str:
    """Render the ledger comment: a marker line, then a fenced JSON snapshot."""
    stamp = (updated_at or datetime.now(timezone.utc)).isoformat()
    state = {
        "fingerprints": [
            {
                "fingerprint": f.fingerprint,
                "filePath": f.file_path,
                "line": f.line,
                "severity": getattr(f.severity, "value", f.severity),
            }
            for f in findings
        ],
        "updatedAt": stamp,
    }
    return f"{LEDGER_MARKER}\n```json\n{json.dumps(state, indent=2, ensure_ascii=False)}\n```"


def is_ledger_content(content: str) -> bool:
    return LEDGER_MARKER in (content or "")


def parse_ledger(content: str) -> dict | None:
    """Return the ledger state, or None if ``content`` holds no readable ledger."""
    match = _LEDGER_BLOCK_RE.search(content or "")
    if not match:
        return None
    try:
        state = json.loads(match.group(1))
    except json.JSONDecodeError:
        return None
    if not isinstance(state, dict) or not isinstance(state.get("fingerprints"), list):
        return None
    return state


def render_tag(tag: ThreadTag) -> str:
    payload = {
        "fingerprint": tag.fingerprint,
        "file": tag.file_path,
        "line": tag.line,
        "finding": tag.finding_id,
        "iteration": tag.iteration,
        "status": tag.status.value,
    }
    if tag.ledger:
        payload["ledger"] = True
    return f"<!-- prwarden-tag: {json.dumps(payload, separators=(',', ':'))} -->"


def parse_tag(body: str) -> ThreadTag | None:
    """Recover the ThreadTag from a comment body, or None if it carries none (or a corrupt one)."""
    match = _TAG_RE.search(body or "")
    if not match:
        return None
    try:
        payload = json.loads(match.group(1))
        status = ThreadStatus(payload.get("status", ThreadStatus.ACTIVE.value))
        return ThreadTag(
            fingerprint=str(payload.get("fingerprint", "")),
            file_path=str(payload.get("file", "")),
            line=int(payload.get("line") or 0),
            finding_id=str(payload.get("finding", "")),
            iteration=int(payload.get("iteration") or 0),
            status=status,
            ledger=bool(payload.get("ledger", False)),
        )
    except (json.JSONDecodeError, ValueError, TypeError, AttributeError):
        return None


def strip_tag(body: str) -> str:
    return _TAG_RE.sub("", body or "")


def with_tag(content: str, tag: ThreadTag) -> str:
    """Append (or replace) the hidden tag at the end of a comment body."""
    return f"{strip_tag(content).rstrip()}\n\n{render_tag(tag)}"
