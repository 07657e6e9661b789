"""Size-bounded splitting of unified diffs.

Large diffs are cut into chunks no longer than ``max_chunk_size`` so each
model call stays within its prompt budget. Cuts prefer, in order:

  1. just before a hunk header (``@@ -a,b +c,d @@``)
  2. just after a blank line
  3. just after an unchanged context line

and otherwise fall back to the current position, moved back so a run of
added/removed lines is not torn in two. The boundary scans are precomputed,
so one pass over the lines is enough.

Chunk contents are exact slices of the input: joining them reproduces the
original text byte for byte.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from prwarden_core.models import DiffChunk, FileDiff

logger = logging.getLogger(__name__)

FULL_FILE_CONTEXT = "Full file diff"
START_CONTEXT = "Start of diff"

_HUNK_HEADER_RE = re.compile(r"^@@\s+-\d+(?:,\d+)?\s+\+(\d+)(?:,\d+)?\s+@@(.*)$")

_HUNK = "hunk"
_BLANK = "blank"
_CONTEXT = "context"
_CHANGE = "change"
_OTHER = "other"


@dataclass(frozen=True)
class _Piece:
    text: str
    line_no: int
    kind: str
    label: str | None = None


def _classify(line: str) -> str:
    bare = line.rstrip("\r\n")
    if _HUNK_HEADER_RE.match(bare):
        return _HUNK
    if not bare.strip() or (bare[0] in "+- " and not bare[1:].strip()):
        return _BLANK
    if bare.startswith(("+++ ", "--- ")):
        return _OTHER  # file headers
    if bare[0] in "+-":
        return _CHANGE
    if bare[0] == " ":
        return _CONTEXT
    return _OTHER


def hunk_context(line: str) -> str | None:
    """Return the human label for a hunk header, or None if ``line`` is not one."""
    match = _HUNK_HEADER_RE.match(line.rstrip("\r\n"))
    if not match:
        return None
    new_start = match.group(1)
    section = match.group(2).strip()
    if section:
        return f"{section} (line {new_start})"
    return f"Lines starting at {new_start}"


def _split_pieces(text: str, max_size: int) -> list[_Piece]:
    """Split text into lines, cutting any line longer than max_size mid-line.

    Only the first segment of a hunk header and the last segment of a blank or
    context line keep their boundary kind; every segment of a changed line
    stays a change so the block is never preferred as a cut point.
    """
    pieces: list[_Piece] = []
    for line_no, line in enumerate(text.splitlines(keepends=True), start=1):
        kind = _classify(line)
        label = hunk_context(line) if kind == _HUNK else None
        segments = [line[i : i + max_size] for i in range(0, len(line), max_size)]
        last = len(segments) - 1
        for k, segment in enumerate(segments):
            if kind == _CHANGE:
                seg_kind = _CHANGE
            elif kind == _HUNK:
                seg_kind = _HUNK if k == 0 else _OTHER
            elif kind in (_BLANK, _CONTEXT):
                seg_kind = kind if k == last else _OTHER
            else:
                seg_kind = _OTHER
            pieces.append(_Piece(segment, line_no, seg_kind, label if seg_kind == _HUNK else None))
    return pieces


def _last_index_of(pieces: list[_Piece], kind: str) -> list[int]:
    """For each position, the index of the latest piece of ``kind`` at or before it (-1 if none)."""
    result: list[int] = []
    last = -1
    for idx, piece in enumerate(pieces):
        if piece.kind == kind:
            last = idx
        result.append(last)
    return result


def _avoid_change_block(pieces: list[_Piece], start: int, end: int) -> int:
    """Move a cut at ``end`` back to the start of the change block it would tear.

    If the block reaches back to ``start`` it cannot fit in one chunk, so the
    cut stays at ``end`` (a hard cut that still makes progress).
    """
    if pieces[end].kind != _CHANGE:
        return end
    k = end
    while k > start and pieces[k - 1].kind == _CHANGE:
        k -= 1
    if k == start:
        return end
    return k


def chunk_diff(diff: FileDiff, max_chunk_size: int) -> list[DiffChunk]:
    """Split one file's diff into ordered chunks of at most ``max_chunk_size`` characters."""
    if max_chunk_size <= 0:
        raise ValueError(f"max_chunk_size must be positive, got {max_chunk_size}")

    text = diff.text
    if len(text) <= max_chunk_size:
        return [
            DiffChunk(
                file_path=diff.path,
                content=text,
                index=0,
                total_chunks=1,
                start_line=1,
                context=FULL_FILE_CONTEXT,
            )
        ]

    pieces = _split_pieces(text, max_chunk_size)
    offsets = [0]
    for piece in pieces:
        offsets.append(offsets[-1] + len(piece.text))

    last_hunk = _last_index_of(pieces, _HUNK)
    last_blank = _last_index_of(pieces, _BLANK)
    last_context = _last_index_of(pieces, _CONTEXT)

    def find_split(start: int, end: int) -> int:
        # Returns the first index of the next chunk, always in (start, end].
        if pieces[end].kind == _HUNK:
            return end
        j = last_hunk[end - 1]
        if j > start:
            return j
        j = last_blank[end - 1]
        if j >= start:
            return j + 1
        j = last_context[end - 1]
        if j >= start:
            return j + 1
        return _avoid_change_block(pieces, start, end)

    spans: list[tuple[int, int]] = []
    start = 0
    i = 0
    while i < len(pieces):
        if i > start and offsets[i + 1] - offsets[start] > max_chunk_size:
            split = find_split(start, i)
            spans.append((start, split))
            start = split
            continue
        i += 1
    spans.append((start, len(pieces)))

    total = len(spans)
    chunks = []
    for index, (first, end) in enumerate(spans):
        header = last_hunk[first]
        context = pieces[header].label if header >= 0 else START_CONTEXT
        chunks.append(
            DiffChunk(
                file_path=diff.path,
                content=text[offsets[first] : offsets[end]],
                index=index,
                total_chunks=total,
                start_line=pieces[first].line_no,
                context=context or START_CONTEXT,
            )
        )

    logger.info("Split %s into %d chunks (original size: %d bytes)", diff.path, total, len(text))
    return chunks
