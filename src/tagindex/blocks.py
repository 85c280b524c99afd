"""Reconcile rendered index blocks into a document's text.

A block is a run of ``>``-prefixed lines that starts with a callout header
(``> [!example] ...`` or ``> [!tldr] ...``) and ends with a marker line
``> ^indexof-<slug>``.  The marker identifies the block across runs.

Reconciliation works in two passes: :func:`parse_segments` splits the
text into plain-text and block segments without modifying anything, then
:func:`reconcile` walks the segments once, emitting original text,
replacement blocks or nothing.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

MARKER_RE = re.compile(r"\^indexof-(?:[a-zA-Z0-9]+-?)+")

_HEADER_RE = re.compile(r">\s*\[!(?:example|tldr)\]")
_MARKER_LINE_RE = re.compile(r">\s*(\^indexof-(?:[a-zA-Z0-9]+-?)+)[ \t\r]*")

BLOCK_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class Segment:
    """A span of the original text; ``ref`` is set when the span is a block."""

    start: int
    end: int
    ref: str | None = None


def _line_spans(text: str) -> list[tuple[int, int]]:
    """Return ``(start, end)`` of every line, excluding the newline."""
    spans: list[tuple[int, int]] = []
    pos = 0
    while True:
        nl = text.find("\n", pos)
        if nl == -1:
            spans.append((pos, len(text)))
            return spans
        spans.append((pos, nl))
        pos = nl + 1


def _block_end(text: str, spans: list[tuple[int, int]], header: int) -> tuple[int, str] | None:
    """Find the marker line closing the block whose header is line *header*."""
    for k in range(header + 1, len(spans)):
        start, end = spans[k]
        line = text[start:end]
        if not line.startswith(">"):
            return None
        match = _MARKER_LINE_RE.fullmatch(line)
        if match:
            return k, match.group(1)
    return None


def parse_segments(text: str) -> tuple[Segment, ...]:
    """Split *text* into consecutive plain-text and block segments.

    Block spans run from the start of the header line to the end of the
    marker line (its newline stays in the following text segment).  A
    callout that never reaches a marker line is plain text.
    """
    spans = _line_spans(text)
    segments: list[Segment] = []
    text_start = 0
    i = 0
    while i < len(spans):
        start, end = spans[i]
        if _HEADER_RE.match(text, start, end):
            found = _block_end(text, spans, i)
            if found is not None:
                last, ref = found
                if start > text_start:
                    segments.append(Segment(text_start, start))
                block_stop = spans[last][1]
                segments.append(Segment(start, block_stop, ref))
                text_start = block_stop
                i = last + 1
                continue
        i += 1
    if text_start < len(text):
        segments.append(Segment(text_start, len(text)))
    return tuple(segments)


def find_markers(text: str) -> list[str]:
    """Return the distinct block markers present in *text*, in order of appearance."""
    return list(dict.fromkeys(MARKER_RE.findall(text)))


def has_marker(text: str) -> bool:
    return MARKER_RE.search(text) is not None


def reconcile(text: str, blocks: Iterable[tuple[str, str]]) -> str:
    """Make *text* contain exactly *blocks*, one block per reference.

    Existing blocks are replaced in place (the first occurrence of each
    reference), duplicates and blocks whose reference is not wanted are
    removed, and missing blocks are appended after a blank line.  When
    two wanted blocks share a reference the first one wins.

    Applying the same *blocks* twice gives the same text as applying them
    once.
    """
    desired: dict[str, str] = {}
    for ref, block_text in blocks:
        if ref in desired:
            logger.debug("Duplicate block reference %s, keeping the first", ref)
            continue
        desired[ref] = block_text

    segments = parse_segments(text)
    pieces: list[str] = []
    dropped: list[bool] = []
    written: set[str] = set()
    for seg in segments:
        if seg.ref is None:
            pieces.append(text[seg.start : seg.end])
            dropped.append(False)
        elif seg.ref in desired and seg.ref not in written:
            written.add(seg.ref)
            pieces.append(desired[seg.ref])
            dropped.append(False)
        else:
            pieces.append("")
            dropped.append(True)

    # A trailing run of removed blocks goes away together with the blank
    # line that separated it from the content before it.
    tail = len(segments)
    while tail > 0:
        seg = segments[tail - 1]
        is_blank = seg.ref is None and not text[seg.start : seg.end].strip("\n")
        if not (dropped[tail - 1] or is_blank):
            break
        tail -= 1

    if any(dropped[tail:]):
        result = "".join(pieces[:tail])
        if result.endswith(BLOCK_SEPARATOR):
            result = result[: -len(BLOCK_SEPARATOR)]
    else:
        result = "".join(pieces)

    for ref, block_text in desired.items():
        if ref not in written:
            result += BLOCK_SEPARATOR + block_text
    return result
