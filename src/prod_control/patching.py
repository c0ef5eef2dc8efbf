"""Line oriented file patching used by the ``editFile`` action.

The engine is pure: it never touches the filesystem or the remote host and is
safe to call from anywhere. Directives are applied one after another, in the
order they were declared, against a single evolving list of lines, so an
insert performed by one directive is visible to every directive after it.

A directive that matches nothing is either ``failed`` (``report_failure``) or
``skipped``. A failed directive does not stop the remaining directives; the
caller decides what a failed directive means for the surrounding action.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence
import logging
import re

from .types import (
    CommentLine,
    Directive,
    DirectiveOutcome,
    InsertLine,
    InsertPosition,
    MatchType,
    OutcomeStatus,
    ReplaceLine,
)

logger = logging.getLogger(__name__)

_LINE_BREAK_RE = re.compile(r"(?<=\n)")


@dataclass
class PatchResult:
    lines: list[str]
    outcomes: list[DirectiveOutcome] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return any(o.status is OutcomeStatus.FAILED for o in self.outcomes)

    @property
    def failures(self) -> list[DirectiveOutcome]:
        return [o for o in self.outcomes if o.status is OutcomeStatus.FAILED]


@dataclass
class TextPatchResult:
    text: str
    outcomes: list[DirectiveOutcome] = field(default_factory=list)
    changed: bool = False

    @property
    def failed(self) -> bool:
        return any(o.status is OutcomeStatus.FAILED for o in self.outcomes)


def line_matches(line: str, match_string: str, match_type: MatchType) -> bool:
    if match_type is MatchType.STARTS_WITH:
        return line.lstrip().startswith(match_string)
    if match_type is MatchType.CONTAINS:
        return match_string in line
    if match_type is MatchType.EXACT:
        return line.strip() == match_string
    if match_type is MatchType.ENDS_WITH:
        return line.rstrip().endswith(match_string)
    raise ValueError(f"unknown match type {match_type!r}")


def split_lines(text: str) -> list[str]:
    """Split ``text`` on ``\\n`` only, each line keeping its own terminator."""

    return [line for line in _LINE_BREAK_RE.split(text) if line]


def split_ending(line: str) -> tuple[str, str]:
    if line.endswith("\r\n"):
        return line[:-2], "\r\n"
    if line.endswith("\n"):
        return line[:-1], "\n"
    return line, ""


def line_ending(lines: Sequence[str]) -> str:
    """First terminator used in ``lines``, or ``""`` for unterminated lines."""

    for line in lines:
        ending = split_ending(line)[1]
        if ending:
            return ending
    return ""


def apply_directives(lines: Sequence[str], directives: Iterable[Directive]) -> PatchResult:
    """Apply ``directives`` in order and return the new lines plus one outcome each.

    Lines may carry their terminators (see :func:`split_lines`). Matching
    ignores them, and new or replaced lines take the terminator of the line
    they are anchored to.
    """

    working = list(lines)
    newline = line_ending(working)
    outcomes: list[DirectiveOutcome] = []
    for directive in directives:
        outcome = _apply_one(working, directive, newline)
        logger.debug(
            "directive=%s match=%r status=%s matches=%d",
            directive.kind,
            directive.match_string,
            outcome.status.value,
            outcome.matches,
        )
        outcomes.append(outcome)
    return PatchResult(lines=working, outcomes=outcomes)


def patch_text(text: str, directives: Sequence[Directive]) -> TextPatchResult:
    """Apply ``directives`` to file ``text``; lines no directive touches are kept byte for byte."""

    if not directives:
        return TextPatchResult(text=text)

    result = apply_directives(split_lines(text), directives)
    new_text = "".join(result.lines)
    return TextPatchResult(text=new_text, outcomes=result.outcomes, changed=new_text != text)


def _matching_indices(lines: list[str], directive: Directive) -> list[int]:
    indices: list[int] = []
    for idx, line in enumerate(lines):
        if line_matches(split_ending(line)[0], directive.match_string, directive.match_type):
            indices.append(idx)
            if directive.once_only:
                break
    return indices


def _apply_one(lines: list[str], directive: Directive, newline: str) -> DirectiveOutcome:
    # Indices are collected before mutating, so lines added by this directive
    # are never scanned by it.
    indices = _matching_indices(lines, directive)
    if not indices:
        if directive.report_failure:
            return DirectiveOutcome(directive, OutcomeStatus.FAILED, 0, "no-match")
        return DirectiveOutcome(directive, OutcomeStatus.SKIPPED, 0, "no-match")

    if isinstance(directive, InsertLine):
        for idx in reversed(indices):
            body, ending = split_ending(lines[idx])
            if directive.position is InsertPosition.ABOVE:
                lines.insert(idx, directive.insert_string + (ending or newline))
            elif ending or not newline:
                lines.insert(idx + 1, directive.insert_string + ending)
            else:
                # unterminated last line: it gains the break, the new line stays unterminated
                lines[idx] = body + newline
                lines.insert(idx + 1, directive.insert_string)
        detail = f"inserted {directive.position.value} {len(indices)} line(s)"
    elif isinstance(directive, ReplaceLine):
        for idx in indices:
            lines[idx] = directive.replace_string + split_ending(lines[idx])[1]
        detail = f"replaced {len(indices)} line(s)"
    elif isinstance(directive, CommentLine):
        for idx in indices:
            lines[idx] = f"{directive.comment_char}{lines[idx]}"
        detail = f"commented {len(indices)} line(s)"
    else:
        raise TypeError(f"unsupported directive {type(directive).__name__}")
    return DirectiveOutcome(directive, OutcomeStatus.SUCCESS, len(indices), detail)
