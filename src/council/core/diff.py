"""Amendment diffs: line-based text diff for laws, keyed diff for budget line items.

The text diff is a heuristic, not an LCS/Myers diff: a line of the amended
text that still has an unconsumed twin in the original is "unchanged",
anything else is "added", and whatever the original has left over is
"removed". Reordered identical lines therefore show as unchanged.
"""

from __future__ import annotations

from collections import defaultdict, deque
from typing import Literal

from pydantic import BaseModel

from council.models.proposal import LineItem

LineKind = Literal["unchanged", "added", "removed"]
ItemChangeKind = Literal["unchanged", "modified", "added", "removed"]


class DiffLine(BaseModel):
    """One classified line. Indexes point into the original / amended line lists."""

    text: str
    kind: LineKind
    original_index: int | None = None
    amended_index: int | None = None


class RenderedLine(BaseModel):
    text: str
    kind: LineKind
    color: str
    strikethrough: bool = False


class LineItemChange(BaseModel):
    kind: ItemChangeKind
    item: LineItem
    previous: LineItem | None = None

    @property
    def amount_delta(self) -> float:
        if self.previous is None:
            return 0.0
        return self.item.amount - self.previous.amount


# Colour pairs (added, removed). Amendments of amendments use a second pair so
# readers can tell the two levels apart; the classification is the same.
_FIRST_LEVEL_COLORS = ("blue", "red")
_SECOND_LEVEL_COLORS = ("green", "orange")
_UNCHANGED_COLOR = "gray"


def diff_lines(original: str, amended: str) -> list[DiffLine]:
    """Classify every line of both texts.

    Output order: amended lines in amended order (unchanged or added), then
    removed lines in original order. Duplicate lines are matched by
    occurrence: the n-th copy in the amended text pairs with the n-th
    still-unconsumed copy in the original.
    """
    original_lines = original.split("\n")
    amended_lines = amended.split("\n")

    available: dict[str, deque[int]] = defaultdict(deque)
    for idx, line in enumerate(original_lines):
        available[line].append(idx)

    result: list[DiffLine] = []
    for amended_idx, line in enumerate(amended_lines):
        slots = available.get(line)
        if slots:
            result.append(
                DiffLine(
                    text=line,
                    kind="unchanged",
                    original_index=slots.popleft(),
                    amended_index=amended_idx,
                )
            )
        else:
            result.append(DiffLine(text=line, kind="added", amended_index=amended_idx))

    leftovers = sorted(idx for slots in available.values() for idx in slots)
    for original_idx in leftovers:
        result.append(
            DiffLine(text=original_lines[original_idx], kind="removed", original_index=original_idx)
        )
    return result


def reconstruct_amended(lines: list[DiffLine]) -> str:
    """Rebuild the amended text from a diff (every line that is not removed)."""
    kept = [line for line in lines if line.kind != "removed"]
    kept.sort(key=lambda line: line.amended_index or 0)
    return "\n".join(line.text for line in kept)


def reconstruct_original(lines: list[DiffLine]) -> str:
    """Rebuild the original text from a diff (every line that is not added)."""
    kept = [line for line in lines if line.kind != "added"]
    kept.sort(key=lambda line: line.original_index or 0)
    return "\n".join(line.text for line in kept)


def render_diff(lines: list[DiffLine], amendment_of_amendment: bool = False) -> list[RenderedLine]:
    """Attach display colours to a diff. Removed lines are struck through."""
    added_color, removed_color = (
        _SECOND_LEVEL_COLORS if amendment_of_amendment else _FIRST_LEVEL_COLORS
    )
    rendered: list[RenderedLine] = []
    for line in lines:
        if line.kind == "added":
            rendered.append(RenderedLine(text=line.text, kind="added", color=added_color))
        elif line.kind == "removed":
            rendered.append(
                RenderedLine(
                    text=line.text, kind="removed", color=removed_color, strikethrough=True
                )
            )
        else:
            rendered.append(RenderedLine(text=line.text, kind="unchanged", color=_UNCHANGED_COLOR))
    return rendered


def diff_line_items(original: list[LineItem], amended: list[LineItem]) -> list[LineItemChange]:
    """Diff two budgets by exact line-item title.

    A title present in both is "modified" when amount or description changed.
    A renamed item shows up as one removal plus one addition.
    """
    by_title: dict[str, deque[LineItem]] = defaultdict(deque)
    for item in original:
        by_title[item.title].append(item)

    changes: list[LineItemChange] = []
    for item in amended:
        matches = by_title.get(item.title)
        if not matches:
            changes.append(LineItemChange(kind="added", item=item))
            continue
        previous = matches.popleft()
        if previous.amount != item.amount or previous.description != item.description:
            changes.append(LineItemChange(kind="modified", item=item, previous=previous))
        else:
            changes.append(LineItemChange(kind="unchanged", item=item))

    leftover_ids = {id(item) for items in by_title.values() for item in items}
    for item in original:
        if id(item) in leftover_ids:
            changes.append(LineItemChange(kind="removed", item=item))
    return changes
