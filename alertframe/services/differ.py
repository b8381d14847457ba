"""Change detector - compares two captures of a monitored element.

Detection order (first match wins):

1. Item count: both captures report a list item count and the counts differ.
   Text is not compared in that case.
2. Text: a word-level diff of the trimmed text content. Edits that only
   touch whitespace are not changes.
3. No change.

The detector is a pure function of its two inputs. The diff payload is a
tagged variant (``ItemCountDiff`` or ``TextDiff``) which serialises to the
JSON stored on the change record.
"""
import html
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, Union

from diff_match_patch import diff_match_patch

CHANGE_ADDED = "added"
CHANGE_REMOVED = "removed"
CHANGE_MODIFIED = "modified"

# Upper bound on one text diff; past it the diff is coarser, never wrong
DIFF_TIMEOUT_SECONDS = 1.0

# Words, whitespace runs, and single punctuation characters
_TOKEN_RE = re.compile(r"\s+|\w+|[^\w\s]")


class SnapshotContent(Protocol):
    """Anything carrying captured element content (snapshots, extraction results)."""

    text_content: Optional[str]
    item_count: Optional[int]


@dataclass(frozen=True)
class DiffPart:
    """One run of a text diff. Unflagged runs are common to both sides."""
    value: str
    added: bool = False
    removed: bool = False

    def to_dict(self) -> dict:
        data = {"value": self.value}
        if self.added:
            data["added"] = True
        if self.removed:
            data["removed"] = True
        return data


@dataclass(frozen=True)
class ItemCountDiff:
    """The number of list items changed."""
    before: int
    after: int

    @property
    def delta(self) -> int:
        return self.after - self.before

    def to_dict(self) -> dict:
        return {"type": "itemCount", "before": self.before, "after": self.after}


@dataclass(frozen=True)
class TextDiff:
    """Word-level diff of the element text."""
    parts: Tuple[DiffPart, ...]

    def to_dict(self) -> dict:
        return {"type": "text", "diff": [part.to_dict() for part in self.parts]}


DiffPayload = Union[ItemCountDiff, TextDiff]


@dataclass(frozen=True)
class ChangeVerdict:
    """Result of comparing two captures."""
    has_changed: bool
    change_type: Optional[str] = None  # added, removed, modified
    summary: Optional[str] = None
    diff: Optional[DiffPayload] = None

    @property
    def diff_data(self) -> Optional[dict]:
        return self.diff.to_dict() if self.diff is not None else None

    def to_dict(self) -> dict:
        return {
            "hasChanged": self.has_changed,
            "changeType": self.change_type,
            "summary": self.summary,
            "diffData": self.diff_data,
        }


NO_CHANGE = ChangeVerdict(has_changed=False)


def diff_from_dict(data: Optional[dict]) -> Optional[DiffPayload]:
    """Rebuild a diff payload from its stored JSON form."""
    if data is None:
        return None
    kind = data.get("type")
    if kind == "itemCount":
        return ItemCountDiff(before=int(data["before"]), after=int(data["after"]))
    if kind == "text":
        return TextDiff(parts=tuple(
            DiffPart(
                value=part["value"],
                added=bool(part.get("added", False)),
                removed=bool(part.get("removed", False)),
            )
            for part in data.get("diff", [])
        ))
    raise ValueError(f"Unknown diff type: {kind!r}")


def tokenize(text: str) -> List[str]:
    """Split text into word, whitespace and punctuation tokens.

    Joining the tokens gives back the original text.
    """
    return _TOKEN_RE.findall(text)


def _append(parts: List[DiffPart], value: str, added: bool = False, removed: bool = False):
    if not value:
        return
    if parts and parts[-1].added == added and parts[-1].removed == removed:
        last = parts.pop()
        value = last.value + value
    parts.append(DiffPart(value=value, added=added, removed=removed))


def diff_words(old: str, new: str) -> Tuple[DiffPart, ...]:
    """Word-level diff of two strings as an ordered sequence of runs.

    Joining the runs that are not removed gives ``new``; joining the runs
    that are not added gives ``old``. Within a replaced region the removed
    run comes before the added run.

    Each distinct token is encoded as one character and the encoded strings
    are diffed with diff-match-patch (Myers O(ND), bounded by
    ``DIFF_TIMEOUT_SECONDS``). A diff cut short by the timeout is coarser
    but still reconstructs both sides.
    """
    vocabulary: Dict[str, str] = {}
    tokens: List[str] = [""]  # index 0 unused, like diff-match-patch line mode

    def encode(text: str) -> str:
        chars = []
        for token in tokenize(text):
            char = vocabulary.get(token)
            if char is None:
                char = chr(len(tokens))
                vocabulary[token] = char
                tokens.append(token)
            chars.append(char)
        return "".join(chars)

    matcher = diff_match_patch()
    matcher.Diff_Timeout = DIFF_TIMEOUT_SECONDS
    diffs = matcher.diff_main(encode(old), encode(new), False)

    parts: List[DiffPart] = []
    for op, chars in diffs:
        value = "".join(tokens[ord(char)] for char in chars)
        _append(parts, value, added=op == matcher.DIFF_INSERT, removed=op == matcher.DIFF_DELETE)
    return tuple(parts)


def _detect_item_count_change(previous: SnapshotContent, current: SnapshotContent) -> Optional[ChangeVerdict]:
    before = previous.item_count
    after = current.item_count
    if before is None or after is None or before == after:
        return None

    delta = after - before
    sign = "+" if delta > 0 else ""
    return ChangeVerdict(
        has_changed=True,
        change_type=CHANGE_ADDED if delta > 0 else CHANGE_REMOVED,
        summary=f"Item count changed from {before} to {after} ({sign}{delta})",
        diff=ItemCountDiff(before=before, after=after),
    )


def _summarize_text_change(added: str, removed: str) -> str:
    if added and removed:
        return f'Content modified: "{removed[:50]}..." → "{added[:50]}..."'
    if added:
        return f'Content added: "{added[:100]}..."'
    return f'Content removed: "{removed[:100]}..."'


def _detect_text_change(previous: SnapshotContent, current: SnapshotContent) -> Optional[ChangeVerdict]:
    parts = diff_words(
        (previous.text_content or "").strip(),
        (current.text_content or "").strip(),
    )
    # Whitespace-only runs stay in the payload but never count as a change
    edits = [part for part in parts if (part.added or part.removed) and part.value.strip()]
    if not edits:
        return None

    added = " ".join(part.value for part in edits if part.added)
    removed = " ".join(part.value for part in edits if part.removed)

    if added and removed:
        change_type = CHANGE_MODIFIED
    elif added:
        change_type = CHANGE_ADDED
    else:
        change_type = CHANGE_REMOVED

    return ChangeVerdict(
        has_changed=True,
        change_type=change_type,
        summary=_summarize_text_change(added, removed),
        diff=TextDiff(parts=parts),
    )


def detect_changes(previous: SnapshotContent, current: SnapshotContent) -> ChangeVerdict:
    """Compare the previous capture of an element with the current one."""
    verdict = _detect_item_count_change(previous, current)
    if verdict is not None:
        return verdict

    verdict = _detect_text_change(previous, current)
    if verdict is not None:
        return verdict

    return NO_CHANGE


def render_diff_html(diff: Optional[DiffPayload]) -> str:
    """Render a diff payload as inline HTML for emails and the dashboard."""
    if diff is None:
        return "No changes detected"

    if isinstance(diff, ItemCountDiff):
        return f"Item count changed from {diff.before} to {diff.after}"

    if isinstance(diff, TextDiff):
        chunks = ['<div style="font-family: monospace; white-space: pre-wrap;">']
        for part in diff.parts:
            text = html.escape(part.value, quote=True)
            if part.added:
                chunks.append(f'<span style="background-color: #d4edda; color: #155724;">{text}</span>')
            elif part.removed:
                chunks.append(
                    '<span style="background-color: #f8d7da; color: #721c24; '
                    f'text-decoration: line-through;">{text}</span>'
                )
            else:
                chunks.append(text)
        chunks.append("</div>")
        return "".join(chunks)

    raise TypeError(f"Unsupported diff payload: {type(diff).__name__}")


def render_diff_text(diff: Optional[DiffPayload], limit: int = 1000) -> str:
    """Render a diff payload as plain text, marking runs as [-removed-] and {+added+}."""
    if diff is None:
        return "No changes detected"

    if isinstance(diff, ItemCountDiff):
        sign = "+" if diff.delta > 0 else ""
        return f"Item count: {diff.before} → {diff.after} ({sign}{diff.delta})"

    if isinstance(diff, TextDiff):
        chunks: Sequence[str] = [
            f"{{+{part.value}+}}" if part.added
            else f"[-{part.value}-]" if part.removed
            else part.value
            for part in diff.parts
        ]
        text = "".join(chunks)
        if len(text) > limit:
            text = text[:limit] + "..."
        return text

    raise TypeError(f"Unsupported diff payload: {type(diff).__name__}")
