from typing import Iterable, List

from diff_match_patch import diff_match_patch

from shapepatch.models import OutcomeStatus, PatchOutcome

ELLIPSIS = "…"


def _clip(text: str, context: int, head: bool, tail: bool) -> str:
    """Shortens an unchanged run, keeping `context` characters next to each change."""
    if not head and not tail:
        return text
    keep_head = context if head else 0
    keep_tail = context if tail else 0
    if len(text) <= keep_head + keep_tail:
        return text
    left = text[:keep_head]
    right = text[len(text) - keep_tail :] if keep_tail else ""
    return f"{left}{ELLIPSIS}{right}"


def describe_change(before: str, after: str, context: int = 24) -> str:
    """
    Compact preview of an edit: `…ctx[-removed-]{+added+}ctx…`.
    Unchanged text is shortened to `context` characters around each change.
    """
    dmp = diff_match_patch()
    diffs = dmp.diff_main(before, after, False)
    dmp.diff_cleanupSemantic(diffs)

    parts: List[str] = []
    for i, (op, text) in enumerate(diffs):
        if op == 0:
            # An unchanged run keeps its tail before a change and its head after one.
            parts.append(_clip(text, context, head=i > 0, tail=i < len(diffs) - 1))
        elif op == -1:
            parts.append(f"[-{text}-]")
        else:
            parts.append(f"{{+{text}+}}")
    return "".join(parts)


_MARKS = {
    OutcomeStatus.APPLIED: "✅",
    OutcomeStatus.NOT_FOUND: "⚠️ ",
    OutcomeStatus.SKIPPED: "⏭️ ",
    OutcomeStatus.AMBIGUOUS: "❓",
    OutcomeStatus.FAILED: "❌",
}


def format_outcomes(outcomes: Iterable[PatchOutcome], show_changes: bool = False) -> str:
    lines = []
    for outcome in outcomes:
        line = f"{_MARKS[outcome.status]} {outcome.patch_id}: {outcome.status.value}"
        if outcome.reason:
            line += f" ({outcome.reason})"
        lines.append(line)
        for note in outcome.notes:
            lines.append(f"    note: {note}")
        if show_changes and outcome.change:
            lines.append(f"    {outcome.change}")
    return "\n".join(lines)
