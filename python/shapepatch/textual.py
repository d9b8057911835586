"""
Text-anchored patches.

These work on the raw bundle text with regular expressions and apply as one
batch of TextEdits, before the structural patches see the text. Every edit in a
batch is expressed against the same pre-edit text.
"""

import re
from collections import Counter
from typing import List, Optional, Sequence, Tuple

import structlog

from shapepatch.diagnostics import describe_change
from shapepatch.errors import OverlappingEditsError, PatternNotFound
from shapepatch.models import LocationResult, OutcomeStatus, PatchOutcome, PatchSettings, TextEdit
from shapepatch.utils.js import js_string

logger = structlog.get_logger(__name__)

WELCOME_MESSAGE = "welcome-message"
VERSION_OUTPUT = "version-output"

_VERSION_PATTERN = re.compile(r"\}\.VERSION\} \(GitHub Copilot CLI\)")
_SESSION_ID_PATTERN = re.compile(
    r',([$\w]+)\.createElement\(([$\w]+),null,\1\.createElement\(([$\w]+),\{dimColor:!0\}," L "\),'
    r'\1\.createElement\(\3,null,"Session ID: ",[$\w]+\(\)\)\)'
)
_CHALK_CALL = re.compile(r"(?<![$\w.])([$\w]+)\.(?:rgb|hex|bold|dim|red|green|yellow|blue|magenta|cyan|gray)\(")

# Orange of the status line; the dim " L " prefix matches the Session ID line it follows.
_STATUS_COLOR = "235, 109, 13"


def apply_text_edits(text: str, edits: Sequence[TextEdit]) -> str:
    """
    Applies a batch of edits made against `text`.
    Overlapping ranges are rejected before any text is produced; two insertions
    at the same offset count as overlapping because their order is undefined.
    """
    ordered = sorted(edits, key=lambda e: (e.start, e.end))
    for edit in ordered:
        if edit.end > len(text):
            raise OverlappingEditsError(f"edit {edit.label or ''} [{edit.start}:{edit.end}] ends past the text")
    for left, right in zip(ordered, ordered[1:]):
        if right.start < left.end or right.start == left.start:
            raise OverlappingEditsError(
                f"edits {left.label or '?'} [{left.start}:{left.end}] and "
                f"{right.label or '?'} [{right.start}:{right.end}] overlap"
            )

    # Descending start order keeps the offsets of the remaining edits valid.
    result = text
    for edit in reversed(ordered):
        result = result[: edit.start] + edit.new_text + result[edit.end :]
    return result


def apply_at(text: str, location: LocationResult, new_text: str) -> str:
    return apply_text_edits(text, [TextEdit(start=location.start_index, end=location.end_index, new_text=new_text)])


# --- Welcome message ---


def find_welcome_message_location(text: str, product: str = "Github Copilot") -> Optional[LocationResult]:
    """Range of the product name literal inside the welcome banner."""
    literal = js_string(product)
    pattern = re.compile(
        r'" Welcome to ",[$\w]+\.createElement\([^,]+,\{bold:!0\},' + re.escape(literal) + r'\),"!"'
    )
    match = pattern.search(text)
    if match is None:
        return None
    start = match.start() + match.group(0).index(literal)
    return LocationResult(start_index=start, end_index=start + len(literal))


def welcome_message_edits(text: str, custom_text: str, product: str = "Github Copilot") -> List[TextEdit]:
    location = find_welcome_message_location(text, product)
    if location is None:
        raise PatternNotFound(f"no welcome banner naming {product!r}")
    return [
        TextEdit(
            start=location.start_index,
            end=location.end_index,
            new_text=js_string(custom_text),
            label=WELCOME_MESSAGE,
        )
    ]


def write_welcome_message(text: str, custom_text: str, product: str = "Github Copilot") -> str:
    return apply_text_edits(text, welcome_message_edits(text, custom_text, product))


# --- Version output ---


def find_version_output_location(text: str) -> Optional[Tuple[LocationResult, LocationResult]]:
    """
    (version string range, insertion point after the Session ID line).
    The insertion point carries the element factory, box and text component names.
    """
    version = _VERSION_PATTERN.search(text)
    if version is None:
        return None
    session = _SESSION_ID_PATTERN.search(text)
    if session is None:
        return None
    return (
        LocationResult(start_index=version.start(), end_index=version.end()),
        LocationResult(start_index=session.end(), end_index=session.end(), identifiers=list(session.groups())),
    )


def find_chalk_var(text: str) -> Optional[str]:
    """The namespace most often used for terminal colour calls."""
    counts = Counter(match.group(1) for match in _CHALK_CALL.finditer(text))
    # Method calls on `this` and on module-ish names like `console` are never chalk.
    for name in ("this", "console", "Math", "JSON", "Object"):
        counts.pop(name, None)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def version_output_edits(text: str, version: str, tool_name: str = "shapepatch") -> List[TextEdit]:
    locations = find_version_output_location(text)
    if locations is None:
        raise PatternNotFound("version string or Session ID line not found")
    chalk = find_chalk_var(text)
    if chalk is None:
        raise PatternNotFound("no chalk namespace in the bundle")

    version_location, session_location = locations
    factory, box, label = session_location.identifiers
    original = text[version_location.start_index : version_location.end_index]
    status = js_string(f"{tool_name}: v{version}")
    status_line = (
        f',{factory}.createElement({box},null,{factory}.createElement({label},{{dimColor:!0}}," L "),'
        f"{factory}.createElement({label},null,{chalk}.rgb({_STATUS_COLOR}).bold({status})))"
    )
    return [
        TextEdit(
            start=version_location.start_index,
            end=version_location.end_index,
            new_text=f"{original}\\n{version} ({tool_name})",
            label=VERSION_OUTPUT,
        ),
        TextEdit(
            start=session_location.start_index,
            end=session_location.end_index,
            new_text=status_line,
            label=VERSION_OUTPUT,
        ),
    ]


def write_version_output(text: str, version: str, tool_name: str = "shapepatch") -> str:
    return apply_text_edits(text, version_output_edits(text, version, tool_name))


# --- Batch ---


def apply_anchor_patches(text: str, settings: PatchSettings) -> Tuple[str, List[PatchOutcome]]:
    """
    Runs the configured anchor patches as one batch.
    Raises OverlappingEditsError if their edits collide.
    """
    planned = []
    if settings.welcome_text is not None:
        planned.append(
            (
                WELCOME_MESSAGE,
                "Replace the product name in the welcome banner",
                lambda: welcome_message_edits(text, settings.welcome_text, settings.product_name),
            )
        )
    if settings.tool_version is not None:
        planned.append(
            (
                VERSION_OUTPUT,
                "Show the patch tool version in the version output",
                lambda: version_output_edits(text, settings.tool_version, settings.tool_name),
            )
        )

    edits: List[TextEdit] = []
    outcomes: List[PatchOutcome] = []
    for patch_id, description, build in planned:
        try:
            batch = build()
        except PatternNotFound as e:
            logger.warning("Anchor patch not applied", patch_id=patch_id, reason=str(e))
            outcomes.append(
                PatchOutcome(patch_id=patch_id, description=description, status=OutcomeStatus.NOT_FOUND, reason=str(e))
            )
            continue
        edits.extend(batch)
        previews = [
            describe_change(text[e.start : e.end], e.new_text, settings.preview_context) for e in batch
        ]
        outcomes.append(
            PatchOutcome(
                patch_id=patch_id,
                description=description,
                status=OutcomeStatus.APPLIED,
                change="\n".join(previews),
            )
        )
        logger.info("Anchor patch applied", patch_id=patch_id, edits=len(batch))

    if not edits:
        return text, outcomes
    return apply_text_edits(text, edits), outcomes
