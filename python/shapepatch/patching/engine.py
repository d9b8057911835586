import dataclasses
from typing import List, Optional, Sequence

import structlog

from shapepatch.diagnostics import describe_change
from shapepatch.errors import (
    AmbiguousMatch,
    BindingConflict,
    DependencyUnresolved,
    OverlappingEditsError,
    ParseFailure,
    PatternNotFound,
    SerializationFailure,
)
from shapepatch.models import OutcomeStatus, PatchOutcome, PatchSettings, PipelineResult
from shapepatch.patches import default_steps
from shapepatch.patching.bindings import BindingStore
from shapepatch.patching.steps import Match, PatchStep, check_order
from shapepatch.patching.tree import SourceDocument, Tree, parse
from shapepatch.textual import apply_anchor_patches

logger = structlog.get_logger(__name__)


class PatchEngine:
    """
    One patch run over one program text.

    The text is parsed once; every step sees the mutations of the steps before
    it, and bindings published by a step are readable by the steps after it.
    """

    def __init__(self, source_text: str, settings: Optional[PatchSettings] = None):
        self.settings = settings or PatchSettings()
        self.document = SourceDocument.from_text(source_text)
        self.tree: Tree = self.document.parse()
        self.bindings = BindingStore()
        self.outcomes: List[PatchOutcome] = []

    def _outcome(self, step: PatchStep, status: OutcomeStatus, **kwargs) -> PatchOutcome:
        outcome = PatchOutcome(patch_id=step.id, description=step.description, status=status, **kwargs)
        self.outcomes.append(outcome)
        log = logger.info if status == OutcomeStatus.APPLIED else logger.warning
        log("Patch finished", patch_id=step.id, status=status.value, reason=outcome.reason)
        return outcome

    def _check_captures(self, step: PatchStep, match: Match):
        """Raises BindingConflict before the transform touches the tree."""
        seen = set()
        for binding in match.captures:
            existing = self.bindings.get(binding.key)
            if existing is not None:
                raise BindingConflict(
                    f"binding {binding.key!r} already produced by {existing.producer or 'an earlier patch'}"
                )
            if binding.key in seen:
                raise BindingConflict(f"patch {step.id!r} captures {binding.key!r} twice")
            seen.add(binding.key)

    def run_step(self, step: PatchStep) -> PatchOutcome:
        missing = self.bindings.missing(step.requires)
        if missing:
            return self._outcome(
                step,
                OutcomeStatus.SKIPPED,
                reason=f"missing binding(s): {', '.join(missing)}",
                missing=missing,
            )

        try:
            match = step.finder(self.tree, self.bindings, self.settings)
            self._check_captures(step, match)
            before = "\n".join(node.source for node in match.targets)
            after = step.transform(self.tree, match, self.bindings, self.settings)
        except PatternNotFound as e:
            return self._outcome(step, OutcomeStatus.NOT_FOUND, reason=str(e))
        except AmbiguousMatch as e:
            return self._outcome(step, OutcomeStatus.AMBIGUOUS, reason=str(e), match_count=e.count)
        except DependencyUnresolved as e:
            return self._outcome(step, OutcomeStatus.SKIPPED, reason=str(e), missing=e.missing)
        except BindingConflict as e:
            return self._outcome(step, OutcomeStatus.FAILED, reason=str(e))
        except Exception as e:
            logger.error("Patch transform raised", patch_id=step.id, exc_info=True)
            return self._outcome(step, OutcomeStatus.FAILED, reason=f"{type(e).__name__}: {e}")

        for binding in match.captures:
            self.bindings.bind(dataclasses.replace(binding, producer=step.id))

        change = None
        if after is not None:
            change = describe_change(before, after, self.settings.preview_context)
        return self._outcome(step, OutcomeStatus.APPLIED, notes=list(match.notes), change=change)

    def run(self, steps: Sequence[PatchStep]) -> List[PatchOutcome]:
        check_order(steps)
        for step in steps:
            self.run_step(step)
        return self.outcomes

    def render(self) -> str:
        """Serializes the working tree; with verify_output the result must parse again."""
        body = self.tree.render()
        if self.settings.verify_output:
            try:
                parse(body)
            except ParseFailure as e:
                raise SerializationFailure(f"patched output is not valid JavaScript: {e}") from e
        return self.document.restore(body)


def apply_patches(
    source_text: str,
    settings: Optional[PatchSettings] = None,
    steps: Optional[Sequence[PatchStep]] = None,
) -> PipelineResult:
    """
    Applies the anchor patches and then the structural patch steps.
    Returns a result with text None when parsing or serialization fails, when
    anchor edits overlap, or when a required patch did not apply.
    """
    settings = settings or PatchSettings()
    steps = list(steps) if steps is not None else default_steps()
    outcomes: List[PatchOutcome] = []

    try:
        text, outcomes = apply_anchor_patches(source_text, settings)
        engine = PatchEngine(text, settings)
        outcomes.extend(engine.run(steps))
        result_text = engine.render()
    except (ParseFailure, SerializationFailure, OverlappingEditsError) as e:
        logger.error("Patch run aborted", error=str(e), error_type=type(e).__name__)
        return PipelineResult(text=None, outcomes=outcomes, error=str(e))

    result = PipelineResult(text=result_text, outcomes=outcomes, bindings=engine.bindings.identifiers())
    unmet = [
        patch_id
        for patch_id in settings.required_patches
        if result.status(patch_id) != OutcomeStatus.APPLIED
    ]
    if unmet:
        logger.error("Required patches did not apply", patches=unmet)
        result.text = None
        result.error = f"required patch(es) did not apply: {', '.join(unmet)}"
    return result
