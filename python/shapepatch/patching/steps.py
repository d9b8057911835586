from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from shapepatch.models import PatchSettings
from shapepatch.patching.bindings import Binding, BindingStore
from shapepatch.patching.tree import Node, Tree


@dataclass
class Match:
    """
    What a finder located.

    target: the node the transform edits; with `others`, the regions shown in the change preview.
    captures: bindings published once the patch has applied.
    roles: nodes the transform needs, keyed by structural role.
    """

    target: Node
    others: List[Node] = field(default_factory=list)
    captures: List[Binding] = field(default_factory=list)
    roles: Dict[str, Node] = field(default_factory=dict)
    names: Dict[str, str] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)

    @property
    def targets(self) -> List[Node]:
        return [self.target] + self.others


Finder = Callable[[Tree, BindingStore, PatchSettings], Match]
# Returns the new text of the targeted regions, used for the change preview.
Transform = Callable[[Tree, Match, BindingStore, PatchSettings], Optional[str]]


@dataclass(frozen=True)
class PatchStep:
    id: str
    description: str
    finder: Finder
    transform: Transform
    requires: Tuple[str, ...] = ()
    uses: Tuple[str, ...] = ()
    produces: Tuple[str, ...] = ()


def check_order(steps: Sequence[PatchStep]) -> None:
    """
    Every required binding must be produced by an earlier step; ids must be
    unique and no binding key may have two producers.
    """
    producers: Dict[str, str] = {}
    seen = set()
    for step in steps:
        if step.id in seen:
            raise ValueError(f"duplicate patch id {step.id!r}")
        seen.add(step.id)
        unresolved = [key for key in step.requires + step.uses if key not in producers]
        unresolved = [key for key in unresolved if any(key in later.produces for later in steps)]
        if unresolved:
            raise ValueError(f"patch {step.id!r} runs before the producer of {', '.join(unresolved)}")
        for key in step.produces:
            if key in producers:
                raise ValueError(f"binding {key!r} is produced by both {producers[key]!r} and {step.id!r}")
            producers[key] = step.id
