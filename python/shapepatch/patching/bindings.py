from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple, Union

import structlog

from shapepatch.errors import BindingConflict, DependencyUnresolved
from shapepatch.patching.tree import Node

logger = structlog.get_logger(__name__)


class BindingKind:
    IDENTIFIER = "identifier"
    NODE = "node"
    RANGE = "range"


BindingValue = Union[str, Node, Tuple[int, int]]


@dataclass(frozen=True)
class Binding:
    """A named capture produced by a finder and read by later patches."""

    key: str
    kind: str
    value: BindingValue
    producer: Optional[str] = None

    @classmethod
    def identifier(cls, key: str, name: str) -> "Binding":
        return cls(key=key, kind=BindingKind.IDENTIFIER, value=name)

    @classmethod
    def node(cls, key: str, node: Node) -> "Binding":
        return cls(key=key, kind=BindingKind.NODE, value=node)

    @classmethod
    def range(cls, key: str, start: int, end: int) -> "Binding":
        return cls(key=key, kind=BindingKind.RANGE, value=(start, end))


class BindingStore:
    """
    Write-once store of bindings for one run.
    Finders only read from it; the engine publishes a patch's captures after the
    patch applied.
    """

    def __init__(self):
        self._items: Dict[str, Binding] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def __iter__(self) -> Iterator[Binding]:
        return iter(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def bind(self, binding: Binding) -> None:
        if binding.key in self._items:
            existing = self._items[binding.key]
            raise BindingConflict(
                f"binding {binding.key!r} already produced by {existing.producer or 'an earlier patch'}"
            )
        self._items[binding.key] = binding
        logger.debug("binding published", key=binding.key, kind=binding.kind, producer=binding.producer)

    def get(self, key: str) -> Optional[Binding]:
        return self._items.get(key)

    def require(self, key: str) -> Binding:
        binding = self._items.get(key)
        if binding is None:
            raise DependencyUnresolved([key])
        return binding

    def name(self, key: str) -> str:
        """Spelling of an identifier binding."""
        binding = self.require(key)
        if binding.kind != BindingKind.IDENTIFIER:
            raise TypeError(f"binding {key!r} is a {binding.kind}, not an identifier")
        return binding.value  # type: ignore[return-value]

    def optional_name(self, key: str) -> Optional[str]:
        if key not in self._items:
            return None
        return self.name(key)

    def node(self, key: str) -> Node:
        binding = self.require(key)
        if binding.kind != BindingKind.NODE:
            raise TypeError(f"binding {key!r} is a {binding.kind}, not a node")
        return binding.value  # type: ignore[return-value]

    def missing(self, keys) -> List[str]:
        return [key for key in keys if key not in self._items]

    def identifiers(self) -> Dict[str, str]:
        return {b.key: b.value for b in self._items.values() if b.kind == BindingKind.IDENTIFIER}
