"""
Owned syntax tree for the patch engine.

tree-sitter produces an immutable concrete syntax tree. It is copied into plain
Node objects that own their children and remember the literal source between
them ("gaps"), so an edited tree renders back to text without a code generator:
untouched regions come out byte-for-byte, and replacement subtrees carry the
text they were parsed from.

All traversals are iterative. Minified bundles nest expressions thousands of
levels deep.
"""

import bisect
import itertools
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

import structlog
from tree_sitter_language_pack import get_parser

from shapepatch.errors import ParseFailure, SerializationFailure

logger = structlog.get_logger(__name__)

INTERPRETER_PREFIX = "#!"


@lru_cache(maxsize=1)
def _parser():
    return get_parser("javascript")


class OffsetIndex:
    """Maps UTF-8 byte offsets (what tree-sitter reports) to str offsets."""

    __slots__ = ("_breaks", "_extra")

    def __init__(self, text: str):
        self._breaks: List[int] = []
        self._extra: List[int] = []
        extra = 0
        for match in re.finditer(r"[^\x00-\x7f]", text):
            width = len(match.group().encode("utf-8"))
            self._breaks.append(match.start() + extra + width)
            extra += width - 1
            self._extra.append(extra)

    def char_offset(self, byte_offset: int) -> int:
        i = bisect.bisect_right(self._breaks, byte_offset)
        return byte_offset - (self._extra[i - 1] if i else 0)


class Node:
    """
    One construct of the program.

    Leaves hold their source in `text`. Inner nodes hold `children`, a parallel
    list of grammar field names, and `gaps`: len(children) + 1 strings where
    gaps[i] is the source preceding children[i] and gaps[-1] trails the last child.
    `start`/`end` are offsets into the text the node was parsed from; they go
    stale once the tree is edited and are informational only.
    """

    __slots__ = ("kind", "named", "start", "end", "children", "fields", "gaps", "text")

    def __init__(self, kind: str, named: bool = True, start: int = -1, end: int = -1, text: Optional[str] = None):
        self.kind = kind
        self.named = named
        self.start = start
        self.end = end
        self.children: List["Node"] = []
        self.fields: List[Optional[str]] = []
        self.gaps: List[str] = []
        self.text = text

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def named_children(self) -> List["Node"]:
        return [c for c in self.children if c.named and c.kind != "comment"]

    def field(self, name: str) -> Optional["Node"]:
        for child, field_name in zip(self.children, self.fields):
            if field_name == name:
                return child
        return None

    def index_of(self, child: "Node") -> int:
        for i, candidate in enumerate(self.children):
            if candidate is child:
                return i
        raise ValueError(f"{child!r} is not a child of {self!r}")

    @property
    def source(self) -> str:
        return render_node(self)

    def __repr__(self) -> str:
        if self.is_leaf:
            return f"Node({self.kind}, {self.text!r})"
        return f"Node({self.kind}, [{self.start}:{self.end}], {len(self.children)} children)"


def walk(node: Node) -> Iterator[Node]:
    """Pre-order, source-order traversal."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def render_node(node: Node) -> str:
    out: List[str] = []
    stack: List[Union[Node, str]] = [node]
    while stack:
        item = stack.pop()
        if isinstance(item, str):
            out.append(item)
            continue
        if not item.children:
            if item.text is None:
                raise SerializationFailure(f"leaf {item.kind!r} has no text")
            out.append(item.text)
            continue
        if len(item.gaps) != len(item.children) + 1:
            raise SerializationFailure(
                f"{item.kind!r} has {len(item.children)} children but {len(item.gaps)} gaps"
            )
        stack.append(item.gaps[-1])
        for i in range(len(item.children) - 1, -1, -1):
            stack.append(item.children[i])
            stack.append(item.gaps[i])
    return "".join(out)


def _signature(node: Node) -> Iterator[Tuple[str, int, Optional[str]]]:
    for current in walk(node):
        if current.kind == "comment":
            continue
        arity = sum(1 for c in current.children if c.kind != "comment")
        yield current.kind, arity, current.text if current.is_leaf else None


def structurally_equal(a: Node, b: Node) -> bool:
    """Same construct shapes, same tokens and literal values. Comments and whitespace are ignored."""
    missing = object()
    for left, right in itertools.zip_longest(_signature(a), _signature(b), fillvalue=missing):
        if left != right:
            return False
    return True


def _first_error(ts_root) -> Tuple[Optional[int], Optional[int]]:
    stack = [ts_root]
    while stack:
        current = stack.pop()
        if current.is_error or current.is_missing:
            return current.start_point[0] + 1, current.start_point[1] + 1
        if current.has_error:
            stack.extend(reversed(current.children))
    return None, None


def _convert(ts_root, data: bytes, offsets: OffsetIndex) -> Node:
    def shell(ts_node) -> Node:
        return Node(
            ts_node.type,
            named=ts_node.is_named,
            start=offsets.char_offset(ts_node.start_byte),
            end=offsets.char_offset(ts_node.end_byte),
        )

    root = shell(ts_root)
    # The root spans the whole input so leading and trailing whitespace survive a round trip.
    root.start, root.end = 0, offsets.char_offset(len(data))
    stack = [(ts_root, root, 0, len(data))]

    while stack:
        ts_node, node, lo, hi = stack.pop()
        ts_children = ts_node.children
        if not ts_children:
            node.text = data[lo:hi].decode("utf-8")
            continue

        cursor = lo
        for index, ts_child in enumerate(ts_children):
            child_start = max(ts_child.start_byte, cursor)
            node.gaps.append(data[cursor:child_start].decode("utf-8"))
            child = shell(ts_child)
            node.children.append(child)
            node.fields.append(ts_node.field_name_for_child(index))
            stack.append((ts_child, child, child_start, ts_child.end_byte))
            cursor = max(ts_child.end_byte, cursor)
        node.gaps.append(data[cursor:hi].decode("utf-8"))

    return root


def _parse_root(text: str) -> Node:
    try:
        data = text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ParseFailure(f"input is not encodable as UTF-8: {e}") from e

    ts_root = _parser().parse(data).root_node
    if ts_root.has_error:
        line, column = _first_error(ts_root)
        raise ParseFailure("input is not valid JavaScript", line, column)
    return _convert(ts_root, data, OffsetIndex(text))


def parse(text: str) -> "Tree":
    return Tree(_parse_root(text))


def parse_statements(code: str) -> List[Node]:
    """Parses a source fragment into top-level statement nodes, ready to splice into a tree."""
    root = _parse_root(code)
    statements = root.named_children
    if not statements:
        raise ParseFailure("fragment contains no statements")
    return statements


def parse_expression(code: str) -> Node:
    """
    Parses a single expression. The fragment is wrapped in parentheses so object
    literals are not mistaken for blocks.
    """
    root = _parse_root(f"({code});")
    statements = root.named_children
    if len(statements) == 1 and statements[0].kind == "expression_statement":
        wrapper = statements[0].named_children
        if len(wrapper) == 1 and wrapper[0].kind == "parenthesized_expression":
            inner = wrapper[0].named_children
            if len(inner) == 1:
                return inner[0]
    raise ParseFailure(f"fragment is not a single expression: {code[:40]!r}")


class Tree:
    """
    The mutable working tree of one run.

    Parent lookups go through a derived index that is dropped on every
    structural edit and rebuilt on the next lookup. It never owns nodes.
    """

    def __init__(self, root: Node):
        self.root = root
        self._parents: Optional[Dict[Node, Node]] = None

    def walk(self, start: Optional[Node] = None) -> Iterator[Node]:
        return walk(start or self.root)

    def statements(self) -> List[Node]:
        return self.root.named_children

    def render(self) -> str:
        return render_node(self.root)

    def invalidate(self):
        self._parents = None

    def _build_parent_index(self) -> Dict[Node, Node]:
        parents: Dict[Node, Node] = {}
        for node in walk(self.root):
            for child in node.children:
                parents[child] = node
        return parents

    def parent(self, node: Node) -> Optional[Node]:
        if self._parents is None:
            self._parents = self._build_parent_index()
        return self._parents.get(node)

    def splice(self, parent: Node, start: int, stop: int, nodes: Sequence[Node], separator: str = "") -> None:
        """
        Replaces parent.children[start:stop] with `nodes`.

        The gap in front of the removed range is kept, new nodes are joined by
        `separator`. A pure insertion (start == stop) puts `separator` in front
        of each inserted node and keeps the original gap after them.
        """
        if not 0 <= start <= stop <= len(parent.children):
            raise IndexError(f"splice [{start}:{stop}] outside {len(parent.children)} children")
        if parent.is_leaf and parent.text is not None:
            raise ValueError(f"cannot splice into leaf {parent.kind!r}")

        nodes = list(nodes)
        gaps = parent.gaps or [""]
        if start == stop:
            new_gaps = gaps[:start] + [separator] * len(nodes) + gaps[start:]
        elif nodes:
            new_gaps = gaps[: start + 1] + [separator] * (len(nodes) - 1) + gaps[stop:]
        else:
            new_gaps = gaps[:start] + [gaps[start] + gaps[stop]] + gaps[stop + 1 :]

        parent.children[start:stop] = nodes
        parent.fields[start:stop] = [None] * len(nodes)
        parent.gaps = new_gaps
        self.invalidate()

    def replace(self, old: Node, new: Union[Node, Sequence[Node]], separator: str = "") -> None:
        replacement = [new] if isinstance(new, Node) else list(new)
        if old is self.root:
            if len(replacement) != 1:
                raise ValueError("the root can only be replaced by a single node")
            self.root = replacement[0]
            self.invalidate()
            return

        parent = self.parent(old)
        if parent is None:
            raise ValueError(f"{old!r} is not part of this tree")
        index = parent.index_of(old)
        field_name = parent.fields[index]
        self.splice(parent, index, index + 1, replacement, separator)
        if len(replacement) == 1:
            parent.fields[index] = field_name

    def insert_after(self, anchor: Node, nodes: Sequence[Node], separator: str = "\n") -> None:
        parent = self.parent(anchor)
        if parent is None:
            raise ValueError(f"{anchor!r} is not part of this tree")
        index = parent.index_of(anchor) + 1
        self.splice(parent, index, index, nodes, separator)

    def set_text(self, leaf: Node, text: str) -> None:
        if not leaf.is_leaf:
            raise ValueError(f"{leaf.kind!r} is not a leaf")
        leaf.text = text


@dataclass(frozen=True)
class SourceDocument:
    """
    The original program text of one run. The interpreter directive line, if any,
    is kept aside and never handed to the parser.
    """

    text: str
    interpreter_line: Optional[str]
    body: str

    @classmethod
    def from_text(cls, text: str) -> "SourceDocument":
        if not text.startswith(INTERPRETER_PREFIX):
            return cls(text=text, interpreter_line=None, body=text)
        newline = text.find("\n")
        if newline == -1:
            return cls(text=text, interpreter_line=text, body="")
        return cls(text=text, interpreter_line=text[: newline + 1], body=text[newline + 1 :])

    def parse(self) -> Tree:
        return parse(self.body)

    def restore(self, rendered_body: str) -> str:
        if self.interpreter_line is None:
            return rendered_body
        return self.interpreter_line + rendered_body
