"""
Shape predicates and accessors over JavaScript syntax nodes.
Everything here works on node kinds, arity and literal values, never on identifier spellings.
"""

import re
from typing import Iterable, Iterator, List, Optional, Set, Tuple

from shapepatch.patching.tree import Node, walk

DECLARATION_KINDS = ("lexical_declaration", "variable_declaration")
FUNCTION_KINDS = ("function_declaration", "generator_function_declaration")

_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "b": "\b", "f": "\f", "v": "\v", "0": "\0"}
_ESCAPE_PATTERN = re.compile(r"\\(u\{[0-9a-fA-F]+\}|u[0-9a-fA-F]{4}|x[0-9a-fA-F]{2}|\r\n|[\s\S])")


def _unescape(raw: str) -> str:
    def replace(match: re.Match) -> str:
        seq = match.group(1)
        if seq.startswith("u{"):
            return chr(int(seq[2:-1], 16))
        if seq[0] in "ux" and len(seq) > 1:
            return chr(int(seq[1:], 16))
        if seq in ("\n", "\r\n", "\u2028", "\u2029"):
            return ""
        return _ESCAPES.get(seq, seq)

    return _ESCAPE_PATTERN.sub(replace, raw)


def string_value(node: Optional[Node]) -> Optional[str]:
    """Value of a string literal, or of a template literal without substitutions."""
    if node is None:
        return None
    if node.kind == "template_string":
        if any(c.kind == "template_substitution" for c in node.children):
            return None
    elif node.kind != "string":
        return None
    return _unescape(node.source[1:-1])


def is_string(node: Optional[Node], value: Optional[str] = None) -> bool:
    literal = string_value(node)
    return literal is not None and (value is None or literal == value)


def identifier_name(node: Optional[Node]) -> Optional[str]:
    if node is not None and node.kind == "identifier":
        return node.text
    return None


def is_identifier(node: Optional[Node], name: Optional[str] = None) -> bool:
    spelling = identifier_name(node)
    return spelling is not None and (name is None or spelling == name)


def top_level_statements(root: Node) -> List[Node]:
    return [c for c in root.named_children if c.kind != "hash_bang_line"]


def declarators(statement: Node) -> List[Node]:
    if statement.kind not in DECLARATION_KINDS:
        return []
    return [c for c in statement.children if c.kind == "variable_declarator"]


def declaration_keyword(statement: Node) -> Optional[Node]:
    """The `var` / `let` / `const` token of a declaration statement."""
    if statement.kind not in DECLARATION_KINDS:
        return None
    for child in statement.children:
        if not child.named and child.text in ("var", "let", "const"):
            return child
    return None


def declared_name(declarator: Node) -> Optional[str]:
    return identifier_name(declarator.field("name"))


def declared_value(declarator: Node) -> Optional[Node]:
    return declarator.field("value")


def unwrap(node: Optional[Node]) -> Optional[Node]:
    """
    Strips parentheses and comma sequences, so `(0, ns.fn)` yields `ns.fn`.
    Bundlers emit that form for namespaced calls.
    """
    while node is not None:
        if node.kind == "parenthesized_expression":
            inner = node.named_children
            node = inner[0] if inner else None
        elif node.kind == "sequence_expression":
            inner = node.named_children
            node = inner[-1] if inner else None
        else:
            return node
    return None


def member_parts(node: Optional[Node]) -> Tuple[Optional[Node], Optional[str]]:
    """(object, property name) of a member expression, else (None, None)."""
    node = unwrap(node)
    if node is None or node.kind != "member_expression":
        return None, None
    prop = node.field("property")
    return node.field("object"), prop.text if prop is not None and prop.is_leaf else None


def call_arguments(call: Node) -> List[Node]:
    args = call.field("arguments")
    if args is None or args.kind != "arguments":
        return []
    return args.named_children


def callee(call: Node) -> Optional[Node]:
    return unwrap(call.field("function"))


def is_member_call(node: Node, prop: str, obj_name: Optional[str] = None) -> bool:
    """`x.prop(...)`, optionally with `x` spelled `obj_name`."""
    if node.kind != "call_expression":
        return False
    obj, name = member_parts(node.field("function"))
    if name != prop:
        return False
    return obj_name is None or is_identifier(obj, obj_name)


def is_call_to(node: Node, name: str) -> bool:
    return node.kind == "call_expression" and is_identifier(callee(node), name)


def descendants(node: Node, kinds: Optional[Iterable[str]] = None) -> Iterator[Node]:
    wanted = set(kinds) if kinds is not None else None
    for current in walk(node):
        if current is node:
            continue
        if wanted is None or current.kind in wanted:
            yield current


def has_member(node: Node, prop: str) -> bool:
    return any(member_parts(m)[1] == prop for m in descendants(node, ["member_expression"]))


def has_string(node: Node, value: str) -> bool:
    return any(is_string(s, value) for s in descendants(node, ["string", "template_string"]))


def function_parameters(function: Node) -> List[Node]:
    params = function.field("parameters")
    if params is None:
        single = function.field("parameter")
        return [single] if single is not None else []
    return params.named_children


def object_properties(obj: Node) -> List[Tuple[Optional[str], Node]]:
    """(key, value) for each `pair` of an object literal or object pattern."""
    result = []
    for child in obj.named_children:
        if child.kind in ("pair", "pair_pattern"):
            key = child.field("key")
            if key is None:
                continue
            if key.kind in ("property_identifier", "identifier"):
                name = key.text
            else:
                name = string_value(key)
            result.append((name, child.field("value")))
        elif child.kind in ("shorthand_property_identifier", "shorthand_property_identifier_pattern"):
            result.append((child.text, child))
        else:
            result.append((None, child))
    return result


def pattern_name(node: Optional[Node]) -> Optional[str]:
    """Identifier bound by a pattern element, looking through `= default`."""
    if node is not None and node.kind in ("assignment_pattern", "object_assignment_pattern"):
        node = node.field("left")
    if node is not None and node.kind == "shorthand_property_identifier_pattern":
        return node.text
    return identifier_name(node)


def bound_names(scope: Node) -> Set[str]:
    return {n.text for n in descendants(scope, ["identifier", "shorthand_property_identifier_pattern"])}


def fresh_name(base: str, taken: Iterable[str]) -> str:
    """`base`, or `base2`, `base3`, ... whichever is not in `taken`."""
    taken = set(taken)
    if base not in taken:
        return base
    suffix = 2
    while f"{base}{suffix}" in taken:
        suffix += 1
    return f"{base}{suffix}"


def js_string(value: str) -> str:
    """Double-quoted JavaScript string literal."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n").replace("\r", "\\r")
    return f'"{escaped}"'


def js_template(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("`", "\\`").replace("${", "\\${")
    return f"`{escaped}`"
