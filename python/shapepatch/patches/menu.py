"""
Patches on the interactive model picker: the hardcoded menu entries and the
component that turns them into menu items.
"""

from typing import Dict, List, Optional, Tuple

import structlog

from shapepatch.errors import PatternNotFound
from shapepatch.models import PatchSettings
from shapepatch.patches.catalog import availability_call
from shapepatch.patching.bindings import Binding, BindingStore
from shapepatch.patching.steps import Match
from shapepatch.patching.tree import Node, Tree, parse_statements
from shapepatch.utils.js import (
    bound_names,
    call_arguments,
    declaration_keyword,
    declared_name,
    declared_value,
    declarators,
    fresh_name,
    function_parameters,
    identifier_name,
    is_member_call,
    is_string,
    member_parts,
    object_properties,
    pattern_name,
    top_level_statements,
    unwrap,
)

logger = structlog.get_logger(__name__)


# --- Menu entries ---


def _is_menu_entry(node: Optional[Node]) -> bool:
    if node is None or node.kind != "object":
        return False
    props = object_properties(node)
    return len(props) == 2 and {key for key, _ in props} == {"label", "value"} and all(is_string(v) for _, v in props)


def _is_menu_array(node: Optional[Node]) -> bool:
    if node is None or node.kind != "array":
        return False
    elements = node.named_children
    return bool(elements) and all(_is_menu_entry(e) for e in elements)


def find_menu_entries(tree: Tree, bindings: BindingStore, settings: PatchSettings) -> Match:
    """A top-level array of exactly N `{label: "...", value: "..."}` objects."""
    wrong_size = []
    for statement in top_level_statements(tree.root):
        for declarator in declarators(statement):
            name = declared_name(declarator)
            value = declared_value(declarator)
            if name is None or not _is_menu_array(value):
                continue
            count = len(value.named_children)
            if count != settings.menu_entry_count:
                wrong_size.append(f"{name} ({count})")
                continue

            logger.info("Found menu entries", name=name, count=count)
            return Match(
                target=value,
                captures=[
                    Binding.identifier("menu_entries", name),
                    Binding.node("menu_entries.declaration", statement),
                ],
                names={"menu_entries": name},
            )

    if wrong_size:
        raise PatternNotFound(
            f"label/value arrays found with the wrong size: {', '.join(wrong_size)}; "
            f"expected {settings.menu_entry_count} entries"
        )
    raise PatternNotFound("no top-level array of label/value objects")


def truncate_menu_entries(tree: Tree, match: Match, bindings: BindingStore, settings: PatchSettings) -> str:
    array = match.target
    first = array.named_children[0]
    start = array.index_of(first) + 1
    # Everything between the first element and the closing bracket, trailing comma included.
    tree.splice(array, start, len(array.children) - 1, [])
    return array.source


# --- Model menu computation ---


def _models_parameter(component: Node) -> Optional[str]:
    params = function_parameters(component)
    if not params or params[0].kind != "object_pattern":
        return None
    for key, value in object_properties(params[0]):
        if key == "models":
            return pattern_name(value)
    return None


def _state_declaration(statements: List[Node]) -> Tuple[Optional[int], Optional[str], Optional[Node]]:
    """First `[state, setState] = hook(...)`: (index, state name, hook call)."""
    for index, statement in enumerate(statements):
        for declarator in declarators(statement):
            pattern = declarator.field("name")
            value = unwrap(declared_value(declarator))
            if pattern is None or pattern.kind != "array_pattern" or value is None:
                continue
            elements = pattern.named_children
            if elements and identifier_name(elements[0]) and value.kind == "call_expression":
                return index, identifier_name(elements[0]), value
    return None, None, None


def _is_interop_import(statement: Node) -> Optional[str]:
    """`var R = X(Y(), 1)`: the bundler's ESM interop wrapper around a required module."""
    decls = declarators(statement)
    if len(decls) != 1:
        return None
    value = unwrap(declared_value(decls[0]))
    if value is None or value.kind != "call_expression":
        return None
    args = call_arguments(value)
    if len(args) != 2 or args[0].kind != "call_expression" or call_arguments(args[0]):
        return None
    if args[1].kind != "number" or args[1].text != "1":
        return None
    return declared_name(decls[0])


def _react_namespace(tree: Tree, statement: Node, hook: Node) -> Optional[str]:
    obj, _ = member_parts(hook.field("function"))
    name = identifier_name(unwrap(obj))
    if name:
        return name
    statements = top_level_statements(tree.root)
    index = statements.index(statement)
    if index > 0:
        return _is_interop_import(statements[index - 1])
    return None


def _items_declaration(statements: List[Node]) -> Optional[Node]:
    """handler = arrow, default, items = X.map(...), cancel."""
    for statement in statements:
        decls = declarators(statement)
        if len(decls) != 4 or any(declared_name(d) is None for d in decls):
            continue
        handler = unwrap(declared_value(decls[0]))
        items = unwrap(declared_value(decls[2]))
        if handler is None or handler.kind != "arrow_function":
            continue
        if items is None or not is_member_call(items, "map"):
            continue
        return statement
    return None


def find_model_menu(tree: Tree, bindings: BindingStore, settings: PatchSettings) -> Match:
    """
    The component declared next to the menu entries. Names are taken by
    position: the `models` prop, the first destructured hook state, and the
    four declarators (handler, default model, menu items, cancel option).
    """
    menu_name = bindings.name("menu_entries")

    for statement in top_level_statements(tree.root):
        decls = declarators(statement)
        names = [declared_name(d) for d in decls]
        if menu_name not in names:
            continue

        for declarator in decls[names.index(menu_name) + 1 :]:
            component = unwrap(declared_value(declarator))
            if component is None or component.kind != "arrow_function":
                continue
            models = _models_parameter(component)
            if models is None:
                continue
            body = component.field("body")
            if body is None or body.kind != "statement_block":
                raise PatternNotFound("menu component has an expression body")

            statements = body.named_children
            index, state, hook = _state_declaration(statements)
            if index is None:
                raise PatternNotFound("menu component has no [state, setState] hook declaration")
            react = _react_namespace(tree, statement, hook)
            if react is None:
                raise PatternNotFound("could not determine the React namespace of the menu component")
            items_statement = _items_declaration(statements[index + 1 :])
            if items_statement is None:
                raise PatternNotFound("menu component has no handler/default/items/cancel declaration")

            handler, default, items, cancel = [declared_name(d) for d in declarators(items_statement)]
            roles: Dict[str, str] = {
                "react": react,
                "models": models,
                "state": state,
                "handler": handler,
                "default": default,
                "items": items,
                "cancel": cancel,
            }
            logger.info("Found model menu component", **roles)
            return Match(
                target=items_statement,
                captures=[Binding.identifier(f"menu.{role}", name) for role, name in roles.items()],
                roles={"component": component},
                names=roles,
            )

    raise PatternNotFound(f"no menu component declared alongside {menu_name}")


def _menu_code(names: Dict[str, str], locals_: Dict[str, str], menu_entries: str, model_list: str, check: str) -> str:
    n, r, o, react = names["models"], names["state"], names["default"], names["react"]
    base, entry, item, err, label = locals_["base"], locals_["entry"], locals_["item"], locals_["err"], locals_["label"]
    return f"""(0, {react}.useMemo)(() => {{
    let {base} = [];
    if (Array.isArray({n}) && {n}.length > 0) {{
        {base} = {n}.map(({item}) => ({{
            label: `${{{item}.name || {item}.display_name || {item}.displayName || {item}.id}} (${{{item}.id}})`,
            value: {item}.id
        }}));
    }} else if (Array.isArray({menu_entries}) && {menu_entries}.length > 0) {{
        {base} = [...{menu_entries}];
    }} else {{
        {base} = {model_list}.map(({item}) => ({{ label: {item}, value: {item} }}));
    }}
    return {base}.filter(({entry}) => {{
        try {{
            return {check};
        }} catch ({err}) {{
            return false;
        }}
    }}).map(({entry}) => {{
        let {label} = {entry}.value === {o} ? `${{{entry}.label}} (default)` : {entry}.label;
        {label} = {entry}.value === {r} ? `${{{label}}} (current)` : {label};
        return {{ value: {entry}.value, label: {label} }};
    }});
}}, [JSON.stringify({n} || []), {r}, {o}])"""


def compute_model_menu(tree: Tree, match: Match, bindings: BindingStore, settings: PatchSettings) -> str:
    names = match.names
    menu_entries = bindings.name("menu_entries")
    model_list = bindings.name("model_list")

    taken = bound_names(match.roles["component"]) | set(names.values())
    taken |= {menu_entries, model_list, bindings.name("availability_check")}
    locals_ = {}
    for base in ("computedMenuItems", "base", "entry", "item", "err", "label"):
        locals_[base] = fresh_name(base, taken)
        taken.add(locals_[base])

    check = availability_call(bindings, f"{locals_['entry']}.value", names["models"])
    memo = _menu_code(names, locals_, menu_entries, model_list, check)

    statement = match.target
    keyword = declaration_keyword(statement)
    handler_decl, default_decl, _, cancel_decl = declarators(statement)
    computed = locals_["computedMenuItems"]
    replacement = parse_statements(
        f"{keyword.text} {handler_decl.source}, {default_decl.source}, {computed} = {memo};\n"
        f"let {names['items']} = {computed}, {cancel_decl.source};"
    )
    tree.replace(statement, replacement, separator="\n")
    return "\n".join(n.source for n in replacement)
