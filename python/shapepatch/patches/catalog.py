"""
Patches on the model catalog: the built-in model id list, the availability
predicate, the resolver that picks a default model, and the config schema that
restricts model fields to the built-in list.
"""

from typing import List, Optional, Tuple

import structlog

from shapepatch.errors import AmbiguousMatch, PatternNotFound
from shapepatch.models import PatchSettings
from shapepatch.patching.bindings import Binding, BindingStore
from shapepatch.patching.steps import Match
from shapepatch.patching.tree import Node, Tree, parse_statements
from shapepatch.utils.js import (
    FUNCTION_KINDS,
    bound_names,
    call_arguments,
    callee,
    declaration_keyword,
    declared_name,
    declared_value,
    declarators,
    descendants,
    fresh_name,
    function_parameters,
    has_member,
    has_string,
    identifier_name,
    is_call_to,
    is_identifier,
    is_member_call,
    js_string,
    member_parts,
    string_value,
    top_level_statements,
    unwrap,
)

logger = structlog.get_logger(__name__)


# --- Model list ---


def _already_extended(tree: Tree, statement: Node, settings: PatchSettings) -> bool:
    siblings = tree.root.children
    index = tree.root.index_of(statement)
    for following in siblings[index + 1 :]:
        if following.kind == "comment":
            continue
        return following.kind == "try_statement" and has_string(following, settings.model_env_var)
    return False


def find_model_list(tree: Tree, bindings: BindingStore, settings: PatchSettings) -> Match:
    """
    The first top-level array declaration with at least two elements, one of
    which is a known model id string.
    """
    sentinels = set(settings.model_sentinels)
    for statement in top_level_statements(tree.root):
        for declarator in declarators(statement):
            name = declared_name(declarator)
            value = declared_value(declarator)
            if name is None or value is None or value.kind != "array":
                continue
            elements = value.named_children
            if len(elements) < 2 or not any(string_value(e) in sentinels for e in elements):
                continue

            if _already_extended(tree, statement, settings):
                raise PatternNotFound(f"model list {name} is already followed by the extension block")

            logger.info("Found model list", name=name)
            return Match(
                target=statement,
                captures=[
                    Binding.identifier("model_list", name),
                    Binding.node("model_list.declaration", statement),
                    Binding.range("model_list.range", statement.start, statement.end),
                ],
                names={"model_list": name},
            )

    raise PatternNotFound(f"no top-level array declaration contains any of {sorted(sentinels)}")


def _extension_code(list_name: str, settings: PatchSettings) -> str:
    taken = {list_name}
    names = {}
    for base in ("fs", "os", "path", "extra", "cfgPath", "raw", "cfg", "err"):
        names[base] = fresh_name(base, taken)
        taken.add(names[base])

    L = list_name
    fs, os_, path, extra = names["fs"], names["os"], names["path"], names["extra"]
    cfg_path, raw, cfg, err = names["cfgPath"], names["raw"], names["cfg"], names["err"]
    key = js_string(settings.config_key)

    return f"""try {{
    const {fs} = require("fs"), {os_} = require("os"), {path} = require("path");
    const {extra} = process.env[{js_string(settings.model_env_var)}];
    if ({extra} && typeof {extra} === "string" && !{L}.includes({extra})) {L}.push({extra});
    const {cfg_path} = {path}.join({os_}.homedir(), {js_string(settings.config_dir)}, {js_string(settings.config_file)});
    if ({fs}.existsSync({cfg_path})) {{
        try {{
            const {raw} = {fs}.readFileSync({cfg_path}, "utf8");
            const {cfg} = {raw} && {raw}.trim().startsWith("{{") ? JSON.parse({raw}) : null;
            if ({cfg} && typeof {cfg}[{key}] === "string" && !{L}.includes({cfg}[{key}])) {L}.push({cfg}[{key}]);
        }} catch ({err}) {{}}
    }}
}} catch ({err}) {{}}"""


def extend_model_list(tree: Tree, match: Match, bindings: BindingStore, settings: PatchSettings) -> str:
    injected = parse_statements(_extension_code(match.names["model_list"], settings))
    tree.insert_after(match.target, injected, separator="\n")
    return "\n".join([match.target.source] + [n.source for n in injected])


# --- Availability predicate ---


def _parameter_roles(function: Node, body: Node) -> Optional[Tuple[str, str]]:
    """(id parameter, list parameter): the list is the one `.find` is called on."""
    params = [identifier_name(p) for p in function_parameters(function)]
    if len(params) != 2 or None in params:
        return None
    for call in descendants(body, ["call_expression"]):
        if not is_member_call(call, "find"):
            continue
        obj, _ = member_parts(call.field("function"))
        name = identifier_name(obj)
        if name in params:
            other = params[1] if name == params[0] else params[0]
            return other, name
    return params[0], params[1]


def find_availability_check(tree: Tree, bindings: BindingStore, settings: PatchSettings) -> Match:
    """
    A two-parameter function whose body looks up an entry with `.find`, reads
    `.id` and `.policy`, and compares against the "disabled" policy state.
    """
    patched = []
    for statement in top_level_statements(tree.root):
        if statement.kind not in FUNCTION_KINDS:
            continue
        body = statement.field("body")
        name = identifier_name(statement.field("name"))
        if body is None or name is None:
            continue
        roles = _parameter_roles(statement, body)
        if roles is None:
            continue
        if not any(is_member_call(c, "find") for c in descendants(body, ["call_expression"])):
            continue
        if not (has_member(body, "id") and has_member(body, "policy") and has_string(body, settings.disabled_state)):
            continue
        if has_string(body, settings.embeddings_type):
            patched.append(name)
            continue

        id_param, list_param = roles
        logger.info("Found availability check", name=name, id_param=id_param, list_param=list_param)
        return Match(
            target=statement,
            captures=[
                Binding.identifier("availability_check", name),
                Binding.identifier("availability_check.id_param", id_param),
                Binding.identifier("availability_check.list_param", list_param),
                Binding.node("availability_check.parameters", statement.field("parameters")),
            ],
            roles={"body": body},
            names={"id": id_param, "list": list_param},
        )

    if patched:
        raise PatternNotFound(f"availability check {patched[0]} already has the replacement body")
    raise PatternNotFound("no two-parameter function reads .find/.id/.policy and the disabled state")


def replace_availability_check(tree: Tree, match: Match, bindings: BindingStore, settings: PatchSettings) -> str:
    model_id, models = match.names["id"], match.names["list"]
    taken = {model_id, models}
    entry = fresh_name("entry", taken)
    item = fresh_name("m", taken | {entry})
    disabled = js_string(settings.disabled_state)
    embeddings = js_string(settings.embeddings_type)

    (block,) = parse_statements(
        f"""{{
    if (!{models}) return true;
    const {entry} = {models}.find(({item}) => {item}.id === {model_id});
    if (!{entry}) return false;
    if ({entry}.capabilities && {entry}.capabilities.type === {embeddings}) return false;
    return {entry}.policy ? {entry}.policy.state !== {disabled} : true;
}}"""
    )
    tree.replace(match.roles["body"], block)
    return match.target.source


def availability_call(bindings: BindingStore, id_expr: str, list_expr: str) -> str:
    """Calls the availability check with arguments in its own parameter order."""
    name = bindings.name("availability_check")
    params = bindings.node("availability_check.parameters").named_children
    if params and identifier_name(params[0]) == bindings.name("availability_check.list_param"):
        return f"{name}({list_expr}, {id_expr})"
    return f"{name}({id_expr}, {list_expr})"


# --- Resolver fallback ---


def _lookup_statement(body: Node, list_name: str) -> Tuple[Optional[Node], Optional[str]]:
    for statement in body.named_children:
        for declarator in declarators(statement):
            name = declared_name(declarator)
            value = declared_value(declarator)
            if name is None or value is None:
                continue
            calls = [value] + list(descendants(value, ["call_expression"]))
            if any(is_member_call(c, "find", list_name) for c in calls):
                return statement, name
    return None, None


def _has_fallback(body: Node, lookup: Node) -> bool:
    statements = body.named_children
    index = statements.index(lookup)
    if index + 1 >= len(statements):
        return False
    following = statements[index + 1]
    return following.kind == "if_statement" and any(
        is_member_call(c, "isArray", "Array") for c in descendants(following, ["call_expression"])
    )


def find_model_resolver(tree: Tree, bindings: BindingStore, settings: PatchSettings) -> Match:
    """A function calling both `<model list>.find(...)` and `<availability check>(...)`."""
    list_name = bindings.name("model_list")
    check_name = bindings.name("availability_check")

    for statement in top_level_statements(tree.root):
        if statement.kind not in FUNCTION_KINDS:
            continue
        name = identifier_name(statement.field("name"))
        body = statement.field("body")
        if name is None or body is None or name == check_name:
            continue
        calls = list(descendants(body, ["call_expression"]))
        if not any(is_member_call(c, "find", list_name) for c in calls):
            continue
        if not any(is_call_to(c, check_name) for c in calls):
            continue
        params = function_parameters(statement)
        if not params or identifier_name(params[0]) is None:
            continue

        lookup, found = _lookup_statement(body, list_name)
        if lookup is None:
            raise PatternNotFound(f"resolver {name} has no declaration initialised from {list_name}.find")
        if _has_fallback(body, lookup):
            raise PatternNotFound(f"resolver {name} already has the fallback")

        logger.info("Found model resolver", name=name, lookup_var=found)
        return Match(
            target=statement,
            captures=[Binding.identifier("model_resolver", name)],
            roles={"body": body, "lookup": lookup},
            names={"found": found, "models": identifier_name(params[0])},
        )

    raise PatternNotFound(f"no function calls both {list_name}.find and {check_name}")


def add_resolver_fallback(tree: Tree, match: Match, bindings: BindingStore, settings: PatchSettings) -> str:
    found, models = match.names["found"], match.names["models"]
    taken = bound_names(match.target) | {bindings.name("availability_check")}
    entry = fresh_name("srv", taken)
    item = fresh_name("m", taken | {entry})
    check = availability_call(bindings, f"{item}.id", models)

    fallback = parse_statements(
        f"""if (!{found} && Array.isArray({models})) {{
    const {entry} = {models}.find(({item}) => {check});
    if ({entry}) {found} = {entry}.id;
}}"""
    )

    lookup = match.roles["lookup"]
    keyword = declaration_keyword(lookup)
    if keyword is not None and keyword.text == "const":
        tree.set_text(keyword, "let")
    # A declaration ended by a line break alone needs an explicit terminator before the `if`.
    separator = "" if lookup.source.rstrip().endswith(";") else ";"
    tree.insert_after(lookup, fallback, separator=separator)
    return match.target.source


# --- Schema validator ---


def _pair_parts(pair: Node) -> Tuple[Optional[str], Optional[Node]]:
    key = pair.field("key")
    if key is None:
        return None, None
    name = key.text if key.kind == "property_identifier" else string_value(key)
    return name, pair.field("value")


def _find_validator(tree: Tree, anchor_key: str) -> Optional[str]:
    for pair in tree.walk():
        if pair.kind != "pair":
            continue
        key, value = _pair_parts(pair)
        if key != anchor_key:
            continue
        value = unwrap(value)
        if value is None or value.kind != "call_expression":
            continue
        inner, prop = member_parts(value.field("function"))
        inner = unwrap(inner)
        if prop != "optional" or inner is None or inner.kind != "call_expression":
            continue
        if call_arguments(inner) or not is_identifier(callee(inner)):
            continue
        return identifier_name(callee(inner))
    return None


def _list_schema_call(node: Node, list_name: str) -> Optional[Node]:
    """For `f(<list>).optional()` returns the inner `f(<list>)` call."""
    if node.kind != "call_expression":
        return None
    inner, prop = member_parts(node.field("function"))
    inner = unwrap(inner)
    if prop != "optional" or inner is None or inner.kind != "call_expression":
        return None
    if not is_identifier(callee(inner)):
        return None
    args = call_arguments(inner)
    if len(args) == 1 and is_identifier(args[0], list_name):
        return inner
    return None


def find_schema_validator(tree: Tree, bindings: BindingStore, settings: PatchSettings) -> Match:
    """
    Every `f(<model list>).optional()` call site, plus the plain validator `V`
    taken from `<anchor key>: V().optional()`.
    """
    list_name = bindings.name("model_list")
    validator = _find_validator(tree, settings.validator_anchor_key)
    if validator is None:
        raise PatternNotFound(f"no `{settings.validator_anchor_key}: V().optional()` property names a validator")

    sites: List[Node] = []
    for node in tree.walk():
        inner = _list_schema_call(node, list_name)
        if inner is not None:
            sites.append(node)

    expected = settings.schema_match_count
    if not sites:
        raise PatternNotFound(f"no f({list_name}).optional() call sites")
    if expected is not None and len(sites) != expected:
        raise AmbiguousMatch(len(sites), f"found {len(sites)} f({list_name}).optional() call sites, expected {expected}")

    logger.info("Found schema call sites", validator=validator, count=len(sites))
    return Match(
        target=sites[0],
        others=sites[1:],
        captures=[Binding.identifier("schema_validator", validator)],
        names={"validator": validator},
    )


def swap_schema_validator(tree: Tree, match: Match, bindings: BindingStore, settings: PatchSettings) -> str:
    list_name = bindings.name("model_list")
    validator = match.names["validator"]
    for site in match.targets:
        inner = _list_schema_call(site, list_name)
        tree.set_text(callee(inner), validator)
        args = inner.field("arguments")
        tree.splice(args, 1, len(args.children) - 1, [])
    return "\n".join(site.source for site in match.targets)
