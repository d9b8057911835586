from typing import Optional

import structlog

from shapepatch.errors import PatternNotFound
from shapepatch.models import PatchSettings
from shapepatch.patching.bindings import Binding, BindingStore
from shapepatch.patching.steps import Match
from shapepatch.patching.tree import Node, Tree, parse_expression
from shapepatch.utils.js import call_arguments, is_identifier, is_string, js_string, js_template, member_parts, string_value

logger = structlog.get_logger(__name__)


def _choices_wrapper(tree: Tree, option: Node, list_name: str) -> Optional[Node]:
    """The `.choices(<list>)` call wrapping `option`, if any."""
    member = tree.parent(option)
    if member is None or member.kind != "member_expression" or member.field("object") is not option:
        return None
    if member_parts(member)[1] != "choices":
        return None
    call = tree.parent(member)
    if call is None or call.kind != "call_expression" or call.field("function") is not member:
        return None
    args = call_arguments(call)
    if len(args) == 1 and is_identifier(args[0], list_name):
        return call
    return None


def find_model_option(tree: Tree, bindings: BindingStore, settings: PatchSettings) -> Match:
    """`new X("--model <model>", description)`, located by its flag string."""
    list_name = bindings.optional_name("model_list")

    for node in tree.walk():
        if node.kind != "new_expression":
            continue
        args = call_arguments(node)
        if not args or not is_string(args[0], settings.option_flag):
            continue

        notes = []
        description = args[1] if len(args) > 1 else None
        if description is not None and description.kind not in ("string", "template_string"):
            notes.append(f"description is a {description.kind}, not a literal: left unchanged")
            description = None
        elif description is not None and string_value(description) == settings.option_description:
            notes.append("description already simplified")
            description = None

        wrapper = None
        if list_name is None:
            notes.append("model list unbound: .choices check skipped")
        else:
            wrapper = _choices_wrapper(tree, node, list_name)
            if wrapper is None:
                notes.append(f"no .choices({list_name}) wrapper")

        if description is None and wrapper is None:
            raise PatternNotFound(f"{settings.option_flag} option has nothing left to change ({'; '.join(notes)})")

        roles = {"option": node}
        if description is not None:
            roles["description"] = description
        if wrapper is not None:
            roles["wrapper"] = wrapper
        logger.info("Found model option", wrapped=wrapper is not None, description=description is not None)
        return Match(
            target=wrapper or node,
            captures=[Binding.node("model_option", node)],
            roles=roles,
            notes=notes,
        )

    raise PatternNotFound(f"no constructor call with the flag {settings.option_flag!r}")


def unwrap_model_option(tree: Tree, match: Match, bindings: BindingStore, settings: PatchSettings) -> str:
    option = match.roles["option"]
    description = match.roles.get("description")
    if description is not None:
        if description.kind == "template_string":
            simplified = parse_expression(js_template(settings.option_description))
        else:
            simplified = parse_expression(js_string(settings.option_description))
        tree.replace(description, simplified)

    wrapper = match.roles.get("wrapper")
    if wrapper is not None:
        tree.replace(wrapper, option)
    return option.source
