from typing import List

from shapepatch.patches.catalog import (
    add_resolver_fallback,
    extend_model_list,
    find_availability_check,
    find_model_list,
    find_model_resolver,
    find_schema_validator,
    replace_availability_check,
    swap_schema_validator,
)
from shapepatch.patches.menu import compute_model_menu, find_menu_entries, find_model_menu, truncate_menu_entries
from shapepatch.patches.options import find_model_option, unwrap_model_option
from shapepatch.patching.steps import PatchStep

MODEL_LIST = "model-list"
AVAILABILITY_CHECK = "availability-check"
MODEL_RESOLVER = "model-resolver"
SCHEMA_VALIDATOR = "schema-validator"
MENU_ENTRIES = "menu-entries"
MODEL_MENU = "model-menu"
MODEL_OPTION = "model-option"


def default_steps() -> List[PatchStep]:
    """The model-selection patch set, in application order."""
    return [
        PatchStep(
            id=MODEL_LIST,
            description="Extend the built-in model list from the environment and the user config",
            finder=find_model_list,
            transform=extend_model_list,
            produces=("model_list", "model_list.declaration", "model_list.range"),
        ),
        PatchStep(
            id=AVAILABILITY_CHECK,
            description="Replace the model availability check",
            finder=find_availability_check,
            transform=replace_availability_check,
            produces=(
                "availability_check",
                "availability_check.id_param",
                "availability_check.list_param",
                "availability_check.parameters",
            ),
        ),
        PatchStep(
            id=MODEL_RESOLVER,
            description="Fall back to the first available runtime model when the lookup misses",
            finder=find_model_resolver,
            transform=add_resolver_fallback,
            requires=("model_list", "availability_check"),
            produces=("model_resolver",),
        ),
        PatchStep(
            id=SCHEMA_VALIDATOR,
            description="Accept any string for model fields of the config schema",
            finder=find_schema_validator,
            transform=swap_schema_validator,
            requires=("model_list",),
            produces=("schema_validator",),
        ),
        PatchStep(
            id=MENU_ENTRIES,
            description="Reduce the hardcoded model menu to its first entry",
            finder=find_menu_entries,
            transform=truncate_menu_entries,
            produces=("menu_entries", "menu_entries.declaration"),
        ),
        PatchStep(
            id=MODEL_MENU,
            description="Build the model menu from the runtime model list",
            finder=find_model_menu,
            transform=compute_model_menu,
            requires=("menu_entries", "availability_check", "model_list"),
            produces=(
                "menu.react",
                "menu.models",
                "menu.state",
                "menu.handler",
                "menu.default",
                "menu.items",
                "menu.cancel",
            ),
        ),
        PatchStep(
            id=MODEL_OPTION,
            description="Let the --model option accept any model id",
            finder=find_model_option,
            transform=unwrap_model_option,
            uses=("model_list",),
            produces=("model_option",),
        ),
    ]


__all__ = [
    "AVAILABILITY_CHECK",
    "MENU_ENTRIES",
    "MODEL_LIST",
    "MODEL_MENU",
    "MODEL_OPTION",
    "MODEL_RESOLVER",
    "SCHEMA_VALIDATOR",
    "default_steps",
]
