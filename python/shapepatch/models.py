from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TextEdit(BaseModel):
    """
    A textual range replacement against the pre-edit text.
    Pure insertions have start == end; deletions have an empty new_text.
    """

    start: int = Field(..., ge=0, description="Offset of the first replaced character.")
    end: int = Field(..., ge=0, description="Offset one past the last replaced character.")
    new_text: str = Field("", description="Replacement text for [start, end).")
    label: Optional[str] = Field(None, description="Human-readable origin of the edit (used in errors).")

    @model_validator(mode="after")
    def _check_range(self) -> "TextEdit":
        if self.end < self.start:
            raise ValueError(f"edit range is inverted: [{self.start}:{self.end}]")
        return self


class LocationResult(BaseModel):
    """Result of an anchor-based finder: a range plus any identifiers captured around it."""

    start_index: int
    end_index: int
    identifiers: List[str] = Field(default_factory=list)


class OutcomeStatus(str, Enum):
    APPLIED = "APPLIED"
    NOT_FOUND = "NOT_FOUND"
    SKIPPED = "SKIPPED"
    AMBIGUOUS = "AMBIGUOUS"
    FAILED = "FAILED"


class PatchOutcome(BaseModel):
    patch_id: str
    description: str
    status: OutcomeStatus
    reason: Optional[str] = None
    match_count: Optional[int] = Field(None, description="Number of candidates when the match was ambiguous.")
    missing: List[str] = Field(default_factory=list, description="Binding keys that were absent (SKIPPED only).")
    notes: List[str] = Field(default_factory=list)
    change: Optional[str] = Field(None, description="Compact diff preview of the edited region.")

    @property
    def applied(self) -> bool:
        return self.status == OutcomeStatus.APPLIED


class PipelineResult(BaseModel):
    text: Optional[str] = Field(None, description="Patched program text, or None when the run failed.")
    outcomes: List[PatchOutcome] = Field(default_factory=list)
    bindings: Dict[str, str] = Field(default_factory=dict, description="Identifier bindings captured during the run.")
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.text is not None

    def outcome(self, patch_id: str) -> Optional[PatchOutcome]:
        for item in self.outcomes:
            if item.patch_id == patch_id:
                return item
        return None

    def status(self, patch_id: str) -> Optional[OutcomeStatus]:
        item = self.outcome(patch_id)
        return item.status if item else None


class PatchSettings(BaseModel):
    """
    Tunables for the default patch set.
    Sentinels are literal values assumed stable between releases of the target bundle;
    everything else is what the injected code reads or writes at runtime.
    """

    model_config = ConfigDict(extra="forbid", protected_namespaces=())

    model_sentinels: List[str] = Field(
        default_factory=lambda: ["claude-sonnet-4.5", "gpt-5"],
        description="Model ids that identify the built-in model list.",
    )
    model_env_var: str = Field("COPILOT_MODEL", description="Environment variable holding an extra model id.")
    config_dir: str = Field(".copilot", description="Directory under the user's home that holds the config file.")
    config_file: str = Field("config.json", description="Config file name read by the injected code.")
    config_key: str = Field("model", description="Key of the extra model id inside the config file.")

    disabled_state: str = Field("disabled", description="Policy state marking a model as unavailable.")
    embeddings_type: str = Field("embeddings", description="Capability type that is never offered as a chat model.")

    validator_anchor_key: str = Field(
        "theme", description="Schema property whose `V().optional()` value names the plain string validator."
    )
    schema_match_count: Optional[int] = Field(
        2,
        ge=1,
        description="Exact number of schema validator call sites expected. None accepts any positive count.",
    )
    menu_entry_count: int = Field(3, ge=2, description="Number of hardcoded entries in the model menu.")

    option_flag: str = Field("--model <model>", description="Flag string of the command-line model option.")
    option_description: str = Field("Set the AI model to use", description="Replacement option description.")

    welcome_text: Optional[str] = Field(None, description="If set, replaces the product name in the welcome banner.")
    product_name: str = Field("Github Copilot", description="Product name literal in the welcome banner.")
    tool_version: Optional[str] = Field(None, description="If set, adds this version to the version output.")
    tool_name: str = Field("shapepatch", description="Name shown next to tool_version.")

    required_patches: List[str] = Field(
        default_factory=list,
        description="Patch ids that must apply; any other outcome makes the run return no text.",
    )
    verify_output: bool = Field(True, description="Re-parse rendered output and fail the run if it is invalid.")
    preview_context: int = Field(24, ge=0, description="Characters of unchanged context kept in change previews.")


def load_settings(path: Path) -> PatchSettings:
    """Loads settings from a JSON file. Missing keys keep their defaults."""
    with open(path, "r", encoding="utf-8") as f:
        content = f.read().strip()
    if not content:
        return PatchSettings()
    return PatchSettings.model_validate_json(content)
