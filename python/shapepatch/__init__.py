from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from shapepatch.models import PatchSettings, PipelineResult, load_settings
from shapepatch.patching.engine import PatchEngine, apply_patches

try:
    __version__ = version("shapepatch")
except PackageNotFoundError:
    # Running from a source checkout without installation.
    _version_file = Path(__file__).parent / "VERSION"
    if _version_file.is_file():
        __version__ = _version_file.read_text().strip()
    else:
        __version__ = "0.0.0-dev"

__all__ = [
    "PatchEngine",
    "PatchSettings",
    "PipelineResult",
    "apply_patches",
    "load_settings",
    "__version__",
]
