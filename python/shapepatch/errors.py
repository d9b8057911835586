from typing import Iterable, Optional


class ShapePatchError(Exception):
    """Base class for every error raised by the patch engine."""


class ParseFailure(ShapePatchError, ValueError):
    """Input text is not syntactically valid JavaScript."""

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        if line is not None:
            message = f"{message} (line {line}, column {column})"
        super().__init__(message)
        self.line = line
        self.column = column


class SerializationFailure(ShapePatchError):
    """The working tree could not be rendered back to valid text."""


class PatternNotFound(ShapePatchError):
    """A finder found zero candidates."""


class AmbiguousMatch(ShapePatchError):
    def __init__(self, count: int, message: str):
        super().__init__(message)
        self.count = count


class DependencyUnresolved(ShapePatchError):
    def __init__(self, missing: Iterable[str]):
        self.missing = sorted(missing)
        super().__init__(f"missing binding(s): {', '.join(self.missing)}")


class BindingConflict(ShapePatchError):
    """A binding key was produced twice in one run."""


class OverlappingEditsError(ShapePatchError, ValueError):
    """Two text edits in one batch touch the same range."""
