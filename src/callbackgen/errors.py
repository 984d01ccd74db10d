"""Errors that abort a generation run."""

from __future__ import annotations


class CallbackGenError(Exception):
    """Base class for all fatal generator errors."""

    pass


class SourceParseError(CallbackGenError):
    """Raised when an input source file cannot be parsed."""

    pass


class TypeNotFoundError(CallbackGenError):
    """Raised when a requested type is not declared in any of the loaded modules."""

    def __init__(self, type_name: str, searched: int):
        super().__init__(f"type {type_name!r} not found in {searched} loaded module(s)")
        self.type_name = type_name


class AmbiguousTypeError(CallbackGenError):
    """Raised when a requested type name matches classes in more than one module."""

    def __init__(self, type_name: str, candidates: list[str]):
        super().__init__(
            f"type {type_name!r} is ambiguous, {len(candidates)} candidates found: {', '.join(candidates)}"
        )
        self.type_name = type_name
        self.candidates = candidates


class NoTypesError(CallbackGenError):
    """Raised when a run is asked to generate callback methods for no types at all."""

    pass


class UnexpectedFieldShapeError(CallbackGenError):
    """Raised when a callback field reaches the writer without a recognized shape."""

    pass


class OutputWriteError(CallbackGenError):
    """Raised when the generated module cannot be written."""

    pass


class PyrightValidationError(CallbackGenError):
    """Raised when pyright validation finds type errors in the generated module."""

    pass
