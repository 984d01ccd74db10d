"""Generate registration, emit and removal methods for callback fields of Python classes."""
