"""Runtime support imported by generated callback modules.

Generated `remove_on_*` methods compare callbacks with one of two functions,
picked by the `--identity` option.

`same_callback` compares callbacks by the code they run, not by value.
`functools.partial` objects and bound methods are unwrapped first, so two
closures created from the same function body, or the same method bound to two
different instances, count as the same callback. Methods of builtin types have
no code object and are compared by their owning type and name. Other callables
without a code object (builtin functions, instances with `__call__`) are
compared by object identity.

`same_object` compares by object identity. Bound methods are created anew on
every attribute access, so they are compared by instance and function instead.
"""

from __future__ import annotations

import functools
import types
from collections.abc import Callable
from typing import Any


def callback_identity(cb: Callable[..., Any]) -> object:
    """Return the object that identifies the code behind a callback.

    Args:
        cb (Callable[..., Any]): The callback.

    Returns:
        object: The code object of the callback, an `(owner, name)` pair for methods
            of builtin types, or the callable itself otherwise.
    """
    target: Any = cb
    while isinstance(target, functools.partial):
        target = target.func

    target = getattr(target, "__func__", target)
    if hasattr(target, "__code__"):
        return target.__code__

    owner = getattr(target, "__self__", None)
    if owner is None or isinstance(owner, types.ModuleType):
        return target
    if not isinstance(owner, type):
        owner = type(owner)
    return (owner, target.__name__)


def same_callback(cb: Callable[..., Any], needle: Callable[..., Any]) -> bool:
    """Whether two callbacks run the same code."""
    cb_identity, needle_identity = callback_identity(cb), callback_identity(needle)
    if isinstance(cb_identity, tuple) and isinstance(needle_identity, tuple):
        return cb_identity == needle_identity
    return cb_identity is needle_identity


def _bound_method(cb: Callable[..., Any]) -> tuple[object, object] | None:
    owner = getattr(cb, "__self__", None)
    if owner is None or isinstance(owner, types.ModuleType):
        return None
    return owner, getattr(cb, "__func__", None) or cb.__name__


def same_object(cb: Callable[..., Any], needle: Callable[..., Any]) -> bool:
    """Whether two callbacks are the same object, or the same method bound to the same instance.

    Examples:
        >>> calls = []
        >>> same_object(calls.append, calls.append)
        True
        >>> same_object(calls.append, [].append)
        False
    """
    if cb is needle:
        return True

    cb_method, needle_method = _bound_method(cb), _bound_method(needle)
    if cb_method is None or needle_method is None:
        return False
    return cb_method[0] is needle_method[0] and cb_method[1] == needle_method[1]
