"""Helper functionality that is used in other modules of this package."""

from __future__ import annotations

import keyword
import re
from collections.abc import Sequence

CALLBACKS_SUFFIX = "Callbacks"
SNAKE_CALLBACKS_SUFFIX = "_callbacks"

# `By<Key>` only counts when the key starts a new word, so `dataBypassCallbacks` keeps its name.
_CAMEL_KEY_INFIX_RE = re.compile(r"By[A-Z0-9]\w*$")
_SNAKE_KEY_INFIX_RE = re.compile(r"_by_\w+$")

_SNAKE_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def sanitize_name(name: str) -> str:
    """Sanitize a name to avoid Python keywords.

    If the name is a Python keyword, append an underscore.
    E.g. 'lambda' becomes 'lambda_', 'class' becomes 'class_'.

    Args:
        name (str): The original name.

    Returns:
        str: The sanitized name.
    """
    if keyword.iskeyword(name):
        return f"{name}_"
    return name


def has_callbacks_suffix(field_name: str) -> bool:
    """Whether a field name follows the callback storage naming convention.

    Examples:
        >>> has_callbacks_suffix("snapshotCallbacks")
        True
        >>> has_callbacks_suffix("_snapshot_callbacks")
        True
        >>> has_callbacks_suffix("snapshotcallbacks")
        False
    """
    return field_name.endswith(CALLBACKS_SUFFIX) or field_name.endswith(SNAKE_CALLBACKS_SUFFIX)


def derive_event_name(field_name: str) -> str | None:
    """Derive the PascalCase event name of a callback storage field.

    The `Callbacks` suffix is removed, then a trailing `By<Key>` infix, since
    the key is carried by the field type rather than by its name.

    Args:
        field_name (str): The declared field name.

    Returns:
        str | None: The event name, None if the name does not follow the convention.
            An empty string is returned for names that consist of the suffix only.

    Examples:
        >>> derive_event_name("snapshotCallbacks")
        'Snapshot'
        >>> derive_event_name("messageByRequestIdCallbacks")
        'Message'
        >>> derive_event_name("_text_message_by_user_callbacks")
        'TextMessage'
        >>> derive_event_name("snapshots") is None
        True
    """
    if field_name.endswith(SNAKE_CALLBACKS_SUFFIX):
        stem = field_name[: -len(SNAKE_CALLBACKS_SUFFIX)]
        stem = _SNAKE_KEY_INFIX_RE.sub("", stem)
    elif field_name.endswith(CALLBACKS_SUFFIX):
        stem = field_name[: -len(CALLBACKS_SUFFIX)]
        stem = _CAMEL_KEY_INFIX_RE.sub("", stem)
    else:
        return None

    return to_pascal_case(stem.lstrip("_"))


def to_pascal_case(name: str) -> str:
    """Converts `text_message` and `textMessage` to `TextMessage`."""
    return "".join(part[:1].upper() + part[1:] for part in name.split("_") if part)


def to_snake_case(name: str) -> str:
    """Converts `RequestID` to `request_id` and `HTTPServer` to `http_server`."""
    return _SNAKE_BOUNDARY_RE.sub("_", name).lower()


def lower_first(name: str) -> str:
    """Lower-cases the first character of a name."""
    return name[:1].lower() + name[1:]


def method_name(stem: str, style: str) -> str:
    """Spell a PascalCase method stem like `OnMessageByRequestID` in the requested style.

    Args:
        stem (str): The PascalCase stem.
        style (str): Either "snake" or "pascal".

    Returns:
        str: The method name.
    """
    if style == "pascal":
        return stem
    return to_snake_case(stem)


def join_parameters(parameters: Sequence[str] | None) -> str:
    """Joins parameter strings with commas.

    Args:
        parameters (Sequence[str] | None): The parameters to join.

    Returns:
        str: The joined parameters.
    """
    if parameters is None:
        return ""
    return ", ".join(parameters)


def new_function(name: str, parameters: Sequence[str] | None = None, return_type: str = "None") -> str:
    """Create the header line of a function definition.

    Args:
        name (str): The name of the function.
        parameters (Sequence[str] | None): The parameters, including the receiver.
        return_type (str): The return type annotation.

    Returns:
        str: The function header, e.g. `def on_snapshot(self, cb: Callback) -> None:`.
    """
    return f"def {name}({join_parameters(parameters)}) -> {return_type}:"


def new_class_declaration(name: str, parameters: Sequence[str] | None = None) -> str:
    """Creates a class declaration.

    Args:
        name (str): The class name.
        parameters (Sequence[str] | None): The base classes.

    Returns:
        str: The class declaration.
    """
    if parameters:
        return f"class {name}({join_parameters(parameters)}):"
    return f"class {name}:"
