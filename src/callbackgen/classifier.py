"""Classify the callback storage fields of a target type."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace

from callbackgen import helper
from callbackgen.receiver import ReceiverBinding, receiver_name
from callbackgen.type_model import (
    BUILTINS_MODULE,
    TYPING_MODULE,
    MappingType,
    NamedType,
    OptionalType,
    ParamKind,
    ResolvedType,
    SequenceType,
    TargetType,
    signature_of,
)
from callbackgen.writer_dto import RESERVED_LOCALS, CallbackField, CallbackParam, FieldShape, GenerateOptions

logger = logging.getLogger(__name__)

ANY_TYPE = NamedType(TYPING_MODULE, "Any")


def classify_fields(
    target: TargetType,
    binding: ReceiverBinding,
    options: GenerateOptions | None = None,
) -> list[CallbackField]:
    """Classify the callback fields of a type, in declaration order.

    Names without the `Callbacks` suffix are skipped silently. Names with the
    suffix whose type is neither a list of callbacks nor a dict of such lists
    keyed by a named type are skipped with a warning.

    Args:
        target (TargetType): The resolved type.
        binding (ReceiverBinding): Receiver names, used to keep parameter names clear of the receiver.
        options (GenerateOptions | None): Generation options; defaults apply if omitted.

    Returns:
        list[CallbackField]: One entry per qualifying field name.
    """
    options = options or GenerateOptions()
    recv_name = receiver_name(binding, target.full_name, target.name)
    fields: list[CallbackField] = []

    for decl in target.fields:
        for name in decl.names:
            if not helper.has_callbacks_suffix(name):
                continue

            event_name = helper.derive_event_name(name) or ""

            if not event_name:
                logger.warning(f"{target.name}.{name}: field name has no event name before the suffix, skipping")
                continue

            callback_field = _classify(target, name, event_name, decl.type, recv_name, options)
            if callback_field is not None:
                fields.append(callback_field)

    logger.info(f"Found {len(fields)} callback field(s) on {target.full_name}")
    return fields


def _classify(
    target: TargetType,
    name: str,
    event_name: str,
    declared: ResolvedType,
    recv_name: str,
    options: GenerateOptions,
) -> CallbackField | None:
    if isinstance(declared, SequenceType):
        return CallbackField(
            type_name=target.name,
            type_full_name=target.full_name,
            field_name=name,
            event_name=event_name,
            element_type=declared.elem,
            params=callback_params(declared.elem, {recv_name}),
            shape=FieldShape.SEQUENCE,
            declared_type=declared,
            storage_type=declared,
        )

    mapping = declared.inner if isinstance(declared, OptionalType) else declared
    if not isinstance(mapping, MappingType):
        logger.warning(
            f"{target.name}.{name}: {declared} is neither a list of callbacks nor a dict of callback lists, skipping"
        )
        return None

    if not isinstance(mapping.value, SequenceType):
        logger.warning(f"{target.name}.{name}: values of {declared} are not lists of callbacks, skipping")
        return None

    key = mapping.key
    if not isinstance(key, NamedType) or key.module in (BUILTINS_MODULE, TYPING_MODULE):
        logger.warning(f"{target.name}.{name}: key type {key} of {declared} is not a named type, skipping")
        return None

    if not _is_distinct_type(key):
        logger.warning(
            f"{target.name}.{name}: key type {key} of {declared} is an alias, not a class or NewType, skipping"
        )
        return None

    callback_field = CallbackField(
        type_name=target.name,
        type_full_name=target.full_name,
        field_name=name,
        event_name=event_name,
        element_type=mapping.value.elem,
        params=(),
        shape=FieldShape.KEYED_SEQUENCE,
        declared_type=declared,
        storage_type=mapping.value,
        key_type=key,
        mapping_type=mapping,
    )
    key_param = _unique_name(callback_field.key_param_name(options.method_style), RESERVED_LOCALS | {recv_name})
    params = callback_params(mapping.value.elem, {recv_name, key_param})

    return replace(callback_field, key_param=key_param, params=params)


def _is_distinct_type(key: NamedType) -> bool:
    """Whether a key type is a class or `NewType`, following aliases of other named types."""
    seen: set[NamedType] = set()
    while key.alias and isinstance(key.underlying, NamedType) and key not in seen:
        seen.add(key)
        key = key.underlying
    return not key.alias


def _unique_name(name: str, taken: Iterable[str]) -> str:
    taken = set(taken)
    while name in taken:
        name = f"{name}_"
    return name


def callback_params(element_type: ResolvedType, reserved: set[str]) -> tuple[CallbackParam, ...]:
    """Extract the parameters of a callback type.

    Unnamed parameters (from `Callable[[...], R]`) are named `arg0`, `arg1`, ...;
    callbacks with unknown parameters take `*args, **kwargs`. Names that are
    keywords or clash with the receiver, the key or the locals of the
    generated methods get a trailing underscore.

    Args:
        element_type (ResolvedType): The callback type.
        reserved (set[str]): Names in use by the generated method besides its locals.

    Returns:
        tuple[CallbackParam, ...]: The parameters, in order.
    """
    signature = signature_of(element_type)

    if signature is None or signature.params is None:
        if signature is None:
            logger.debug(f"Signature of callback type {element_type} is unknown, forwarding *args and **kwargs")
        return (
            CallbackParam("args", ANY_TYPE, ParamKind.VAR_POSITIONAL),
            CallbackParam("kwargs", ANY_TYPE, ParamKind.VAR_KEYWORD),
        )

    taken = set(RESERVED_LOCALS) | reserved
    params: list[CallbackParam] = []

    for i, param in enumerate(signature.params):
        name = _unique_name(helper.sanitize_name(param.name or f"arg{i}"), taken)
        taken.add(name)

        keyword = param.name if param.kind == ParamKind.KEYWORD_ONLY and param.name != name else None
        params.append(CallbackParam(name, param.type, param.kind, param.default, keyword))

    return tuple(params)
