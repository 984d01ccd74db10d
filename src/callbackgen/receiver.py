"""Discover the receiver name used by the hand-written methods of a type."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from callbackgen.type_model import TargetType

logger = logging.getLogger(__name__)

ReceiverBinding = dict[str, str]
"""Maps the full name of a type to the receiver identifier of its methods."""


def collect_receiver_names(targets: Iterable[TargetType]) -> ReceiverBinding:
    """Record the receiver identifier of every instance method of the given types.

    If the methods of a type use different identifiers, the last one in declaration order wins.

    Args:
        targets (Iterable[TargetType]): The types to scan.

    Returns:
        ReceiverBinding: The receiver names by full type name.
    """
    binding: ReceiverBinding = {}

    for target in targets:
        for method in target.methods:
            if method.kind != "instance" or not method.receiver:
                continue

            previous = binding.get(target.full_name)
            if previous is not None and previous != method.receiver:
                logger.debug(
                    f"{target.full_name}.{method.name} uses receiver '{method.receiver}', earlier methods use '{previous}'"
                )
            binding[target.full_name] = method.receiver

    return binding


def receiver_name(binding: ReceiverBinding, type_full_name: str, type_name: str) -> str:
    """The receiver identifier for generated methods of a type.

    Falls back to the lower-cased first character of the type name when the
    type has no instance methods.
    """
    name = binding.get(type_full_name)
    if name is None:
        name = type_name[0].lower()
        logger.debug(f"No methods found on {type_full_name}, using receiver '{name}'")
    return name
