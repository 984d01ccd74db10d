"""Generate the callback registration mixins for classified callback fields."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from callbackgen import helper
from callbackgen.errors import UnexpectedFieldShapeError
from callbackgen.imports import ImportResolver, lock_field_type
from callbackgen.receiver import ReceiverBinding, receiver_name
from callbackgen.type_model import ParamKind, TargetType
from callbackgen.writer_dto import (
    CallbackField,
    CallbackParam,
    FieldShape,
    GenerateOptions,
    LockScope,
    TemplateArgs,
)

logger = logging.getLogger(__name__)

INDENT = " " * 4
MIXIN_SUFFIX = "CallbacksMixin"


def mixin_name(type_name: str) -> str:
    """Name of the generated mixin class for a type, e.g. `UserCallbacksMixin`."""
    return f"{type_name}{MIXIN_SUFFIX}"


def _indent(lines: Sequence[str], depth: int = 1) -> list[str]:
    return [f"{INDENT * depth}{line}" if line else line for line in lines]


class Writer:
    """Writes one module holding a callback mixin per target type.

    Generation happens in two passes. The first pass walks every field of every
    target to discover the imports, the second pass renders the classes with
    the import set fixed.
    """

    def __init__(
        self,
        targets: Sequence[tuple[TargetType, Sequence[CallbackField]]],
        binding: ReceiverBinding,
        options: GenerateOptions | None = None,
        header: str | None = None,
    ):
        """Initialize the writer.

        Args:
            targets (Sequence[tuple[TargetType, Sequence[CallbackField]]]): Target types with their classified fields.
            binding (ReceiverBinding): Receiver identifiers of the target types.
            options (GenerateOptions | None): Generation options.
            header (str | None): A comment line written at the top of the module.
        """
        self._targets = [(target, list(fields)) for target, fields in targets]
        self._binding = binding
        self._options = options or GenerateOptions()
        self._header = header
        self._imports = ImportResolver(self._options)
        self._body: list[str] = []
        self._generated = False

        names = ", ".join(f"`{target.name}`" for target, _ in self._targets)
        self.docstring = f'"""This is an automatically generated callback module for {names}."""'

    def generate_all(self) -> None:
        """Run both passes over all targets."""
        if self._generated:
            return

        for target, fields in self._targets:
            self._imports.collect(target, fields)
        self._imports.seal()

        for target, fields in self._targets:
            self._body.append("")
            self._body.append("")
            self._body.extend(self.gen_class(target, fields))

        self._generated = True

    def gen_class(self, target: TargetType, fields: Sequence[CallbackField]) -> list[str]:
        """Render the mixin class of one target type."""
        recv_name = receiver_name(self._binding, target.full_name, target.name)
        qualify = self._imports.qualifier_for(target)

        lines = [helper.new_class_declaration(mixin_name(target.name))]
        lines.extend(_indent([f'"""Callback registration for `{target.full_name}`."""']))

        if fields:
            lines.append("")
            annotations = [f"{field.field_name}: {field.declared_type.render(qualify)}" for field in fields]

            lock_type = lock_field_type(target, self._options.lock_field)
            if lock_type is not None:
                annotations.append(f"{self._options.lock_field}: {lock_type.render(qualify)}")
            elif self._options.lock_field and any(field.is_keyed for field in fields):
                logger.warning(f"Lock field '{self._options.lock_field}' is not declared on {target.full_name}")

            lines.extend(_indent(annotations))

        for field in fields:
            args = TemplateArgs(recv_name=recv_name, field=field, qualify=qualify, options=self._options)
            for method in self.gen_field(args):
                lines.append("")
                lines.extend(_indent(method))

        logger.debug(f"Generated {3 * len(fields)} method(s) for {target.full_name}")
        return lines

    def gen_field(self, args: TemplateArgs) -> list[list[str]]:
        """Render the three operations of a field with the template matching its shape.

        Raises:
            UnexpectedFieldShapeError: If the field has no recognized shape.
        """
        if args.field.shape == FieldShape.KEYED_SEQUENCE and args.field.key_type is not None:
            return self.gen_keyed_sequence_field(args)

        if args.field.shape == FieldShape.SEQUENCE:
            return self.gen_sequence_field(args)

        raise UnexpectedFieldShapeError(
            f"{args.field.type_full_name}.{args.field.field_name} has unexpected shape {args.field.shape!r}"
        )

    # ===== Templates =====

    def gen_sequence_field(self, args: TemplateArgs) -> list[list[str]]:
        """Template for a list of callbacks."""
        field, recv = args.field, args.recv_name
        storage = f"{recv}.{field.field_name}"
        callback_type = field.element_type.render(args.qualify)
        style = args.options.method_style
        lock_all = self._lock_all(args)

        on = [
            helper.new_function(helper.method_name(field.on_stem, style), [recv, f"cb: {callback_type}"]),
            *_indent(self._guard(args, [f"{storage}.append(cb)"], lock_all)),
        ]

        emit = [
            helper.new_function(
                helper.method_name(field.emit_stem, style),
                [recv, *_signature_params(field.params, args)],
            ),
            *_indent(self._guard(args, _call_each(f"list({storage})", field.params), lock_all)),
        ]

        remove = [
            helper.new_function(
                helper.method_name(field.remove_stem, style),
                [recv, f"needle: {callback_type}"],
                "bool",
            ),
            *_indent(
                self._guard(
                    args,
                    [
                        *self._filter_needle(args, storage),
                        "",
                        "if found:",
                        f"{INDENT}{storage} = new_callbacks",
                        "",
                        "return found",
                    ],
                    lock_all,
                )
            ),
        ]

        return [on, emit, remove]

    def gen_keyed_sequence_field(self, args: TemplateArgs) -> list[list[str]]:
        """Template for a dict of callback lists; every operation takes the key first."""
        field, recv = args.field, args.recv_name
        storage = f"{recv}.{field.field_name}"
        callback_type = field.element_type.render(args.qualify)
        style = args.options.method_style
        assert field.key_type is not None
        key = field.key_param or field.key_param_name(style)
        key_param = f"{key}: {field.key_type.render(args.qualify)}"
        lock_all = self._lock_all(args)

        on = [
            helper.new_function(helper.method_name(field.on_stem, style), [recv, key_param, f"cb: {callback_type}"]),
            *_indent(
                self._guard(
                    args,
                    [
                        f"if {storage} is None:",
                        f"{INDENT}{storage} = {{}}",
                        f"{storage}.setdefault({key}, []).append(cb)",
                    ],
                    bool(args.options.lock_field),
                )
            ),
        ]

        lookup = [
            f"if {storage} is None:",
            f"{INDENT}return",
            "",
            f"callbacks = {storage}.get({key})",
            "if callbacks is None:",
            f"{INDENT}return",
            "",
        ]

        emit = [
            helper.new_function(
                helper.method_name(field.emit_stem, style),
                [recv, key_param, *_signature_params(field.params, args)],
            ),
            *_indent(self._guard(args, [*lookup, *_call_each("list(callbacks)", field.params)], lock_all)),
        ]

        remove_lookup = [line.replace("return", "return False") if line.strip() == "return" else line for line in lookup]
        remove = [
            helper.new_function(
                helper.method_name(field.remove_stem, style),
                [recv, key_param, f"needle: {callback_type}"],
                "bool",
            ),
            *_indent(
                self._guard(
                    args,
                    [
                        *remove_lookup,
                        *self._filter_needle(args, "callbacks"),
                        "",
                        "if found:",
                        f"{INDENT}{storage}[{key}] = new_callbacks",
                        "",
                        "return found",
                    ],
                    lock_all,
                )
            ),
        ]

        return [on, emit, remove]

    def _filter_needle(self, args: TemplateArgs, source: str) -> list[str]:
        """Lines that split `source` into `new_callbacks` and the callbacks matching `needle`."""
        identity_function = self._imports.identity_function
        if identity_function is not None:
            condition = f"{identity_function}(cb, needle)"
        else:
            condition = "cb is needle"

        return [
            "found = False",
            f"new_callbacks: {args.field.storage_type.render(args.qualify)} = []",
            f"for cb in {source}:",
            f"{INDENT}if {condition}:",
            f"{INDENT * 2}found = True",
            f"{INDENT}else:",
            f"{INDENT * 2}new_callbacks.append(cb)",
        ]

    def _lock_all(self, args: TemplateArgs) -> bool:
        return bool(args.options.lock_field) and args.options.lock_scope == LockScope.ALL

    def _guard(self, args: TemplateArgs, body: list[str], locked: bool) -> list[str]:
        """Wrap a method body in `with <recv>.<lock field>:` if `locked`."""
        if not locked:
            return body
        return [f"with {args.recv_name}.{args.options.lock_field}:", *_indent(body)]

    # ===== Output =====

    @property
    def imports(self) -> list[str]:
        """The import section of the module."""
        lines = ["from __future__ import annotations"]

        type_checking = self._imports.type_checking_imports
        runtime = self._imports.runtime_imports

        if type_checking:
            lines.extend(["", "from typing import TYPE_CHECKING"])
        if runtime:
            lines.append("")
            lines.extend(runtime)
        if type_checking:
            lines.extend(["", "if TYPE_CHECKING:"])
            plain = [line for line in type_checking if line.startswith("import ")]
            from_lines = [line for line in type_checking if line.startswith("from ")]
            lines.extend(_indent(plain))
            if plain and from_lines:
                lines.append("")
            lines.extend(_indent(from_lines))

        return lines

    def dumps(self) -> str:
        """Generates the module source.

        Returns:
            str: The output string.
        """
        self.generate_all()

        out: list[str] = []
        if self._header:
            out.append(self._header)
        out.append(self.docstring)
        out.append("")
        out.extend(self.imports)
        out.extend(self._body)

        return "\n".join(out) + "\n"


def _signature_params(params: Sequence[CallbackParam], args: TemplateArgs) -> list[str]:
    """Parameter declarations of an `emit_*` method, with a bare `*` before keyword-only parameters."""
    declarations: list[str] = []
    star = False

    for param in params:
        if param.kind == ParamKind.VAR_POSITIONAL:
            star = True
        elif param.kind == ParamKind.KEYWORD_ONLY and not star:
            declarations.append("*")
            star = True
        declarations.append(param.declaration(args.qualify))

    return declarations


def _call_each(source: str, params: Sequence[CallbackParam]) -> list[str]:
    arguments = helper.join_parameters([param.argument for param in params])
    return [f"for cb in {source}:", f"{INDENT}cb({arguments})"]
