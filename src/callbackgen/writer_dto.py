from __future__ import annotations

from dataclasses import dataclass

from callbackgen import helper
from callbackgen.type_model import MappingType, NamedType, ParamKind, Qualifier, ResolvedType

# Locals used by the generated method bodies; callback parameters must not shadow them.
RESERVED_LOCALS = frozenset({"cb", "callbacks", "found", "needle", "new_callbacks"})


class FieldShape:
    """Storage shapes of callback fields."""

    SEQUENCE = "sequence"
    KEYED_SEQUENCE = "keyed_sequence"


class LockScope:
    """Which generated operations take the configured lock."""

    REGISTER = "register"
    ALL = "all"


class IdentityMode:
    """How `remove_on_*` compares callbacks."""

    CODE = "code"
    OBJECT = "object"


class MethodStyle:
    SNAKE = "snake"
    PASCAL = "pascal"


@dataclass(frozen=True)
class GenerateOptions:
    """Options of a generation run.

    Attributes:
        lock_field: Attribute holding the lock used by keyed registration; empty disables locking.
        lock_scope: `LockScope.REGISTER` guards keyed registration only, `LockScope.ALL` every operation.
        identity: `IdentityMode.CODE` compares the code behind callbacks, `IdentityMode.OBJECT` uses `is`.
        method_style: `MethodStyle.SNAKE` (`on_snapshot`) or `MethodStyle.PASCAL` (`OnSnapshot`).
        target_alias: If set, the target module is imported under this alias instead of importing its names.
    """

    lock_field: str = ""
    lock_scope: str = LockScope.REGISTER
    identity: str = IdentityMode.CODE
    method_style: str = MethodStyle.SNAKE
    target_alias: str = ""


@dataclass(frozen=True)
class CallbackParam:
    """A parameter of a callback, repeated on the generated `emit_*` method."""

    name: str
    type: ResolvedType | None
    kind: str = ParamKind.POSITIONAL
    default: str | None = None
    keyword: str | None = None

    def declaration(self, qualify: Qualifier) -> str:
        """The parameter as written in a function signature."""
        prefix = {ParamKind.VAR_POSITIONAL: "*", ParamKind.VAR_KEYWORD: "**"}.get(self.kind, "")
        text = f"{prefix}{self.name}"

        if self.type is not None:
            text = f"{text}: {self.type.render(qualify)}"
            if self.default is not None:
                text = f"{text} = {self.default}"
        elif self.default is not None:
            text = f"{text}={self.default}"

        return text

    @property
    def argument(self) -> str:
        """The parameter as passed on to a callback."""
        if self.kind == ParamKind.VAR_POSITIONAL:
            return f"*{self.name}"
        if self.kind == ParamKind.VAR_KEYWORD:
            return f"**{self.name}"
        if self.kind == ParamKind.KEYWORD_ONLY:
            return f"{self.keyword or self.name}={self.name}"
        return self.name


@dataclass(frozen=True)
class CallbackField:
    """A classified callback storage field.

    Attributes:
        type_name: Name of the owning class (e.g. "User").
        type_full_name: Module qualified name of the owning class (e.g. "example.user.User").
        field_name: The storage attribute (e.g. "snapshot_callbacks").
        event_name: PascalCase event name (e.g. "Snapshot").
        element_type: The callback type stored in the sequence.
        params: The callback parameters, in order.
        shape: One of the `FieldShape` values.
        declared_type: The field type as declared, e.g. `dict[RequestId, list[Callback]] | None`.
        storage_type: The sequence type holding the callbacks, e.g. `list[Callback]`.
        key_type: Key type of keyed fields.
        mapping_type: Mapping type of keyed fields.
        key_param: Name of the leading key parameter of keyed operations, clear of the receiver and the locals.
    """

    type_name: str
    type_full_name: str
    field_name: str
    event_name: str
    element_type: ResolvedType
    params: tuple[CallbackParam, ...]
    shape: str
    declared_type: ResolvedType
    storage_type: ResolvedType
    key_type: NamedType | None = None
    mapping_type: MappingType | None = None
    key_param: str = ""

    @property
    def is_keyed(self) -> bool:
        return self.shape == FieldShape.KEYED_SEQUENCE

    @property
    def key_suffix(self) -> str:
        if self.key_type is None:
            return ""
        return f"By{self.key_type.name}"

    @property
    def on_stem(self) -> str:
        return f"On{self.event_name}{self.key_suffix}"

    @property
    def emit_stem(self) -> str:
        return f"Emit{self.event_name}{self.key_suffix}"

    @property
    def remove_stem(self) -> str:
        return f"RemoveOn{self.event_name}{self.key_suffix}"

    def key_param_name(self, style: str) -> str:
        """Name of the leading key parameter of keyed operations, derived from the key type."""
        if self.key_type is None:
            raise ValueError(f"field {self.field_name!r} has no key type")

        if style == MethodStyle.PASCAL:
            return helper.sanitize_name(helper.lower_first(self.key_type.name))
        return helper.sanitize_name(helper.to_snake_case(self.key_type.name))


@dataclass
class TemplateArgs:
    """Everything a template needs to render one field."""

    recv_name: str
    field: CallbackField
    qualify: Qualifier
    options: GenerateOptions
