"""Resolved type model consumed by the classification engine.

The engine never looks at syntax. A front-end (see `callbackgen.source_resolver`)
turns declarations into the types below and hands them over through the
`TypeResolver` protocol.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, override

Qualifier = Callable[[str, str], str]
"""Maps a (module, name) pair to the text used for it in generated code."""

BUILTINS_MODULE = "builtins"
TYPING_MODULE = "typing"
COLLECTIONS_ABC_MODULE = "collections.abc"

PRIMITIVE_TYPES = frozenset(
    {"bool", "bytearray", "bytes", "complex", "float", "int", "memoryview", "None", "object", "str"}
)


class ParamKind:
    """Kinds of callback parameters."""

    POSITIONAL = "positional"
    VAR_POSITIONAL = "var_positional"
    KEYWORD_ONLY = "keyword_only"
    VAR_KEYWORD = "var_keyword"


def full_qualifier(module: str, name: str) -> str:
    """Qualifier that spells out every non-builtin name with its module."""
    if module == BUILTINS_MODULE:
        return name
    return f"{module}.{name}"


class ResolvedType:
    """Base class of all resolved annotation types."""

    def render(self, qualify: Qualifier) -> str:
        """Render the type as annotation text.

        Args:
            qualify (Qualifier): Called for every named type that is rendered.

        Returns:
            str: The annotation text.
        """
        raise NotImplementedError

    @override
    def __str__(self) -> str:
        return self.render(full_qualifier)


@dataclass(frozen=True)
class BasicType(ResolvedType):
    """A builtin primitive, e.g. `int` or `None`."""

    name: str

    @override
    def render(self, qualify: Qualifier) -> str:
        return self.name


@dataclass(frozen=True)
class NamedType(ResolvedType):
    """A type declared under a name: class, alias, `NewType` or imported symbol.

    `underlying` is the resolved definition when the front-end could see it.
    `alias` is set for plain aliases, which name an existing type without
    declaring a new one.
    """

    module: str
    name: str
    underlying: ResolvedType | None = field(default=None, compare=False, repr=False)
    alias: bool = field(default=False, compare=False, repr=False)

    @override
    def render(self, qualify: Qualifier) -> str:
        return qualify(self.module, self.name)


@dataclass(frozen=True)
class SequenceType(ResolvedType):
    """A mutable, ordered, list-like container."""

    elem: ResolvedType

    @override
    def render(self, qualify: Qualifier) -> str:
        return f"list[{self.elem.render(qualify)}]"


@dataclass(frozen=True)
class MappingType(ResolvedType):
    """A mutable mapping from `key` to `value`."""

    key: ResolvedType
    value: ResolvedType

    @override
    def render(self, qualify: Qualifier) -> str:
        return f"dict[{self.key.render(qualify)}, {self.value.render(qualify)}]"


@dataclass(frozen=True)
class OptionalType(ResolvedType):
    """`X | None`."""

    inner: ResolvedType

    @override
    def render(self, qualify: Qualifier) -> str:
        return f"{self.inner.render(qualify)} | None"


@dataclass(frozen=True)
class UnionType(ResolvedType):
    members: tuple[ResolvedType, ...]

    @override
    def render(self, qualify: Qualifier) -> str:
        return " | ".join(member.render(qualify) for member in self.members)


@dataclass(frozen=True)
class GenericType(ResolvedType):
    """A subscripted type that is neither a sequence, a mapping nor a callable."""

    origin: ResolvedType
    args: tuple[ResolvedType, ...]

    @override
    def render(self, qualify: Qualifier) -> str:
        args = ", ".join(arg.render(qualify) for arg in self.args)
        return f"{self.origin.render(qualify)}[{args}]"


@dataclass(frozen=True)
class OpaqueType(ResolvedType):
    """An annotation the resolver does not understand; rendered verbatim."""

    text: str

    @override
    def render(self, qualify: Qualifier) -> str:
        return self.text


@dataclass(frozen=True)
class SignatureParam:
    """A single parameter of a callable signature.

    `name` is None for the positional parameters of `Callable[[...], R]`,
    `type` is None for unannotated parameters.
    """

    name: str | None
    type: ResolvedType | None
    kind: str = ParamKind.POSITIONAL
    default: str | None = None


@dataclass(frozen=True)
class SignatureType(ResolvedType):
    """A callable signature.

    `params` is None when the parameters are unknown (`Callable[..., R]`).
    """

    params: tuple[SignatureParam, ...] | None
    result: ResolvedType

    @override
    def render(self, qualify: Qualifier) -> str:
        callable_name = qualify(COLLECTIONS_ABC_MODULE, "Callable")
        result = self.result.render(qualify)

        if self.params is None or any(p.kind != ParamKind.POSITIONAL for p in self.params):
            return f"{callable_name}[..., {result}]"

        params = ", ".join(
            p.type.render(qualify) if p.type is not None else qualify(TYPING_MODULE, "Any") for p in self.params
        )
        return f"{callable_name}[[{params}], {result}]"


def signature_of(resolved: ResolvedType | None) -> SignatureType | None:
    """Find the callable signature behind a type, following named types.

    Args:
        resolved (ResolvedType | None): The type to inspect.

    Returns:
        SignatureType | None: The signature, or None if the type is not a known callable.
    """
    seen: set[int] = set()

    while isinstance(resolved, NamedType) and id(resolved) not in seen:
        seen.add(id(resolved))
        resolved = resolved.underlying

    if isinstance(resolved, SignatureType):
        return resolved

    return None


@dataclass(frozen=True)
class ModuleImport:
    """`import module` or `import module as alias`."""

    module: str
    alias: str | None = None

    @property
    def local_name(self) -> str:
        return self.alias or self.module

    @property
    def line(self) -> str:
        if self.alias and self.alias != self.module:
            return f"import {self.module} as {self.alias}"
        return f"import {self.module}"


@dataclass(frozen=True)
class SymbolImport:
    """`from module import name` or `from module import name as alias`."""

    module: str
    name: str
    alias: str | None = None

    @property
    def local_name(self) -> str:
        return self.alias or self.name

    @property
    def clause(self) -> str:
        if self.alias and self.alias != self.name:
            return f"{self.name} as {self.alias}"
        return self.name


@dataclass(frozen=True)
class ImportTable:
    """The top-level imports of a module."""

    modules: tuple[ModuleImport, ...] = ()
    symbols: tuple[SymbolImport, ...] = ()

    def symbol_import(self, module: str, name: str) -> SymbolImport | None:
        """Find the import that binds `module.name` to a local name."""
        for symbol in self.symbols:
            if symbol.module == module and symbol.name == name:
                return symbol
        return None

    def module_import(self, module: str) -> ModuleImport | SymbolImport | None:
        """Find the import that binds `module` itself to a local name.

        Both `import a.b as m` and `from a import b` bind the module `a.b`.
        """
        candidates: list[ModuleImport | SymbolImport] = [m for m in self.modules if m.module == module]
        candidates.extend(s for s in self.symbols if f"{s.module}.{s.name}" == module)

        if not candidates:
            return None

        return min(candidates, key=lambda imp: (len(imp.local_name), imp.local_name))


@dataclass(frozen=True)
class FieldDecl:
    """A field declaration; one declaration may name several fields."""

    names: tuple[str, ...]
    type: ResolvedType


@dataclass(frozen=True)
class MethodDecl:
    """A function declared in the body of a class."""

    name: str
    receiver: str | None
    kind: str = "instance"


@dataclass(frozen=True)
class TargetType:
    """A resolved class that callback methods are generated for."""

    module: str
    name: str
    fields: tuple[FieldDecl, ...] = ()
    methods: tuple[MethodDecl, ...] = ()
    imports: ImportTable = field(default_factory=ImportTable)
    path: Path | None = None

    @property
    def full_name(self) -> str:
        return f"{self.module}.{self.name}"


class TypeResolver(Protocol):
    """Supplies resolved target types to the engine."""

    def resolve(self, type_name: str) -> TargetType:
        """Look up a target type by name.

        Raises:
            TypeNotFoundError: If no loaded module declares the type.
            AmbiguousTypeError: If more than one module declares the type.
        """
        ...
