"""Resolve target types from Python source files.

This is the front-end of the generator: it parses modules with `ast`, builds
their import tables and resolves field annotations into the type model of
`callbackgen.type_model`. Nothing is imported or executed.
"""

from __future__ import annotations

import ast
import builtins
import glob
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from callbackgen.errors import AmbiguousTypeError, SourceParseError, TypeNotFoundError
from callbackgen.type_model import (
    BUILTINS_MODULE,
    COLLECTIONS_ABC_MODULE,
    PRIMITIVE_TYPES,
    TYPING_MODULE,
    BasicType,
    FieldDecl,
    GenericType,
    ImportTable,
    MappingType,
    MethodDecl,
    ModuleImport,
    NamedType,
    OpaqueType,
    OptionalType,
    ParamKind,
    ResolvedType,
    SequenceType,
    SignatureParam,
    SignatureType,
    SymbolImport,
    TargetType,
    UnionType,
)

logger = logging.getLogger(__name__)

PY_SUFFIX = ".py"

SymbolRef = tuple[str, str]

SEQUENCE_ORIGINS: frozenset[SymbolRef] = frozenset(
    {
        (BUILTINS_MODULE, "list"),
        (TYPING_MODULE, "List"),
        (TYPING_MODULE, "MutableSequence"),
        (COLLECTIONS_ABC_MODULE, "MutableSequence"),
    }
)
MAPPING_ORIGINS: frozenset[SymbolRef] = frozenset(
    {
        (BUILTINS_MODULE, "dict"),
        (TYPING_MODULE, "Dict"),
        (TYPING_MODULE, "MutableMapping"),
        (COLLECTIONS_ABC_MODULE, "MutableMapping"),
    }
)
CALLABLE_ORIGINS: frozenset[SymbolRef] = frozenset({(TYPING_MODULE, "Callable"), (COLLECTIONS_ABC_MODULE, "Callable")})
WRAPPER_ORIGINS: frozenset[SymbolRef] = frozenset({(TYPING_MODULE, "Final"), (TYPING_MODULE, "Annotated")})
OPTIONAL_ORIGIN: SymbolRef = (TYPING_MODULE, "Optional")
UNION_ORIGIN: SymbolRef = (TYPING_MODULE, "Union")
CLASSVAR_ORIGIN: SymbolRef = (TYPING_MODULE, "ClassVar")
NEWTYPE_ORIGIN: SymbolRef = (TYPING_MODULE, "NewType")


def module_name_for(path: Path) -> str:
    """Derive the dotted module name of a source file from the packages around it.

    Args:
        path (Path): The source file.

    Returns:
        str: E.g. `example.user` for `example/user.py` if `example/__init__.py` exists.
    """
    path = path.resolve()
    parts = [] if path.stem == "__init__" else [path.stem]

    directory = path.parent
    while (directory / "__init__.py").is_file():
        parts.insert(0, directory.name)
        directory = directory.parent

    return ".".join(parts)


def discover_sources(paths: Iterable[str | Path]) -> list[Path]:
    """Expand files, package directories and glob expressions into source files.

    Directories are not searched recursively: one directory is one package.

    Args:
        paths (Iterable[str | Path]): The paths to expand.

    Returns:
        list[Path]: The sorted, de-duplicated source files.
    """
    found: set[Path] = set()

    for path in paths:
        path = Path(path)
        if path.is_dir():
            found.update(p for p in path.iterdir() if p.is_file() and p.suffix == PY_SUFFIX)
        elif path.is_file():
            found.add(path)
        else:
            matches = [Path(m) for m in glob.glob(str(path)) if m.endswith(PY_SUFFIX)]
            if not matches:
                logger.warning(f"No Python sources match '{path}'")
            found.update(matches)

    return sorted(p.resolve() for p in found)


@dataclass
class ModuleSource:
    """A parsed module and the names it declares and imports."""

    name: str
    path: Path
    tree: ast.Module
    imports: ImportTable
    definitions: dict[str, ast.stmt] = field(default_factory=dict)
    classes: dict[str, ast.ClassDef] = field(default_factory=dict)

    @property
    def package(self) -> list[str]:
        parts = self.name.split(".") if self.name else []
        if self.path.stem == "__init__":
            return parts
        return parts[:-1]

    def local_modules(self) -> dict[str, str]:
        """Local expressions that refer to whole modules, e.g. `np` -> `numpy`, `os.path` -> `os.path`."""
        bound: dict[str, str] = {}
        for module_import in self.imports.modules:
            if module_import.alias:
                bound[module_import.alias] = module_import.module
                continue

            # `import a.b` binds `a` and makes `a.b` reachable through it
            parts = module_import.module.split(".")
            for i in range(1, len(parts) + 1):
                prefix = ".".join(parts[:i])
                bound.setdefault(prefix, prefix)
        return bound


def _top_level_statements(body: Sequence[ast.stmt]) -> Iterable[ast.stmt]:
    """Yield module level statements, looking into `if` and `try` blocks (e.g. `if TYPE_CHECKING:`)."""
    for stmt in body:
        if isinstance(stmt, ast.If):
            yield from _top_level_statements(stmt.body)
            yield from _top_level_statements(stmt.orelse)
        elif isinstance(stmt, ast.Try):
            yield from _top_level_statements(stmt.body)
            for handler in stmt.handlers:
                yield from _top_level_statements(handler.body)
            yield from _top_level_statements(stmt.orelse)
        else:
            yield stmt


def _absolute_module(package: list[str], level: int, module: str | None) -> str:
    """Resolve the module of a (possibly relative) `from ... import` statement."""
    if level == 0:
        return module or ""

    base = package[: len(package) - (level - 1)] if level > 1 else list(package)
    if module:
        base.append(module)
    return ".".join(base)


def parse_module(path: Path) -> ModuleSource:
    """Parse a source file and collect its imports and top-level definitions.

    Args:
        path (Path): The source file.

    Raises:
        SourceParseError: If the file cannot be read or is not valid Python.

    Returns:
        ModuleSource: The parsed module.
    """
    try:
        source = path.read_text(encoding="utf8")
        tree = ast.parse(source, filename=str(path))
    except (OSError, SyntaxError, ValueError) as e:
        raise SourceParseError(f"cannot parse {path}: {e}") from e

    module = ModuleSource(name=module_name_for(path), path=path, tree=tree, imports=ImportTable())

    module_imports: list[ModuleImport] = []
    symbol_imports: list[SymbolImport] = []

    for stmt in _top_level_statements(tree.body):
        if isinstance(stmt, ast.Import):
            module_imports.extend(ModuleImport(alias.name, alias.asname) for alias in stmt.names)

        elif isinstance(stmt, ast.ImportFrom):
            from_module = _absolute_module(module.package, stmt.level, stmt.module)
            symbol_imports.extend(
                SymbolImport(from_module, alias.name, alias.asname) for alias in stmt.names if alias.name != "*"
            )

        elif isinstance(stmt, ast.ClassDef):
            module.classes[stmt.name] = stmt
            module.definitions[stmt.name] = stmt

        elif isinstance(stmt, ast.Assign) and len(stmt.targets) == 1 and isinstance(stmt.targets[0], ast.Name):
            module.definitions[stmt.targets[0].id] = stmt

        elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name) and stmt.value is not None:
            module.definitions[stmt.target.id] = stmt

        elif isinstance(stmt, ast.TypeAlias) and isinstance(stmt.name, ast.Name):
            module.definitions[stmt.name.id] = stmt

    module.imports = ImportTable(modules=tuple(module_imports), symbols=tuple(symbol_imports))
    logger.debug(f"Parsed module '{module.name}' from {path} ({len(module.classes)} class(es))")
    return module


class SourceResolver:
    """A `TypeResolver` backed by Python source files."""

    def __init__(self, modules: Sequence[ModuleSource]):
        """Initialize the resolver with parsed modules.

        Args:
            modules (Sequence[ModuleSource]): The modules that target types are looked up in.
        """
        self._modules = list(modules)
        self._by_name: dict[str, ModuleSource] = {}
        for module in self._modules:
            self._by_name.setdefault(module.name, module)

        self._named_cache: dict[SymbolRef, NamedType] = {}
        self._resolving: set[SymbolRef] = set()

    @classmethod
    def from_paths(cls, paths: Iterable[str | Path]) -> SourceResolver:
        """Create a resolver from files, package directories or glob expressions."""
        sources = discover_sources(paths)
        logger.info(f"Loading {len(sources)} source file(s)")
        return cls([parse_module(path) for path in sources])

    @property
    def modules(self) -> list[ModuleSource]:
        return list(self._modules)

    def resolve(self, type_name: str) -> TargetType:
        """Look up a class by name (or by `module.Class`) and resolve its declarations.

        Raises:
            TypeNotFoundError: If no loaded module declares the class.
            AmbiguousTypeError: If more than one loaded module declares the class.
        """
        if "." in type_name:
            module_name, class_name = type_name.rsplit(".", 1)
            candidates = [m for m in self._modules if m.name == module_name and class_name in m.classes]
        else:
            class_name = type_name
            candidates = [m for m in self._modules if class_name in m.classes]

        if not candidates:
            raise TypeNotFoundError(type_name, len(self._modules))

        if len(candidates) > 1:
            raise AmbiguousTypeError(type_name, [f"{m.name}.{class_name} ({m.path})" for m in candidates])

        module = candidates[0]
        class_def = module.classes[class_name]
        methods = self._collect_methods(class_def)

        return TargetType(
            module=module.name,
            name=class_name,
            fields=tuple(self._collect_fields(module, class_def, methods)),
            methods=tuple(methods),
            imports=module.imports,
            path=module.path,
        )

    # ===== Declarations =====

    def _collect_methods(self, class_def: ast.ClassDef) -> list[MethodDecl]:
        methods: list[MethodDecl] = []

        for stmt in class_def.body:
            if not isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
                continue

            decorators = {ast.unparse(d) for d in stmt.decorator_list}
            positional = stmt.args.posonlyargs + stmt.args.args
            receiver = positional[0].arg if positional else None

            if decorators & {"staticmethod", "builtins.staticmethod"}:
                methods.append(MethodDecl(stmt.name, None, "static"))
            elif decorators & {"classmethod", "builtins.classmethod"}:
                methods.append(MethodDecl(stmt.name, receiver, "class"))
            else:
                methods.append(MethodDecl(stmt.name, receiver, "instance"))

        return methods

    def _collect_fields(
        self, module: ModuleSource, class_def: ast.ClassDef, methods: list[MethodDecl]
    ) -> list[FieldDecl]:
        """Collect annotated fields from the class body, then from `self.x: T = ...` in `__init__`."""
        fields: list[FieldDecl] = []
        declared: set[str] = set()

        for stmt in class_def.body:
            if not (isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name)):
                continue
            if self._origin_of(module, stmt.annotation) == CLASSVAR_ORIGIN:
                continue

            fields.append(FieldDecl((stmt.target.id,), self.resolve_annotation(module, stmt.annotation)))
            declared.add(stmt.target.id)

        init = next(
            (s for s in class_def.body if isinstance(s, ast.FunctionDef) and s.name == "__init__"),
            None,
        )
        receiver = next((m.receiver for m in methods if m.name == "__init__"), None)
        if init is None or receiver is None:
            return fields

        for node in ast.walk(init):
            if not (isinstance(node, ast.AnnAssign) and isinstance(node.target, ast.Attribute)):
                continue
            target = node.target
            if not (isinstance(target.value, ast.Name) and target.value.id == receiver):
                continue
            if target.attr in declared:
                continue

            fields.append(FieldDecl((target.attr,), self.resolve_annotation(module, node.annotation)))
            declared.add(target.attr)

        return fields

    # ===== Annotations =====

    def resolve_annotation(self, module: ModuleSource, expr: ast.expr) -> ResolvedType:
        """Resolve an annotation expression written in `module`.

        Args:
            module (ModuleSource): The module the annotation appears in.
            expr (ast.expr): The annotation.

        Returns:
            ResolvedType: The resolved type; `OpaqueType` for anything not understood.
        """
        if isinstance(expr, ast.Constant):
            if expr.value is None:
                return BasicType("None")
            if isinstance(expr.value, str):
                try:
                    forward = ast.parse(expr.value, mode="eval").body
                except SyntaxError:
                    return OpaqueType(expr.value)
                return self.resolve_annotation(module, forward)
            return OpaqueType(ast.unparse(expr))

        if isinstance(expr, (ast.Name, ast.Attribute)):
            ref = self._lookup(module, expr)
            if ref is None:
                logger.debug(f"Unresolved name '{ast.unparse(expr)}' in module '{module.name}'")
                return OpaqueType(ast.unparse(expr))
            return self._resolve_ref(ref)

        if isinstance(expr, ast.BinOp) and isinstance(expr.op, ast.BitOr):
            return self._union(module, [expr.left, expr.right])

        if isinstance(expr, ast.Subscript):
            return self._resolve_subscript(module, expr)

        return OpaqueType(ast.unparse(expr))

    def _resolve_subscript(self, module: ModuleSource, expr: ast.Subscript) -> ResolvedType:
        origin = self._origin_of(module, expr)
        args = list(expr.slice.elts) if isinstance(expr.slice, ast.Tuple) else [expr.slice]

        if origin in SEQUENCE_ORIGINS and len(args) == 1:
            return SequenceType(self.resolve_annotation(module, args[0]))

        if origin in MAPPING_ORIGINS and len(args) == 2:
            return MappingType(self.resolve_annotation(module, args[0]), self.resolve_annotation(module, args[1]))

        if origin == OPTIONAL_ORIGIN and len(args) == 1:
            return OptionalType(self.resolve_annotation(module, args[0]))

        if origin == UNION_ORIGIN:
            return self._union(module, args)

        if origin in WRAPPER_ORIGINS:
            return self.resolve_annotation(module, args[0])

        if origin in CALLABLE_ORIGINS and len(args) == 2:
            return self._resolve_callable(module, args[0], args[1])

        base = self.resolve_annotation(module, expr.value)
        return GenericType(base, tuple(self.resolve_annotation(module, arg) for arg in args))

    def _resolve_callable(self, module: ModuleSource, params: ast.expr, result: ast.expr) -> SignatureType:
        resolved_result = self.resolve_annotation(module, result)

        if isinstance(params, ast.List):
            return SignatureType(
                tuple(SignatureParam(None, self.resolve_annotation(module, p)) for p in params.elts),
                resolved_result,
            )

        return SignatureType(None, resolved_result)

    def _union(self, module: ModuleSource, exprs: list[ast.expr]) -> ResolvedType:
        members: list[ResolvedType] = []
        for expr in exprs:
            resolved = self.resolve_annotation(module, expr)
            if isinstance(resolved, UnionType):
                members.extend(resolved.members)
            elif isinstance(resolved, OptionalType):
                members.extend([resolved.inner, BasicType("None")])
            else:
                members.append(resolved)

        optional = BasicType("None") in members
        rest = [m for m in members if m != BasicType("None")]

        if not rest:
            return BasicType("None")

        inner = rest[0] if len(rest) == 1 else UnionType(tuple(rest))
        return OptionalType(inner) if optional else inner

    # ===== Names =====

    def _origin_of(self, module: ModuleSource, expr: ast.expr) -> SymbolRef | None:
        """The symbol a (possibly subscripted) annotation refers to, e.g. `("typing", "List")`."""
        if isinstance(expr, ast.Subscript):
            expr = expr.value
        if not isinstance(expr, (ast.Name, ast.Attribute)):
            return None
        return self._lookup(module, expr)

    def _lookup(self, module: ModuleSource, expr: ast.Name | ast.Attribute) -> SymbolRef | None:
        """Find the module and name that a name or dotted expression refers to."""
        ref: SymbolRef | None = None

        if isinstance(expr, ast.Name):
            name = expr.id
            symbol = next((s for s in module.imports.symbols if s.local_name == name), None)

            if name in module.definitions:
                ref = (module.name, name)
            elif symbol is not None:
                ref = (symbol.module, symbol.name)
            elif hasattr(builtins, name):
                ref = (BUILTINS_MODULE, name)
        else:
            ref = self._lookup_dotted(module, ast.unparse(expr))

        if ref is not None and ref[0] == "typing_extensions":
            ref = (TYPING_MODULE, ref[1])

        return ref

    def _lookup_dotted(self, module: ModuleSource, dotted: str) -> SymbolRef | None:
        local_modules = module.local_modules()
        parts = dotted.split(".")

        # longest module prefix wins: `os.path.sep` is `sep` in `os.path`
        for i in range(len(parts) - 1, 0, -1):
            prefix = ".".join(parts[:i])
            if prefix in local_modules:
                return (local_modules[prefix], ".".join(parts[i:]))

        # `from a import b` followed by `b.X`
        symbol = next((s for s in module.imports.symbols if s.local_name == parts[0]), None)
        if symbol is not None and len(parts) > 1:
            return (f"{symbol.module}.{symbol.name}", ".".join(parts[1:]))

        return None

    def _resolve_ref(self, ref: SymbolRef) -> ResolvedType:
        module_name, name = ref

        if module_name == BUILTINS_MODULE and name in PRIMITIVE_TYPES:
            return BasicType(name)

        if module_name == BUILTINS_MODULE and name in ("list", "dict"):
            # unparameterized containers say nothing about their elements
            return OpaqueType(name)

        if ref in self._named_cache:
            return self._named_cache[ref]

        if ref in self._resolving:
            return NamedType(module_name, name)

        self._resolving.add(ref)
        try:
            named = NamedType(module_name, name, underlying=self._underlying(ref), alias=self._is_alias(ref))
        finally:
            self._resolving.discard(ref)

        self._named_cache[ref] = named
        return named

    def _is_alias(self, ref: SymbolRef) -> bool:
        """Whether a name is bound by `X = Y` or `type X = Y` rather than by `class` or `NewType`."""
        module_name, name = ref
        module = self._by_name.get(module_name)
        if module is None or name not in module.definitions:
            return False

        stmt = module.definitions[name]
        if isinstance(stmt, ast.TypeAlias):
            return True
        value = stmt.value if isinstance(stmt, (ast.Assign, ast.AnnAssign)) else None
        return value is not None and not isinstance(value, ast.Call)

    def _underlying(self, ref: SymbolRef) -> ResolvedType | None:
        """Resolve the definition behind a name if its module is loaded."""
        module_name, name = ref
        module = self._by_name.get(module_name)
        if module is None or name not in module.definitions:
            return None

        stmt = module.definitions[name]

        if isinstance(stmt, ast.ClassDef):
            return self._call_signature(module, stmt)

        if isinstance(stmt, ast.TypeAlias):
            return self.resolve_annotation(module, stmt.value)

        value = stmt.value if isinstance(stmt, (ast.Assign, ast.AnnAssign)) else None
        if value is None:
            return None

        if isinstance(value, ast.Call):
            if isinstance(value.func, (ast.Name, ast.Attribute)) and self._lookup(module, value.func) == NEWTYPE_ORIGIN:
                if len(value.args) == 2:
                    return self.resolve_annotation(module, value.args[1])
            return None

        return self.resolve_annotation(module, value)

    def _call_signature(self, module: ModuleSource, class_def: ast.ClassDef) -> SignatureType | None:
        """The signature of a callable class (e.g. a `Protocol` with `__call__`), without the receiver."""
        call = next(
            (s for s in class_def.body if isinstance(s, (ast.FunctionDef, ast.AsyncFunctionDef)) and s.name == "__call__"),
            None,
        )
        if call is None:
            return None

        args = call.args
        params: list[SignatureParam] = []

        positional = args.posonlyargs + args.args
        defaults: list[ast.expr | None] = [None] * (len(positional) - len(args.defaults)) + list(args.defaults)
        for arg, default in list(zip(positional, defaults))[1:]:
            params.append(self._param(module, arg, ParamKind.POSITIONAL, default))

        if args.vararg is not None:
            params.append(self._param(module, args.vararg, ParamKind.VAR_POSITIONAL, None))

        for arg, default in zip(args.kwonlyargs, args.kw_defaults):
            params.append(self._param(module, arg, ParamKind.KEYWORD_ONLY, default))

        if args.kwarg is not None:
            params.append(self._param(module, args.kwarg, ParamKind.VAR_KEYWORD, None))

        result = self.resolve_annotation(module, call.returns) if call.returns is not None else BasicType("None")
        return SignatureType(tuple(params), result)

    def _param(self, module: ModuleSource, arg: ast.arg, kind: str, default: ast.expr | None) -> SignatureParam:
        return SignatureParam(
            name=arg.arg,
            type=self.resolve_annotation(module, arg.annotation) if arg.annotation is not None else None,
            kind=kind,
            default=ast.unparse(default) if default is not None else None,
        )
