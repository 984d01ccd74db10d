"""Work out the imports needed by generated code and how to spell type names."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from callbackgen.type_model import (
    BUILTINS_MODULE,
    ModuleImport,
    Qualifier,
    ResolvedType,
    SymbolImport,
    TargetType,
)
from callbackgen.writer_dto import CallbackField, GenerateOptions, IdentityMode

logger = logging.getLogger(__name__)

RUNTIME_MODULE = "callbackgen.runtime"
IDENTITY_FUNCTIONS = {IdentityMode.CODE: "same_callback", IdentityMode.OBJECT: "same_object"}


class ImportResolver:
    """Collects imports in a first pass over all fields, then serves the qualifier for rendering.

    Type names are spelled relative to the module of the target type:

    - names from the target module are imported by name (or through the target alias, if configured),
    - names the target module imports are spelled the way the target module spells them,
    - everything else is fully qualified.

    All type imports are only needed by annotations and end up in an `if TYPE_CHECKING:` block.
    """

    def __init__(self, options: GenerateOptions):
        self._options = options
        self._module_imports: set[ModuleImport] = set()
        self._symbol_imports: set[SymbolImport] = set()
        self._runtime_imports: set[SymbolImport] = set()
        self._bound: dict[str, tuple[str, str]] = {}
        self._sealed = False

    def qualifier_for(self, target: TargetType) -> Qualifier:
        """The qualifier for types used in the generated methods of `target`."""

        def qualify(module: str, name: str) -> str:
            return self._qualify(target, module, name)

        return qualify

    def collect(self, target: TargetType, fields: Iterable[CallbackField]) -> None:
        """First pass: walk every type the generated code of `target` mentions.

        Args:
            target (TargetType): The type the fields belong to.
            fields (Iterable[CallbackField]): Its classified fields.
        """
        if self._sealed:
            raise RuntimeError("imports were already sealed, collect all fields before rendering")

        qualify = self.qualifier_for(target)
        fields = list(fields)

        for field in fields:
            field.declared_type.render(qualify)
            field.storage_type.render(qualify)
            field.element_type.render(qualify)
            if field.key_type is not None:
                field.key_type.render(qualify)
            for param in field.params:
                param.declaration(qualify)

        lock_type = lock_field_type(target, self._options.lock_field)
        if fields and lock_type is not None:
            lock_type.render(qualify)

        if fields:
            self._runtime_imports.add(SymbolImport(RUNTIME_MODULE, IDENTITY_FUNCTIONS[self._options.identity]))

    def seal(self) -> None:
        """End the first pass; qualifying a name that needs a new import is an error afterwards."""
        self._sealed = True
        logger.debug(
            f"Resolved {len(self._module_imports) + len(self._symbol_imports)} type import(s) "
            f"and {len(self._runtime_imports)} runtime import(s)"
        )

    @property
    def identity_function(self) -> str | None:
        function = IDENTITY_FUNCTIONS[self._options.identity]
        if SymbolImport(RUNTIME_MODULE, function) in self._runtime_imports:
            return function
        return None

    @property
    def runtime_imports(self) -> list[str]:
        return _import_lines(set(), self._runtime_imports)

    @property
    def type_checking_imports(self) -> list[str]:
        return _import_lines(self._module_imports, self._symbol_imports)

    # ===== Qualification =====

    def _qualify(self, target: TargetType, module: str, name: str) -> str:
        if module == BUILTINS_MODULE:
            return name

        head, _, rest = name.partition(".")
        suffix = f".{rest}" if rest else ""

        if module == target.module:
            if self._options.target_alias:
                self._add_module(ModuleImport(module, self._options.target_alias))
                return f"{self._options.target_alias}.{name}"

            local = self._bind_symbol(SymbolImport(module, head))
            if local is not None:
                return f"{local}{suffix}"

        symbol = target.imports.symbol_import(module, head)
        if symbol is not None:
            local = self._bind_symbol(symbol)
            if local is not None:
                return f"{local}{suffix}"

        binding = target.imports.module_import(module)
        if isinstance(binding, ModuleImport):
            self._add_module(binding)
            return f"{binding.local_name}.{name}"

        if isinstance(binding, SymbolImport):
            local = self._bind_symbol(binding)
            if local is not None:
                return f"{local}.{name}"

        self._add_module(ModuleImport(module))
        return f"{module}.{name}"

    def _bind_symbol(self, symbol: SymbolImport) -> str | None:
        """Import a symbol under its local name, unless that name already refers to something else."""
        origin = (symbol.module, symbol.name)
        bound = self._bound.get(symbol.local_name)

        if bound is not None and bound != origin:
            logger.debug(f"'{symbol.local_name}' already refers to {'.'.join(bound)}, qualifying {'.'.join(origin)}")
            return None

        if symbol not in self._symbol_imports:
            self._check_open(symbol.clause)
            self._symbol_imports.add(symbol)
            self._bound[symbol.local_name] = origin

        return symbol.local_name

    def _add_module(self, module_import: ModuleImport) -> None:
        if module_import not in self._module_imports:
            self._check_open(module_import.line)
            self._module_imports.add(module_import)

    def _check_open(self, what: str) -> None:
        if self._sealed:
            raise RuntimeError(f"import of {what!r} discovered after the import pass")


def lock_field_type(target: TargetType, lock_field: str) -> ResolvedType | None:
    """The declared type of the lock field of `target`, if it has one."""
    if not lock_field:
        return None

    for decl in target.fields:
        if lock_field in decl.names:
            return decl.type
    return None


def _import_lines(modules: set[ModuleImport], symbols: set[SymbolImport]) -> list[str]:
    """Render imports in a stable order: plain imports first, then `from` imports, each sorted by module."""
    lines = sorted({m.line for m in modules})

    by_module: dict[str, set[str]] = {}
    for symbol in symbols:
        by_module.setdefault(symbol.module, set()).add(symbol.clause)

    for module in sorted(by_module):
        lines.append(f"from {module} import {', '.join(sorted(by_module[module]))}")

    return lines
