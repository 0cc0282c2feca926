"""Class path view: resolves qualified class names to Python classes.

Names follow the specification layout: modules are separated with ``.`` and
nested classes with ``$`` (``pkg.mod.Outer$Inner``). Qualified names are
resolved by importing the longest importable module prefix. Bare names are
resolved only against the modules registered with the view; ``builtins`` is
always registered first.
"""
from __future__ import annotations

import builtins
import importlib
from types import ModuleType
from typing import Iterable, Iterator

from errors import TypeNotFoundError


BUILTINS_MODULE = "builtins"


def qualified_name(cls: type) -> str:
    """Return the specification name of ``cls`` (``mod.Outer$Inner``)."""
    return f"{cls.__module__}.{cls.__qualname__.replace('.', '$')}"


def source_name(cls: type) -> str:
    """Return the name used to refer to ``cls`` in generated Python code."""
    if cls.__module__ == BUILTINS_MODULE:
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


class ClassPath:
    """The set of modules whose classes may be named without qualification."""

    def __init__(self, modules: Iterable[str | ModuleType] = ()) -> None:
        self._modules: list[ModuleType] = [builtins]
        self._cache: dict[str, type] = {}
        for module in modules:
            self.add_module(module)

    def add_module(self, module: str | ModuleType) -> ModuleType:
        if isinstance(module, str):
            module = importlib.import_module(module)
        if module not in self._modules:
            self._modules.append(module)
        return module

    @property
    def modules(self) -> list[ModuleType]:
        return list(self._modules)

    # -- resolution ---------------------------------------------------------

    def resolve_class(self, name: str) -> type:
        """Return the class named by ``name`` or raise ``TypeNotFoundError``."""
        name = name.strip()
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        outer, *nested = name.split("$")
        if "." in outer:
            cls = self._resolve_qualified(name, outer)
        else:
            cls = self._resolve_bare(name, outer)

        for inner in nested:
            candidate = cls.__dict__.get(inner)
            if not isinstance(candidate, type):
                raise TypeNotFoundError(name, f"no nested class {inner!r}")
            cls = candidate

        self._cache[name] = cls
        return cls

    def _resolve_bare(self, name: str, head: str) -> type:
        for module in self._modules:
            candidate = getattr(module, head, None)
            if isinstance(candidate, type) and candidate.__module__ == module.__name__:
                return candidate
        raise TypeNotFoundError(name, "bare name is not declared in the class path")

    def _resolve_qualified(self, name: str, outer: str) -> type:
        parts = outer.split(".")
        for split in range(len(parts) - 1, 0, -1):
            module_name = ".".join(parts[:split])
            try:
                module = importlib.import_module(module_name)
            except ImportError:
                continue
            except Exception as e:
                raise TypeNotFoundError(name, f"importing {module_name} failed: {e}") from e

            candidate: object = module
            for attr in parts[split:]:
                candidate = getattr(candidate, attr, None)
                if candidate is None:
                    break
            if isinstance(candidate, type):
                return candidate
        raise TypeNotFoundError(name)

    # -- enumeration --------------------------------------------------------

    def declared_classes(self) -> Iterator[type]:
        """Yield classes declared at the top level of the registered modules.

        ``builtins`` is skipped: it is part of every view but never under test.
        """
        for module in self._modules[1:]:
            for value in vars(module).values():
                if isinstance(value, type) and value.__module__ == module.__name__:
                    yield value
