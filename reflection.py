"""Reflective handles over the callables of Python classes.

Layers
------
CallableHandle          base: declaring class, name, underlying function
ConstructorHandle       the effective ``__init__`` of a class
MethodHandle            an instance method, ``staticmethod`` or ``classmethod``
declared_operations()   every supported handle a class declares
find_constructor()      match a constructor by parameter type names
find_method()           match a method by name and parameter type names
ReflectionPredicate     filter used by ``satisfies`` on operations

A handle is *supported* when all of its inputs can be passed positionally:
required keyword-only parameters make it unsupported, ``*args``/``**kwargs``
and optional keyword-only parameters are never passed. Overloads declared
with ``typing.overload`` become one handle each; the implementation is used
only when a function has no overloads.
"""
from __future__ import annotations

import inspect
import logging
import re
import typing
from dataclasses import dataclass, field
from typing import Any, Iterator, Protocol, Sequence

from classpath import qualified_name
from typeterms import (
    OBJECT,
    PRIMITIVE_KINDS,
    Type,
    erase_to_raw_name,
    for_annotation,
    generic_class_type,
)

logger = logging.getLogger(__name__)

CONSTRUCTOR = "constructor"
INSTANCE = "instance"
STATIC = "static"
CLASS = "class"

_POSITIONAL = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)


def canonical_type_name(name: str) -> str:
    """Fold a boxed primitive name onto the primitive (``builtins.int`` -> ``int``)."""
    name = "".join(name.split())
    base = name.rstrip("[]")
    suffix = name[len(base):]
    if base.startswith("builtins."):
        kind = base[len("builtins."):]
        if kind in PRIMITIVE_KINDS and kind != "None":
            return kind + suffix
    return name


def same_type_names(left: Sequence[str], right: Sequence[str]) -> bool:
    """Compare parameter type name lists up to boxing."""
    return len(left) == len(right) and all(
        canonical_type_name(a) == canonical_type_name(b) for a, b in zip(left, right)
    )


# ---------------------------------------------------------------------------
# Handles
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CallableHandle:
    declaring_class: type
    name: str
    function: Any = field(repr=False)
    kind: str = INSTANCE

    # -- parameters ---------------------------------------------------------

    def _signature(self) -> inspect.Signature | None:
        try:
            return inspect.signature(self.function)
        except (TypeError, ValueError):
            return None

    def _parameters(self) -> list[inspect.Parameter]:
        signature = self._signature()
        if signature is None:
            return []
        params = list(signature.parameters.values())
        if self.kind in (CONSTRUCTOR, INSTANCE, CLASS) and params:
            params = params[1:]
        return params

    def parameters(self) -> list[inspect.Parameter]:
        """Parameters that receive an input, in declaration order."""
        return [p for p in self._parameters() if p.kind in _POSITIONAL]

    def is_supported(self) -> bool:
        if self._signature() is None:
            return False
        return not any(
            p.kind is inspect.Parameter.KEYWORD_ONLY and p.default is inspect.Parameter.empty
            for p in self._parameters()
        )

    @property
    def parameter_count(self) -> int:
        return len(self.parameters())

    def _hints(self) -> dict[str, Any]:
        try:
            return typing.get_type_hints(self.function)
        except Exception as e:
            logger.debug("Cannot resolve annotations of %s: %s", self.describe(), e)
            return {}

    def generic_parameter_types(self) -> tuple[Type, ...]:
        hints = self._hints()
        return tuple(
            for_annotation(hints[p.name]) if p.name in hints else OBJECT
            for p in self.parameters()
        )

    def parameter_types(self) -> tuple[type, ...]:
        return tuple(t.runtime_class for t in self.generic_parameter_types())

    def parameter_type_names(self) -> list[str]:
        return [erase_to_raw_name(t) for t in self.generic_parameter_types()]

    def generic_return_type(self) -> Type:
        hints = self._hints()
        if "return" not in hints:
            return OBJECT
        return for_annotation(hints["return"])

    # -- queries ------------------------------------------------------------

    def is_static(self) -> bool:
        return self.kind in (STATIC, CLASS)

    def is_constructor(self) -> bool:
        return self.kind == CONSTRUCTOR

    def describe(self) -> str:
        params = ", ".join(self.parameter_type_names())
        return f"{qualified_name(self.declaring_class)}.{self.name}({params})"

    def __str__(self) -> str:
        return self.describe()


@dataclass(frozen=True)
class ConstructorHandle(CallableHandle):
    kind: str = CONSTRUCTOR

    def generic_return_type(self) -> Type:
        return generic_class_type(self.declaring_class)


@dataclass(frozen=True)
class MethodHandle(CallableHandle):
    pass


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

def _effective_init(cls: type):
    for klass in cls.__mro__:
        if "__init__" in klass.__dict__:
            return klass.__dict__["__init__"]
    return object.__init__


def constructors(cls: type) -> list[ConstructorHandle]:
    init = _effective_init(cls)
    if init is object.__init__:
        # object.__init__ takes no inputs; inspect reports (self, /, *args, **kwargs)
        return [ConstructorHandle(cls, "__init__", _no_inputs)]
    handles = [ConstructorHandle(cls, "__init__", f) for f in _variants(init)]
    return [h for h in handles if h.is_supported()]


def _no_inputs(self) -> None:
    pass


def _variants(func) -> list:
    # slot wrappers and builtins carry no overload registry
    if not inspect.isfunction(func):
        return [func]
    return list(typing.get_overloads(func)) or [func]


def methods(cls: type, name: str | None = None) -> list[MethodHandle]:
    """Methods declared directly by ``cls``, optionally only those named ``name``."""
    found: list[MethodHandle] = []
    for attr, raw in cls.__dict__.items():
        if name is not None and attr != name:
            continue
        if attr.startswith("__") and attr.endswith("__"):
            continue
        if isinstance(raw, staticmethod):
            kind, func = STATIC, raw.__func__
        elif isinstance(raw, classmethod):
            kind, func = CLASS, raw.__func__
        elif inspect.isfunction(raw):
            kind, func = INSTANCE, raw
        else:
            continue
        for variant in _variants(func):
            handle = MethodHandle(cls, attr, variant, kind)
            if handle.is_supported():
                found.append(handle)
            else:
                logger.debug("Skipping unsupported callable %s", handle.describe())
    return found


def declared_operations(cls: type) -> list[CallableHandle]:
    """The constructor(s) and methods declared by ``cls``, in declaration order."""
    handles: list[CallableHandle] = []
    if not inspect.isabstract(cls):
        handles.extend(constructors(cls))
    handles.extend(methods(cls))
    return handles


def find_constructor(cls: type, type_names: Sequence[str]) -> list[ConstructorHandle]:
    """Constructors of ``cls`` whose parameter type names match, first declared first."""
    return [h for h in constructors(cls) if same_type_names(h.parameter_type_names(), type_names)]


def find_method(cls: type, name: str, type_names: Sequence[str]) -> list[MethodHandle]:
    """Methods named ``name`` visible from ``cls`` whose parameter type names match.

    The nearest class in the MRO that declares ``name`` is searched, so an
    override hides the method it overrides.
    """
    for klass in cls.__mro__:
        if name in klass.__dict__:
            return [
                h for h in methods(klass, name)
                if same_type_names(h.parameter_type_names(), type_names)
            ]
    return []


def overridden(handle: MethodHandle) -> Iterator[MethodHandle]:
    """Methods ``handle`` overrides, nearest first, walking the MRO once."""
    names = handle.parameter_type_names()
    seen: set[type] = {handle.declaring_class}
    for klass in handle.declaring_class.__mro__[1:]:
        if klass in seen:
            continue
        seen.add(klass)
        for candidate in methods(klass, handle.name):
            if same_type_names(candidate.parameter_type_names(), names):
                yield candidate


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

class ReflectionPredicate(Protocol):
    def test_class(self, cls: type) -> bool: ...

    def test_callable(self, handle: CallableHandle) -> bool: ...


class DefaultReflectionPredicate:
    """Accepts public classes and callables not matched by ``omit``."""

    def __init__(self, omit: str | re.Pattern | None = None) -> None:
        self.omit = re.compile(omit) if isinstance(omit, str) else omit

    def _omitted(self, text: str) -> bool:
        return self.omit is not None and self.omit.search(text) is not None

    def test_class(self, cls: type) -> bool:
        if cls.__name__.startswith("_"):
            return False
        return not self._omitted(qualified_name(cls))

    def test_callable(self, handle: CallableHandle) -> bool:
        if not self.test_class(handle.declaring_class):
            return False
        if not handle.is_constructor() and handle.name.startswith("_"):
            return False
        return not self._omitted(handle.describe())
