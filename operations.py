"""Callable operation variants.

Each variant carries the minimum state needed to execute and to print
itself; the types it is used at live in the enclosing typed operation.

| Variant          | Executes                        | Emits               |
|------------------|---------------------------------|---------------------|
| ConstructorCall  | ``C(*inputs)``                  | ``p.C(v0, v1)``     |
| MethodCall       | ``inputs[0].m(*inputs[1:])``    | ``v0.m(v1)``        |
|  (static/class)  | ``C.m(*inputs)``                | ``p.C.m(v0)``       |
| NonreceiverTerm  | nothing, returns the value      | ``42``              |
| ArrayCreation    | ``list(inputs)``                | ``[v0, v1]``        |
"""
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Any, Sequence, TextIO

from errors import PreconditionViolation
from outcome import (
    NOT_EXECUTED,
    ExceptionalExecution,
    ExecutionContext,
    ExecutionOutcome,
    NormalExecution,
    run_in_context,
)
from reflection import ConstructorHandle, MethodHandle, ReflectionPredicate
from typeterms import (
    ArrayType,
    ClassType,
    ParameterizedType,
    PrimitiveType,
    Type,
    TypeVariable,
)


def type_source(t: Type | None) -> str:
    """Name of ``t`` as written in Python source."""
    if isinstance(t, (ClassType, ParameterizedType)):
        return t.source_name
    if isinstance(t, PrimitiveType):
        return t.kind
    if isinstance(t, TypeVariable):
        return type_source(t.upper_bound())
    if isinstance(t, ArrayType):
        return "list"
    return "object"


def _receiver_source(variable: str) -> str:
    # ``1.bit_length()`` does not parse; ``(1).bit_length()`` does
    return variable if variable.isidentifier() else f"({variable})"


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class CallableOperation:
    """Uniform interface over the variants. Queries default to false."""

    @property
    def name(self) -> str:
        raise NotImplementedError

    def is_static(self) -> bool:
        return False

    def is_constructor_call(self) -> bool:
        return False

    def is_method_call(self) -> bool:
        return False

    def is_nonreceiving_value(self) -> bool:
        return False

    def is_array_creation(self) -> bool:
        return False

    def is_message(self) -> bool:
        """True for calls sent to a class or object (constructors and methods)."""
        return False

    def execute(
        self, inputs: Sequence[Any], context: ExecutionContext | None = None
    ) -> ExecutionOutcome:
        raise NotImplementedError

    def satisfies(self, predicate: ReflectionPredicate) -> bool:
        raise NotImplementedError

    def append_code(
        self,
        declaring_type: Type | None,
        input_types: Sequence[Type],
        output_type: Type,
        variables: Sequence[str],
        buf: TextIO,
    ) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Calls
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConstructorCall(CallableOperation):
    handle: ConstructorHandle

    @property
    def name(self) -> str:
        return "__init__"

    def is_constructor_call(self) -> bool:
        return True

    def is_message(self) -> bool:
        return True

    def execute(self, inputs, context=None):
        cls = self.handle.declaring_class
        return run_in_context(lambda: cls(*inputs), context)

    def satisfies(self, predicate):
        return predicate.test_callable(self.handle)

    def append_code(self, declaring_type, input_types, output_type, variables, buf):
        buf.write(f"{type_source(declaring_type)}({', '.join(variables)})")


@dataclass(frozen=True)
class MethodCall(CallableOperation):
    """An instance method call, or a static/class method call."""

    handle: MethodHandle

    @property
    def name(self) -> str:
        return self.handle.name

    def is_static(self) -> bool:
        return self.handle.is_static()

    def is_method_call(self) -> bool:
        return True

    def is_message(self) -> bool:
        return True

    def execute(self, inputs, context=None):
        name = self.name
        if self.is_static():
            cls = self.handle.declaring_class
            return run_in_context(lambda: getattr(cls, name)(*inputs), context)

        receiver, args = inputs[0], inputs[1:]
        if receiver is None:
            if context is not None and context.deadline is not None and context.deadline.expired():
                return NOT_EXECUTED
            # what ``None.m(...)`` raises, without entering user code
            return ExceptionalExecution(
                AttributeError(f"'NoneType' object has no attribute '{name}'"), 0
            )
        return run_in_context(lambda: getattr(receiver, name)(*args), context)

    def satisfies(self, predicate):
        return predicate.test_callable(self.handle)

    def append_code(self, declaring_type, input_types, output_type, variables, buf):
        if self.is_static():
            target, args = type_source(declaring_type), variables
        else:
            target, args = _receiver_source(variables[0]), variables[1:]
        buf.write(f"{target}.{self.name}({', '.join(args)})")


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------

def _float_source(value: float) -> str:
    if math.isnan(value):
        return "float('nan')"
    if math.isinf(value):
        return "float('inf')" if value > 0 else "float('-inf')"
    return repr(value)


def value_source(value: Any) -> str:
    """Python source that evaluates to ``value``."""
    if isinstance(value, bool) or value is None:
        return repr(value)
    if isinstance(value, float):
        return _float_source(value)
    if isinstance(value, complex):
        return f"complex({_float_source(value.real)}, {_float_source(value.imag)})"
    return repr(value)


@dataclass(frozen=True, eq=False)
class NonreceiverTerm(CallableOperation):
    """A literal value of a primitive, boxed primitive or ``None`` for a class type.

    Equality is by type and by the value's class and source form, so that
    ``nan`` equals itself and ``1`` differs from ``True``.
    """

    type: Type
    value: Any = None

    def __post_init__(self) -> None:
        if self.value is None:
            if isinstance(self.type, PrimitiveType) and not self.type.is_none():
                raise PreconditionViolation(f"None is not a value of {self.type.name}")
            return
        if not isinstance(self.type, (PrimitiveType, ClassType)):
            raise PreconditionViolation(f"No literals of type {self.type.name}")
        if type(self.value) not in (bool, int, float, complex, str, bytes):
            raise PreconditionViolation(
                f"Not a literal value: {type(self.value).__name__}"
            )

    def _key(self) -> tuple:
        return (self.type, type(self.value), value_source(self.value))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NonreceiverTerm):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    @property
    def name(self) -> str:
        return value_source(self.value)

    def is_static(self) -> bool:
        return True

    def is_nonreceiving_value(self) -> bool:
        return True

    def execute(self, inputs, context=None):
        if context is not None and context.deadline is not None and context.deadline.expired():
            return NOT_EXECUTED
        return NormalExecution(self.value, 0)

    def satisfies(self, predicate):
        return predicate.test_class(self.type.runtime_class)

    def append_code(self, declaring_type, input_types, output_type, variables, buf):
        buf.write(value_source(self.value))


@dataclass(frozen=True)
class ArrayCreation(CallableOperation):
    """A list of ``size`` elements of the array type's element type."""

    array_type: ArrayType
    size: int

    def __post_init__(self) -> None:
        if self.size < 0:
            raise PreconditionViolation(f"Negative array size: {self.size}")

    @property
    def name(self) -> str:
        return "new"

    def is_static(self) -> bool:
        return True

    def is_array_creation(self) -> bool:
        return True

    def execute(self, inputs, context=None):
        if context is not None and context.deadline is not None and context.deadline.expired():
            return NOT_EXECUTED
        start = time.perf_counter_ns()
        value = list(inputs[: self.size])
        return NormalExecution(value, time.perf_counter_ns() - start)

    def satisfies(self, predicate):
        return predicate.test_class(self.array_type.element.runtime_class)

    def append_code(self, declaring_type, input_types, output_type, variables, buf):
        buf.write(f"[{', '.join(variables)}]")
