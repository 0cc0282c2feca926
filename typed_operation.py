"""Typed operations: callable operations decorated with their types.

| Kind     | declaring_type | input_types                  | output_type         |
|----------|----------------|------------------------------|---------------------|
| ctor     | C              | parameter types              | C                   |
| method   | C              | (C, *parameter types)        | declared return     |
| static   | C              | parameter types              | declared return     |
| literal  | --             | ()                           | the term's type     |
| array    | --             | (E,) * size                  | E[]                 |

Parsable form: ``kind : declaring-type.name(param-types) -> output-type``.
For instance methods the declaring-type slot holds the receiver type and
the parameter list excludes it; literals use the value's source form as
the name; arrays use ``new``.
Term operations over bounded or constrained type variables append
``where ~B <: int; ~C in int | str``, since no declaration carries them.
"""
from __future__ import annotations

import ast
import io
import re
from dataclasses import dataclass, replace
from functools import total_ordering
from typing import Any, Sequence

from classpath import ClassPath
from errors import OperationParseError, PreconditionViolation, TypeNotFoundError
from operations import (
    ArrayCreation,
    CallableOperation,
    ConstructorCall,
    MethodCall,
    NonreceiverTerm,
)
from outcome import ExecutionContext, ExecutionOutcome
from reflection import ConstructorHandle, MethodHandle, constructors, methods
from typeterms import (
    ArrayType,
    ClassType,
    ParameterizedType,
    PrimitiveType,
    Substitution,
    Type,
    TypeTuple,
    TypeVariable,
    WildcardType,
    for_name,
    generic_class_type,
    is_assignable_from,
)

CTOR = "ctor"
METHOD = "method"
STATIC = "static"
LITERAL = "literal"
ARRAY = "array"

_KIND_RANK = {CTOR: 0, METHOD: 1, STATIC: 2, LITERAL: 3, ARRAY: 4}

_ZERO_VALUES = {
    "bool": False,
    "int": 0,
    "float": 0.0,
    "complex": 0j,
    "str": "",
    "bytes": b"",
    "None": None,
}


# ---------------------------------------------------------------------------
# Typed operations
# ---------------------------------------------------------------------------

@total_ordering
class TypedOperation:
    operation: CallableOperation
    input_types: TypeTuple
    output_type: Type

    @property
    def declaring_type(self) -> Type | None:
        return None

    @property
    def name(self) -> str:
        return self.operation.name

    @property
    def kind(self) -> str:
        raise NotImplementedError

    def is_generic(self) -> bool:
        return self.input_types.is_generic() or self.output_type.is_generic()

    def is_constructor_call(self) -> bool:
        return self.operation.is_constructor_call()

    def is_method_call(self) -> bool:
        return self.operation.is_method_call()

    def is_static(self) -> bool:
        return self.operation.is_static()

    def is_message(self) -> bool:
        return self.operation.is_message()

    def is_nonreceiving_value(self) -> bool:
        return self.operation.is_nonreceiving_value()

    def is_array_creation(self) -> bool:
        return self.operation.is_array_creation()

    @property
    def value(self) -> Any:
        if not isinstance(self.operation, NonreceiverTerm):
            raise PreconditionViolation(f"{self.name} is not a literal")
        return self.operation.value

    # -- substitution -------------------------------------------------------

    def _types(self) -> list[Type | TypeTuple]:
        types: list[Type | TypeTuple] = [self.input_types, self.output_type]
        if self.declaring_type is not None:
            types.append(self.declaring_type)
        return types

    def apply(self, substitution: Substitution, require_complete: bool = False) -> TypedOperation:
        """Return a copy with ``substitution`` applied to every type.

        With ``require_complete`` the substitution must leave nothing generic.
        """
        if require_complete and not all(substitution.is_complete_for(t) for t in self._types()):
            raise PreconditionViolation(f"Substitution {substitution!r} is not complete for {self}")
        return self._substituted(substitution)

    def _substituted(self, substitution: Substitution) -> TypedOperation:
        return replace(
            self,
            input_types=self.input_types.apply(substitution),
            output_type=self.output_type.apply(substitution),
        )

    # -- execution ----------------------------------------------------------

    def execute(
        self, inputs: Sequence[Any], context: ExecutionContext | None = None
    ) -> ExecutionOutcome:
        if len(inputs) != len(self.input_types):
            raise PreconditionViolation(
                f"{self.name} takes {len(self.input_types)} input(s), got {len(inputs)}"
            )
        return self.operation.execute(list(inputs), context)

    # -- code ---------------------------------------------------------------

    def append_code(self, variables: Sequence[str], buf) -> None:
        if len(variables) != len(self.input_types):
            raise PreconditionViolation(
                f"{self.name} takes {len(self.input_types)} variable(s), got {len(variables)}"
            )
        self.operation.append_code(
            self.declaring_type, self.input_types, self.output_type, variables, buf
        )

    def to_code(self, variables: Sequence[str] = ()) -> str:
        buf = io.StringIO()
        self.append_code(variables, buf)
        return buf.getvalue()

    def to_parsable(self) -> str:
        raise NotImplementedError

    # -- ordering -----------------------------------------------------------

    def sort_key(self) -> tuple:
        declaring = self.declaring_type or self.output_type
        return (
            _KIND_RANK[self.kind],
            declaring.name,
            self.name,
            tuple(t.name for t in self.input_types),
            self.output_type.name,
            *self._tiebreak(),
        )

    def _tiebreak(self) -> tuple:
        raise NotImplementedError

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, TypedOperation):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __str__(self) -> str:
        return f"{self.name} : {self.input_types} -> {self.output_type.name}"


@dataclass(frozen=True)
class TypedClassOperation(TypedOperation):
    """A constructor or method call, with the class that declares it."""

    operation: CallableOperation
    declaring: Type
    input_types: TypeTuple
    output_type: Type

    @property
    def declaring_type(self) -> Type:
        return self.declaring

    @property
    def kind(self) -> str:
        if self.operation.is_constructor_call():
            return CTOR
        return STATIC if self.operation.is_static() else METHOD

    def is_generic(self) -> bool:
        return super().is_generic() or self.declaring.is_generic()

    def _substituted(self, substitution):
        return replace(
            super()._substituted(substitution), declaring=self.declaring.apply(substitution)
        )

    def to_parsable(self) -> str:
        params = self.input_types.types
        if self.kind == METHOD:
            owner, params = params[0], params[1:]
        else:
            owner = self.declaring
        names = ", ".join(t.name for t in params)
        return f"{self.kind} : {owner.name}.{self.name}({names}) -> {self.output_type.name}"

    def _tiebreak(self) -> tuple:
        handle = self.operation.handle
        if handle.is_constructor():
            siblings = constructors(handle.declaring_class)
        else:
            siblings = methods(handle.declaring_class, handle.name)
        index = next((i for i, h in enumerate(siblings) if h == handle), len(siblings))
        return (index, "", _variable_clause(self._types()))


@dataclass(frozen=True)
class TypedTermOperation(TypedOperation):
    """A literal or an array creation; there is no declaring class."""

    operation: CallableOperation
    input_types: TypeTuple
    output_type: Type

    @property
    def kind(self) -> str:
        return ARRAY if self.operation.is_array_creation() else LITERAL

    def to_parsable(self) -> str:
        names = ", ".join(t.name for t in self.input_types)
        out = self.output_type.name
        where = _variable_clause([self.output_type])
        return f"{self.kind} : {out}.{self.name}({names}) -> {out}{where}"

    def _tiebreak(self) -> tuple:
        literal = type(self.operation.value).__name__ if self.kind == LITERAL else ""
        return (0, literal, _variable_clause(self._types()))


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def for_constructor(handle: ConstructorHandle) -> TypedClassOperation:
    declaring = generic_class_type(handle.declaring_class)
    inputs = TypeTuple(handle.generic_parameter_types())
    return TypedClassOperation(ConstructorCall(handle), declaring, inputs, declaring)


def for_method(handle: MethodHandle) -> TypedClassOperation:
    declaring = generic_class_type(handle.declaring_class)
    params = handle.generic_parameter_types()
    if not handle.is_static():
        params = (declaring,) + params
    return TypedClassOperation(
        MethodCall(handle), declaring, TypeTuple(params), handle.generic_return_type()
    )


def for_handle(handle) -> TypedClassOperation:
    if handle.is_constructor():
        return for_constructor(handle)
    return for_method(handle)


def create_nonreceiver_initialization(term: NonreceiverTerm) -> TypedTermOperation:
    return TypedTermOperation(term, TypeTuple(), term.type)


def create_null_initialization_with_type(t: Type) -> TypedTermOperation:
    if t.is_primitive():
        raise PreconditionViolation(f"Cannot initialize primitive type {t.name} to None")
    return create_nonreceiver_initialization(NonreceiverTerm(t, None))


def create_null_or_zero_initialization_for_type(t: Type) -> TypedTermOperation:
    if isinstance(t, PrimitiveType):
        return create_nonreceiver_initialization(NonreceiverTerm(t, _ZERO_VALUES[t.kind]))
    return create_null_initialization_with_type(t)


def create_primitive_initialization(t: Type, value: Any) -> TypedTermOperation:
    """A literal of primitive (or boxed primitive) type ``t``."""
    if isinstance(t, ClassType):
        prim = t.unboxed()
    elif isinstance(t, PrimitiveType) and not t.is_none():
        prim = t
    else:
        prim = None
    if prim is None:
        raise PreconditionViolation(f"Not a primitive or boxed primitive type: {t.name}")
    if value is None:
        raise PreconditionViolation(f"None is not a primitive value of {t.name}")
    kind = type(value).__name__
    if kind not in _ZERO_VALUES or not is_assignable_from(prim, PrimitiveType(kind)):
        raise PreconditionViolation(f"{value!r} is not a value of {t.name}")
    return create_nonreceiver_initialization(NonreceiverTerm(t, value))


def create_array_creation(array_type: ArrayType, size: int) -> TypedTermOperation:
    if not isinstance(array_type, ArrayType):
        raise PreconditionViolation(f"Not an array type: {array_type}")
    inputs = TypeTuple((array_type.element,) * size)
    return TypedTermOperation(ArrayCreation(array_type, size), inputs, array_type)


# ---------------------------------------------------------------------------
# Parsable form
# ---------------------------------------------------------------------------

def _split_top_level(text: str, sep: str) -> list[int]:
    """Indices of ``sep`` in ``text`` outside brackets."""
    depth, found = 0, []
    for i, ch in enumerate(text):
        if ch in "[(":
            depth += 1
        elif ch in "])":
            depth -= 1
        elif ch == sep and depth == 0:
            found.append(i)
    return found


def _split_params(text: str) -> list[str]:
    text = text.strip()
    if not text:
        return []
    cuts = [-1] + _split_top_level(text, ",") + [len(text)]
    return [text[a + 1:b].strip() for a, b in zip(cuts, cuts[1:])]


_SPECIAL_FLOAT = re.compile(r"^float\('(-?inf|nan)'\)$")
_COMPLEX = re.compile(r"^complex\((.+), (.+)\)$")


def parse_value_source(text: str) -> Any:
    """Inverse of ``value_source``."""
    m = _SPECIAL_FLOAT.match(text)
    if m:
        return float(m.group(1))
    m = _COMPLEX.match(text)
    if m:
        return complex(parse_value_source(m.group(1)), parse_value_source(m.group(2)))
    return ast.literal_eval(text)


def _match(generic: Type, concrete: Type, binding: dict) -> bool:
    """Check that ``concrete`` is ``generic`` with its variables replaced."""
    if isinstance(generic, TypeVariable):
        bound = binding.setdefault(generic, concrete)
        return bound == concrete
    if isinstance(generic, ArrayType):
        return isinstance(concrete, ArrayType) and _match(generic.element, concrete.element, binding)
    if isinstance(generic, ParameterizedType):
        return (
            isinstance(concrete, ParameterizedType)
            and generic.raw == concrete.raw
            and len(generic.args) == len(concrete.args)
            and all(_match(g, c, binding) for g, c in zip(generic.args, concrete.args))
        )
    if isinstance(generic, WildcardType):
        if not isinstance(concrete, WildcardType):
            return False
        pairs = [(generic.upper, concrete.upper), (generic.lower, concrete.lower)]
        return all(
            (g is None and c is None) or (g is not None and c is not None and _match(g, c, binding))
            for g, c in pairs
        )
    return generic == concrete


def _match_all(generic: Sequence[Type], concrete: Sequence[Type], binding: dict) -> bool:
    return len(generic) == len(concrete) and all(
        _match(g, c, binding) for g, c in zip(generic, concrete)
    )


def _type_vars(op: TypedClassOperation) -> dict[str, TypeVariable]:
    found: dict[str, TypeVariable] = {}
    for term in (op.declaring, *op.input_types, op.output_type):
        for var in term.type_variables():
            found.setdefault(var.var_name, var)
    return found


def _variable_clause(types) -> str:
    found: dict[str, TypeVariable] = {}
    for term in types:
        for var in term.type_variables():
            if var.bounds or var.constraints:
                found.setdefault(var.var_name, var)
    parts = []
    for var in found.values():
        part = var.name
        if var.bounds:
            part += " <: " + " & ".join(b.name for b in var.bounds)
        if var.constraints:
            part += " in " + " | ".join(c.name for c in var.constraints)
        parts.append(part)
    return " where " + "; ".join(parts) if parts else ""


_VARIABLE = re.compile(r"^~(\w+)(?: <: (.+?))?(?: in (.+))?$")


def _names(text: str | None, sep: str, class_path: ClassPath) -> tuple[Type, ...]:
    return tuple(for_name(n, class_path) for n in text.split(sep)) if text else ()


def _parse_variable_clause(
    text: str, clause: str, class_path: ClassPath
) -> dict[str, TypeVariable]:
    found: dict[str, TypeVariable] = {}
    for part in clause.split("; "):
        m = _VARIABLE.match(part.strip())
        if m is None or not (m.group(2) or m.group(3)):
            raise OperationParseError(text, f"malformed type variable {part!r}")
        bounds = _names(m.group(2), " & ", class_path)
        constraints = _names(m.group(3), " | ", class_path)
        found[m.group(1)] = TypeVariable(m.group(1), bounds, constraints)
    return found


def _open_paren(head: str) -> int:
    """Index of the ``(`` matching the final ``)`` of ``head``."""
    depth = 0
    for i in range(len(head) - 1, -1, -1):
        if head[i] in ")]":
            depth += 1
        elif head[i] in "([":
            depth -= 1
            if depth == 0:
                return i if head[i] == "(" else -1
    return -1


def from_parsable(text: str, class_path: ClassPath | None = None) -> TypedOperation:
    """Read back the result of ``to_parsable``."""
    class_path = class_path or ClassPath()
    kind, sep, rest = text.partition(" : ")
    head, arrow, output_name = rest.rpartition(" -> ")
    if not sep or not arrow or kind not in _KIND_RANK:
        raise OperationParseError(text, "expected 'kind : owner.name(params) -> output'")
    output_name, _, clause = output_name.partition(" where ")
    if clause and kind not in (LITERAL, ARRAY):
        raise OperationParseError(text, "type variable bounds come from the declaration")

    try:
        type_vars = _parse_variable_clause(text, clause, class_path) if clause else {}
        if kind == LITERAL:
            return _literal_from_parsable(text, head, output_name, class_path, type_vars)

        start = _open_paren(head) if head.endswith(")") else -1
        if start < 0:
            raise OperationParseError(text, "missing parameter list")
        qualified, param_names = head[:start], _split_params(head[start + 1:-1])
        dots = _split_top_level(qualified, ".")
        if not dots:
            raise OperationParseError(text, "missing operation name")
        owner_text, name = qualified[:dots[-1]], qualified[dots[-1] + 1:]

        if kind == ARRAY:
            array_type = for_name(output_name, class_path, type_vars)
            if not isinstance(array_type, ArrayType) or name != "new":
                raise OperationParseError(text, "malformed array creation")
            return create_array_creation(array_type, len(param_names))

        raw = for_name(owner_text.split("[", 1)[0], class_path)
        return _class_operation_from_parsable(
            text, kind, raw.runtime_class, name, owner_text, param_names, output_name, class_path
        )
    except OperationParseError:
        raise
    except (TypeNotFoundError, ValueError, SyntaxError) as e:
        raise OperationParseError(text, str(e)) from e


def _literal_from_parsable(
    text: str,
    head: str,
    output_name: str,
    class_path: ClassPath,
    type_vars: dict[str, TypeVariable],
) -> TypedTermOperation:
    prefix, suffix = f"{output_name}.", "()"
    if not (head.startswith(prefix) and head.endswith(suffix)):
        raise OperationParseError(text, "malformed literal")
    value = parse_value_source(head[len(prefix):-len(suffix)])
    term = NonreceiverTerm(for_name(output_name, class_path, type_vars), value)
    return create_nonreceiver_initialization(term)


def _class_operation_from_parsable(
    text: str,
    kind: str,
    cls: type,
    name: str,
    owner_text: str,
    param_names: list[str],
    output_name: str,
    class_path: ClassPath,
) -> TypedClassOperation:
    if kind == CTOR:
        if name != "__init__":
            raise OperationParseError(text, f"constructor named {name!r}")
        candidates = [for_constructor(h) for h in constructors(cls)]
    else:
        candidates = [
            for_method(h) for h in methods(cls, name) if h.is_static() == (kind == STATIC)
        ]

    # First declared candidate whose generic types the parsed types instantiate.
    for generic in candidates:
        type_vars = _type_vars(generic)
        owner = for_name(owner_text, class_path, type_vars)
        params = [for_name(p, class_path, type_vars) for p in param_names]
        output = for_name(output_name, class_path, type_vars)
        inputs = [owner, *params] if kind == METHOD else params
        binding: dict = {}
        if (
            _match(generic.declaring, owner, binding)
            and _match_all(generic.input_types.types, inputs, binding)
            and _match(generic.output_type, output, binding)
        ):
            return TypedClassOperation(generic.operation, owner, TypeTuple(inputs), output)

    raise OperationParseError(text, "no matching callable")
