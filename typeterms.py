"""Type model for typed operations.

Type terms form a closed recursive data type. Each term is a frozen
dataclass with structural equality:

| Term               | Example annotation        | Name                      |
|--------------------|---------------------------|---------------------------|
| PrimitiveType      | ``int``                   | ``int``                   |
| ClassType          | ``Optional[int]``, ``C``  | ``builtins.int``, ``p.C`` |
| ArrayType          | ``list[int]``             | ``int[]``                 |
| TypeVariable       | ``T = TypeVar("T")``      | ``~T``                    |
| ParameterizedType  | ``dict[str, T]``          | ``builtins.dict[str, ~T]``|
| WildcardType       | ``Any`` as an argument    | ``?``                     |

Primitives are the non-nullable immutable builtins. Their nullable form
(``Optional[int]``) is the *boxed* class type ``builtins.int``; boxing and
unboxing are applied by ``is_assignable_from``, as is PEP 484 numeric
promotion (``bool -> int -> float -> complex``).

A term is *generic* iff a type variable or a wildcard occurs in it.
"""
from __future__ import annotations

import logging
import re
import types
import typing
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Iterator, TypeVar

from classpath import BUILTINS_MODULE, ClassPath, qualified_name, source_name
from errors import PreconditionViolation, TypeNotFoundError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Primitive kinds
# ---------------------------------------------------------------------------

PRIMITIVE_KINDS: dict[str, type] = {
    "bool": bool,
    "int": int,
    "float": float,
    "complex": complex,
    "str": str,
    "bytes": bytes,
    "None": type(None),
}

_KIND_BY_CLASS: dict[type, str] = {cls: kind for kind, cls in PRIMITIVE_KINDS.items()}

# kind -> kinds it is implicitly promoted to
_PROMOTIONS: dict[str, tuple[str, ...]] = {
    "bool": ("int", "float", "complex"),
    "int": ("float", "complex"),
    "float": ("complex",),
}


def _promotes(sub_kind: str, sup_kind: str) -> bool:
    return sub_kind == sup_kind or sup_kind in _PROMOTIONS.get(sub_kind, ())


# ---------------------------------------------------------------------------
# Terms
# ---------------------------------------------------------------------------

class Type:
    """Base class of all type terms."""

    @property
    def name(self) -> str:
        raise NotImplementedError

    @property
    def runtime_class(self) -> type:
        raise NotImplementedError

    def is_generic(self) -> bool:
        return False

    def is_primitive(self) -> bool:
        return False

    def type_variables(self) -> tuple[TypeVariable, ...]:
        return ()

    def apply(self, substitution: Substitution) -> Type:
        return self

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class PrimitiveType(Type):
    kind: str

    def __post_init__(self) -> None:
        if self.kind not in PRIMITIVE_KINDS:
            raise PreconditionViolation(f"Not a primitive kind: {self.kind!r}")

    @property
    def name(self) -> str:
        return self.kind

    @property
    def runtime_class(self) -> type:
        return PRIMITIVE_KINDS[self.kind]

    def is_primitive(self) -> bool:
        return True

    def is_none(self) -> bool:
        return self.kind == "None"

    def boxed(self) -> Type:
        """Return the nullable class type for this primitive."""
        if self.is_none():
            return self
        return ClassType.for_class(self.runtime_class)


@dataclass(frozen=True)
class ClassType(Type):
    """A raw reference class. The runtime class is carried but not compared."""

    qualified: str
    cls: type = field(compare=False, repr=False)

    @classmethod
    def for_class(cls, c: type) -> ClassType:
        return cls(qualified_name(c), c)

    @property
    def name(self) -> str:
        return self.qualified

    @property
    def runtime_class(self) -> type:
        return self.cls

    @property
    def source_name(self) -> str:
        return source_name(self.cls)

    def unboxed(self) -> PrimitiveType | None:
        """Return the primitive this class boxes, if any."""
        kind = _KIND_BY_CLASS.get(self.cls)
        if kind is None or kind == "None":
            return None
        if self.qualified != f"{BUILTINS_MODULE}.{kind}":
            return None
        return PrimitiveType(kind)


@dataclass(frozen=True)
class ArrayType(Type):
    element: Type

    @property
    def name(self) -> str:
        return f"{self.element.name}[]"

    @property
    def runtime_class(self) -> type:
        return list

    def is_generic(self) -> bool:
        return self.element.is_generic()

    def type_variables(self) -> tuple[TypeVariable, ...]:
        return self.element.type_variables()

    def apply(self, substitution: Substitution) -> Type:
        return ArrayType(self.element.apply(substitution))


@dataclass(frozen=True)
class TypeVariable(Type):
    """A ``typing.TypeVar``. ``bounds`` all hold; one of ``constraints`` holds."""

    var_name: str
    bounds: tuple[Type, ...] = ()
    constraints: tuple[Type, ...] = ()

    @property
    def name(self) -> str:
        return f"~{self.var_name}"

    @property
    def runtime_class(self) -> type:
        return self.upper_bound().runtime_class

    def is_generic(self) -> bool:
        return True

    def type_variables(self) -> tuple[TypeVariable, ...]:
        return (self,)

    def apply(self, substitution: Substitution) -> Type:
        return substitution.get(self, self)

    def upper_bound(self) -> Type:
        if self.bounds:
            return self.bounds[0]
        return OBJECT

    def admits(self, candidate: Type) -> bool:
        """Check whether ``candidate`` may be substituted for this variable."""
        if self.constraints and not any(
            is_assignable_from(c, candidate) for c in self.constraints
        ):
            return False
        return all(is_assignable_from(b, candidate) for b in self.bounds)


@dataclass(frozen=True)
class ParameterizedType(Type):
    raw: ClassType
    args: tuple[Type, ...]

    @property
    def name(self) -> str:
        return f"{self.raw.name}[{', '.join(a.name for a in self.args)}]"

    @property
    def runtime_class(self) -> type:
        return self.raw.runtime_class

    @property
    def source_name(self) -> str:
        return self.raw.source_name

    def is_generic(self) -> bool:
        return any(a.is_generic() for a in self.args)

    def type_variables(self) -> tuple[TypeVariable, ...]:
        found: list[TypeVariable] = []
        for a in self.args:
            for v in a.type_variables():
                if v not in found:
                    found.append(v)
        return tuple(found)

    def apply(self, substitution: Substitution) -> Type:
        return ParameterizedType(self.raw, tuple(a.apply(substitution) for a in self.args))


@dataclass(frozen=True)
class WildcardType(Type):
    upper: Type | None = None
    lower: Type | None = None

    @property
    def name(self) -> str:
        if self.upper is not None:
            return f"? extends {self.upper.name}"
        if self.lower is not None:
            return f"? super {self.lower.name}"
        return "?"

    @property
    def runtime_class(self) -> type:
        return (self.upper or OBJECT).runtime_class

    def is_generic(self) -> bool:
        return True

    def type_variables(self) -> tuple[TypeVariable, ...]:
        found: tuple[TypeVariable, ...] = ()
        for bound in (self.upper, self.lower):
            if bound is not None:
                found += tuple(v for v in bound.type_variables() if v not in found)
        return found

    def apply(self, substitution: Substitution) -> Type:
        return WildcardType(
            self.upper.apply(substitution) if self.upper is not None else None,
            self.lower.apply(substitution) if self.lower is not None else None,
        )

    def contains(self, candidate: Type) -> bool:
        """Subtype of the upper bound and supertype of the lower bound."""
        if self.upper is not None and not is_assignable_from(self.upper, candidate):
            return False
        if self.lower is not None and not is_assignable_from(candidate, self.lower):
            return False
        return True


OBJECT = ClassType.for_class(object)
NONE = PrimitiveType("None")


# ---------------------------------------------------------------------------
# Type tuples and substitutions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TypeTuple(Sequence):
    """Fixed-length ordered sequence of type terms."""

    types: tuple[Type, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "types", tuple(self.types))

    def __getitem__(self, index):
        return self.types[index]

    def __len__(self) -> int:
        return len(self.types)

    def __iter__(self) -> Iterator[Type]:
        return iter(self.types)

    def is_generic(self) -> bool:
        return any(t.is_generic() for t in self.types)

    def type_variables(self) -> tuple[TypeVariable, ...]:
        found: list[TypeVariable] = []
        for t in self.types:
            for v in t.type_variables():
                if v not in found:
                    found.append(v)
        return tuple(found)

    def apply(self, substitution: Substitution) -> TypeTuple:
        return TypeTuple(tuple(t.apply(substitution) for t in self.types))

    def __str__(self) -> str:
        return "(" + ", ".join(t.name for t in self.types) + ")"


class Substitution(Mapping):
    """Immutable map from type variables to type terms."""

    def __init__(self, mapping: Mapping[TypeVariable, Type] | None = None) -> None:
        self._map: dict[TypeVariable, Type] = dict(mapping or {})

    @classmethod
    def for_args(
        cls, parameters: Sequence[TypeVariable], arguments: Sequence[Type]
    ) -> Substitution:
        if len(parameters) != len(arguments):
            raise PreconditionViolation(
                f"Substitution needs {len(parameters)} argument(s), got {len(arguments)}"
            )
        return cls(dict(zip(parameters, arguments)))

    def __getitem__(self, key: TypeVariable) -> Type:
        return self._map[key]

    def __iter__(self) -> Iterator[TypeVariable]:
        return iter(self._map)

    def __len__(self) -> int:
        return len(self._map)

    def __hash__(self) -> int:
        return hash(frozenset(self._map.items()))

    def __repr__(self) -> str:
        inner = ", ".join(f"{k.name} := {v.name}" for k, v in self._map.items())
        return f"Substitution({inner})"

    def extend(self, other: Mapping[TypeVariable, Type]) -> Substitution:
        merged = dict(self._map)
        merged.update(other)
        return Substitution(merged)

    def apply(self, term: Type) -> Type:
        return term.apply(self)

    def is_complete_for(self, term: Type | TypeTuple) -> bool:
        """True if nothing generic remains after applying this substitution.

        Wildcards count as anonymous variables: no substitution removes them.
        """
        return not term.apply(self).is_generic()

    def within_bounds(self) -> bool:
        return all(var.admits(value) for var, value in self._map.items())


def substitute(term: Type, substitution: Substitution) -> Type:
    return term.apply(substitution)


def is_generic(term: Type) -> bool:
    return term.is_generic()


# ---------------------------------------------------------------------------
# Assignability
# ---------------------------------------------------------------------------

def is_assignable_from(sup: Type, sub: Type) -> bool:
    """Check whether a value of type ``sub`` may be used where ``sup`` is expected."""
    if sup == sub:
        return True

    if isinstance(sup, WildcardType):
        return sup.contains(sub)

    if isinstance(sub, TypeVariable):
        if sub.constraints:
            return all(is_assignable_from(sup, c) for c in sub.constraints)
        return is_assignable_from(sup, sub.upper_bound())

    if isinstance(sup, TypeVariable):
        return False

    if isinstance(sub, WildcardType):
        return is_assignable_from(sup, sub.upper or OBJECT)

    if isinstance(sup, PrimitiveType):
        if sup.is_none():
            return isinstance(sub, PrimitiveType) and sub.is_none()
        if isinstance(sub, PrimitiveType):
            return _promotes(sub.kind, sup.kind)
        if isinstance(sub, ClassType):
            unboxed = sub.unboxed()
            return unboxed is not None and _promotes(unboxed.kind, sup.kind)
        return False

    # sup is a reference type from here on
    if isinstance(sub, PrimitiveType):
        if sub.is_none():
            return True
        sub = sub.boxed()

    if sup == OBJECT:
        return True

    if isinstance(sup, ClassType):
        if isinstance(sub, ClassType):
            sup_prim, sub_prim = sup.unboxed(), sub.unboxed()
            if sup_prim is not None and sub_prim is not None:
                return _promotes(sub_prim.kind, sup_prim.kind)
        return issubclass(sub.runtime_class, sup.runtime_class)

    if isinstance(sup, ArrayType):
        if isinstance(sub, ArrayType):
            return _argument_contains(sup.element, sub.element)
        return isinstance(sub, ClassType) and issubclass(sub.runtime_class, list)

    if isinstance(sup, ParameterizedType):
        view = supertype_as(sub, sup.raw)
        if view is None:
            return False
        if not isinstance(view, ParameterizedType):
            return True  # unchecked conversion from a raw type
        if len(view.args) != len(sup.args):
            return False
        return all(_argument_contains(s, v) for s, v in zip(sup.args, view.args))

    return False


def _argument_contains(sup_arg: Type, sub_arg: Type) -> bool:
    if sup_arg == sub_arg:
        return True
    if isinstance(sup_arg, WildcardType):
        if isinstance(sub_arg, WildcardType):
            upper = sub_arg.upper or OBJECT
            return sup_arg.upper is None or is_assignable_from(sup_arg.upper, upper)
        return sup_arg.contains(sub_arg)
    return False


def supertype_as(sub: Type, raw: ClassType) -> Type | None:
    """View ``sub`` as an instance of the generic class ``raw``.

    Walks ``__orig_bases__`` so that ``class IntBox(Box[int])`` is seen as
    ``Box[int]``. Builtin containers, which carry no generic bases, map
    their arguments positionally onto an abstract base of equal arity.
    """
    if isinstance(sub, ArrayType):
        sub = ParameterizedType(ClassType.for_class(list), (sub.element,))
    if not isinstance(sub, (ClassType, ParameterizedType)):
        return None
    if not issubclass(sub.runtime_class, raw.runtime_class):
        return None

    pending: list[Type] = [sub]
    seen: set[Type] = set()
    while pending:
        current = pending.pop(0)
        if current in seen:
            continue
        seen.add(current)
        current_raw = current.raw if isinstance(current, ParameterizedType) else current
        if current_raw == raw:
            return current
        pending.extend(_generic_supertypes(current))

    if isinstance(sub, ParameterizedType) and len(class_parameters(raw.runtime_class)) == len(sub.args):
        return ParameterizedType(raw, sub.args)
    return raw


def class_parameters(cls: type) -> tuple[TypeVariable, ...]:
    """Type parameters declared by ``cls`` itself (empty for builtins)."""
    return tuple(for_annotation(p) for p in cls.__dict__.get("__parameters__", ()))


def _generic_supertypes(t: Type) -> Iterator[Type]:
    cls = t.runtime_class
    params = class_parameters(cls)
    if isinstance(t, ParameterizedType) and len(params) == len(t.args):
        binding = Substitution.for_args(params, t.args)
    else:
        binding = Substitution()
    for base in cls.__dict__.get("__orig_bases__", cls.__bases__):
        origin = typing.get_origin(base)
        if base is typing.Generic or origin is typing.Generic or base is typing.Protocol:
            continue
        if origin is typing.Protocol:
            continue
        yield for_annotation(base).apply(binding)


# ---------------------------------------------------------------------------
# Construction from annotations and classes
# ---------------------------------------------------------------------------

def for_class(c: type) -> ClassType:
    """Return the reference class term for ``c`` (boxed for primitives)."""
    return ClassType.for_class(c)


def generic_class_type(c: type) -> Type:
    """Return ``c`` applied to its own type parameters, or ``c`` if not generic."""
    params = class_parameters(c)
    if not params:
        return ClassType.for_class(c)
    return ParameterizedType(ClassType.for_class(c), params)


def for_annotation(t: Any, _active: frozenset = frozenset()) -> Type:
    """Convert a runtime annotation into a type term."""
    if t is None or t is type(None):
        return NONE
    if t is Any:
        return OBJECT
    if isinstance(t, TypeVar):
        return _for_type_var(t, _active)

    origin = typing.get_origin(t)
    args = typing.get_args(t)

    if origin is typing.Union or origin is types.UnionType:
        arms = [a for a in args if a is not type(None)]
        if len(arms) == 1 and len(arms) < len(args):
            inner = for_annotation(arms[0], _active)
            return inner.boxed() if isinstance(inner, PrimitiveType) else inner
        logger.debug("Union %r has no single term; using object", t)
        return OBJECT
    if origin is typing.Annotated:
        return for_annotation(args[0], _active)
    if origin is typing.Literal:
        return for_annotation(type(args[0]), _active) if args else OBJECT
    if origin is list and args:
        return ArrayType(_for_argument(args[0], _active))
    if isinstance(origin, type):
        raw = ClassType.for_class(origin)
        if not args or any(a is Ellipsis or isinstance(a, (list, tuple)) for a in args):
            return raw
        return ParameterizedType(raw, tuple(_for_argument(a, _active) for a in args))
    if isinstance(t, type):
        kind = _KIND_BY_CLASS.get(t)
        if kind is not None:
            return PrimitiveType(kind)
        return ClassType.for_class(t)

    logger.debug("Unsupported annotation %r; using object", t)
    return OBJECT


for_reflective_type = for_annotation


def _for_argument(a: Any, active: frozenset) -> Type:
    if a is Any:
        return WildcardType()
    return for_annotation(a, active)


def _for_type_var(tv: TypeVar, active: frozenset) -> TypeVariable:
    if tv in active:
        return TypeVariable(tv.__name__)
    active = active | {tv}
    bounds: tuple[Type, ...] = ()
    if tv.__bound__ is not None:
        bounds = (for_annotation(tv.__bound__, active),)
    constraints = tuple(for_annotation(c, active) for c in tv.__constraints__)
    return TypeVariable(tv.__name__, bounds, constraints)


# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------

def erase_to_raw_name(term: Type) -> str:
    """Return the raw (erased) qualified name used in operation signatures."""
    if isinstance(term, ArrayType):
        return erase_to_raw_name(term.element) + "[]"
    if isinstance(term, ParameterizedType):
        return term.raw.name
    if isinstance(term, TypeVariable):
        if term.constraints:
            return OBJECT.name
        return erase_to_raw_name(term.upper_bound())
    if isinstance(term, WildcardType):
        return erase_to_raw_name(term.upper or OBJECT)
    return term.name


_TOKEN = re.compile(r"\s*(?:([\[\],~?])|([A-Za-z_][\w.$]*))")


def for_name(
    name: str,
    class_path: ClassPath | None = None,
    type_vars: Mapping[str, TypeVariable] | None = None,
) -> Type:
    """Parse a type name such as ``builtins.dict[str, ~T][]``.

    Raises ``TypeNotFoundError`` for malformed names and unknown classes.
    """
    parser = _NameParser(name, class_path or ClassPath(), type_vars or {})
    return parser.parse()


class _NameParser:
    def __init__(self, text: str, class_path: ClassPath, type_vars: Mapping[str, TypeVariable]):
        self.text = text
        self.class_path = class_path
        self.type_vars = type_vars
        self.tokens = self._tokenize(text)
        self.pos = 0

    def _tokenize(self, text: str) -> list[str]:
        tokens: list[str] = []
        pos = 0
        stripped = text.rstrip()
        while pos < len(stripped):
            m = _TOKEN.match(stripped, pos)
            if m is None:
                raise TypeNotFoundError(self.text, f"unexpected character at {pos}")
            tokens.append(m.group(1) or m.group(2))
            pos = m.end()
        return tokens

    def _peek(self, offset: int = 0) -> str | None:
        index = self.pos + offset
        return self.tokens[index] if index < len(self.tokens) else None

    def _next(self) -> str:
        token = self._peek()
        if token is None:
            raise TypeNotFoundError(self.text, "unexpected end of name")
        self.pos += 1
        return token

    def _expect(self, token: str) -> None:
        found = self._next()
        if found != token:
            raise TypeNotFoundError(self.text, f"expected {token!r}, found {found!r}")

    def parse(self) -> Type:
        if not self.tokens:
            raise TypeNotFoundError(self.text, "empty name")
        term = self._type()
        if self._peek() is not None:
            raise TypeNotFoundError(self.text, f"trailing {self._peek()!r}")
        return term

    def _type(self) -> Type:
        term = self._base()
        while self._peek() == "[":
            if self._peek(1) == "]":
                self.pos += 2
                term = ArrayType(term)
            elif isinstance(term, ClassType):
                self.pos += 1
                args = [self._type()]
                while self._peek() == ",":
                    self.pos += 1
                    args.append(self._type())
                self._expect("]")
                term = ParameterizedType(term, tuple(args))
            else:
                raise TypeNotFoundError(self.text, f"{term.name} cannot take type arguments")
        return term

    def _base(self) -> Type:
        token = self._next()
        if token == "?":
            keyword = self._peek()
            if keyword == "extends":
                self.pos += 1
                return WildcardType(upper=self._type())
            if keyword == "super":
                self.pos += 1
                return WildcardType(lower=self._type())
            return WildcardType()
        if token == "~":
            var = self._next()
            return self.type_vars.get(var) or TypeVariable(var)
        if token in "[],":
            raise TypeNotFoundError(self.text, f"unexpected {token!r}")
        if token in PRIMITIVE_KINDS:
            return PrimitiveType(token)
        return ClassType.for_class(self.class_path.resolve_class(token))