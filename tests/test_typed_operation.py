"""Tests for typed operations: shapes, factories, substitution, parsable form."""
from __future__ import annotations

import math
from typing import TypeVar, overload

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

import net
import p
import subjects
from classpath import ClassPath
from errors import OperationParseError, PreconditionViolation
from operations import NonreceiverTerm
from reflection import constructors, declared_operations, methods
from typed_operation import (
    ARRAY,
    CTOR,
    LITERAL,
    METHOD,
    STATIC,
    create_array_creation,
    create_nonreceiver_initialization,
    create_null_initialization_with_type,
    create_null_or_zero_initialization_for_type,
    create_primitive_initialization,
    for_constructor,
    for_handle,
    for_method,
    from_parsable,
    parse_value_source,
)
from typeterms import (
    NONE,
    ArrayType,
    PrimitiveType,
    Substitution,
    TypeTuple,
    TypeVariable,
    class_parameters,
    for_annotation,
    for_class,
    generic_class_type,
)

INT = PrimitiveType("int")
STR = PrimitiveType("str")
FLOAT = PrimitiveType("float")
T = for_annotation(subjects.T)
BOUNDED = for_annotation(TypeVar("B", bound=int))
CONSTRAINED = for_annotation(TypeVar("K", int, str))
ACCOUNTS = for_annotation(TypeVar("A", bound=subjects.Account))
CLASS_PATH = ClassPath(["net", "subjects", "p"])


def method(cls, name, index=0):
    return for_method(methods(cls, name)[index])


class Twice:
    @overload
    def scale(self, factor: int) -> int: ...

    @overload
    def scale(self, times: int) -> int: ...

    def scale(self, value):
        return value * 2


# ---------------------------------------------------------------------------
# Shapes
# ---------------------------------------------------------------------------

class TestShapes:

    def test_constructor(self):
        op = for_constructor(constructors(p.C)[0])
        assert op.kind == CTOR
        assert op.declaring_type == for_class(p.C)
        assert op.input_types == TypeTuple((INT, STR))
        assert op.output_type == for_class(p.C)
        assert op.name == "__init__"

    def test_instance_method_takes_receiver_first(self):
        op = method(net.Connection, "send")
        assert op.kind == METHOD
        assert op.input_types == TypeTuple((for_class(net.Connection), INT))
        assert op.output_type == NONE

    def test_static_and_class_methods_take_no_receiver(self):
        parse = method(subjects.Counter, "parse")
        assert parse.kind == STATIC
        assert parse.input_types == TypeTuple((STR,))
        assert parse.output_type == for_class(subjects.Counter)
        zero = method(subjects.Counter, "zero")
        assert zero.kind == STATIC
        assert len(zero.input_types) == 0

    def test_class_without_init(self):
        op = for_constructor(constructors(subjects.Printer)[0])
        assert len(op.input_types) == 0

    def test_constructor_implemented_in_c(self):
        (ctor,) = constructors(subjects.Overdrawn)
        op = for_constructor(ctor)
        assert len(op.input_types) == 0
        assert isinstance(op.execute([]).value, subjects.Overdrawn)

    def test_for_handle_dispatches(self):
        (ctor,) = constructors(p.C)
        assert for_handle(ctor).is_constructor_call()
        assert for_handle(methods(net.Connection, "send")[0]).is_method_call()

    def test_literal(self):
        op = create_primitive_initialization(INT, 42)
        assert op.kind == LITERAL
        assert op.declaring_type is None
        assert len(op.input_types) == 0
        assert op.output_type == INT
        assert op.value == 42

    def test_array(self):
        op = create_array_creation(ArrayType(INT), 3)
        assert op.kind == ARRAY
        assert op.input_types == TypeTuple((INT, INT, INT))
        assert op.output_type == ArrayType(INT)

    def test_value_only_for_literals(self):
        with pytest.raises(PreconditionViolation):
            method(net.Connection, "send").value

    def test_str(self):
        assert str(method(net.Connection, "send")) == "send : (net.Connection, int) -> None"


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

class TestFactories:

    def test_boxed_literal(self):
        op = create_primitive_initialization(for_class(int), 5)
        assert op.output_type.name == "builtins.int"

    def test_promoted_literal(self):
        assert create_primitive_initialization(FLOAT, 1).value == 1

    @pytest.mark.parametrize("t,value", [
        (INT, 1.5),
        (INT, "1"),
        (INT, None),
        (STR, b"x"),
        (NONE, None),
    ])
    def test_rejects_values_of_the_wrong_type(self, t, value):
        with pytest.raises(PreconditionViolation):
            create_primitive_initialization(t, value)

    def test_rejects_class_types(self):
        with pytest.raises(PreconditionViolation):
            create_primitive_initialization(for_class(subjects.Account), 1)

    def test_null_initialization(self):
        op = create_null_initialization_with_type(for_class(subjects.Account))
        assert op.value is None
        assert op.output_type == for_class(subjects.Account)
        with pytest.raises(PreconditionViolation):
            create_null_initialization_with_type(INT)

    @pytest.mark.parametrize("kind,zero", [
        ("bool", False),
        ("int", 0),
        ("float", 0.0),
        ("str", ""),
        ("bytes", b""),
    ])
    def test_zero_initialization(self, kind, zero):
        op = create_null_or_zero_initialization_for_type(PrimitiveType(kind))
        assert op.value == zero
        assert type(op.value) is type(zero)

    def test_zero_initialization_of_a_class_is_none(self):
        op = create_null_or_zero_initialization_for_type(for_class(subjects.Account))
        assert op.value is None

    def test_array_factory_requires_array_type(self):
        with pytest.raises(PreconditionViolation):
            create_array_creation(INT, 1)


# ---------------------------------------------------------------------------
# Substitution
# ---------------------------------------------------------------------------

class TestApply:

    def test_generic_method(self):
        get = method(subjects.Box, "get")
        assert get.is_generic()
        sigma = Substitution.for_args(class_parameters(subjects.Box), [INT])
        applied = get.apply(sigma)
        assert not applied.is_generic()
        assert applied.declaring_type.name == "subjects.Box[int]"
        assert applied.input_types == TypeTuple((applied.declaring_type,))
        assert applied.output_type == INT
        assert get.is_generic()

    def test_array_parameters(self):
        replace_all = method(subjects.Box, "replace_all")
        applied = replace_all.apply(Substitution({T: STR}))
        assert applied.output_type == ArrayType(STR)

    def test_incomplete_substitution(self):
        get = method(subjects.Box, "get")
        assert get.apply(Substitution()) == get
        with pytest.raises(PreconditionViolation):
            get.apply(Substitution(), require_complete=True)

    def test_non_generic_unchanged(self):
        send = method(net.Connection, "send")
        assert not send.is_generic()
        assert send.apply(Substitution({T: INT}), require_complete=True) == send

    def test_literal_apply(self):
        op = create_primitive_initialization(INT, 1)
        assert op.apply(Substitution({T: INT})) == op


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

class TestOrdering:

    def test_kinds_first(self):
        ops = [
            create_array_creation(ArrayType(INT), 1),
            create_primitive_initialization(INT, 1),
            method(subjects.Counter, "parse"),
            method(subjects.Counter, "read"),
            for_constructor(constructors(subjects.Counter)[0]),
        ]
        assert [op.kind for op in sorted(ops)] == [CTOR, METHOD, STATIC, LITERAL, ARRAY]

    def test_order_does_not_depend_on_input_order(self):
        ops = [for_handle(h) for h in declared_operations(subjects.Counter)]
        assert sorted(ops) == sorted(reversed(ops))

    def test_by_name_within_kind(self):
        read = method(subjects.Counter, "read")
        increment = method(subjects.Counter, "increment")
        assert increment < read

    def test_overloads_with_the_same_types_do_not_tie(self):
        first, second = (for_method(h) for h in methods(Twice, "scale"))
        assert first != second
        assert first.sort_key() != second.sort_key()
        assert first < second and not second < first

    def test_bounds_break_ties(self):
        bounded = create_null_initialization_with_type(BOUNDED)
        plain = create_null_initialization_with_type(TypeVariable("B"))
        assert bounded != plain
        assert plain < bounded


# ---------------------------------------------------------------------------
# Parsable form
# ---------------------------------------------------------------------------

class TestParsable:

    @pytest.mark.parametrize("op,text", [
        (method(net.Connection, "send"), "method : net.Connection.send(int) -> None"),
        (for_constructor(constructors(p.C)[0]), "ctor : p.C.__init__(int, str) -> p.C"),
        (method(subjects.Counter, "parse"),
         "static : subjects.Counter.parse(str) -> subjects.Counter"),
        (create_primitive_initialization(INT, 42), "literal : int.42() -> int"),
        (create_array_creation(ArrayType(INT), 3), "array : int[].new(int, int, int) -> int[]"),
        (for_constructor(constructors(subjects.Outer.Inner)[0]),
         "ctor : subjects.Outer$Inner.__init__(int) -> subjects.Outer$Inner"),
        (method(subjects.Box, "get"), "method : subjects.Box[~T].get() -> ~T"),
        (create_null_initialization_with_type(for_class(subjects.Account)),
         "literal : subjects.Account.None() -> subjects.Account"),
        (create_array_creation(ArrayType(BOUNDED), 2),
         "array : ~B[].new(~B, ~B) -> ~B[] where ~B <: int"),
        (create_null_initialization_with_type(CONSTRAINED),
         "literal : ~K.None() -> ~K where ~K in int | str"),
        (create_null_initialization_with_type(ArrayType(ACCOUNTS)),
         "literal : ~A[].None() -> ~A[] where ~A <: subjects.Account"),
    ])
    def test_to_parsable(self, op, text):
        assert op.to_parsable() == text
        assert from_parsable(text, CLASS_PATH) == op

    def test_substituted_generic(self):
        get = method(subjects.Box, "get").apply(Substitution({T: INT}))
        text = get.to_parsable()
        assert text == "method : subjects.Box[int].get() -> int"
        assert from_parsable(text, CLASS_PATH) == get

    def test_overloads_are_told_apart(self):
        square, rectangle = (for_method(h) for h in methods(subjects.Shapes, "area"))
        assert from_parsable(square.to_parsable()) == square
        assert from_parsable(rectangle.to_parsable()) == rectangle
        assert square.to_parsable() != rectangle.to_parsable()

    def test_bare_class_names_use_class_path(self):
        op = from_parsable("method : Connection.send(int) -> None", ClassPath(["net"]))
        assert op == method(net.Connection, "send")

    @pytest.mark.parametrize("text", [
        "",
        "method net.Connection.send(int) -> None",
        "method : net.Connection.send(int)",
        "lambda : net.Connection.send(int) -> None",
        "method : net.Connection.send -> None",
        "method : net.Connection.send(str) -> None",
        "method : net.Connection.nothing() -> None",
        "method : no.such.Class.send(int) -> None",
        "static : net.Connection.send(int) -> None",
        "ctor : p.C.make(int, str) -> p.C",
        "array : int.new(int) -> int",
        "literal : int.forty() -> int",
        "literal : int(42) -> int",
        "method : net.Connection.send(int) -> None where ~B <: int",
        "array : ~B[].new(~B) -> ~B[] where B <: int",
        "array : ~B[].new(~B) -> ~B[] where ~B",
    ])
    def test_malformed(self, text):
        with pytest.raises(OperationParseError):
            from_parsable(text, CLASS_PATH)

    @pytest.mark.parametrize("source,value", [
        ("float('inf')", math.inf),
        ("float('-inf')", -math.inf),
        ("complex(1.0, -2.0)", complex(1, -2)),
        ("b'\\x00'", b"\x00"),
        ("None", None),
    ])
    def test_parse_value_source(self, source, value):
        assert parse_value_source(source) == value
        assert math.isnan(parse_value_source("float('nan')"))


def _declared(cls):
    return [for_handle(h) for h in declared_operations(cls)]


DECLARED = [
    op
    for cls in (
        net.Connection,
        p.C,
        subjects.Box,
        subjects.IntBox,
        subjects.Counter,
        subjects.Account,
        subjects.SavingsAccount,
        subjects.Thrower,
        subjects.Printer,
        subjects.Outer.Inner,
        subjects.Shapes,
    )
    for op in _declared(cls)
]

_floats = st.floats(allow_nan=True, allow_infinity=True)
_literals = st.one_of(
    st.integers().map(lambda v: create_primitive_initialization(INT, v)),
    st.integers().map(lambda v: create_primitive_initialization(for_class(int), v)),
    st.booleans().map(lambda v: create_primitive_initialization(PrimitiveType("bool"), v)),
    _floats.map(lambda v: create_primitive_initialization(FLOAT, v)),
    st.builds(complex, _floats, _floats).map(
        lambda v: create_primitive_initialization(PrimitiveType("complex"), v)
    ),
    st.text().map(lambda v: create_primitive_initialization(STR, v)),
    st.binary().map(lambda v: create_primitive_initialization(PrimitiveType("bytes"), v)),
)
_substituted = st.sampled_from([method(subjects.Box, n) for n in ("get", "put", "replace_all")]).flatmap(
    lambda op: st.sampled_from([INT, STR, for_class(subjects.Account), ArrayType(FLOAT)]).map(
        lambda t: op.apply(Substitution({T: t}))
    )
)
_variables = st.sampled_from([T, BOUNDED, CONSTRAINED, ACCOUNTS])
_variable_terms = _variables.flatmap(
    lambda v: st.one_of(
        st.just(create_null_initialization_with_type(v)),
        st.just(create_null_initialization_with_type(ArrayType(v))),
        st.integers(min_value=0, max_value=3).map(lambda n: create_array_creation(ArrayType(v), n)),
    )
)
_operations = st.one_of(
    st.sampled_from(DECLARED),
    _substituted,
    _literals,
    _variable_terms,
    st.integers(min_value=0, max_value=4).map(
        lambda n: create_array_creation(ArrayType(for_class(subjects.Account)), n)
    ),
)


class TestParsableRoundTrip:

    @given(op=_operations)
    @settings(max_examples=200)
    def test_round_trip(self, op):
        assert from_parsable(op.to_parsable(), CLASS_PATH) == op

    def test_declared_operations_are_covered(self):
        kinds = {op.kind for op in DECLARED}
        assert kinds == {CTOR, METHOD, STATIC}

    def test_literal_terms_compare_by_source(self):
        a = create_nonreceiver_initialization(NonreceiverTerm(FLOAT, float("nan")))
        assert from_parsable(a.to_parsable()) == a

    def test_generic_box_constructor(self):
        box = for_constructor(constructors(subjects.Box)[0])
        assert box.output_type == generic_class_type(subjects.Box)
        assert from_parsable(box.to_parsable(), CLASS_PATH) == box
