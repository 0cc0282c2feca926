"""Tests for execution and code emission of the callable operation variants."""
from __future__ import annotations

import io
import sys
from enum import IntEnum

import pytest

import net
import p
import subjects
from errors import PreconditionViolation
from operations import ArrayCreation, MethodCall, NonreceiverTerm, value_source
from outcome import (
    NOT_EXECUTED,
    Deadline,
    ExceptionalExecution,
    ExecutionContext,
    NormalExecution,
    TimeoutExecution,
)
from reflection import DefaultReflectionPredicate, constructors, find_method, methods
from typed_operation import (
    create_array_creation,
    create_null_initialization_with_type,
    create_primitive_initialization,
    for_constructor,
    for_method,
)
from typeterms import ArrayType, PrimitiveType, for_class

INT = PrimitiveType("int")


class Color(IntEnum):
    RED = 1


class Label(str):
    pass


def method(cls, name):
    return for_method(methods(cls, name)[0])


def constructor(cls):
    return for_constructor(constructors(cls)[0])


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

class TestExecution:

    def test_constructor_returns_instance(self):
        outcome = constructor(p.C).execute([1, "a"])
        assert isinstance(outcome, NormalExecution)
        assert outcome.value.x == 1 and outcome.value.s == "a"
        assert outcome.elapsed_ns >= 0

    def test_literal(self):
        outcome = create_primitive_initialization(INT, 42).execute([], None)
        assert outcome == NormalExecution(42, 0)

    def test_array_creation(self):
        op = create_array_creation(ArrayType(INT), 3)
        outcome = op.execute([1, 2, 3], None)
        assert outcome.is_normal()
        assert outcome.value == [1, 2, 3]

    def test_array_creation_checks_input_count(self):
        op = create_array_creation(ArrayType(INT), 3)
        with pytest.raises(PreconditionViolation):
            op.execute([1, 2], None)

    def test_exception_is_an_outcome(self):
        outcome = method(subjects.Thrower, "fail").execute([subjects.Thrower(), "boom"])
        assert isinstance(outcome, ExceptionalExecution)
        assert isinstance(outcome.exception, ValueError)
        assert str(outcome.exception) == "boom"

    def test_send_rejects_non_positive(self):
        outcome = method(net.Connection, "send").execute([net.Connection(), 0])
        assert outcome.is_exceptional()
        assert isinstance(outcome.exception, ValueError)

    def test_system_exit_is_captured(self):
        outcome = method(subjects.Thrower, "exit").execute([subjects.Thrower(), 3])
        assert isinstance(outcome.exception, SystemExit)

    def test_none_receiver(self):
        outcome = method(net.Connection, "send").execute([None, 1])
        assert isinstance(outcome, ExceptionalExecution)
        assert isinstance(outcome.exception, AttributeError)
        assert "send" in str(outcome.exception)

    def test_dispatch_is_virtual(self):
        withdraw = method(subjects.Account, "withdraw")
        outcome = withdraw.execute([subjects.SavingsAccount(5, 0.1), 10])
        assert isinstance(outcome.exception, ValueError)
        assert withdraw.execute([subjects.Account(5), 10]).value == -5

    def test_static_and_class_methods(self):
        assert method(subjects.Counter, "parse").execute(["5"]).value.count == 5
        assert method(subjects.Counter, "zero").execute([]).value.count == 0

    def test_nested_class_constructor(self):
        assert constructor(subjects.Outer.Inner).execute([4]).value.value == 4

    def test_overloads_call_the_implementation(self):
        square, rectangle = (for_method(h) for h in methods(subjects.Shapes, "area"))
        assert square.execute([subjects.Shapes(), 3]).value == 9
        assert rectangle.execute([subjects.Shapes(), 2.0, 1.5]).value == 3.0

    def test_output_is_redirected(self):
        out = io.StringIO()
        outcome = method(subjects.Printer, "shout").execute(
            [subjects.Printer(), "hi"], ExecutionContext(out=out)
        )
        assert outcome.value == "HI"
        assert out.getvalue() == "hi\n"


class TestDeadlines:

    def test_timeout(self):
        previous = sys.gettrace()
        context = ExecutionContext(deadline=Deadline(0.05))
        outcome = method(subjects.Thrower, "spin").execute([subjects.Thrower(), 10.0], context)
        assert isinstance(outcome, TimeoutExecution)
        assert outcome.elapsed_ns > 0
        assert sys.gettrace() is previous

    def test_finishing_before_the_deadline(self):
        context = ExecutionContext(deadline=Deadline(30))
        outcome = method(subjects.Thrower, "spin").execute([subjects.Thrower(), 0.0], context)
        assert outcome.is_normal()

    def test_expired_deadline_runs_nothing(self):
        deadline = Deadline()
        deadline.cancel()
        connection = net.Connection()
        outcome = method(net.Connection, "send").execute(
            [connection, 1], ExecutionContext(deadline=deadline)
        )
        assert outcome is NOT_EXECUTED
        assert connection.sent == []

    def test_deadline_without_timeout_never_expires(self):
        assert not Deadline().expired()
        assert Deadline(0).expired()

    def test_context_from_settings(self):
        from config import Settings

        context = ExecutionContext.from_settings(settings=Settings(execution_timeout=5))
        assert context.deadline is not None and not context.deadline.expired()
        assert ExecutionContext.from_settings(settings=Settings()).deadline is None


# ---------------------------------------------------------------------------
# Code emission
# ---------------------------------------------------------------------------

class TestCode:

    def test_constructor(self):
        assert constructor(p.C).to_code(["x", "s"]) == "p.C(x, s)"

    def test_instance_method(self):
        assert method(net.Connection, "send").to_code(["v0", "v1"]) == "v0.send(v1)"

    def test_literal_receiver_is_parenthesized(self):
        assert method(subjects.Counter, "read").to_code(["1"]) == "(1).read()"

    def test_static_method(self):
        assert method(subjects.Counter, "parse").to_code(["v0"]) == "subjects.Counter.parse(v0)"
        assert method(subjects.Counter, "zero").to_code([]) == "subjects.Counter.zero()"

    def test_nested_class(self):
        assert constructor(subjects.Outer.Inner).to_code(["v"]) == "subjects.Outer.Inner(v)"

    def test_generic_class(self):
        assert constructor(subjects.Box).to_code(["v"]) == "subjects.Box(v)"

    def test_array(self):
        op = create_array_creation(ArrayType(INT), 2)
        assert op.to_code(["a", "b"]) == "[a, b]"
        assert create_array_creation(ArrayType(INT), 0).to_code([]) == "[]"

    def test_variable_count_checked(self):
        with pytest.raises(PreconditionViolation):
            constructor(p.C).to_code(["x"])

    def test_append_code_writes_to_buffer(self):
        buf = io.StringIO()
        buf.write("v2 = ")
        constructor(p.C).append_code(["x", "s"], buf)
        assert buf.getvalue() == "v2 = p.C(x, s)"

    @pytest.mark.parametrize("kind,value,source", [
        ("int", 42, "42"),
        ("int", -7, "-7"),
        ("bool", True, "True"),
        ("float", 1.5, "1.5"),
        ("float", float("inf"), "float('inf')"),
        ("float", float("-inf"), "float('-inf')"),
        ("float", float("nan"), "float('nan')"),
        ("complex", complex(1, -2), "complex(1.0, -2.0)"),
        ("str", 'say "hi"\n', "'say \"hi\"\\n'"),
        ("bytes", b"\x00a", "b'\\x00a'"),
    ])
    def test_literals(self, kind, value, source):
        op = create_primitive_initialization(PrimitiveType(kind), value)
        assert op.to_code() == source

    def test_none_literal(self):
        assert create_null_initialization_with_type(for_class(subjects.Account)).to_code() == "None"


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------

class TestVariants:

    def test_queries(self):
        send = MethodCall(find_method(net.Connection, "send", ["int"])[0])
        assert send.is_method_call() and send.is_message() and not send.is_static()
        parse = MethodCall(find_method(subjects.Counter, "parse", ["str"])[0])
        assert parse.is_static()
        term = NonreceiverTerm(INT, 1)
        assert term.is_nonreceiving_value() and term.is_static() and not term.is_message()
        array = ArrayCreation(ArrayType(INT), 1)
        assert array.is_array_creation() and array.name == "new"

    def test_literal_equality(self):
        assert NonreceiverTerm(INT, 1) == NonreceiverTerm(INT, 1)
        assert NonreceiverTerm(INT, 1) != NonreceiverTerm(INT, True)
        nan = PrimitiveType("float")
        assert NonreceiverTerm(nan, float("nan")) == NonreceiverTerm(nan, float("nan"))
        assert len({NonreceiverTerm(INT, 1), NonreceiverTerm(INT, 1)}) == 1

    def test_invalid_literals(self):
        with pytest.raises(PreconditionViolation):
            NonreceiverTerm(INT, None)
        with pytest.raises(PreconditionViolation):
            NonreceiverTerm(for_class(subjects.Account), subjects.Account(1))
        with pytest.raises(PreconditionViolation):
            ArrayCreation(ArrayType(INT), -1)

    @pytest.mark.parametrize("t,value", [(INT, Color.RED), (PrimitiveType("str"), Label("x"))])
    def test_subclasses_of_literal_types_are_not_literals(self, t, value):
        with pytest.raises(PreconditionViolation):
            NonreceiverTerm(t, value)

    def test_value_source(self):
        assert value_source(None) == "None"
        assert value_source(0.1) == "0.1"

    def test_satisfies(self):
        predicate = DefaultReflectionPredicate(omit=r"withdraw")
        assert method(net.Connection, "send").operation.satisfies(predicate)
        assert not method(subjects.Account, "withdraw").operation.satisfies(predicate)
        assert not method(subjects.Counter, "_reset").operation.satisfies(predicate)
        assert NonreceiverTerm(INT, 1).satisfies(predicate)
