"""Execution outcomes, deadlines and the execution context.

``execute`` never raises for user-code failures; it returns exactly one of:

| Outcome               | Meaning                                          |
|-----------------------|--------------------------------------------------|
| NormalExecution       | the call returned ``value``                      |
| ExceptionalExecution  | the call raised ``exception``                    |
| TimeoutExecution      | the deadline passed while the call was running   |
| NOT_EXECUTED          | nothing was run (the deadline had already passed)|
"""
from __future__ import annotations

import logging
import sys
import time
from contextlib import ExitStack, redirect_stderr, redirect_stdout
from dataclasses import dataclass, field
from typing import Any, Callable, TextIO

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

class ExecutionOutcome:
    def is_normal(self) -> bool:
        return False

    def is_exceptional(self) -> bool:
        return False

    def is_timeout(self) -> bool:
        return False


@dataclass(frozen=True)
class NormalExecution(ExecutionOutcome):
    value: Any
    elapsed_ns: int = 0

    def is_normal(self) -> bool:
        return True


@dataclass(frozen=True)
class ExceptionalExecution(ExecutionOutcome):
    exception: BaseException
    elapsed_ns: int = 0

    def is_exceptional(self) -> bool:
        return True

    def __str__(self) -> str:
        return f"ExceptionalExecution({type(self.exception).__name__}: {self.exception})"


@dataclass(frozen=True)
class TimeoutExecution(ExecutionOutcome):
    elapsed_ns: int = 0

    def is_timeout(self) -> bool:
        return True


class _NotExecuted(ExecutionOutcome):
    def __repr__(self) -> str:
        return "NOT_EXECUTED"


NOT_EXECUTED = _NotExecuted()


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------

class _DeadlineExceeded(BaseException):
    """Raised inside user code by the deadline tracer. Never escapes ``execute``."""


class Deadline:
    """Per-call cancellation token.

    Expires ``timeout`` seconds after creation, or when ``cancel`` is called
    (from any thread). User code is interrupted at its next traced line.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._cancelled = False
        self._at = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._cancelled = True

    def expired(self) -> bool:
        if self._cancelled:
            return True
        return self._at is not None and time.monotonic() >= self._at

    def tracer(self):
        """A ``sys.settrace`` hook raising inside traced code once expired."""

        def trace(frame, event, arg):
            if self.expired():
                raise _DeadlineExceeded()
            return trace

        return trace


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

@dataclass
class ExecutionContext:
    """Where user output goes and when to give up."""

    out: TextIO | None = None
    deadline: Deadline | None = field(default=None)

    @classmethod
    def from_settings(cls, out: TextIO | None = None, settings=None) -> ExecutionContext:
        from config import get_settings

        settings = settings or get_settings()
        deadline = Deadline(settings.execution_timeout) if settings.execution_timeout else None
        return cls(out=out, deadline=deadline)


def _invoke(call: Callable[[], Any], deadline: Deadline | None) -> Any:
    # Only frames entered by call() are traced; the previous hook is back
    # in place before anything else runs.
    previous = sys.gettrace()
    if deadline is not None:
        sys.settrace(deadline.tracer())
    try:
        return call()
    finally:
        sys.settrace(previous)


def run_in_context(call: Callable[[], Any], context: ExecutionContext | None) -> ExecutionOutcome:
    """Invoke ``call()`` capturing its result, exception or timeout.

    Elapsed time covers the invocation only.
    """
    context = context or ExecutionContext()
    deadline = context.deadline
    if deadline is not None and deadline.expired():
        return NOT_EXECUTED

    with ExitStack() as stack:
        if context.out is not None:
            stack.enter_context(redirect_stdout(context.out))
            stack.enter_context(redirect_stderr(context.out))
        start = time.perf_counter_ns()
        try:
            value = _invoke(call, deadline)
        except _DeadlineExceeded:
            elapsed = time.perf_counter_ns() - start
            logger.info("Call timed out after %.3fs", elapsed / 1e9)
            return TimeoutExecution(elapsed)
        except (Exception, SystemExit) as e:
            return ExceptionalExecution(e, time.perf_counter_ns() - start)
        return NormalExecution(value, time.perf_counter_ns() - start)
