"""Specification collection: contracts indexed by the callables they describe.

Layers
------
PreconditionResult        pass/fail with the first failing description
Violation                 one broken postcondition or throws clause
ClauseScope               the identifiers one document's clauses were written against
ExpectedOutcomeTable      guards evaluated before a call, checked after it
OperationConditions       compiled pre/post/throws clauses for one callable
SpecificationCollection   load(documents) -> index keyed by resolved handle

A document that does not resolve (unknown class, no matching callable,
unknown identifier in condition text, unknown exception type) is skipped,
logged and recorded in ``SpecificationCollection.unresolved``; the others
still load.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from classpath import ClassPath
from conditions import CompiledExpression, ExpressionEvaluator, IdentifierBinding
from errors import (
    AmbiguousSignatureError,
    EvaluationError,
    ExpressionError,
    IdentifierBindingError,
    SignatureNotFoundError,
    TypeNotFoundError,
)
from models import Identifiers, OperationSignature, OperationSpecification
from operations import CallableOperation
from outcome import ExecutionOutcome
from reflection import CallableHandle, find_constructor, find_method, overridden
from specification import Source, combine_specifications, parse_specifications
from typed_operation import TypedOperation

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PreconditionResult:
    passed: bool
    failing: str | None = None

    def __bool__(self) -> bool:
        return self.passed


@dataclass(frozen=True)
class Violation:
    """A clause whose guard held but whose promise was not kept."""

    kind: str  # "postcondition" or "throws"
    description: str
    detail: str

    def __str__(self) -> str:
        return f"[{self.kind}] {self.description}: {self.detail}"


# ---------------------------------------------------------------------------
# Compiled clauses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ClauseScope:
    """The names one document's clauses are compiled and evaluated against."""

    binding: IdentifierBinding
    result_binding: IdentifierBinding
    has_receiver: bool
    is_constructor: bool

    @classmethod
    def of(cls, identifiers: Identifiers, handle: CallableHandle) -> ClauseScope:
        has_receiver = not (handle.is_constructor() or handle.is_static())
        receiver = identifiers.receiver_name if has_receiver else None
        # a constructor's receiver is the new object: visible to properties only
        after = identifiers.receiver_name if handle.is_constructor() else receiver
        parameters = tuple(identifiers.parameters)
        return cls(
            IdentifierBinding(parameters, receiver, identifiers.return_name),
            IdentifierBinding(parameters, after, identifiers.return_name),
            has_receiver,
            handle.is_constructor(),
        )

    def values(self, args: Sequence[Any]) -> dict[str, Any]:
        return self.binding.bind(args, has_receiver=self.has_receiver)

    def result_values(self, values: Mapping[str, Any], result: Any) -> dict[str, Any]:
        bound = self.result_binding.bind_result(values, result)
        if self.is_constructor and self.result_binding.receiver_name is not None:
            bound[self.result_binding.receiver_name] = result
        return bound


@dataclass(frozen=True)
class CompiledPrecondition:
    description: str
    scope: ClauseScope = field(repr=False)
    guard: CompiledExpression


@dataclass(frozen=True)
class CompiledPostcondition:
    description: str
    scope: ClauseScope = field(repr=False)
    guard: CompiledExpression
    property: CompiledExpression


@dataclass(frozen=True)
class CompiledThrows:
    description: str
    scope: ClauseScope = field(repr=False)
    guard: CompiledExpression
    exception: str
    exception_class: type = field(compare=False)


def _exception_class(class_path: ClassPath, name: str) -> type:
    cls = class_path.resolve_class(name)
    if not issubclass(cls, BaseException):
        raise TypeNotFoundError(name, "not an exception class")
    return cls


def _is_instance(outcome: ExecutionOutcome, classes: Iterable[type]) -> bool:
    exception = getattr(outcome, "exception", None)
    return exception is not None and isinstance(exception, tuple(classes))


@dataclass
class ExpectedOutcomeTable:
    """What a call should do, decided from its inputs before it runs."""

    preconditions: PreconditionResult
    expected: list[CompiledThrows]
    postconditions: list[CompiledPostcondition]
    values: dict[ClauseScope, dict[str, Any]]
    conditions: OperationConditions

    def is_invalid(self) -> bool:
        return not self.preconditions

    def expects_exception(self) -> bool:
        return bool(self.expected)

    def check(self, outcome: ExecutionOutcome) -> list[Violation]:
        if self.is_invalid():
            return []
        if self.expected:
            if _is_instance(outcome, (t.exception_class for t in self.expected)):
                return []
            names = ", ".join(t.exception for t in self.expected)
            first = self.expected[0]
            return [Violation("throws", first.description, f"expected {names}, got {outcome}")]
        if not outcome.is_normal():
            return []
        return self.conditions.property_violations(
            self.postconditions, self.values, outcome.value
        )


class OperationConditions:
    """Compiled contract of one callable.

    Built from one or more documents; each document's clauses keep the
    identifiers of the document they came from.
    """

    def __init__(
        self,
        specification: OperationSpecification,
        handle: CallableHandle,
        evaluator: ExpressionEvaluator,
        class_path: ClassPath,
    ) -> None:
        self.handle = handle
        self.evaluator = evaluator
        self.class_path = class_path
        self.has_receiver = not (handle.is_constructor() or handle.is_static())
        self.pre: list[CompiledPrecondition] = []
        self.post: list[CompiledPostcondition] = []
        self.throws: list[CompiledThrows] = []
        self.add(specification)

    def add(self, specification: OperationSpecification) -> None:
        """Compile the clauses of ``specification``; nothing is added if any fails."""
        scope = ClauseScope.of(specification.identifiers, self.handle)
        pre = [
            CompiledPrecondition(p.description, scope, self._guard(scope, p.guard.condition_text))
            for p in specification.pre
        ]
        post = [
            CompiledPostcondition(
                p.description,
                scope,
                self._guard(scope, p.guard.condition_text),
                self.evaluator.parse(
                    p.property.condition_text, scope.result_binding, allow_return=True
                ),
            )
            for p in specification.post
        ]
        throws = [
            CompiledThrows(
                t.description,
                scope,
                self._guard(scope, t.guard.condition_text),
                t.exception,
                _exception_class(self.class_path, t.exception),
            )
            for t in specification.throws
        ]
        _extend_unique(self.pre, pre)
        _extend_unique(self.post, post)
        _extend_unique(self.throws, throws)

    def _guard(self, scope: ClauseScope, text: str) -> CompiledExpression:
        return self.evaluator.parse(text, scope.binding)

    def __repr__(self) -> str:
        return (
            f"OperationConditions({self.handle}, pre={len(self.pre)}, "
            f"post={len(self.post)}, throws={len(self.throws)})"
        )

    # -- evaluation ---------------------------------------------------------

    def _values(self, args: Sequence[Any]) -> dict[ClauseScope, dict[str, Any]]:
        scopes = {c.scope for c in (*self.pre, *self.post, *self.throws)}
        return {scope: scope.values(args) for scope in scopes}

    def _holds(self, clause, values: Mapping[ClauseScope, Mapping[str, Any]]) -> bool:
        try:
            return self.evaluator.evaluate(clause.guard, values[clause.scope])
        except EvaluationError as e:
            logger.debug("Guard treated as false: %s", e)
            return False

    def check_preconditions(self, args: Sequence[Any]) -> PreconditionResult:
        values = self._values(args)
        for pre in self.pre:
            if not self._holds(pre, values):
                return PreconditionResult(False, pre.description or pre.guard.text)
        return PreconditionResult(True)

    def expected_exceptions(self, args: Sequence[Any]) -> set[str]:
        values = self._values(args)
        return {t.exception for t in self.throws if self._holds(t, values)}

    def check_postconditions(
        self, args: Sequence[Any], outcome: ExecutionOutcome
    ) -> list[Violation]:
        """Violated properties of postconditions whose guard holds for ``args``.

        Only normal returns are checked. Guards see ``args`` as they are now;
        use ``expected_outcome`` to evaluate them before the call instead.
        """
        if not outcome.is_normal():
            return []
        values = self._values(args)
        applicable = [p for p in self.post if self._holds(p, values)]
        return self.property_violations(applicable, values, outcome.value)

    def property_violations(
        self,
        postconditions: list[CompiledPostcondition],
        values: Mapping[ClauseScope, Mapping[str, Any]],
        result: Any,
    ) -> list[Violation]:
        violations = []
        for post in postconditions:
            bound = post.scope.result_values(values[post.scope], result)
            try:
                if self.evaluator.evaluate(post.property, bound):
                    continue
                detail = f"{post.property.text} is false"
            except EvaluationError as e:
                detail = str(e)
            violations.append(Violation("postcondition", post.description, detail))
        return violations

    def expected_outcome(self, args: Sequence[Any]) -> ExpectedOutcomeTable:
        values = self._values(args)
        return ExpectedOutcomeTable(
            preconditions=self.check_preconditions(args),
            expected=[t for t in self.throws if self._holds(t, values)],
            postconditions=[p for p in self.post if self._holds(p, values)],
            values=values,
            conditions=self,
        )


def _extend_unique(clauses: list, new: Iterable) -> None:
    for clause in new:
        if clause not in clauses:
            clauses.append(clause)


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UnresolvedSpecification:
    signature: OperationSignature
    reason: str


class SpecificationCollection:
    """Read-only after ``load``; the handle cache only grows."""

    def __init__(
        self, class_path: ClassPath | None = None, evaluator: ExpressionEvaluator | None = None
    ) -> None:
        self.class_path = class_path or ClassPath()
        self.evaluator = evaluator or ExpressionEvaluator.from_settings()
        self.unresolved: list[UnresolvedSpecification] = []
        self._specifications: dict[CallableHandle, OperationSpecification] = {}
        self._conditions: dict[CallableHandle, OperationConditions] = {}
        self._handles: dict[OperationSignature, CallableHandle] = {}

    @classmethod
    def load(
        cls,
        documents: Iterable[OperationSpecification],
        class_path: ClassPath | None = None,
        evaluator: ExpressionEvaluator | None = None,
    ) -> SpecificationCollection:
        """Index ``documents`` by the callable each resolves to.

        Documents for one callable are combined in the order supplied, so a
        primitive-named and a boxed-named document keep their input order.
        A document that fails to resolve or compile is skipped on its own.
        """
        collection = cls(class_path, evaluator)
        grouped: dict[CallableHandle, list[OperationSpecification]] = {}
        failed: set[OperationSignature] = set()
        for document in documents:
            if document.operation in failed:
                continue
            try:
                handle = collection.get_accessible_object(document.operation)
            except (SignatureNotFoundError, TypeNotFoundError) as e:
                failed.add(document.operation)
                collection._skip(document.operation, str(e))
                continue
            grouped.setdefault(handle, []).append(document)

        for handle, group in grouped.items():
            conditions: OperationConditions | None = None
            loaded: list[OperationSpecification] = []
            for document in group:
                try:
                    if conditions is None:
                        conditions = OperationConditions(
                            document, handle, collection.evaluator, collection.class_path
                        )
                    else:
                        conditions.add(document)
                except (IdentifierBindingError, ExpressionError, TypeNotFoundError) as e:
                    collection._skip(document.operation, str(e))
                    continue
                loaded.append(document)
            if conditions is None:
                continue
            collection._specifications[handle] = combine_specifications(loaded)
            collection._conditions[handle] = conditions

        logger.info(
            "Loaded %d specification(s), %d unresolved",
            len(collection._conditions), len(collection.unresolved),
        )
        return collection

    @classmethod
    def from_sources(
        cls,
        sources: Iterable[Source],
        class_path: ClassPath | None = None,
        evaluator: ExpressionEvaluator | None = None,
    ) -> SpecificationCollection:
        evaluator = evaluator or ExpressionEvaluator.from_settings()
        return cls.load(parse_specifications(sources, evaluator), class_path, evaluator)

    def _skip(self, signature: OperationSignature, reason: str) -> None:
        logger.warning("Skipping specification for %s: %s", signature, reason)
        self.unresolved.append(UnresolvedSpecification(signature, reason))

    # -- resolution ---------------------------------------------------------

    def get_accessible_object(self, signature: OperationSignature) -> CallableHandle:
        """Resolve ``signature`` to a callable, matching primitive and boxed names."""
        cached = self._handles.get(signature)
        if cached is not None:
            return cached
        try:
            cls = self.class_path.resolve_class(signature.classname)
        except TypeNotFoundError as e:
            raise SignatureNotFoundError(signature, str(e)) from e

        if signature.is_constructor():
            candidates = find_constructor(cls, signature.parameter_types)
        else:
            candidates = find_method(cls, signature.name, signature.parameter_types)
        if not candidates:
            raise SignatureNotFoundError(signature)
        if len(candidates) > 1:
            logger.warning("%s; using the first declared", AmbiguousSignatureError(signature, candidates))

        handle = candidates[0]
        self._handles[signature] = handle
        return handle

    def find_accessible_object(self, signature: OperationSignature) -> CallableHandle | None:
        try:
            return self.get_accessible_object(signature)
        except SignatureNotFoundError:
            return None

    # -- lookup -------------------------------------------------------------

    def for_callable(
        self, target: CallableHandle | CallableOperation | TypedOperation
    ) -> OperationConditions | None:
        """Conditions for ``target``, inherited from the nearest overridden method if needed."""
        handle = _handle_of(target)
        if handle is None:
            return None
        conditions = self._conditions.get(handle)
        if conditions is not None or handle.is_constructor():
            return conditions
        for ancestor in overridden(handle):
            conditions = self._conditions.get(ancestor)
            if conditions is not None:
                return conditions
        return None

    def specification_for(self, handle: CallableHandle) -> OperationSpecification | None:
        return self._specifications.get(handle)

    def handles(self) -> list[CallableHandle]:
        return list(self._specifications)

    def __len__(self) -> int:
        return len(self._specifications)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SpecificationCollection):
            return NotImplemented
        return self._specifications == other._specifications and self.unresolved == other.unresolved


def _handle_of(target) -> CallableHandle | None:
    if isinstance(target, CallableHandle):
        return target
    if isinstance(target, TypedOperation):
        target = target.operation
    return getattr(target, "handle", None)
