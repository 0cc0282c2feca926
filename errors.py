"""Error hierarchy for specification loading, resolution and evaluation.

Execution outcomes (exceptional returns, timeouts) are *not* errors and never
appear here -- they are values returned by ``execute``.

Layers
------
TypeNotFoundError          a type name does not resolve in the class path
SpecificationParseError    batch of problems found while reading JSON
SignatureResolutionError   a signature does not resolve to one callable
IdentifierBindingError     identifier names do not fit the operation
ExpressionError            condition text cannot be compiled or evaluated
PreconditionViolation      a factory was called with unusable arguments
OperationParseError        the parsable form of an operation cannot be read
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from models import OperationSignature


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

class TypeNotFoundError(LookupError):
    """Raised when a type name cannot be resolved."""

    def __init__(self, name: str, reason: str = "") -> None:
        self.name = name
        self.reason = reason
        message = f"Type not found: {name}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class PreconditionViolation(ValueError):
    """Raised when a factory or operation is misused by its caller."""


# ---------------------------------------------------------------------------
# Specification parsing
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SpecificationIssue:
    """One problem found while reading a specification source.

    ``pointer`` is an RFC 6901 JSON pointer into the source document.
    """

    origin: str
    pointer: str
    kind: str
    message: str

    def __str__(self) -> str:
        return f"{self.origin}#{self.pointer} [{self.kind}] {self.message}"


class SpecificationParseError(Exception):
    """Raised once per load with every parse problem that was found."""

    def __init__(self, issues: list[SpecificationIssue]) -> None:
        self.issues = list(issues)
        lines = [f"{len(self.issues)} specification problem(s):"]
        for issue in self.issues:
            lines.append(f"  {issue}")
        super().__init__("\n".join(lines))


# ---------------------------------------------------------------------------
# Signature resolution
# ---------------------------------------------------------------------------

class SignatureResolutionError(LookupError):
    """Raised when a signature does not resolve to exactly one callable."""

    def __init__(self, signature: OperationSignature, reason: str) -> None:
        self.signature = signature
        self.reason = reason
        super().__init__(f"{reason}: {signature.describe()}")


class SignatureNotFoundError(SignatureResolutionError):
    """No callable in the declaring class matches the signature."""

    def __init__(self, signature: OperationSignature, reason: str = "No matching callable") -> None:
        super().__init__(signature, reason)


class AmbiguousSignatureError(SignatureResolutionError):
    """Two callables match the signature equally well."""

    def __init__(self, signature: OperationSignature, candidates: list) -> None:
        self.candidates = list(candidates)
        super().__init__(
            signature, f"Ambiguous signature ({len(self.candidates)} candidates)"
        )


# ---------------------------------------------------------------------------
# Identifier binding
#
# These subclass ValueError so that pydantic validators can raise them and
# the parser can recover the kind from the validation error context.
# ---------------------------------------------------------------------------

class IdentifierBindingError(ValueError):
    """Identifier names do not fit the operation they describe."""


class IdentifierCountMismatchError(IdentifierBindingError):
    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Expected {expected} parameter name(s) to match the operation, got {actual}"
        )


class DuplicateIdentifierError(IdentifierBindingError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Duplicate identifier name: {name!r}")


class UnknownIdentifierError(IdentifierBindingError):
    def __init__(self, name: str, text: str = "") -> None:
        self.name = name
        self.text = text
        message = f"Unknown identifier {name!r}"
        if text:
            message += f" in {text!r}"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Condition expressions
# ---------------------------------------------------------------------------

class ExpressionError(Exception):
    """Base class for evaluator failures."""

    def __init__(self, text: str, message: str) -> None:
        self.text = text
        super().__init__(f"{message}: {text!r}")


class ExpressionParseError(ExpressionError, ValueError):
    """Condition text is not a valid expression."""

    def __init__(self, text: str, detail: str) -> None:
        self.detail = detail
        super().__init__(text, f"Cannot parse condition ({detail})")


class EvaluationError(ExpressionError):
    """Evaluating a condition raised an exception."""

    def __init__(self, text: str, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(text, f"Condition raised {type(cause).__name__}: {cause}")


# ---------------------------------------------------------------------------
# Typed operations
# ---------------------------------------------------------------------------

class OperationParseError(ValueError):
    """Raised when the parsable form of a typed operation cannot be read back."""

    def __init__(self, text: str, reason: str) -> None:
        self.text = text
        self.reason = reason
        super().__init__(f"Cannot parse operation {text!r}: {reason}")
