"""Specification document models.

Pydantic models for operation signatures and the JSON specification
documents attached to them. These define the data shapes only; resolving
a signature to a callable and compiling condition text happen elsewhere.

JSON layout (field order irrelevant, unknown fields rejected)::

    {
      "operation":   {"classname": ..., "name": ..., "parameterTypes": [...]},
      "identifiers": {"parameters": [...], "receiverName": ..., "returnName": ...},
      "pre":    [{"description": ..., "guard": {...}}],
      "post":   [{"description": ..., "guard": {...}, "property": {...}}],
      "throws": [{"description": ..., "guard": {...}, "exception": ...}]
    }
"""
from __future__ import annotations

import keyword
from typing import TYPE_CHECKING, Iterable

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from classpath import qualified_name
from errors import DuplicateIdentifierError, IdentifierCountMismatchError

if TYPE_CHECKING:
    from reflection import CallableHandle


_DOCUMENT = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


# ---------------------------------------------------------------------------
# Operation signature
# ---------------------------------------------------------------------------

class OperationSignature(BaseModel):
    """Textual identity of a callable: declaring class, name, parameter types.

    A constructor is named after its declaring class.
    """

    model_config = _DOCUMENT

    classname: str
    name: str
    parameter_types: tuple[str, ...] = Field(alias="parameterTypes")

    @classmethod
    def for_constructor(cls, classname: str, parameter_types: Iterable[str]) -> OperationSignature:
        return cls(classname=classname, name=classname, parameter_types=tuple(parameter_types))

    @classmethod
    def for_method(
        cls, classname: str, name: str, parameter_types: Iterable[str]
    ) -> OperationSignature:
        return cls(classname=classname, name=name, parameter_types=tuple(parameter_types))

    @classmethod
    def of(cls, handle: CallableHandle) -> OperationSignature:
        classname = qualified_name(handle.declaring_class)
        if handle.is_constructor():
            return cls.for_constructor(classname, handle.parameter_type_names())
        return cls.for_method(classname, handle.name, handle.parameter_type_names())

    def is_constructor(self) -> bool:
        return self.name == self.classname

    def is_valid(self) -> bool:
        return bool(self.classname and self.name) and all(self.parameter_types)

    def sort_key(self) -> tuple:
        return (self.classname, self.name, self.parameter_types)

    def describe(self) -> str:
        return self.model_dump_json(by_alias=True)

    def __str__(self) -> str:
        return self.describe()


# ---------------------------------------------------------------------------
# Identifiers and condition text
# ---------------------------------------------------------------------------

class Identifiers(BaseModel):
    """Names used by condition text for the parameters, receiver and result."""

    model_config = _DOCUMENT

    parameters: tuple[str, ...] = ()
    receiver_name: str | None = Field(default=None, alias="receiverName")
    return_name: str | None = Field(default=None, alias="returnName")

    @field_validator("parameters")
    @classmethod
    def parameters_are_identifiers(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        for name in v:
            _check_identifier(name)
        return v

    @field_validator("receiver_name", "return_name")
    @classmethod
    def name_is_identifier(cls, v: str | None) -> str | None:
        if v is not None:
            _check_identifier(v)
        return v

    @model_validator(mode="after")
    def names_distinct(self) -> Identifiers:
        seen: set[str] = set()
        for name in self.names():
            if name in seen:
                raise DuplicateIdentifierError(name)
            seen.add(name)
        return self

    def names(self) -> list[str]:
        names = list(self.parameters)
        if self.receiver_name is not None:
            names.append(self.receiver_name)
        if self.return_name is not None:
            names.append(self.return_name)
        return names


def _check_identifier(name: str) -> None:
    if not name.isidentifier() or keyword.iskeyword(name):
        raise ValueError(f"Not a valid identifier: {name!r}")


class Guard(BaseModel):
    """Boolean expression deciding whether a clause applies."""

    model_config = _DOCUMENT

    condition_text: str = Field(alias="conditionText")
    description: str = ""


class Property(BaseModel):
    """Boolean expression that must hold after the call; may use the result."""

    model_config = _DOCUMENT

    condition_text: str = Field(alias="conditionText")
    description: str = ""


# ---------------------------------------------------------------------------
# Clauses
# ---------------------------------------------------------------------------

class Precondition(BaseModel):
    model_config = _DOCUMENT

    description: str = ""
    guard: Guard


class Postcondition(BaseModel):
    """If ``guard`` holds before the call, ``property`` must hold after it."""

    model_config = _DOCUMENT

    description: str = ""
    guard: Guard
    property: Property


class ThrowsCondition(BaseModel):
    """If ``guard`` holds before the call, the call must raise ``exception``."""

    model_config = _DOCUMENT

    description: str = ""
    guard: Guard
    exception: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

class OperationSpecification(BaseModel):
    """Contract attached to one operation. Immutable; ``add_*`` return copies."""

    model_config = _DOCUMENT

    operation: OperationSignature
    identifiers: Identifiers = Field(default_factory=Identifiers)
    pre: tuple[Precondition, ...] = ()
    post: tuple[Postcondition, ...] = ()
    throws: tuple[ThrowsCondition, ...] = ()

    @field_validator("operation")
    @classmethod
    def operation_valid(cls, v: OperationSignature) -> OperationSignature:
        if not v.is_valid():
            raise ValueError("Operation signature needs a classname, a name and non-empty parameter types")
        return v

    @model_validator(mode="after")
    def identifiers_match_operation(self) -> OperationSpecification:
        expected = len(self.operation.parameter_types)
        actual = len(self.identifiers.parameters)
        if expected != actual:
            raise IdentifierCountMismatchError(expected, actual)
        return self

    def is_empty(self) -> bool:
        return not (self.pre or self.post or self.throws)

    def add_preconditions(self, items: Iterable[Precondition]) -> OperationSpecification:
        return self.model_copy(update={"pre": self.pre + tuple(items)})

    def add_postconditions(self, items: Iterable[Postcondition]) -> OperationSpecification:
        return self.model_copy(update={"post": self.post + tuple(items)})

    def add_throws_conditions(self, items: Iterable[ThrowsCondition]) -> OperationSpecification:
        return self.model_copy(update={"throws": self.throws + tuple(items)})
