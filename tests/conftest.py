"""Shared fixtures for specification and typed operation tests."""
from __future__ import annotations

import json

import pytest

import net
import subjects
from classpath import ClassPath
from conditions import ExpressionEvaluator
from documents import SEND_SPEC
from models import OperationSpecification
from reflection import find_constructor, find_method


@pytest.fixture
def class_path() -> ClassPath:
    return ClassPath(["net", "subjects", "p"])


@pytest.fixture
def evaluator() -> ExpressionEvaluator:
    return ExpressionEvaluator(["math"])


@pytest.fixture
def send_spec() -> OperationSpecification:
    return OperationSpecification.model_validate(SEND_SPEC)


@pytest.fixture
def send_source() -> tuple[str, str]:
    """The send document as an (origin, text) source."""
    return ("send.json", json.dumps([SEND_SPEC]))


@pytest.fixture
def send_handle():
    (handle,) = find_method(net.Connection, "send", ["int"])
    return handle


@pytest.fixture
def withdraw_handles():
    """``withdraw`` of Account, SavingsAccount and FrozenAccount."""
    return tuple(
        find_method(cls, "withdraw", ["int"])[0]
        for cls in (subjects.Account, subjects.SavingsAccount, subjects.FrozenAccount)
    )


@pytest.fixture
def account_constructor():
    (handle,) = find_constructor(subjects.Account, ["int"])
    return handle
