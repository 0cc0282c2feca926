"""Reading and merging specification documents.

Layers
------
read_source()             file path or (origin, text) pair -> (origin, text)
parse_specifications()    validate every document, report all problems at once
merge_specifications()    one document per signature, clauses deduplicated

Problems are reported as ``SpecificationIssue`` values carrying the origin
(file name) and an RFC 6901 JSON pointer to the offending value, collected
across every source and raised together as ``SpecificationParseError``.
"""
from __future__ import annotations

import json
import logging
from itertools import groupby
from pathlib import Path
from typing import Any, Iterable, Sequence, Union

from pydantic import TypeAdapter, ValidationError

from conditions import ExpressionEvaluator
from config import get_settings
from errors import ExpressionParseError, SpecificationIssue, SpecificationParseError
from models import OperationSpecification

logger = logging.getLogger(__name__)

Source = Union[str, Path, tuple[str, str]]

_DOCUMENT = TypeAdapter(OperationSpecification)


# ---------------------------------------------------------------------------
# Pointers
# ---------------------------------------------------------------------------

def json_pointer(*parts: Any) -> str:
    """Build an RFC 6901 pointer from path components."""
    tokens = (str(p).replace("~", "~0").replace("/", "~1") for p in parts)
    return "".join("/" + t for t in tokens)


def _issue_kind(error: dict) -> str:
    cause = (error.get("ctx") or {}).get("error")
    if isinstance(cause, BaseException) and error["type"] == "value_error":
        return type(cause).__name__
    return error["type"]


def _issue_message(error: dict) -> str:
    cause = (error.get("ctx") or {}).get("error")
    if isinstance(cause, BaseException):
        return str(cause)
    return error["msg"]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def read_source(source: Source, encoding: str | None = None) -> tuple[str, str]:
    """Return ``(origin, text)``; unreadable files raise ``OSError`` or ``UnicodeDecodeError``."""
    if isinstance(source, tuple):
        return source
    path = Path(source)
    return str(path), path.read_text(encoding=encoding or get_settings().spec_encoding)


def _parse_text(
    origin: str, text: str, evaluator: ExpressionEvaluator, issues: list[SpecificationIssue]
) -> list[OperationSpecification]:
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        issues.append(SpecificationIssue(
            origin, "", "json_invalid", f"{e.msg} (line {e.lineno}, column {e.colno})"
        ))
        return []

    if isinstance(raw, dict):
        elements, prefix = [raw], ()
    elif isinstance(raw, list):
        elements, prefix = raw, None
    else:
        issues.append(SpecificationIssue(
            origin, "", "list_type", "Expected a list of specification objects"
        ))
        return []

    documents: list[OperationSpecification] = []
    for index, element in enumerate(elements):
        base = prefix if prefix is not None else (index,)
        try:
            document = _DOCUMENT.validate_python(element)
        except ValidationError as e:
            for error in e.errors():
                issues.append(SpecificationIssue(
                    origin,
                    json_pointer(*base, *error["loc"]),
                    _issue_kind(error),
                    _issue_message(error),
                ))
            continue

        found = len(issues)
        issues.extend(_syntax_issues(origin, base, document, evaluator))
        if len(issues) == found:
            documents.append(document)
    return documents


def _syntax_issues(
    origin: str, base: tuple, document: OperationSpecification, evaluator: ExpressionEvaluator
) -> Iterable[SpecificationIssue]:
    texts: list[tuple[tuple, str]] = []
    for i, pre in enumerate(document.pre):
        texts.append((("pre", i, "guard"), pre.guard.condition_text))
    for i, post in enumerate(document.post):
        texts.append((("post", i, "guard"), post.guard.condition_text))
        texts.append((("post", i, "property"), post.property.condition_text))
    for i, throws in enumerate(document.throws):
        texts.append((("throws", i, "guard"), throws.guard.condition_text))

    for path, text in texts:
        try:
            evaluator.check_syntax(text)
        except ExpressionParseError as e:
            yield SpecificationIssue(
                origin, json_pointer(*base, *path, "conditionText"), type(e).__name__, str(e)
            )


def parse_specifications(
    sources: Iterable[Source], evaluator: ExpressionEvaluator | None = None
) -> list[OperationSpecification]:
    """Parse every source, raising one ``SpecificationParseError`` for all problems."""
    evaluator = evaluator or ExpressionEvaluator.from_settings()
    issues: list[SpecificationIssue] = []
    documents: list[OperationSpecification] = []
    for source in sources:
        try:
            origin, text = read_source(source)
        except UnicodeDecodeError as e:
            issues.append(SpecificationIssue(str(source), "", "decode_error", str(e)))
            continue
        except OSError as e:
            issues.append(SpecificationIssue(str(source), "", "io_error", e.strerror or str(e)))
            continue
        documents.extend(_parse_text(origin, text, evaluator, issues))
    if issues:
        raise SpecificationParseError(issues)
    logger.debug("Parsed %d specification document(s)", len(documents))
    return documents


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------

def _unique(items: Iterable) -> tuple:
    kept: list = []
    for item in items:
        if item not in kept:
            kept.append(item)
    return tuple(kept)


def combine_specifications(group: Sequence[OperationSpecification]) -> OperationSpecification:
    """Fold ``group`` into its first document.

    Clauses are appended in order and structural duplicates dropped; the
    operation and identifiers of the first document are kept.
    """
    first = group[0]
    for other in group[1:]:
        if other.identifiers != first.identifiers:
            logger.warning(
                "Identifiers differ for %s; keeping %s", first.operation, first.identifiers.names()
            )
    return first.model_copy(update={
        "pre": _unique(p for d in group for p in d.pre),
        "post": _unique(p for d in group for p in d.post),
        "throws": _unique(t for d in group for t in d.throws),
    })


def merge_specifications(
    documents: Sequence[OperationSpecification],
) -> list[OperationSpecification]:
    """One document per signature, sorted by signature.

    Documents sharing a signature are combined in the order supplied.
    """
    ordered = sorted(documents, key=lambda d: d.operation.sort_key())
    return [
        combine_specifications(list(group))
        for _, group in groupby(ordered, key=lambda d: d.operation)
    ]
