"""Condition expressions: identifier binding and the expression evaluator.

Condition text is a Python expression. Its free names must be bound by the
identifier binding, be builtins, or be globals of the evaluator (modules
listed in ``Settings.condition_modules``). Names introduced inside
comprehensions and lambdas are local to the expression and always allowed.

Layers
------
IdentifierBinding     names for parameters, receiver and result
CompiledExpression    checked, compiled condition text
ExpressionEvaluator   parse(text, binding) / evaluate(compiled, bindings)
"""
from __future__ import annotations

import ast
import builtins
import importlib
from dataclasses import dataclass, field
from types import CodeType
from typing import Any, Iterable, Mapping, Sequence

from errors import EvaluationError, ExpressionParseError, UnknownIdentifierError
from models import Identifiers


_BUILTIN_NAMES = frozenset(dir(builtins))


# ---------------------------------------------------------------------------
# Identifier binding
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IdentifierBinding:
    parameters: tuple[str, ...] = ()
    receiver_name: str | None = None
    return_name: str | None = None

    @classmethod
    def from_identifiers(cls, identifiers: Identifiers) -> IdentifierBinding:
        return cls(tuple(identifiers.parameters), identifiers.receiver_name, identifiers.return_name)

    def names(self, *, allow_return: bool = False) -> set[str]:
        names = set(self.parameters)
        if self.receiver_name is not None:
            names.add(self.receiver_name)
        if allow_return and self.return_name is not None:
            names.add(self.return_name)
        return names

    def bind(self, args: Sequence[Any], *, has_receiver: bool) -> dict[str, Any]:
        """Map call inputs to names. ``args[0]`` is the receiver when ``has_receiver``."""
        values: dict[str, Any] = {}
        if has_receiver:
            if self.receiver_name is not None:
                values[self.receiver_name] = args[0]
            args = args[1:]
        values.update(zip(self.parameters, args))
        return values

    def bind_result(self, values: Mapping[str, Any], result: Any) -> dict[str, Any]:
        bound = dict(values)
        if self.return_name is not None:
            bound[self.return_name] = result
        return bound


# ---------------------------------------------------------------------------
# Free name analysis
# ---------------------------------------------------------------------------

class _FreeNames(ast.NodeVisitor):
    def __init__(self) -> None:
        self.free: list[str] = []
        self.scopes: list[set[str]] = [set()]

    def _bound(self, name: str) -> bool:
        return any(name in scope for scope in self.scopes)

    def visit_Name(self, node: ast.Name) -> None:
        if isinstance(node.ctx, ast.Store):
            self.scopes[-1].add(node.id)
        elif not self._bound(node.id) and node.id not in self.free:
            self.free.append(node.id)

    def visit_Lambda(self, node: ast.Lambda) -> None:
        args = node.args
        for default in args.defaults + [d for d in args.kw_defaults if d is not None]:
            self.visit(default)
        names = {a.arg for a in args.posonlyargs + args.args + args.kwonlyargs}
        if args.vararg:
            names.add(args.vararg.arg)
        if args.kwarg:
            names.add(args.kwarg.arg)
        self.scopes.append(names)
        self.visit(node.body)
        self.scopes.pop()

    def _comprehension(self, node, *elements: ast.AST) -> None:
        self.scopes.append(set())
        for generator in node.generators:
            self.visit(generator.iter)
            self.visit(generator.target)
            for condition in generator.ifs:
                self.visit(condition)
        for element in elements:
            self.visit(element)
        self.scopes.pop()

    def visit_ListComp(self, node: ast.ListComp) -> None:
        self._comprehension(node, node.elt)

    def visit_SetComp(self, node: ast.SetComp) -> None:
        self._comprehension(node, node.elt)

    def visit_GeneratorExp(self, node: ast.GeneratorExp) -> None:
        self._comprehension(node, node.elt)

    def visit_DictComp(self, node: ast.DictComp) -> None:
        self._comprehension(node, node.key, node.value)


def free_names(tree: ast.AST) -> list[str]:
    """Names an expression reads without binding them, in order of appearance."""
    visitor = _FreeNames()
    visitor.visit(tree)
    return visitor.free


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CompiledExpression:
    text: str
    names: tuple[str, ...]
    code: CodeType = field(compare=False, repr=False)


class ExpressionEvaluator:
    """Compiles and evaluates condition text."""

    def __init__(self, modules: Iterable[str] = ("math",)) -> None:
        self._globals: dict[str, Any] = {"__builtins__": builtins}
        for module_name in modules:
            # like ``import a.b``: binds ``a``
            importlib.import_module(module_name)
            top = module_name.partition(".")[0]
            self._globals[top] = importlib.import_module(top)

    @classmethod
    def from_settings(cls, settings=None) -> ExpressionEvaluator:
        from config import get_settings

        settings = settings or get_settings()
        return cls(settings.condition_modules)

    @property
    def global_names(self) -> frozenset[str]:
        return frozenset(self._globals)

    def check_syntax(self, text: str) -> ast.Expression:
        try:
            return ast.parse(text.strip(), mode="eval")
        except SyntaxError as e:
            raise ExpressionParseError(text, e.msg) from e

    def parse(
        self, text: str, binding: IdentifierBinding, *, allow_return: bool = False
    ) -> CompiledExpression:
        """Compile ``text``; every free name must be known.

        The result name is only known when ``allow_return`` is set, so that
        guards cannot read it.
        """
        tree = self.check_syntax(text)
        known = binding.names(allow_return=allow_return)
        names = free_names(tree)
        for name in names:
            if name not in known and name not in _BUILTIN_NAMES and name not in self._globals:
                raise UnknownIdentifierError(name, text)
        code = compile(tree, "<condition>", "eval")
        return CompiledExpression(text, tuple(names), code)

    def evaluate(self, compiled: CompiledExpression, bindings: Mapping[str, Any]) -> bool:
        # Bindings go into the globals so that generator expressions see them.
        namespace = dict(self._globals)
        namespace.update(bindings)
        try:
            return bool(eval(compiled.code, namespace))
        except Exception as e:
            raise EvaluationError(compiled.text, e) from e
