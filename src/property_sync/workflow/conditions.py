"""Restricted step-condition expressions.

Conditions are parsed with :mod:`ast` and interpreted by a small whitelist
evaluator. Supported: literals, lists, path lookups rooted at the execution
context (``params.priority``, ``results.0.status``, ``steps[2].jobId``),
comparisons, ``in``/``not in`` and boolean operators. The JavaScript spellings
found in existing definitions (``===``, ``!==``, ``&&``, ``||``, ``!``,
``true``/``false``/``null``) are accepted too. There are no calls and no
access to anything outside the context mapping.
"""

from __future__ import annotations

import ast
import operator
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .errors import ConditionEvaluationError, WorkflowValidationError
from .templates import MISSING, lookup_path

DEFAULT_ROOTS: frozenset[str] = frozenset({"params", "results", "steps", "error"})

_LITERALS: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": None,
    "True": True,
    "False": False,
    "None": None,
}

_TOKENS = re.compile(
    r"""("(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')"""
    r"""|([A-Za-z_]\w*(?:\.\w+)+)"""
    r"""|(===|!==|&&|\|\||!(?!=))"""
)
_JS_OPERATORS = {"===": "==", "!==": "!=", "&&": " and ", "||": " or ", "!": " not "}
_NUMERIC_SEGMENT = re.compile(r"\.(\d+)(?=\.|$)")

_COMPARISONS: dict[type[ast.cmpop], Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_ALLOWED_NODES: tuple[type[ast.AST], ...] = (
    ast.Expression,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.UnaryOp,
    ast.Not,
    ast.USub,
    ast.UAdd,
    ast.Compare,
    ast.Constant,
    ast.Name,
    ast.Attribute,
    ast.Subscript,
    ast.List,
    ast.Tuple,
    ast.Load,
    *_COMPARISONS.keys(),
)


def _translate(source: str) -> str:
    def replace(match: re.Match[str]) -> str:
        literal, path, js_op = match.groups()
        if literal:
            return literal
        if path:
            return _NUMERIC_SEGMENT.sub(r"[\1]", path)
        return _JS_OPERATORS[js_op]

    return _TOKENS.sub(replace, source).strip()


def _unmissing(value: Any) -> Any:
    return None if value is MISSING else value


@dataclass(frozen=True, slots=True)
class Condition:
    source: str
    tree: ast.Expression

    def evaluate(self, context: Mapping[str, Any]) -> bool:
        try:
            return bool(self._eval(self.tree.body, context))
        except ConditionEvaluationError:
            raise
        except Exception as e:
            raise ConditionEvaluationError(self.source, str(e)) from e

    def _eval(self, node: ast.AST, context: Mapping[str, Any]) -> Any:
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            if node.id in _LITERALS:
                return _LITERALS[node.id]
            return _unmissing(lookup_path(context, node.id))
        if isinstance(node, ast.Attribute):
            base = self._eval(node.value, context)
            return _unmissing(lookup_path(base, node.attr)) if base is not None else None
        if isinstance(node, ast.Subscript):
            base = self._eval(node.value, context)
            key = self._eval(node.slice, context)
            if base is None:
                return None
            return _unmissing(lookup_path(base, str(key)))
        if isinstance(node, (ast.List, ast.Tuple)):
            return [self._eval(elt, context) for elt in node.elts]
        if isinstance(node, ast.BoolOp):
            is_and = isinstance(node.op, ast.And)
            value: Any = is_and
            for operand in node.values:
                value = self._eval(operand, context)
                if bool(value) is not is_and:
                    return value
            return value
        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand, context)
            if isinstance(node.op, ast.Not):
                return not operand
            if isinstance(node.op, ast.USub):
                return -operand
            return +operand
        if isinstance(node, ast.Compare):
            left = self._eval(node.left, context)
            for op, comparator in zip(node.ops, node.comparators, strict=True):
                right = self._eval(comparator, context)
                if not _COMPARISONS[type(op)](left, right):
                    return False
                left = right
            return True
        raise ConditionEvaluationError(self.source, f"unsupported syntax {type(node).__name__}")


def compile_condition(source: str, *, roots: Iterable[str] = DEFAULT_ROOTS) -> Condition:
    """Parse and validate a condition, rejecting anything outside the language."""

    allowed_roots = set(roots)
    translated = _translate(source)
    if not translated:
        raise WorkflowValidationError("Condition must not be empty")
    try:
        tree = ast.parse(translated, mode="eval")
    except SyntaxError as e:
        raise WorkflowValidationError(f"Invalid condition {source!r}: {e.msg}") from e

    for node in ast.walk(tree):
        if not isinstance(node, _ALLOWED_NODES):
            raise WorkflowValidationError(
                f"Invalid condition {source!r}: {type(node).__name__} is not allowed"
            )
        if isinstance(node, ast.Name) and node.id not in _LITERALS and node.id not in allowed_roots:
            raise WorkflowValidationError(f"Invalid condition {source!r}: unknown name {node.id!r}")
        if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            raise WorkflowValidationError(
                f"Invalid condition {source!r}: private attribute {node.attr!r}"
            )
        if isinstance(node, ast.Constant) and not isinstance(
            node.value, (str, int, float, bool, type(None))
        ):
            raise WorkflowValidationError(f"Invalid condition {source!r}: unsupported literal")

    return Condition(source=source, tree=tree)
