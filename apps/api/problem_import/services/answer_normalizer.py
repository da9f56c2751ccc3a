"""Answer expression normalizer.

Answers pasted by humans or guessed by the backend come in competition
shorthand ("3/4", "√2/2", "2√3", "32sqrt22", "0.5"). They are rewritten into a
small arithmetic grammar and evaluated by a whitelist-based walker over the
``ast`` tree, so document text is never executed as Python.
"""

from __future__ import annotations

import ast
import math
import operator
import re

_MAX_EXPRESSION_LENGTH = 200
_MAX_EXPONENT = 1000.0

_NUMBER = r"\d+(?:\.\d+)?"
_RADICAL_NUMBER_RE = re.compile(rf"√\s*({_NUMBER})")
_RADICAL_GROUP_RE = re.compile(r"√\s*\(")
_PREFIXED_SQRT_RE = re.compile(rf"({_NUMBER})\s*sqrt\s*({_NUMBER})", re.IGNORECASE)
_BARE_SQRT_RE = re.compile(rf"\bsqrt\s*({_NUMBER})", re.IGNORECASE)
_SQRT_CALL_RE = re.compile(r"sqrt\s*\(", re.IGNORECASE)
_IMPLICIT_BEFORE_CALL_RE = re.compile(rf"({_NUMBER}|\))\s*(sqrt\(|\()")
_IMPLICIT_AFTER_GROUP_RE = re.compile(rf"\)\s*({_NUMBER})")
_ALLOWED_CHARS_RE = re.compile(r"^[0-9.+\-*/^() sqrt]*$")

_BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}
_UNARY_OPERATORS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


class _ExpressionError(ValueError):
    pass


def normalize_answer(text: object) -> float | None:
    """Return the numeric value of an answer expression, or None when it cannot be evaluated."""
    if text is None:
        return None
    if isinstance(text, bool):
        return None
    if isinstance(text, (int, float)):
        value = float(text)
        return value if math.isfinite(value) else None

    cleaned = str(text).strip()
    if not cleaned or len(cleaned) > _MAX_EXPRESSION_LENGTH:
        return None

    # Plain numerals, including the "1e+20" form str(float) produces.
    try:
        value = float(cleaned)
    except ValueError:
        pass
    else:
        return value if math.isfinite(value) else None

    expression = rewrite_answer_expression(cleaned)
    if expression is None:
        return None
    try:
        value = _evaluate(expression)
    except (_ExpressionError, ZeroDivisionError, OverflowError, SyntaxError, ValueError, RecursionError):
        return None
    if not math.isfinite(value):
        return None
    return value


def rewrite_answer_expression(text: str) -> str | None:
    """Rewrite competition shorthand into ``+ - * / ** sqrt(...)`` form."""
    expr = text.replace("−", "-").replace("×", "*").replace("÷", "/")
    expr = expr.replace(",", "")
    expr = _RADICAL_NUMBER_RE.sub(r"sqrt(\1)", expr)
    expr = _RADICAL_GROUP_RE.sub("sqrt(", expr)
    expr = _PREFIXED_SQRT_RE.sub(r"\1*sqrt(\2)", expr)
    expr = _BARE_SQRT_RE.sub(r"sqrt(\1)", expr)
    expr = _SQRT_CALL_RE.sub("sqrt(", expr)
    expr = _IMPLICIT_BEFORE_CALL_RE.sub(r"\1*\2", expr)
    expr = _IMPLICIT_AFTER_GROUP_RE.sub(r")*\1", expr)
    if not _ALLOWED_CHARS_RE.match(expr):
        return None
    return expr.replace("^", "**")


def _evaluate(expression: str) -> float:
    tree = ast.parse(expression, mode="eval")
    return _evaluate_node(tree.body)


def _evaluate_node(node: ast.AST) -> float:
    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise _ExpressionError("unsupported literal")
        return float(node.value)

    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPERATORS:
        return _UNARY_OPERATORS[type(node.op)](_evaluate_node(node.operand))

    if isinstance(node, ast.BinOp):
        left = _evaluate_node(node.left)
        right = _evaluate_node(node.right)
        if isinstance(node.op, ast.Pow):
            if abs(right) > _MAX_EXPONENT:
                raise _ExpressionError("exponent too large")
            return math.pow(left, right)
        if type(node.op) in _BINARY_OPERATORS:
            return _BINARY_OPERATORS[type(node.op)](left, right)
        raise _ExpressionError("unsupported operator")

    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id != "sqrt":
            raise _ExpressionError("unsupported function")
        if len(node.args) != 1 or node.keywords:
            raise _ExpressionError("sqrt takes exactly one argument")
        argument = _evaluate_node(node.args[0])
        if argument < 0:
            raise _ExpressionError("square root of a negative number")
        return math.sqrt(argument)

    raise _ExpressionError(f"unsupported syntax: {type(node).__name__}")
