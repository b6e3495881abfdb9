"""
Formula parsing and evaluation for the Dichotomy Solver.

This module centralizes:
    - Parsing a user-provided formula in the single variable ``x`` into a
      sympy expression restricted to a closed table of names.
    - Evaluating that expression for a given ``x`` through ``lambdify``.
    - ``build_function`` which turns a formula into a plain ``f(x)`` callable
      that the solvers can consume.

Supported syntax:
    numbers       1, 2.5, .5, 1e-3
    variable      x
    constants     pi, e
    operators     + - * / ^   (``^`` is right-associative and binds tighter
                               than unary minus, so ``-x^2`` is ``-(x^2)``)
    functions     sin cos tan atan exp sqrt abs log log10 pow

Names are case-insensitive. Evaluation never returns a non-finite value:
infinities, NaN and math domain errors collapse to ``sys.float_info.max`` so
sign comparisons in the solvers remain well-defined.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from tokenize import NAME, OP, TokenError
from typing import Callable, Dict, Optional

import logging
import math
import re
import sys

import sympy as sp
from sympy.core.function import AppliedUndef
from sympy.parsing.sympy_parser import (
    convert_xor,
    parse_expr,
    standard_transformations,
)
from sympy.printing.str import StrPrinter

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# Errors
# --------------------------------------------------------------------------- #


class ExpressionParseError(ValueError):
    """Raised when a user-supplied formula cannot be parsed."""


class FormulaSyntaxError(ExpressionParseError):
    """Malformed formula: bad character, unbalanced parentheses, stray token."""

    def __init__(self, message: str, position: Optional[int] = None) -> None:
        if position is not None:
            message = f"{message} (at position {position})"
        super().__init__(message)
        self.position = position


class UnknownFunctionError(ExpressionParseError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown function: {name}")
        self.name = name


class ArityError(ExpressionParseError):
    def __init__(self, name: str, expected: str, got: int) -> None:
        super().__init__(
            f"Function {name} expects {expected} argument(s), got {got}."
        )
        self.name = name
        self.expected = expected
        self.got = got


class EvaluationError(ValueError):
    """Raised for runtime faults other than non-finite arithmetic."""


# --------------------------------------------------------------------------- #
# Names
# --------------------------------------------------------------------------- #

X_SYMBOL = sp.symbols("x")
VARIABLE_NAME = "x"

CONSTANTS: Dict[str, sp.Expr] = {
    "pi": sp.pi,
    "e": sp.E,
}

MAX_NESTING_DEPTH = 100
MAX_OPERATIONS = 100

NON_FINITE_SENTINEL = sys.float_info.max


def _log(arg, base=None, **options):
    if base is None:
        return sp.log(arg)
    return sp.log(arg, base)


def _log10(arg, **options):
    return sp.log(arg, 10)


def _pow(base, exp, **options):
    return sp.Pow(base, exp, evaluate=False)


@dataclass(frozen=True)
class FunctionSpec:
    """A callable entry of the closed function table; checks arity on call."""

    name: str
    min_args: int
    max_args: int
    impl: Callable[..., sp.Expr] = field(compare=False, repr=False)

    @property
    def expected(self) -> str:
        if self.min_args == self.max_args:
            return str(self.min_args)
        return f"{self.min_args} or {self.max_args}"

    def accepts(self, count: int) -> bool:
        return self.min_args <= count <= self.max_args

    def __call__(self, *args, **options) -> sp.Expr:
        if not self.accepts(len(args)):
            raise ArityError(self.name, self.expected, len(args))
        return self.impl(*args, **options)


FUNCTIONS: Dict[str, FunctionSpec] = {
    spec.name: spec
    for spec in (
        FunctionSpec("sin", 1, 1, sp.sin),
        FunctionSpec("cos", 1, 1, sp.cos),
        FunctionSpec("tan", 1, 1, sp.tan),
        FunctionSpec("atan", 1, 1, sp.atan),
        FunctionSpec("exp", 1, 1, sp.exp),
        FunctionSpec("sqrt", 1, 1, sp.sqrt),
        FunctionSpec("abs", 1, 1, sp.Abs),
        FunctionSpec("log", 1, 2, _log),
        FunctionSpec("log10", 1, 1, _log10),
        FunctionSpec("pow", 2, 2, _pow),
    )
}

_LOCAL_DICT = {VARIABLE_NAME: X_SYMBOL, **CONSTANTS, **FUNCTIONS}


# --------------------------------------------------------------------------- #
# Parsing
# --------------------------------------------------------------------------- #

_ALLOWED_CHARS = re.compile(r"[a-z0-9.^+\-*/(),\s]*", re.ASCII)
_OPERATORS = {"+", "-", "*", "/", "^"}


def _check_tokens(tokens, local_dict, global_dict):
    """
    sympy transformation that restricts the token stream to the formula
    grammar: known names only, ``+ - * / ^`` operators, and bounded size.
    """
    depth = 0
    operations = 0
    for index, (toknum, tokval) in enumerate(tokens):
        following = tokens[index + 1][1] if index + 1 < len(tokens) else ""
        if toknum == NAME:
            if following == "(":
                if tokval not in FUNCTIONS:
                    raise UnknownFunctionError(tokval)
                operations += 1
            elif tokval in FUNCTIONS:
                raise FormulaSyntaxError(
                    f"Function {tokval} must be called with parentheses"
                )
            elif tokval != VARIABLE_NAME and tokval not in CONSTANTS:
                raise FormulaSyntaxError(f"Unknown identifier {tokval!r}")
        elif toknum == OP:
            if tokval == "(":
                depth += 1
                if depth > MAX_NESTING_DEPTH:
                    raise FormulaSyntaxError("Formula is nested too deeply")
            elif tokval == ")":
                depth -= 1
                if depth < 0:
                    raise FormulaSyntaxError("Unbalanced ')'")
            elif tokval in _OPERATORS:
                operations += 1
            elif tokval != ",":
                raise FormulaSyntaxError(f"Unsupported operator {tokval!r}")
    if operations > MAX_OPERATIONS:
        raise FormulaSyntaxError(
            f"Formula is too long: {operations} operations, at most "
            f"{MAX_OPERATIONS} are supported"
        )
    return tokens


_TRANSFORMATIONS = (_check_tokens,) + standard_transformations + (convert_xor,)


def _check_tree(expr: sp.Expr) -> None:
    for node in sp.preorder_traversal(expr):
        if isinstance(node, AppliedUndef):
            raise UnknownFunctionError(str(node.func))
        if isinstance(node, sp.Symbol) and node != X_SYMBOL:
            raise FormulaSyntaxError(f"Unknown identifier {node.name!r}")
        if isinstance(node, (sp.Integer, sp.Float)):
            try:
                finite = math.isfinite(float(node))
            except OverflowError:
                finite = False
            if not finite:
                raise FormulaSyntaxError(f"Number {node} is out of range")


def parse(formula: str) -> sp.Expr:
    """
    Parse a formula into an (unevaluated) sympy expression in ``x``.

    Raises
    ------
    FormulaSyntaxError : malformed input (including empty formulas).
    UnknownFunctionError : call to a name outside ``FUNCTIONS``.
    ArityError : wrong number of arguments for a known function.
    """
    if formula is None or not formula.strip():
        raise FormulaSyntaxError("Function expression cannot be empty.")
    text = formula.lower()
    allowed = _ALLOWED_CHARS.match(text)
    if allowed.end() != len(text):
        pos = allowed.end()
        raise FormulaSyntaxError(f"Unexpected character {formula[pos]!r}", pos)

    try:
        expr = parse_expr(
            " ".join(text.split()),
            local_dict=dict(_LOCAL_DICT),
            transformations=_TRANSFORMATIONS,
            evaluate=False,
        )
    except ExpressionParseError:
        raise
    except (sp.SympifyError, SyntaxError, TokenError, TypeError, ValueError) as exc:
        raise FormulaSyntaxError(f"Invalid function expression: {formula}") from exc

    if not isinstance(expr, sp.Expr):
        raise FormulaSyntaxError(f"Invalid function expression: {formula}")
    _check_tree(expr)
    logger.debug(f"Parsed formula {formula!r} as {expr}")
    return expr


class _FormulaPrinter(StrPrinter):
    def _print_Pow(self, expr, rational=False):
        return f"pow({self._print(expr.base)}, {self._print(expr.exp)})"


def format_tree(tree: sp.Expr) -> str:
    """Render a parsed formula as text; powers are written as ``pow(a, b)``."""
    return _FormulaPrinter().doprint(tree)


# --------------------------------------------------------------------------- #
# Evaluation
# --------------------------------------------------------------------------- #


@lru_cache(maxsize=256)
def _compile(tree: sp.Expr) -> Callable[[float], float]:
    return sp.lambdify(X_SYMBOL, tree, "math")


def _lambdify(tree) -> Callable[[float], float]:
    if not isinstance(tree, sp.Expr):
        raise EvaluationError(f"Not a formula expression: {tree!r}")
    unbound = tree.free_symbols - {X_SYMBOL}
    if unbound:
        names = ", ".join(sorted(str(s) for s in unbound))
        raise EvaluationError(f"Unbound variable(s): {names}")
    try:
        return _compile(tree)
    except (SyntaxError, TypeError, ValueError, RecursionError) as exc:
        raise EvaluationError(f"Cannot compile expression {tree}: {exc}") from exc


def _call(func: Callable[[float], float], x: float) -> float:
    try:
        value = func(x)
        # Fractional powers of negative numbers come back complex.
        if isinstance(value, complex):
            return NON_FINITE_SENTINEL
        value = float(value)
    except (ArithmeticError, ValueError, TypeError):
        # math domain errors, division by zero, overflow
        return NON_FINITE_SENTINEL
    except (NameError, RecursionError) as exc:
        raise EvaluationError(f"Error evaluating function at x={x}: {exc}") from exc
    if math.isinf(value) or math.isnan(value):
        return NON_FINITE_SENTINEL
    return value


def evaluate(tree: sp.Expr, x: float) -> float:
    """
    Evaluate ``tree`` at ``x``.

    Non-finite results are replaced by ``NON_FINITE_SENTINEL`` (the largest
    finite float). Any other fault is raised as ``EvaluationError``.
    """
    func = _lambdify(tree)
    try:
        value = float(x)
    except (TypeError, ValueError) as exc:
        raise EvaluationError(f"Error evaluating function at x={x}: {exc}") from exc
    return _call(func, value)


def build_function(expr: str) -> Callable[[float], float]:
    """
    Convert an input string into a callable f(x).

    Users can enter expressions such as:
        "x^3 - 5*x + 2", "sin(x) - x/2", "log(x, 2) - 3", etc.
    """
    func = _lambdify(parse(expr))

    def wrapper(value: float) -> float:
        try:
            value = float(value)
        except (TypeError, ValueError) as exc:
            raise EvaluationError(
                f"Error evaluating function at x={value}: {exc}"
            ) from exc
        return _call(func, value)

    return wrapper
