"""
Bisection (dichotomy) root finding for the Dichotomy Solver.

This module centralizes:
    - ``solve``: the refined bisection solver with an endpoint pre-check and a
      short refinement pass once a midpoint is within tolerance.
    - ``find_root``: the classic bisection loop with a hard iteration limit.
    - ``scan_for_bracket``: a stepping search for a sign-changing sub-interval.
    - ``check_function_on_interval``: a quick sanity check that f is defined
      across an interval.
    - Thin formula-level façades (``solve_formula``, ``scan_formula``,
      ``find_and_solve``) so callers can pass a formula string directly.

Solvers accept any ``f: Callable[[float], float]``; functions built with
``dichotomy_formula.build_function`` never return non-finite values, which
keeps every sign comparison below well-defined.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import logging
import math

from dichotomy_formula import NON_FINITE_SENTINEL, EvaluationError, build_function

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# Errors
# --------------------------------------------------------------------------- #


class SolverInputError(ValueError):
    """Raised when the caller violates a solver's input contract."""


class InvalidIntervalError(SolverInputError):
    def __init__(self, a: float, b: float) -> None:
        super().__init__(
            f"Interval [{a}, {b}] is invalid: a must be finite and less than b."
        )
        self.a = a
        self.b = b


class InvalidPrecisionError(SolverInputError):
    def __init__(self, epsilon: float) -> None:
        super().__init__(f"Precision epsilon must be positive, got {epsilon}.")
        self.epsilon = epsilon


class InvalidStepError(SolverInputError):
    def __init__(self, step: float) -> None:
        super().__init__(f"Scan step must be a positive number, got {step}.")
        self.step = step


class NotBracketingError(SolverInputError):
    """f(a) and f(b) do not have strictly opposite signs."""

    def __init__(self, a: float, b: float, fa: float, fb: float) -> None:
        super().__init__(
            "Function does not change sign on the interval.\n"
            f"f({a}) = {fa}\nf({b}) = {fb}\n"
            "Condition f(a)*f(b) < 0 is not satisfied."
        )
        self.a = a
        self.b = b
        self.fa = fa
        self.fb = fb


class BracketNotFoundError(SolverInputError):
    def __init__(self, start: float, end: float, step: float) -> None:
        super().__init__(
            f"No sign change found on [{start}, {end}] with step {step}."
        )
        self.start = start
        self.end = end
        self.step = step


class IterationLimitError(RuntimeError):
    def __init__(self, max_iter: int) -> None:
        super().__init__(f"Maximum number of iterations ({max_iter}) exceeded.")
        self.max_iter = max_iter


# --------------------------------------------------------------------------- #
# Result containers
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class SolverResult:
    root: float
    function_value: float
    iterations: int
    converged: bool = True

    def as_tuple(self) -> Tuple[float, float, int]:
        return self.root, self.function_value, self.iterations


@dataclass(frozen=True)
class BracketResult:
    low: Optional[float]
    high: Optional[float]
    found: bool

    @classmethod
    def not_found(cls) -> "BracketResult":
        return cls(low=None, high=None, found=False)


# --------------------------------------------------------------------------- #
# Configuration
# --------------------------------------------------------------------------- #

MAX_ITERATIONS = 100
CLASSIC_MAX_ITERATIONS = 1000
REFINEMENT_STEPS = 3
ENDPOINT_TOLERANCE_FACTOR = 10.0
CLASSIC_EARLY_EXIT_FACTOR = 0.1


# --------------------------------------------------------------------------- #
# Helpers
# --------------------------------------------------------------------------- #


def _opposite_signs(u: float, v: float) -> bool:
    # Compare signs directly; u * v can overflow to inf or underflow to -0.0.
    return (u < 0 < v) or (v < 0 < u)


def _validate(a: float, b: float, epsilon: float) -> None:
    if not (math.isfinite(a) and math.isfinite(b)) or a >= b:
        raise InvalidIntervalError(a, b)
    if not (math.isfinite(epsilon) and epsilon > 0):
        raise InvalidPrecisionError(epsilon)


# --------------------------------------------------------------------------- #
# Bisection
# --------------------------------------------------------------------------- #


def solve(
    f: Callable[[float], float],
    a: float,
    b: float,
    epsilon: float,
    *,
    max_iter: int = MAX_ITERATIONS,
    refine_steps: int = REFINEMENT_STEPS,
) -> SolverResult:
    """
    Find a root of ``f`` on ``[a, b]`` by bisection.

    Parameters
    ----------
    f : real-valued function of one variable.
    a, b : interval bounds, ``a < b``.
    epsilon : target precision, both for the interval width and for |f|.
    max_iter : iteration cap; reaching it returns the current estimate with
        ``converged=False`` instead of raising.
    refine_steps : extra bisection steps taken once |f(mid)| < epsilon.

    Raises
    ------
    InvalidIntervalError, InvalidPrecisionError, NotBracketingError
    """
    _validate(a, b, epsilon)

    fa, fb = f(a), f(b)
    endpoint_tol = ENDPOINT_TOLERANCE_FACTOR * epsilon
    if abs(fa) < endpoint_tol:
        logger.debug(f"Root at left endpoint a={a}, f(a)={fa}")
        return SolverResult(root=a, function_value=fa, iterations=0)
    if abs(fb) < endpoint_tol:
        logger.debug(f"Root at right endpoint b={b}, f(b)={fb}")
        return SolverResult(root=b, function_value=fb, iterations=0)
    if not _opposite_signs(fa, fb):
        raise NotBracketingError(a, b, fa, fb)

    iterations = 0
    left, right = a, b
    f_left = fa

    while right - left > epsilon and iterations < max_iter:
        mid = (left + right) / 2.0
        f_mid = f(mid)
        iterations += 1

        if abs(f_mid) < epsilon:
            logger.debug(f"|f({mid})| < {epsilon} after {iterations} iterations; refining")
            best, f_best = mid, f_mid
            for _ in range(refine_steps):
                if _opposite_signs(f_left, f_mid):
                    right = mid
                else:
                    left, f_left = mid, f_mid
                mid = (left + right) / 2.0
                f_mid = f(mid)
                if abs(f_mid) < abs(f_best):
                    best, f_best = mid, f_mid
            return SolverResult(root=best, function_value=f_best, iterations=iterations)

        if _opposite_signs(f_left, f_mid):
            right = mid
        else:
            left, f_left = mid, f_mid

    converged = right - left <= epsilon
    if not converged:
        logger.warning(
            f"Bisection stopped after {iterations} iterations with interval "
            f"width {right - left} > {epsilon}"
        )
    root = (left + right) / 2.0
    return SolverResult(
        root=root, function_value=f(root), iterations=iterations, converged=converged
    )


def find_root(
    f: Callable[[float], float],
    a: float,
    b: float,
    epsilon: float,
    *,
    max_iter: int = CLASSIC_MAX_ITERATIONS,
) -> SolverResult:
    """
    Classic bisection without endpoint shortcuts or refinement.

    Stops early once |f(mid)| < 0.1 * epsilon, otherwise when the interval is
    no wider than ``epsilon``. Raises ``IterationLimitError`` if more than
    ``max_iter`` iterations are needed.
    """
    _validate(a, b, epsilon)

    fa, fb = f(a), f(b)
    if not _opposite_signs(fa, fb):
        raise NotBracketingError(a, b, fa, fb)

    iterations = 0
    left, right = a, b
    f_left = fa

    while right - left > epsilon:
        mid = (left + right) / 2.0
        f_mid = f(mid)
        iterations += 1

        if abs(f_mid) < epsilon * CLASSIC_EARLY_EXIT_FACTOR:
            return SolverResult(root=mid, function_value=f_mid, iterations=iterations)

        if _opposite_signs(f_left, f_mid):
            right = mid
        else:
            left, f_left = mid, f_mid

        if iterations > max_iter:
            raise IterationLimitError(max_iter)

    root = (left + right) / 2.0
    return SolverResult(root=root, function_value=f(root), iterations=iterations)


# --------------------------------------------------------------------------- #
# Bracket search
# --------------------------------------------------------------------------- #


def scan_for_bracket(
    f: Callable[[float], float],
    start: float,
    end: float,
    step: float,
) -> BracketResult:
    """
    Step from ``start`` towards ``end`` and return the first pair of
    consecutive samples where ``f`` strictly changes sign.

    Samples are ``start + k * step``; a sign change narrower than ``step``
    can be missed and is not reported.
    """
    if not (math.isfinite(step) and step > 0):
        raise InvalidStepError(step)

    x1 = start
    f1 = f(x1)
    k = 1
    x2 = start + step
    while x2 <= end:
        f2 = f(x2)
        if _opposite_signs(f1, f2):
            logger.debug(f"Sign change found on [{x1}, {x2}]")
            return BracketResult(low=x1, high=x2, found=True)
        x1, f1 = x2, f2
        k += 1
        x2 = start + k * step

    logger.debug(f"No sign change on [{start}, {end}] with step {step}")
    return BracketResult.not_found()


def check_function_on_interval(
    f: Callable[[float], float],
    a: float,
    b: float,
    test_points: int = 10,
) -> bool:
    """Return True if ``f`` is finite at ``test_points + 1`` evenly spaced points."""
    step = (b - a) / test_points
    for i in range(test_points + 1):
        x = a + i * step
        try:
            value = f(x)
        except EvaluationError as exc:
            logger.debug(f"Function cannot be evaluated at x={x}: {exc}")
            return False
        if not math.isfinite(value) or value == NON_FINITE_SENTINEL:
            logger.debug(f"Function is undefined at x={x}")
            return False
    return True


# --------------------------------------------------------------------------- #
# Formula façades
# --------------------------------------------------------------------------- #


def solve_formula(formula: str, a: float, b: float, epsilon: float) -> SolverResult:
    """Parse ``formula`` and run ``solve`` on ``[a, b]``."""
    return solve(build_function(formula), a, b, epsilon)


def scan_formula(formula: str, start: float, end: float, step: float) -> BracketResult:
    """Parse ``formula`` and run ``scan_for_bracket``."""
    return scan_for_bracket(build_function(formula), start, end, step)


def find_and_solve(
    formula: str,
    start: float,
    end: float,
    step: float,
    epsilon: float,
) -> SolverResult:
    """
    Locate a bracketing sub-interval of ``[start, end]`` and solve on it.

    Raises ``BracketNotFoundError`` when the scan finds no sign change.
    """
    f = build_function(formula)
    bracket = scan_for_bracket(f, start, end, step)
    if not bracket.found:
        raise BracketNotFoundError(start, end, step)
    return solve(f, bracket.low, bracket.high, epsilon)
