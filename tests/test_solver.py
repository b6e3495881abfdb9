"""Tests for bisection and bracket search in dichotomy_solver."""

import logging
import math

import pytest

from dichotomy_formula import EvaluationError, UnknownFunctionError, build_function
from dichotomy_solver import (
    MAX_ITERATIONS,
    BracketNotFoundError,
    BracketResult,
    InvalidIntervalError,
    InvalidPrecisionError,
    InvalidStepError,
    IterationLimitError,
    NotBracketingError,
    SolverInputError,
    SolverResult,
    check_function_on_interval,
    find_and_solve,
    find_root,
    scan_for_bracket,
    scan_formula,
    solve,
    solve_formula,
)

SQRT2 = math.sqrt(2.0)


class CountingFunction:
    def __init__(self, f):
        self.f = f
        self.calls = []

    def __call__(self, x):
        self.calls.append(x)
        return self.f(x)


class TestSolve:
    def test_converges_to_sqrt2(self):
        result = solve(build_function("x^2 - 2"), 0.0, 2.0, 1e-6)
        assert abs(result.root - SQRT2) < 1e-6
        assert result.iterations >= 1
        assert result.converged
        assert abs(result.function_value) < 1e-5

    @pytest.mark.parametrize("a, b", [(2.0, 0.0), (1.0, 1.0), (math.nan, 1.0), (0.0, math.inf)])
    def test_invalid_interval(self, a, b):
        with pytest.raises(InvalidIntervalError):
            solve(build_function("x"), a, b, 1e-6)

    @pytest.mark.parametrize("epsilon", [0.0, -1e-6, math.nan])
    def test_invalid_precision(self, epsilon):
        with pytest.raises(InvalidPrecisionError):
            solve(build_function("x"), -1.0, 1.0, epsilon)

    def test_not_bracketing(self):
        with pytest.raises(NotBracketingError) as excinfo:
            solve(build_function("x^2 + 1"), -1.0, 1.0, 1e-6)
        error = excinfo.value
        assert (error.a, error.b, error.fa, error.fb) == (-1.0, 1.0, 2.0, 2.0)
        assert isinstance(error, SolverInputError)

    def test_root_at_left_endpoint(self):
        f = CountingFunction(lambda x: x - 1.0)
        result = solve(f, 1.0, 3.0, 1e-6)
        assert result == SolverResult(root=1.0, function_value=0.0, iterations=0)
        assert len(f.calls) == 2

    def test_root_at_right_endpoint(self):
        result = solve(build_function("x - 1"), -1.0, 1.0, 1e-6)
        assert result.as_tuple() == (1.0, 0.0, 0)

    def test_endpoint_tolerance_is_ten_epsilon(self):
        result = solve(lambda x: x - 1.0 + 5e-6, 1.0, 3.0, 1e-6)
        assert result.iterations == 0
        assert result.root == 1.0

    def test_refinement_takes_three_extra_steps(self):
        f = CountingFunction(lambda x: x - 0.5)
        result = solve(f, 0.0, 1.0, 1e-3)
        assert result.as_tuple() == (0.5, 0.0, 1)
        # two endpoints, one main iteration, three refinement steps
        assert len(f.calls) == 6

    def test_refinement_keeps_best_estimate(self):
        f = CountingFunction(lambda x: x - 0.3)
        result = solve(f, 0.0, 1.0, 0.05)
        sampled = f.calls[2:]
        assert abs(result.function_value) == min(abs(f.f(x)) for x in sampled)

    def test_iteration_cap_returns_estimate(self, caplog):
        with caplog.at_level(logging.WARNING, logger="dichotomy_solver"):
            result = solve(lambda x: x - 1.0 / 3.0, 0.0, 1.0, 1e-9, max_iter=5)
        assert result.iterations == 5
        assert not result.converged
        assert result.root == pytest.approx(0.328125)
        assert "stopped after 5 iterations" in caplog.text

    def test_default_iteration_cap(self):
        # x*x - 2 is never exactly zero in floating point, so the interval
        # collapses to adjacent floats and the width test is never met
        result = solve(lambda x: x * x - 2.0, 1.0, 2.0, 1e-300)
        assert result.iterations == MAX_ITERATIONS
        assert not result.converged
        assert abs(result.root - SQRT2) < 1e-15

    def test_undefined_region_is_treated_as_positive(self):
        # sqrt(x) is undefined for x < 0, which evaluates to the max-float sentinel
        result = solve(build_function("1 - sqrt(x)"), -1.0, 4.0, 1e-8)
        assert result.root == pytest.approx(1.0, abs=1e-7)

    def test_pole_does_not_break_the_search(self):
        result = solve(build_function("1/x"), -1.0, 1.0, 1e-6)
        assert result.converged
        assert abs(result.root) < 1e-6
        assert math.isfinite(result.function_value)

    def test_transcendental(self):
        result = solve(build_function("cos(x) - x"), 0.0, 1.0, 1e-10)
        assert result.root == pytest.approx(0.7390851332151607, abs=1e-9)


class TestFindRoot:
    def test_converges_to_sqrt2(self):
        result = find_root(build_function("x^2 - 2"), 0.0, 2.0, 1e-8)
        assert abs(result.root - SQRT2) < 1e-8
        assert result.iterations >= 1

    def test_no_endpoint_shortcut(self):
        with pytest.raises(NotBracketingError):
            find_root(lambda x: x - 1.0, 1.0, 3.0, 1e-6)

    def test_early_exit_on_small_value(self):
        result = find_root(lambda x: x - 0.5, 0.0, 1.0, 1e-6)
        assert result.as_tuple() == (0.5, 0.0, 1)

    def test_iteration_limit(self):
        with pytest.raises(IterationLimitError) as excinfo:
            find_root(lambda x: x - 1.0 / 3.0, 0.0, 1.0, 1e-9, max_iter=5)
        assert excinfo.value.max_iter == 5

    def test_validates_inputs(self):
        with pytest.raises(InvalidIntervalError):
            find_root(lambda x: x, 1.0, 0.0, 1e-6)
        with pytest.raises(InvalidPrecisionError):
            find_root(lambda x: x, 0.0, 1.0, 0.0)


class TestScanForBracket:
    def test_finds_first_sign_change(self):
        result = scan_for_bracket(build_function("x - 1.5"), 0.0, 3.0, 1.0)
        assert result == BracketResult(low=1.0, high=2.0, found=True)

    def test_step_too_coarse(self):
        result = scan_for_bracket(build_function("x - 1.5"), 0.0, 3.0, 10.0)
        assert not result.found
        assert result.low is None and result.high is None

    def test_first_of_several_roots(self):
        result = scan_for_bracket(build_function("(x - 1.5)*(x - 4.5)"), 0.0, 10.0, 1.0)
        assert (result.low, result.high) == (1.0, 2.0)

    def test_steps_do_not_drift(self):
        result = scan_for_bracket(lambda x: x - 0.95, 0.0, 1.0, 0.1)
        assert result.found
        assert result.low == pytest.approx(0.9)
        assert result.high == 1.0

    def test_exact_zero_at_sample_is_not_a_strict_sign_change(self):
        result = scan_for_bracket(lambda x: x - 1.0, 0.0, 3.0, 1.0)
        assert not result.found

    def test_start_after_end(self):
        assert not scan_for_bracket(lambda x: x, 5.0, 0.0, 1.0).found

    @pytest.mark.parametrize("step", [0.0, -1.0, math.nan, math.inf])
    def test_invalid_step(self, step):
        with pytest.raises(InvalidStepError):
            scan_for_bracket(lambda x: x, 0.0, 1.0, step)


class TestCheckFunctionOnInterval:
    def test_defined_everywhere(self):
        assert check_function_on_interval(build_function("sin(x)"), 0.0, 1.0)

    def test_undefined_somewhere(self):
        assert not check_function_on_interval(build_function("sqrt(x)"), -1.0, 1.0)

    def test_evaluation_error(self):
        def broken(x):
            raise EvaluationError("boom")

        assert not check_function_on_interval(broken, 0.0, 1.0)

    def test_samples_endpoints(self):
        f = CountingFunction(lambda x: x)
        check_function_on_interval(f, 0.0, 1.0, test_points=4)
        assert f.calls == [0.0, 0.25, 0.5, 0.75, 1.0]


class TestFormulaFacades:
    def test_solve_formula(self):
        result = solve_formula("x^2 - 2", 0.0, 2.0, 1e-6)
        assert abs(result.root - SQRT2) < 1e-6

    def test_scan_formula(self):
        result = scan_formula("x - 1.5", 0.0, 3.0, 1.0)
        assert (result.low, result.high, result.found) == (1.0, 2.0, True)

    def test_find_and_solve(self):
        result = find_and_solve("x^3 - x - 2", -5.0, 5.0, 1.0, 1e-8)
        assert result.root == pytest.approx(1.5213797068045676, abs=1e-7)

    def test_find_and_solve_without_bracket(self):
        with pytest.raises(BracketNotFoundError) as excinfo:
            find_and_solve("x^2 + 1", -5.0, 5.0, 1.0, 1e-8)
        assert (excinfo.value.start, excinfo.value.end, excinfo.value.step) == (-5.0, 5.0, 1.0)

    def test_parse_errors_propagate(self):
        with pytest.raises(UnknownFunctionError):
            solve_formula("foo(x)", 0.0, 1.0, 1e-6)
