"""Tests for the Hungarian assignment solver."""
from itertools import permutations

import numpy as np
import pytest
from scipy.optimize import linear_sum_assignment

from casa_tracker.core.assignment import (
    SENTINEL_COST,
    assignment_cost,
    assignment_pairs,
    pad_cost_matrix,
    solve_assignment,
)
from casa_tracker.core.common import InputValidationError


def brute_force_cost(cost):
    """Minimum total cost over all one-to-one matchings of the smaller side."""
    n, m = cost.shape
    if n <= m:
        return min(sum(cost[i, cols[i]] for i in range(n)) for cols in permutations(range(m), n))
    return min(sum(cost[rows[j], j] for j in range(m)) for rows in permutations(range(n), m))


class TestOptimality:
    """Assignment matches exhaustive search and scipy."""

    @pytest.mark.parametrize("shape", [(1, 1), (2, 2), (3, 3), (4, 6), (6, 4), (5, 5), (6, 6), (2, 5)])
    def test_matches_brute_force(self, shape):
        rng = np.random.default_rng(sum(shape))
        for _ in range(5):
            cost = rng.uniform(0.0, 100.0, size=shape)
            result = solve_assignment(cost)
            assert assignment_cost(cost, result) == pytest.approx(brute_force_cost(cost))

    def test_matches_scipy_on_larger_matrices(self):
        rng = np.random.default_rng(7)
        for n, m in [(12, 12), (15, 9), (8, 20)]:
            cost = rng.uniform(0.0, 50.0, size=(n, m))
            rows, cols = linear_sum_assignment(cost)
            expected = cost[rows, cols].sum()
            assert assignment_cost(cost, solve_assignment(cost)) == pytest.approx(expected)

    def test_integer_costs_with_ties(self):
        cost = np.ones((4, 4))
        result = solve_assignment(cost)
        assert sorted(result.tolist()) == [0, 1, 2, 3]
        assert assignment_cost(cost, result) == pytest.approx(4.0)

    def test_obvious_diagonal(self):
        cost = np.array([[0.0, 9.0, 9.0], [9.0, 0.0, 9.0], [9.0, 9.0, 0.0]])
        np.testing.assert_array_equal(solve_assignment(cost), [0, 1, 2])


class TestPadding:
    """Rectangular inputs and sentinel padding."""

    def test_result_is_permutation_of_padded_square(self):
        rng = np.random.default_rng(3)
        cost = rng.uniform(0.0, 10.0, size=(3, 5))
        result = solve_assignment(cost)
        assert len(result) == 5
        assert sorted(result.tolist()) == list(range(5))

    def test_padding_is_neutral(self):
        rng = np.random.default_rng(11)
        cost = rng.uniform(0.0, 10.0, size=(4, 2))
        padded = pad_cost_matrix(cost)
        assert padded.shape == (4, 4)
        assert np.all(padded[:, 2:] == SENTINEL_COST)
        assert assignment_cost(cost, solve_assignment(cost)) == pytest.approx(
            assignment_cost(cost, solve_assignment(padded))
        )

    def test_pairs_only_real_cells(self):
        cost = np.array([[1.0, 5.0, 0.5], [2.0, 0.1, 3.0]])
        pairs = assignment_pairs(cost)
        assert sorted(pairs) == [(0, 2), (1, 1)]

    def test_more_rows_than_columns_leaves_rows_on_padding(self):
        cost = np.array([[1.0], [0.2], [3.0]])
        result = solve_assignment(cost)
        assert result[1] == 0
        assert result[0] >= 1 and result[2] >= 1


class TestDegenerate:
    """Empty and invalid cost matrices."""

    def test_empty_matrix(self):
        assert len(solve_assignment(np.zeros((0, 0)))) == 0

    def test_no_rows(self):
        np.testing.assert_array_equal(solve_assignment(np.zeros((0, 3))), [0, 1, 2])
        assert assignment_pairs(np.zeros((0, 3))) == []

    def test_no_columns(self):
        assert assignment_pairs(np.zeros((2, 0))) == []

    def test_rejects_nan(self):
        with pytest.raises(InputValidationError):
            solve_assignment(np.array([[1.0, np.nan], [0.0, 1.0]]))

    def test_rejects_negative(self):
        with pytest.raises(InputValidationError):
            solve_assignment(np.array([[1.0, -2.0], [0.0, 1.0]]))

    def test_rejects_wrong_rank(self):
        with pytest.raises(InputValidationError):
            solve_assignment(np.array([1.0, 2.0, 3.0]))
