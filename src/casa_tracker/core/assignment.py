#!/usr/bin/env python3
"""
Kuhn-Munkres (Hungarian) assignment for track-to-detection association.

Rectangular cost matrices are padded to square with a sentinel cost so every
padded row or column is matched against padding only when nothing cheaper
exists. The caller drops matches that land on padding and applies its own
distance gate afterwards.
"""

from __future__ import annotations

from typing import List, Tuple

import numpy as np
from numba import njit

from .common.validation import validate_cost_matrix

SENTINEL_COST = 1e9


# Numba-optimized helper (defined at module level to avoid re-compilation)
@njit
def _hungarian_square(a):
    """
    Shortest augmenting path Hungarian method on a square matrix, O(n^3).

    Args:
        a: (n, n) float64 cost matrix

    Returns:
        Array of length n; entry i is the column assigned to row i
    """
    n = a.shape[0]
    u = np.zeros(n + 1)
    v = np.zeros(n + 1)
    p = np.zeros(n + 1, np.int64)
    way = np.zeros(n + 1, np.int64)

    for i in range(1, n + 1):
        p[0] = i
        j0 = 0
        minv = np.full(n + 1, np.inf)
        used = np.zeros(n + 1, np.bool_)
        while True:
            used[j0] = True
            i0 = p[j0]
            delta = np.inf
            j1 = 0
            for j in range(1, n + 1):
                if not used[j]:
                    cur = a[i0 - 1, j - 1] - u[i0] - v[j]
                    if cur < minv[j]:
                        minv[j] = cur
                        way[j] = j0
                    if minv[j] < delta:
                        delta = minv[j]
                        j1 = j
            for j in range(n + 1):
                if used[j]:
                    u[p[j]] += delta
                    v[j] -= delta
                else:
                    minv[j] -= delta
            j0 = j1
            if p[j0] == 0:
                break
        # unwind the augmenting path
        while True:
            j1 = way[j0]
            p[j0] = p[j1]
            j0 = j1
            if j0 == 0:
                break

    assignment = np.full(n, -1, np.int64)
    for j in range(1, n + 1):
        if p[j] != 0:
            assignment[p[j] - 1] = j - 1
    return assignment


def pad_cost_matrix(cost: np.ndarray, sentinel: float = SENTINEL_COST) -> np.ndarray:
    """Pad an (n, m) matrix to (k, k), k = max(n, m), filling with sentinel."""
    n, m = cost.shape
    k = max(n, m)
    padded = np.full((k, k), sentinel, dtype=np.float64)
    padded[:n, :m] = cost
    return padded


def solve_assignment(cost) -> np.ndarray:
    """
    Minimum-cost one-to-one assignment.

    Args:
        cost: (n, m) non-negative finite cost matrix (rows = tracks,
            columns = detections)

    Returns:
        Array of length max(n, m). Entry i is the (padded) column assigned
        to (padded) row i. Indices >= n or >= m refer to padding.
    """
    arr, n, m = validate_cost_matrix(cost)
    k = max(n, m)
    if k == 0:
        return np.empty(0, dtype=np.int64)
    if n == 0 or m == 0:
        # only padding on one side: identity over the padded square
        return np.arange(k, dtype=np.int64)
    return _hungarian_square(pad_cost_matrix(arr))


def assignment_pairs(cost) -> List[Tuple[int, int]]:
    """Solve and return only (row, col) pairs that refer to real cells."""
    arr, n, m = validate_cost_matrix(cost)
    assignment = solve_assignment(arr)
    return [
        (int(i), int(j)) for i, j in enumerate(assignment[:n]) if 0 <= j < m
    ]


def assignment_cost(cost, assignment) -> float:
    """Total cost of the real cells selected by an assignment array."""
    arr = np.asarray(cost, dtype=float)
    n, m = arr.shape
    total = 0.0
    for i, j in enumerate(assignment[:n]):
        if 0 <= j < m:
            total += arr[i, j]
    return float(total)
