#!/usr/bin/env python3
# =============================================================================
# epilogos_index.py — identifier <-> (state, state) arithmetic
# -----------------------------------------------------------------------------
# Unordered pairs (S2), 0-based identifiers, upper triangle incl. diagonal:
#     id 0 -> (1,1), 1 -> (1,2), ..., n(n+1)/2 - 1 -> (n,n)
#   The table is filled from the bottom-right corner (n,n) backwards: for
#   delta = 0,1,2,... the row offset is the triangular root of delta and the
#   column offset is what remains of delta after that triangle.
#
# Ordered pairs (S3), 1-based identifiers over the full n x n matrix:
#     id = (row - 1) * n + column,   1 <= row, column <= n
#   A pair-group folds (a,b) and (b,a) onto the upper-triangle member.
# =============================================================================

from __future__ import annotations
import math
from typing import Tuple

import numpy as np


def triangular_root(x: int) -> int:
    """Largest r with r(r+1)/2 <= x."""
    return (math.isqrt(1 + 8 * x) - 1) // 2


def num_unordered_pairs(num_states: int) -> int:
    return num_states * (num_states + 1) // 2


def num_epigenome_pairs(group_size: int) -> int:
    return group_size * (group_size - 1) // 2


# ─────────────────────────── S2: unordered pairs ───────────────────────────

def unordered_pair_states(num_states: int) -> np.ndarray:
    """
    Lookup table, shape (n(n+1)/2, 2): row ``id`` holds the 1-based
    ``(state_i, state_j)`` of unordered-pair identifier ``id``, with i <= j.
    """
    max_id = num_unordered_pairs(num_states) - 1
    table = np.zeros((max_id + 1, 2), dtype=np.int64)
    for delta in range(max_id + 1):
        delta_row = triangular_root(delta)
        if delta <= 2:
            delta_column = 1 if delta == 2 else 0
        else:
            delta_column = delta - delta_row * (delta_row + 1) // 2
        table[max_id - delta, 0] = num_states - delta_row
        table[max_id - delta, 1] = num_states - delta_column
    return table


# ─────────────────────────── S3: ordered pairs ─────────────────────────────

def ordered_pair_id(row: int, column: int, num_states: int) -> int:
    return (row - 1) * num_states + column


def ordered_pair_states(pair_id: int, num_states: int) -> Tuple[int, int]:
    """1-based (row, column) of an ordered pair identifier."""
    column = pair_id % num_states
    row = pair_id // num_states + 1
    if column == 0:
        column = num_states
        row -= 1
    return row, column


def pair_group_id(pair_id: int, num_states: int) -> int:
    """
    Canonical pair-group of an ordered pair: identifiers below the diagonal
    are reflected onto their mirror above it, everything else maps to itself.
    """
    remainder = pair_id % num_states
    if remainder == 0:
        return pair_id
    quotient = pair_id // num_states
    if quotient + 1 > remainder:
        return num_states * (remainder - 1) + (quotient + 1)
    return pair_id
