#!/usr/bin/env python3
# =============================================================================
# epilogos_background.py — genome-wide background (Q) distributions
# -----------------------------------------------------------------------------
# Inputs (tab-delimited non-negative integer tallies; plain or .gz)
#   S1 : one line, one tally per state                      (Q)
#   S2 : one line, one tally per unordered state pair       (Q*)
#   S3 : one line per epigenome pair, numStates^2 columns   (Q**)
#
# Per identifier the builders precompute the log-domain "contribution" that
# the evaluator combines with an observed tally:
#   S1/S2 : log(Nsites) - log(tally)                (sentinel -999999 if 0)
#   S3    : (log(Nsites) - log(tally)) / (ln2 * R)  (sentinel +999999 if 0)
# The group size (epigenomes per group) is recovered from the tally sums:
#   S1 : sum = Nsites * g
#   S2 : sum = Nsites * g(g-1)/2
#   S3 : rows R = g(g-1)/2
# A constant factor of the true Q cancels in the ratio P/Q, so it is never
# stored.
# =============================================================================

from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import numpy as np

from epilogos_common import (
    LN2, SENTINEL_PAIR_CELL, SENTINEL_STATE,
    FormatError, LogCache, MetricKind,
    log, log_warning, split_int_tokens,
)
from epilogos_index import (
    num_epigenome_pairs, num_unordered_pairs, triangular_root, unordered_pair_states,
)

GROUP_SIZE_TOLERANCE = 0.01


@dataclass
class GroupBackground:
    source: str
    size: int               # epigenomes in this group
    contrib: np.ndarray     # S1/S2: (ids,)   S3: (numStates^2, R), row = pair id - 1
    sentinel: np.ndarray    # True where the background tally was zero

    @property
    def epigenome_pairs(self) -> int:
        return num_epigenome_pairs(self.size)


@dataclass
class BackgroundDistribution:
    kind: MetricKind
    nsites: int
    num_states: int
    groups: List[GroupBackground] = field(default_factory=list)
    log_cache: LogCache = field(default_factory=LogCache)
    pair_states: Optional[np.ndarray] = None   # S2 only: id -> (state_i, state_j)

    @property
    def two_groups(self) -> bool:
        return len(self.groups) == 2

    @property
    def num_ids(self) -> int:
        if self.kind == MetricKind.S1:
            return self.num_states
        if self.kind == MetricKind.S2:
            return num_unordered_pairs(self.num_states)
        return self.num_states * self.num_states

    def max_count(self, g: int) -> int:
        """Largest tally a single identifier can reach in group ``g`` (0-based)."""
        size = self.groups[g].size
        return size if self.kind == MetricKind.S1 else num_epigenome_pairs(size)

    def values_for_group(self, g: int) -> int:
        """Observation tokens per input line that belong to group ``g``."""
        if self.kind == MetricKind.S3:
            return self.groups[g].epigenome_pairs
        return self.num_ids

    @property
    def values_per_line(self) -> int:
        return sum(self.values_for_group(g) for g in range(len(self.groups)))


# =============================================================================
# PARSING
# =============================================================================

def _parse_row(line: str, source: str, linenum: int) -> List[int]:
    try:
        vals = split_int_tokens(line)
    except ValueError as e:
        raise FormatError(f"File {source}, line {linenum}: {e}.") from None
    bad = next((i for i, v in enumerate(vals, 1) if v < 0), None)
    if bad is not None:
        raise FormatError(f"File {source}, line {linenum}: column {bad} holds a negative tally.")
    return vals


def read_single_line_tallies(lines: Iterable[str], source: str) -> np.ndarray:
    """The one data line of an S1/S2 background file; blank lines are ignored."""
    row: Optional[List[int]] = None
    for linenum, line in enumerate(lines, 1):
        if not line.strip():
            continue
        if row is not None:
            raise FormatError(
                f"File {source} contains multiple lines of data; "
                "it should contain a single line of tab-delimited tallies."
            )
        row = _parse_row(line, source, linenum)
    if row is None:
        raise FormatError(f"File {source} is empty.")
    return np.asarray(row, dtype=np.int64)


def read_tally_matrix(lines: Iterable[str], source: str) -> np.ndarray:
    """Rectangular S3 tally matrix, one row per epigenome pair."""
    rows: List[List[int]] = []
    blank_at: Optional[int] = None
    for linenum, line in enumerate(lines, 1):
        if not line.strip():
            blank_at = blank_at or linenum
            continue
        if blank_at is not None:
            raise FormatError(f"Failed to parse line {blank_at} of file {source} (no data).")
        row = _parse_row(line, source, linenum)
        if rows and len(row) != len(rows[0]):
            raise FormatError(
                f"Found {len(rows[0])} columns on line 1 of {source} but {len(row)} columns "
                f"on line {linenum}.\nEach row must have the same number of columns; the # of "
                "columns must equal the square of the number of possible states\n"
                "(i.e., it must equal the number of possible state pairs)."
            )
        rows.append(row)
    if not rows:
        raise FormatError(f"File {source} is empty.")
    return np.asarray(rows, dtype=np.int64)


# =============================================================================
# SHARED HELPERS
# =============================================================================

def _check_inverse(source: str, implied: float, recovered: float, what: str):
    if abs(implied - recovered) > GROUP_SIZE_TOLERANCE:
        log_warning(
            f"{source}: tally sum implies {implied:.4f} {what}, not a whole number; "
            f"using {recovered:g}"
        )


def _log_domain(tallies: np.ndarray, nsites: int, denom: float, sentinel: float):
    zero = tallies == 0
    contrib = np.full(tallies.shape, sentinel, dtype=np.float64)
    contrib[~zero] = (math.log(nsites) - np.log(tallies[~zero].astype(np.float64))) / denom
    return contrib, zero


def _attach(kind: MetricKind, background: Optional[BackgroundDistribution],
            num_states: int, group: GroupBackground, nsites: int) -> BackgroundDistribution:
    if background is None:
        background = BackgroundDistribution(kind=kind, nsites=nsites, num_states=num_states)
    else:
        if background.kind != kind:
            raise ValueError(f"cannot add a {kind.name} group to a {background.kind.name} background")
        if background.two_groups:
            raise ValueError("background already holds two groups")
        if num_states != background.num_states:
            first = background.groups[0].source
            raise FormatError(
                f"The file containing tallies for group 1 ({first}) implies there are "
                f"{background.num_states} possible states,\nbut file {group.source} "
                f"(containing tallies for group 2) implies there are {num_states} possible states."
            )
    background.groups.append(group)
    log("BACKGROUND", f"group {len(background.groups)}: {group.source} "
                      f"({num_states} states, {group.size} epigenomes)")
    return background


# =============================================================================
# BUILDERS (one per metric kind)
# =============================================================================

def build_state_background(lines: Iterable[str], source: str, nsites: int,
                           background: Optional[BackgroundDistribution] = None
                           ) -> BackgroundDistribution:
    """S1: per-state tallies. A second call adds group 2 to ``background``."""
    tallies = read_single_line_tallies(lines, source)
    num_states = len(tallies)

    ratio = float(tallies.sum()) / nsites
    size = int(math.floor(ratio + GROUP_SIZE_TOLERANCE))
    _check_inverse(source, ratio, size, "epigenomes")
    if size < 1:
        raise FormatError(f"File {source}: tallies sum to fewer than Nsites ({nsites}); no epigenomes implied.")

    contrib, zero = _log_domain(tallies, nsites, 1.0, SENTINEL_STATE)
    group = GroupBackground(source=source, size=size, contrib=contrib, sentinel=zero)
    background = _attach(MetricKind.S1, background, num_states, group, nsites)
    background.log_cache.extend_to(size)
    return background


def build_state_pair_background(lines: Iterable[str], source: str, nsites: int,
                                background: Optional[BackgroundDistribution] = None
                                ) -> BackgroundDistribution:
    """S2: tallies of unordered state pairs, summed over all epigenome pairs."""
    tallies = read_single_line_tallies(lines, source)
    # x = n(n+1)/2 unordered pairs (diagonal included)
    num_states = triangular_root(len(tallies))
    if num_unordered_pairs(num_states) != len(tallies):
        raise FormatError(
            f"File {source} holds {len(tallies)} tallies; the number of unordered state pairs "
            "must be n(n+1)/2 for some number of states n."
        )

    ratio = float(tallies.sum()) / nsites
    size = int(math.floor((math.sqrt(1.0 + 8.0 * ratio) + 1.0) / 2.0 + GROUP_SIZE_TOLERANCE))
    _check_inverse(source, ratio, num_epigenome_pairs(size), "epigenome pairs")
    if size < 2:
        raise FormatError(f"File {source}: tallies imply fewer than 2 epigenomes; state pairs are undefined.")

    contrib, zero = _log_domain(tallies, nsites, 1.0, SENTINEL_STATE)
    group = GroupBackground(source=source, size=size, contrib=contrib, sentinel=zero)
    first = background is None
    background = _attach(MetricKind.S2, background, num_states, group, nsites)
    if first:
        background.pair_states = unordered_pair_states(num_states)
    background.log_cache.extend_to(num_epigenome_pairs(size))
    return background


def build_epigenome_pair_background(lines: Iterable[str], source: str, nsites: int,
                                    background: Optional[BackgroundDistribution] = None
                                    ) -> BackgroundDistribution:
    """S3: one row of ordered-state-pair tallies per epigenome pair."""
    matrix = read_tally_matrix(lines, source)
    n_rows, n_cols = matrix.shape
    num_states = math.isqrt(n_cols)
    if num_states * num_states != n_cols:
        raise FormatError(
            f"File {source} has {n_cols} columns; the number of columns must equal the "
            "square of the number of possible states."
        )

    size = int(math.floor(1.0 + math.sqrt(1.0 + 8.0 * n_rows) / 2.0 + 0.001))
    if num_epigenome_pairs(size) != n_rows:
        raise FormatError(
            f"File {source} has {n_rows} rows; the number of rows must equal g(g-1)/2, "
            "the number of epigenome pairs for some group size g."
        )

    # columns become ordered-pair identifiers, rows become epigenome-pair indices
    contrib, zero = _log_domain(matrix.T, nsites, LN2 * n_rows, SENTINEL_PAIR_CELL)
    group = GroupBackground(source=source, size=size, contrib=contrib, sentinel=zero)
    return _attach(MetricKind.S3, background, num_states, group, nsites)
