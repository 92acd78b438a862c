#!/usr/bin/env python3
# =============================================================================
# epilogos_metrics.py — per-segment divergence (S1 / S2 / S3) from background
# -----------------------------------------------------------------------------
# Per input line (one genomic segment):
#   1) consume   : tokens -> begin/end coordinates + per-group tallies
#   2) evaluate  : signed term per identifier, total metric, per-state split
#   3) reset     : tally back to its zero value for the next line (after evaluate)
#
# Term per identifier i (S1 states, S2 unordered state pairs):
#     P1[i]/(ln2*n1) * (log P1[i] + Qc1[i])  -  P2[i]/(ln2*n2) * (log P2[i] + Qc2[i])
#   n = epigenomes (S1) or epigenome pairs (S2); Qc = log(Nsites) - log(Q[i]).
#   A zero background tally makes the term the sentinel itself (group 1:
#   -999999, group 2: +999999, group 2 wins).
# Term per pair-group (S3): sum of the precomputed cells of group-1
#   observations minus those of group-2 observations.
# Total = sum(term) with one group, sum(|term|) with two.
#
# Each variant is a record of plain functions in VARIANTS; stream_segments()
# is the one place that drives them.
# =============================================================================

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np

from epilogos_common import (
    LN2, UNSET_POS,
    InputColumnCountError, InputValueError, MetricKind,
    fmt_g, fmt_score, split_int_tokens,
)
from epilogos_background import (
    BackgroundDistribution,
    build_epigenome_pair_background, build_state_background, build_state_pair_background,
)
from epilogos_index import num_epigenome_pairs, ordered_pair_states, pair_group_id


# =============================================================================
# TALLIES
# =============================================================================

@dataclass
class SegmentTally:
    beg: int = UNSET_POS
    end: int = UNSET_POS
    filled: List[int] = field(default_factory=lambda: [0, 0])   # observations taken per group


@dataclass
class CountTally(SegmentTally):
    """S1/S2: one count per identifier per group."""
    counts: List[np.ndarray] = field(default_factory=list)


# ordered pair id -> epigenome-pair indices (ascending), one dict per group
PairObservations = Tuple[Dict[int, List[int]], Dict[int, List[int]]]


@dataclass
class StatePairTally(SegmentTally):
    """S3: pair-group id -> the observations that fold onto it."""
    observations: Dict[int, PairObservations] = field(default_factory=dict)


def new_count_tally(background: BackgroundDistribution) -> CountTally:
    return CountTally(counts=[np.zeros(background.num_ids, dtype=np.int64) for _ in background.groups])


def new_state_pair_tally(background: BackgroundDistribution) -> StatePairTally:
    return StatePairTally()


def _reset_common(tally: SegmentTally):
    tally.beg = tally.end = UNSET_POS
    tally.filled[0] = tally.filled[1] = 0


def reset_count_tally(tally: CountTally):
    _reset_common(tally)
    for c in tally.counts:
        c.fill(0)


def reset_state_pair_tally(tally: StatePairTally):
    _reset_common(tally)
    tally.observations.clear()


# =============================================================================
# CONSUME
# =============================================================================

def _take_coordinate(tally: SegmentTally, value: int, writing_nulls: bool) -> bool:
    """Lines carry begin/end ahead of the observations unless writing nulls."""
    if writing_nulls or tally.filled[0] != 0:
        return False
    if tally.beg == UNSET_POS:
        tally.beg = value
        return True
    if tally.end == UNSET_POS:
        tally.end = value
        return True
    return False


def _active_group(tally: SegmentTally, background: BackgroundDistribution) -> int:
    if tally.filled[0] < background.values_for_group(0):
        return 0
    if background.two_groups and tally.filled[1] < background.values_for_group(1):
        return 1
    raise InputColumnCountError(
        f"Found excess columns in a line of input; expected {background.values_per_line} observations."
    )


def consume_count(tally: CountTally, background: BackgroundDistribution,
                  value: int, writing_nulls: bool = False):
    if _take_coordinate(tally, value, writing_nulls):
        return
    g = _active_group(tally, background)
    top = background.max_count(g)
    if not 0 <= value <= top:
        raise InputValueError(f"Tally {value} is outside 0..{top} for group {g + 1}.")
    tally.counts[g][tally.filled[g]] = value
    tally.filled[g] += 1


def consume_state_pair(tally: StatePairTally, background: BackgroundDistribution,
                       value: int, writing_nulls: bool = False):
    if _take_coordinate(tally, value, writing_nulls):
        return
    g = _active_group(tally, background)
    n = background.num_states
    if not 1 <= value <= n * n:
        raise InputValueError(f"State pair {value} is outside 1..{n * n}.")
    per_group = tally.observations.setdefault(pair_group_id(value, n), ({}, {}))
    per_group[g].setdefault(value, []).append(tally.filled[g])
    tally.filled[g] += 1


# =============================================================================
# EVALUATE
# =============================================================================

@dataclass
class SegmentResult:
    beg: int
    end: int
    total: float
    state_contrib: Optional[np.ndarray] = None     # None when writing nulls
    pair: Optional[Tuple[int, int]] = None         # S2/S3 dominant (state, state)
    pair_term: float = 0.0

    @property
    def dominant_state(self) -> int:
        """1-based; ties go to the lowest state."""
        return int(np.argmax(np.abs(self.state_contrib))) + 1

    @property
    def dominant_term(self) -> float:
        return float(self.state_contrib[self.dominant_state - 1])


def _total(terms, two_groups: bool) -> float:
    return float(np.abs(terms).sum()) if two_groups else float(np.sum(terms))


def _count_terms(tally: CountTally, background: BackgroundDistribution,
                 denoms: List[float]) -> np.ndarray:
    logs = background.log_cache.values
    terms = np.zeros(background.num_ids, dtype=np.float64)
    for g, sign in enumerate((1.0, -1.0)[:len(background.groups)]):
        grp = background.groups[g]
        p = tally.counts[g]
        seen = p > 0
        regular = seen & ~grp.sentinel
        terms[regular] += sign * (p[regular] / denoms[g]) * (logs[p[regular]] + grp.contrib[regular])
        hit = seen & grp.sentinel
        terms[hit] = sign * grp.contrib[hit]
    return terms


def evaluate_states(tally: CountTally, background: BackgroundDistribution,
                    writing_nulls: bool = False) -> SegmentResult:
    terms = _count_terms(tally, background, [LN2 * grp.size for grp in background.groups])
    result = SegmentResult(tally.beg, tally.end, _total(terms, background.two_groups))
    if not writing_nulls:
        result.state_contrib = terms
    return result


def evaluate_state_pairs(tally: CountTally, background: BackgroundDistribution,
                         writing_nulls: bool = False) -> SegmentResult:
    denoms = [LN2 * num_epigenome_pairs(grp.size) for grp in background.groups]
    terms = _count_terms(tally, background, denoms)
    result = SegmentResult(tally.beg, tally.end, _total(terms, background.two_groups))
    if not writing_nulls:
        # half of each pair's term goes to each of its two states
        contrib = np.zeros(background.num_states, dtype=np.float64)
        half = 0.5 * terms
        np.add.at(contrib, background.pair_states[:, 0] - 1, half)
        np.add.at(contrib, background.pair_states[:, 1] - 1, half)
        best = int(np.argmax(np.abs(terms)))
        result.state_contrib = contrib
        result.pair = (int(background.pair_states[best, 0]), int(background.pair_states[best, 1]))
        result.pair_term = float(terms[best])
    return result


def evaluate_epigenome_pairs(tally: StatePairTally, background: BackgroundDistribution,
                             writing_nulls: bool = False) -> SegmentResult:
    n = background.num_states
    two = background.two_groups
    contrib = None if writing_nulls else np.zeros(n, dtype=np.float64)
    total = 0.0
    best_group: Optional[int] = None
    best_term = 0.0

    for group_id in sorted(tally.observations):
        per_group = tally.observations[group_id]
        term = 0.0
        for g, sign in enumerate((1.0, -1.0)[:len(background.groups)]):
            cells = background.groups[g].contrib
            for pair_id in sorted(per_group[g]):
                term += sign * float(cells[pair_id - 1, per_group[g][pair_id]].sum())
        total += abs(term) if two else term
        if writing_nulls:
            continue
        if best_group is None or abs(term) > abs(best_term):
            best_group, best_term = group_id, term
        row, column = ordered_pair_states(group_id, n)
        contrib[row - 1] += 0.5 * term
        contrib[column - 1] += 0.5 * term

    result = SegmentResult(tally.beg, tally.end, total)
    if not writing_nulls:
        result.state_contrib = contrib
        if best_group is not None:
            result.pair = ordered_pair_states(best_group, n)
            result.pair_term = best_term
    return result


# =============================================================================
# VARIANT DISPATCH
# =============================================================================

@dataclass(frozen=True)
class Variant:
    kind: MetricKind
    label: str
    build: Callable
    new_tally: Callable
    consume: Callable
    evaluate: Callable
    reset: Callable


VARIANTS: Dict[MetricKind, Variant] = {
    MetricKind.S1: Variant(MetricKind.S1, "KL (states)",
                           build_state_background, new_count_tally,
                           consume_count, evaluate_states, reset_count_tally),
    MetricKind.S2: Variant(MetricKind.S2, "KL* (state pairs)",
                           build_state_pair_background, new_count_tally,
                           consume_count, evaluate_state_pairs, reset_count_tally),
    MetricKind.S3: Variant(MetricKind.S3, "KL** (state pairs per epigenome pair)",
                           build_epigenome_pair_background, new_state_pair_tally,
                           consume_state_pair, evaluate_epigenome_pairs, reset_state_pair_tally),
}


def stream_segments(variant: Variant, background: BackgroundDistribution,
                    lines: Iterable[str], source: str,
                    writing_nulls: bool = False) -> Iterator[SegmentResult]:
    """
    Yield one SegmentResult per input line, in order.

    Every line must hold exactly ``values_per_line`` observations, preceded by
    begin/end coordinates unless ``writing_nulls``. The first bad line raises;
    results already yielded stay valid.
    """
    expected = background.values_per_line + (0 if writing_nulls else 2)
    tally = variant.new_tally(background)
    for linenum, line in enumerate(lines, 1):
        try:
            values = split_int_tokens(line)
        except ValueError as e:
            raise InputValueError(f"Line {linenum} of file {source}: {e}.") from None
        for col, value in enumerate(values, 1):
            try:
                variant.consume(tally, background, value, writing_nulls)
            except (InputColumnCountError, InputValueError) as e:
                raise type(e)(
                    f"{e}\nThe error was detected in column {col} of line {linenum} of file {source}."
                ) from None
        if len(values) != expected:
            raise InputColumnCountError(
                f"Expected to find {expected} columns of integers on line {linenum} of {source}, "
                f"but instead found {len(values)}."
            )
        result = variant.evaluate(tally, background, writing_nulls)
        variant.reset(tally)
        yield result


# =============================================================================
# OUTPUT RECORDS
# =============================================================================

def _sign(x: float) -> str:
    return "1" if x > 0 else "-1"


def format_observation(result: SegmentResult, chrom: str, kind: MetricKind) -> str:
    """chrom, begin, end, state, |c|, sign, [(s1,s2), |t|, sign,] total"""
    c = result.dominant_term
    fields = [chrom, str(result.beg), str(result.end),
              str(result.dominant_state), fmt_g(abs(c)), _sign(c)]
    if kind != MetricKind.S1:
        s1, s2 = result.pair
        fields += [f"({s1},{s2})", fmt_g(abs(result.pair_term)), _sign(result.pair_term)]
    fields.append(fmt_g(result.total))
    return "\t".join(fields)


def format_scores(result: SegmentResult, chrom: str) -> str:
    return "\t".join([chrom, str(result.beg), str(result.end)]
                     + [fmt_score(x) for x in result.state_contrib])


def format_null(result: SegmentResult) -> str:
    return fmt_g(result.total)
