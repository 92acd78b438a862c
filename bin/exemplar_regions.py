#!/usr/bin/env python3
# =============================================================================
# exemplar_regions.py — one best-scoring segment per run of a dominant state
# -----------------------------------------------------------------------------
# Input
#   --observations   observations file (sorted by chrom, begin)
# Steps
#   1) runs = consecutive lines with the same chromosome and dominant state
#      (column 4)
#   2) per run keep the line with the highest score; ties keep the later line
#   3) sort the kept lines by score, highest first (stable)
# Score column: 7 for metric 1 (total), 10 for metrics 2/3 (total);
#   --score-column overrides it.
# Output
#   --out            exemplar lines, unchanged
# =============================================================================

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

import numpy as np
import pandas as pd

from epilogos_common import (
    VERSION,
    EpilogosError, FormatError, MetricKind,
    banner, log, log_error, open_output, open_text, set_quiet,
)

TAG = "exemplar_regions"

STATE_COLUMN = 4
SCORE_COLUMN = {MetricKind.S1: 7, MetricKind.S2: 10, MetricKind.S3: 10}


def read_observations(path: str) -> pd.DataFrame:
    with open_text(path) as fh:
        try:
            return pd.read_csv(fh, sep="\t", header=None, dtype=str)
        except pd.errors.EmptyDataError:
            return pd.DataFrame()


def exemplar_regions(df: pd.DataFrame, score_column: int,
                     state_column: int = STATE_COLUMN, source: str = "observations") -> pd.DataFrame:
    """Columns are 1-based, as in the file."""
    if df.empty:
        return df
    if max(score_column, state_column) > df.shape[1]:
        raise FormatError(f"{source} has {df.shape[1]} columns; score column {score_column} "
                          f"and state column {state_column} must both exist.")
    try:
        score = pd.to_numeric(df[score_column - 1])
    except ValueError as e:
        raise FormatError(f"{source}: column {score_column} is not numeric ({e}).") from None

    chrom, state = df[0], df[state_column - 1]
    run = ((chrom != chrom.shift()) | (state != state.shift())).cumsum()

    # idxmax takes the first maximum; reversed, that is the last one per run
    rev = score.iloc[::-1]
    best = rev.groupby(run.iloc[::-1], sort=False).idxmax().sort_values()

    kept = df.loc[best.values]
    order = np.argsort(-score.loc[best.values].to_numpy(), kind="stable")
    return kept.iloc[order]


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(
        description="Collapse runs of one dominant state into their best-scoring segment.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--observations", required=True, help="Observations file")
    p.add_argument("--metric", type=int, required=True, choices=[1, 2, 3],
                   help="Metric the observations were scored with")
    p.add_argument("--out", required=True, help="Exemplar regions output")
    p.add_argument("--score-column", type=int, default=None,
                   help="1-based score column (default: 7 for metric 1, 10 otherwise)")
    p.add_argument("--quiet", action="store_true")
    p.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    args = p.parse_args(argv)
    if args.score_column is not None and args.score_column < 1:
        p.error("--score-column must be >= 1")
    set_quiet(args.quiet)

    banner(TAG, "start")
    try:
        kind = MetricKind.parse(args.metric)
        score_column = args.score_column or SCORE_COLUMN[kind]
        df = read_observations(args.observations)
        out = exemplar_regions(df, score_column, source=args.observations)
        with open_output(args.out) as fh:
            if not out.empty:
                out.to_csv(fh, sep="\t", header=False, index=False)
        log("OUTPUT", f"{args.out}: {len(out):,} exemplars from {len(df):,} segments "
                      f"(score column {score_column})")
    except EpilogosError as e:
        log_error(str(e))
        return e.exit_code
    banner(TAG, "done")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        log_error("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        log_error(f"Unexpected error: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
