#!/usr/bin/env python3
# =============================================================================
# combine_background_tallies.py — genome-wide background from per-chrom pieces
# -----------------------------------------------------------------------------
# Inputs
#   --inputs        per-chromosome background tallies (S1/S2: one line,
#                   S3: one row per epigenome pair); all the same shape
#   --sites-inputs  per-chromosome site counts (one integer each)    [optional]
# Outputs
#   --out           element-wise sum of --inputs (tab-delimited ints)
#   --out-sites     sum of --sites-inputs (the genome-wide Nsites)   [optional]
# =============================================================================

from __future__ import annotations
import argparse
import sys
from typing import List, Optional, Sequence

import numpy as np

from epilogos_common import (
    VERSION,
    EpilogosError, FormatError,
    banner, iter_lines, log, log_error, open_output, open_text, read_site_count, set_quiet,
)
from epilogos_background import read_tally_matrix

TAG = "combine_background"


def combine_tallies(paths: Sequence[str]) -> np.ndarray:
    total: Optional[np.ndarray] = None
    first = None
    for path in paths:
        with open_text(path) as fh:
            m = read_tally_matrix(iter_lines(fh), path)
        if total is None:
            total, first = m.copy(), path
        elif m.shape != total.shape:
            raise FormatError(
                f"{path} has {m.shape[0]} row(s) x {m.shape[1]} column(s), "
                f"but {first} has {total.shape[0]} x {total.shape[1]}."
            )
        else:
            total += m
        log("COMBINE", f"{path}: {m.shape[0]} x {m.shape[1]}, sum={int(m.sum()):,}")
    if total is None:
        raise FormatError("No background tally files given.")
    return total


def sum_site_counts(paths: Sequence[str]) -> int:
    total = sum(read_site_count(p, allow_zero=True) for p in paths)
    if total <= 0:
        raise FormatError(f"The {len(paths)} site-count file(s) sum to {total}; expected a positive total.")
    return total


def write_tallies(matrix: np.ndarray, path: str):
    with open_output(path) as fh:
        np.savetxt(fh, matrix, fmt="%d", delimiter="\t")


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(
        description="Sum per-chromosome background tallies (and site counts) into genome-wide totals.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--inputs", nargs="+", required=True, help="Per-chromosome tally files")
    p.add_argument("--out", required=True, help="Genome-wide tally file")
    p.add_argument("--sites-inputs", nargs="+", default=None, help="Per-chromosome site-count files")
    p.add_argument("--out-sites", default=None, help="Genome-wide site-count file")
    p.add_argument("--quiet", action="store_true")
    p.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    args = p.parse_args(argv)
    if (args.sites_inputs is None) != (args.out_sites is None):
        p.error("--sites-inputs and --out-sites must be given together")
    set_quiet(args.quiet)

    banner(TAG, "start")
    try:
        total = combine_tallies(args.inputs)
        write_tallies(total, args.out)
        log("OUTPUT", f"{args.out}: {total.shape[0]} x {total.shape[1]} from {len(args.inputs)} file(s)")
        if args.sites_inputs:
            nsites = sum_site_counts(args.sites_inputs)
            with open_output(args.out_sites) as fh:
                fh.write(f"{nsites}\n")
            log("OUTPUT", f"{args.out_sites}: Nsites={nsites:,}")
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
