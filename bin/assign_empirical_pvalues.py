#!/usr/bin/env python3
# =============================================================================
# assign_empirical_pvalues.py — empirical significance of observed totals
# -----------------------------------------------------------------------------
# Inputs
#   --observed   observations file (last column = total divergence metric)
#   --nulls      one or more null-value files (one total per line), pooled
# Outputs
#   --out        observations with one extra column: empirical p-value
#                  p = (#nulls >= observed + 1) / (#nulls + 1)
#   --qc-pdf     null histogram with observed totals overlaid   [optional]
# =============================================================================

from __future__ import annotations
import argparse
import sys
from typing import List, Optional, Sequence, Tuple

import numpy as np
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from matplotlib.backends.backend_pdf import PdfPages

from epilogos_common import (
    VERSION,
    EpilogosError, FormatError,
    banner, fmt_g, iter_lines, log, log_error, open_output, open_text, set_quiet,
)

TAG = "empirical_pvalues"


# =============================================================================
# LOADING
# =============================================================================

def load_nulls(paths: Sequence[str]) -> np.ndarray:
    """Pooled, sorted null values from every file in ``paths``."""
    pooled: List[float] = []
    for path in paths:
        before = len(pooled)
        with open_text(path) as fh:
            for linenum, line in enumerate(iter_lines(fh), 1):
                s = line.strip()
                if not s:
                    continue
                try:
                    pooled.append(float(s))
                except ValueError:
                    raise FormatError(f'File {path}, line {linenum}: "{s}" is not a number.') from None
        log("NULLS", f"{path}: {len(pooled) - before:,} values")
    if not pooled:
        raise FormatError("The null distribution is empty; cannot assign empirical p-values.")
    return np.sort(np.asarray(pooled, dtype=np.float64))


def load_observed(path: str) -> Tuple[List[str], np.ndarray]:
    lines: List[str] = []
    totals: List[float] = []
    with open_text(path) as fh:
        for linenum, line in enumerate(iter_lines(fh), 1):
            if not line.strip():
                continue
            last = line.rsplit("\t", 1)[-1]
            try:
                totals.append(float(last))
            except ValueError:
                raise FormatError(f'File {path}, line {linenum}: last column "{last}" is not a number.') from None
            lines.append(line)
    return lines, np.asarray(totals, dtype=np.float64)


# =============================================================================
# P-VALUES
# =============================================================================

def empirical_pvalues(observed: np.ndarray, sorted_nulls: np.ndarray) -> np.ndarray:
    """One-sided, +1 corrected so no p-value is zero."""
    n = len(sorted_nulls)
    num_ge = n - np.searchsorted(sorted_nulls, observed, side="left")
    return (num_ge + 1.0) / (n + 1.0)


def write_qc_pdf(path: str, sorted_nulls: np.ndarray, observed: np.ndarray):
    with PdfPages(path) as pdf:
        plt.figure()
        plt.hist(sorted_nulls, bins=100, alpha=0.6, label=f"null (n={len(sorted_nulls):,})")
        if observed.size:
            plt.hist(observed, bins=100, alpha=0.6, label=f"observed (n={len(observed):,})")
        plt.yscale("log")
        plt.xlabel("total divergence")
        plt.legend()
        plt.title("Null vs observed totals")
        pdf.savefig(); plt.close()


# =============================================================================
# MAIN
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(
        description="Append empirical p-values (against pooled null totals) to an observations file.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--observed", required=True, help="Observations file")
    p.add_argument("--nulls", nargs="+", required=True, help="Null-value files")
    p.add_argument("--out", required=True, help="Observations with p-values")
    p.add_argument("--qc-pdf", default=None, help="Optional QC histogram (PDF)")
    p.add_argument("--quiet", action="store_true")
    p.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    args = p.parse_args(argv)
    set_quiet(args.quiet)

    banner(TAG, "start")
    try:
        nulls = load_nulls(args.nulls)
        lines, totals = load_observed(args.observed)
        pvals = empirical_pvalues(totals, nulls)
        with open_output(args.out) as fh:
            for line, pv in zip(lines, pvals):
                fh.write(f"{line}\t{fmt_g(pv)}\n")
        log("OUTPUT", f"{args.out}: {len(lines):,} segments, {len(nulls):,} null values")
        if args.qc_pdf:
            write_qc_pdf(args.qc_pdf, nulls, totals)
            log("OUTPUT", f"QC: {args.qc_pdf}")
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
