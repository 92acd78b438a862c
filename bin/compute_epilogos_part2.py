#!/usr/bin/env python3
# =============================================================================
# compute_epilogos_part2.py — per-segment divergence scores for one chromosome
# -----------------------------------------------------------------------------
# Inputs
#   --infile       per-segment observation tallies (tab-delimited ints; .gz ok)
#                    full mode : begin, end, group-1 obs [, group-2 obs]
#                    null mode : group-1 obs, group-2 obs
#   --metric       1 = S1 (states, "KL"), 2 = S2 (state pairs, "KL*"),
#                  3 = S3 (state pairs per epigenome pair, "KL**")
#   --nsites / --nsites-file   genome-wide number of sites
#   --q1 [--q2]    background tallies for group 1 [and group 2]
#
# Outputs (exactly one mode)
#   full mode : --out-obs     chrom, begin, end, dominant state, |c|, sign,
#                             [(s1,s2), |t|, sign,] total
#               --out-scores  chrom, begin, end, per-state contribution (%.4g)
#   null mode : --out-nulls   total only, one value per line (needs --q2)
#
# Exit codes: 0 ok, 2 bad arguments, 3 unreadable file, 4 bad background file,
#             5 bad input line, 130 interrupted, 1 anything else
# =============================================================================

from __future__ import annotations
import argparse
import contextlib
import sys
from typing import List, Optional

from epilogos_common import (
    VERSION,
    EpilogosError, MetricKind,
    banner, iter_lines, log, log_error, log_info, open_output, open_text, read_site_count, set_quiet,
)
from epilogos_metrics import (
    VARIANTS,
    format_null, format_observation, format_scores, stream_segments,
)

TAG = "epilogos_part2"


# =============================================================================
# ARGUMENTS
# =============================================================================

def _positive_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not an integer") from None
    if n <= 0:
        raise argparse.ArgumentTypeError(f"{value!r} must be positive")
    return n


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Score genomic segments against a genome-wide chromatin-state background "
                    "(relative entropy, optionally contrasting two groups of epigenomes).",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--infile", required=True, help="Per-segment observation tallies")
    p.add_argument("--metric", type=int, required=True, choices=[1, 2, 3],
                   help="1 = S1 (states), 2 = S2 (state pairs), 3 = S3 (state pairs per epigenome pair)")

    sites = p.add_mutually_exclusive_group(required=True)
    sites.add_argument("--nsites", type=_positive_int, help="Genome-wide number of sites")
    sites.add_argument("--nsites-file", help="File holding the genome-wide number of sites")

    p.add_argument("--q1", required=True, help="Background tallies, group 1")
    p.add_argument("--q2", default=None, help="Background tallies, group 2 (two-group contrast)")

    p.add_argument("--out-obs", default=None, help="Observations output (full mode)")
    p.add_argument("--out-scores", default=None, help="Per-state scores output (full mode)")
    p.add_argument("--chrom", default=None, help="Chromosome name written in column 1 (full mode)")
    p.add_argument("--out-nulls", default=None, help="Null values output (null mode; requires --q2)")

    p.add_argument("--quiet", action="store_true", help="Only print warnings and errors")
    p.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return p


def _check_modes(parser: argparse.ArgumentParser, args) -> bool:
    """Returns True for null mode; exits with usage on a mixed/empty choice."""
    full = {"--out-obs": args.out_obs, "--out-scores": args.out_scores, "--chrom": args.chrom}
    if args.out_nulls is not None:
        given = [k for k, v in full.items() if v is not None]
        if given:
            parser.error(f"--out-nulls cannot be combined with {', '.join(given)}")
        if args.q2 is None:
            parser.error("--out-nulls requires --q2")
        return True
    missing = [k for k, v in full.items() if v is None]
    if missing:
        parser.error(f"either --out-nulls or all of --out-obs, --out-scores, --chrom are required "
                     f"(missing {', '.join(missing)})")
    return False


# =============================================================================
# RUN
# =============================================================================

def run(args, null_mode: bool) -> int:
    kind = MetricKind.parse(args.metric)
    variant = VARIANTS[kind]
    nsites = args.nsites if args.nsites is not None else read_site_count(args.nsites_file)
    log("SETUP", f"metric={kind.name} [{variant.label}] Nsites={nsites:,} "
                 f"mode={'null' if null_mode else 'full'}")

    background = None
    for path in [args.q1] + ([args.q2] if args.q2 is not None else []):
        with open_text(path) as fh:
            background = variant.build(iter_lines(fh), path, nsites, background)
    log("BACKGROUND", f"{background.num_states} states, {len(background.groups)} group(s), "
                      f"{background.values_per_line} observations per line")
    log_info(f"writing {args.out_nulls}" if null_mode else f"writing {args.out_obs} and {args.out_scores}")

    n = 0
    with contextlib.ExitStack() as stack:
        fin = stack.enter_context(open_text(args.infile))
        if null_mode:
            fnull = stack.enter_context(open_output(args.out_nulls))
        else:
            fobs = stack.enter_context(open_output(args.out_obs))
            fscores = stack.enter_context(open_output(args.out_scores))

        for result in stream_segments(variant, background, iter_lines(fin), args.infile, null_mode):
            if null_mode:
                fnull.write(format_null(result) + "\n")
            else:
                fobs.write(format_observation(result, args.chrom, kind) + "\n")
                fscores.write(format_scores(result, args.chrom) + "\n")
            n += 1

    log("COMPLETE", f"{n:,} segments scored from {args.infile}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    null_mode = _check_modes(parser, args)
    set_quiet(args.quiet)

    banner(TAG, "start")
    try:
        rc = run(args, null_mode)
    except EpilogosError as e:
        log_error(str(e))
        return e.exit_code
    banner(TAG, "done")
    return rc


# =============================================================================
# ENTRY POINT
# =============================================================================

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
