#!/usr/bin/env python3
# =============================================================================
# epilogos_common.py — shared constants, errors, log cache and I/O helpers
# -----------------------------------------------------------------------------
# Used by every epilogos_* module and script in this directory:
#   • metric-kind codes (S1 / S2 / S3) and the sentinel contributions
#   • the error taxonomy (each error knows its process exit code)
#   • LogCache: append-only table of log(k) for observation tallies
#   • stderr log helpers, plain/gz text reading, tab-delimited int parsing
# =============================================================================

from __future__ import annotations
import datetime
import gzip
import io
import math
import sys
from enum import IntEnum
from typing import Iterator, List

import numpy as np

# =============================================================================
# CONSTANTS
# =============================================================================

VERSION = "1.0.0"
LOG_PREFIX = "[EPILOGOS]"

LN2 = math.log(2.0)

# Background tally of zero. S1/S2 store the negative value and let the
# evaluator flip it for group 2; S3 bakes the positive value into each cell.
SENTINEL_STATE = -999999.0
SENTINEL_PAIR_CELL = 999999.0

# Coordinates not yet read on the current line
UNSET_POS = -1


class MetricKind(IntEnum):
    S1 = 1   # states
    S2 = 2   # unordered state pairs, tallied over all epigenome pairs
    S3 = 3   # ordered state pairs of individual epigenome pairs

    @classmethod
    def parse(cls, value) -> "MetricKind":
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise ArgumentError(
                f'Invalid metric "{value}"; the valid options are 1 (S1), 2 (S2) and 3 (S3).'
            ) from None


# =============================================================================
# ERRORS
# =============================================================================

class EpilogosError(Exception):
    """Base class; every subclass is fatal to the run."""
    exit_code = 1


class ArgumentError(EpilogosError):
    exit_code = 2


class FileOpenError(EpilogosError):
    exit_code = 3


class FormatError(EpilogosError):
    exit_code = 4


class InputColumnCountError(EpilogosError):
    exit_code = 5


class InputValueError(EpilogosError):
    exit_code = 5


# =============================================================================
# LOG CACHE
# =============================================================================

class LogCache:
    """
    Natural logs of observation tallies: ``cache.values[k] == log(k)`` for
    ``1 <= k <= cache.max_count``. Slot 0 exists but is never read.

    The table only ever grows; the S1/S2 background builders extend it to the
    largest tally a group can produce, once per group.
    """

    def __init__(self):
        self._values = np.zeros(1, dtype=np.float64)

    @property
    def max_count(self) -> int:
        return len(self._values) - 1

    @property
    def values(self) -> np.ndarray:
        return self._values

    def extend_to(self, max_count: int) -> int:
        """Cover tallies up to ``max_count``; returns the number of new entries."""
        if max_count <= self.max_count:
            return 0
        start = len(self._values)
        new = np.log(np.arange(start, max_count + 1, dtype=np.float64))
        self._values = np.concatenate([self._values, new])
        return len(new)


# =============================================================================
# LOGGING UTILITIES
# =============================================================================

_QUIET = False


def set_quiet(quiet: bool):
    global _QUIET
    _QUIET = bool(quiet)


def utc_stamp() -> str:
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def banner(tag: str, event: str):
    """Start/done marker in the form the pipeline logs grep for."""
    if not _QUIET:
        print(f"[{tag}] {event} ts={utc_stamp()}", file=sys.stderr, flush=True)


def log(section: str, message: str):
    if not _QUIET:
        print(f"{LOG_PREFIX} {section} | {message} | ts={utc_stamp()}", file=sys.stderr, flush=True)


def log_info(message: str):
    if not _QUIET:
        print(f"{LOG_PREFIX} INFO | {message}", file=sys.stderr, flush=True)


def log_warning(message: str):
    print(f"{LOG_PREFIX} WARNING | {message}", file=sys.stderr, flush=True)


def log_error(message: str):
    print(f"{LOG_PREFIX} ERROR | {message}", file=sys.stderr, flush=True)


# =============================================================================
# I/O HELPERS
# =============================================================================

def open_text(path: str) -> io.TextIOBase:
    """Open plain or gz text for reading; missing/unreadable files raise FileOpenError."""
    try:
        if str(path).endswith(".gz"):
            return io.TextIOWrapper(gzip.open(path, "rb"), encoding="utf-8")
        return open(path, "r", encoding="utf-8")
    except OSError as e:
        raise FileOpenError(f'Unable to open file "{path}" for reading: {e.strerror or e}') from e


def open_output(path: str) -> io.TextIOBase:
    try:
        return open(path, "w", encoding="utf-8")
    except OSError as e:
        raise FileOpenError(f'Unable to open file "{path}" for writing: {e.strerror or e}') from e


def iter_lines(fh) -> Iterator[str]:
    for ln in fh:
        yield ln.rstrip("\r\n")


def split_int_tokens(line: str) -> List[int]:
    """
    Split a line into tab-delimited integers. Empty fields (consecutive tabs)
    are skipped. Raises ValueError naming the 1-based column of a bad token.
    """
    out: List[int] = []
    for tok in line.split("\t"):
        tok = tok.strip()
        if not tok:
            continue
        try:
            out.append(int(tok))
        except ValueError:
            raise ValueError(f'column {len(out) + 1} holds "{tok}", which is not an integer') from None
    return out


def read_site_count(path: str, allow_zero: bool = False) -> int:
    """A file holding one integer: the number of sites (genome-wide or per chromosome)."""
    with open_text(path) as fh:
        fields = fh.read().split()
    if len(fields) != 1:
        raise FormatError(f"File {path} must hold a single integer (the number of sites).")
    try:
        n = int(fields[0])
    except ValueError:
        raise FormatError(f'File {path} holds "{fields[0]}", which is not an integer.') from None
    if n < 0 or (n == 0 and not allow_zero):
        raise FormatError(f"File {path}: invalid number of sites ({n}).")
    return n


def fmt_g(x: float) -> str:
    return f"{x:g}"


def fmt_score(x: float) -> str:
    return f"{x:.4g}"
