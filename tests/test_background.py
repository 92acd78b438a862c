"""
Tests for background distribution construction (S1 / S2 / S3).
"""

import math

import numpy as np
import pytest
from epilogos_background import (
    build_epigenome_pair_background, build_state_background, build_state_pair_background,
)
from epilogos_common import LN2, FormatError, MetricKind


class TestStateBackground:
    """S1: one line, one tally per state."""

    def test_worked_example(self):
        """[4,0,6] with Nsites=5: 3 states, 2 epigenomes, state 2 is the sentinel."""
        bg = build_state_background(["4\t0\t6"], "q1.txt", 5)
        assert bg.kind == MetricKind.S1
        assert bg.num_states == 3
        assert not bg.two_groups
        grp = bg.groups[0]
        assert grp.size == 2
        assert grp.contrib[0] == pytest.approx(math.log(5) - math.log(4))
        assert grp.contrib[1] == -999999.0
        assert grp.contrib[2] == pytest.approx(math.log(5) - math.log(6))
        assert list(grp.sentinel) == [False, True, False]
        assert bg.log_cache.max_count == 2
        assert bg.values_per_line == 3

    @pytest.mark.parametrize("g,nsites", [(1, 7), (2, 5), (9, 100), (57, 2500)])
    def test_group_size_round_trip(self, g, nsites):
        """Tallies summing to g * Nsites recover g."""
        tallies = [nsites * g - 3, 1, 2]
        bg = build_state_background(["\t".join(map(str, tallies))], "q.txt", nsites)
        assert bg.groups[0].size == g

    def test_non_integral_size_warns(self, capsys):
        bg = build_state_background(["4\t0\t7"], "q.txt", 5)
        assert bg.groups[0].size == 2
        assert "WARNING" in capsys.readouterr().err

    def test_no_epigenomes(self):
        with pytest.raises(FormatError):
            build_state_background(["1\t1\t1"], "q.txt", 5)

    def test_second_group(self):
        bg = build_state_background(["4\t0\t6"], "q1.txt", 5)
        bg = build_state_background(["3\t3\t9"], "q2.txt", 5, bg)
        assert bg.two_groups
        assert [g.size for g in bg.groups] == [2, 3]
        assert bg.log_cache.max_count == 3
        assert bg.values_per_line == 6

    def test_state_count_mismatch(self):
        bg = build_state_background(["4\t0\t6"], "q1.txt", 5)
        with pytest.raises(FormatError, match="q2.txt"):
            build_state_background(["5\t5"], "q2.txt", 5, bg)

    def test_trailing_blank_lines_ignored(self):
        bg = build_state_background(["4\t0\t6", "", ""], "q.txt", 5)
        assert bg.num_states == 3

    @pytest.mark.parametrize("lines", [[], [""], ["4\t0\t6", "1\t1\t1"], ["4\t-1\t6"], ["4\tx\t6"]])
    def test_malformed(self, lines):
        with pytest.raises(FormatError):
            build_state_background(lines, "bad.txt", 5)


class TestStatePairBackground:
    """S2: one line of unordered-state-pair tallies."""

    def test_three_epigenomes(self):
        bg = build_state_pair_background(["5\t10\t15"], "q.txt", 10)
        assert bg.num_states == 2
        assert bg.num_ids == 3
        assert bg.groups[0].size == 3
        assert bg.max_count(0) == 3
        assert bg.log_cache.max_count == 3
        assert [tuple(r) for r in bg.pair_states] == [(1, 1), (1, 2), (2, 2)]
        assert bg.groups[0].contrib[0] == pytest.approx(math.log(2))

    def test_non_triangular_token_count(self):
        with pytest.raises(FormatError):
            build_state_pair_background(["1\t2\t3\t4"], "q.txt", 10)

    def test_fewer_than_two_epigenomes(self):
        with pytest.raises(FormatError):
            build_state_pair_background(["0\t0\t0"], "q.txt", 10)

    def test_state_count_mismatch(self):
        bg = build_state_pair_background(["5\t10\t15"], "q1.txt", 10)
        with pytest.raises(FormatError):
            build_state_pair_background(["5\t5\t5\t5\t5\t5"], "q2.txt", 10, bg)


class TestEpigenomePairBackground:
    """S3: one row per epigenome pair, numStates^2 columns."""

    MATRIX = ["5\t2\t2\t1", "5\t2\t2\t1", "10\t0\t0\t0"]

    def test_transposed_cells(self):
        bg = build_epigenome_pair_background(self.MATRIX, "q.txt", 10)
        assert bg.num_states == 2
        assert bg.groups[0].size == 3
        assert bg.values_per_line == 3
        cells = bg.groups[0].contrib
        assert cells.shape == (4, 3)
        assert cells[1, 0] == pytest.approx(math.log(5) / (LN2 * 3))
        assert cells[0, 2] == pytest.approx(0.0)
        assert cells[1, 2] == 999999.0

    def test_non_square_columns(self):
        with pytest.raises(FormatError):
            build_epigenome_pair_background(["1\t2\t3"] * 3, "q.txt", 10)

    def test_rows_not_epigenome_pair_count(self):
        with pytest.raises(FormatError):
            build_epigenome_pair_background(self.MATRIX[:2], "q.txt", 10)

    def test_ragged_rows(self):
        with pytest.raises(FormatError, match="same number of columns"):
            build_epigenome_pair_background(["1\t2\t3\t4", "1\t2\t3\t4", "1\t2"], "q.txt", 10)

    def test_blank_line_inside_matrix(self):
        with pytest.raises(FormatError):
            build_epigenome_pair_background(["1\t2\t3\t4", "", "1\t2\t3\t4"], "q.txt", 10)

    def test_two_groups(self):
        bg = build_epigenome_pair_background(self.MATRIX, "q1.txt", 10)
        bg = build_epigenome_pair_background(["1\t1\t1\t1"], "q2.txt", 10, bg)
        assert [g.size for g in bg.groups] == [3, 2]
        assert bg.values_per_line == 4
        np.testing.assert_allclose(bg.groups[1].contrib[:, 0], math.log(10) / LN2)
