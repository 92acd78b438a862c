"""
End-to-end tests for compute_epilogos_part2.main().
"""

import math
from pathlib import Path

import pytest
from compute_epilogos_part2 import main


def tsv(*values):
    return "\t".join(str(v) for v in values)


def read_lines(path):
    return Path(path).read_text().splitlines()


@pytest.fixture
def s1_files(write_file, tmp_path):
    return {
        "q1": write_file("q1.txt", ["4\t0\t6"]),
        "q2": write_file("q2.txt", ["2\t4\t4"]),
        "infile": write_file("chr1_P.txt", [tsv(0, 200, 1, 0, 1), tsv(200, 400, 2, 0, 0)]),
        "obs": str(tmp_path / "chr1_observed.txt"),
        "scores": str(tmp_path / "chr1_scores.txt"),
        "nulls": str(tmp_path / "chr1_nulls.txt"),
    }


def full_args(f, *extra):
    return ["--infile", f["infile"], "--metric", "1", "--nsites", "5", "--q1", f["q1"],
            "--out-obs", f["obs"], "--out-scores", f["scores"], "--chrom", "chr1", "--quiet", *extra]


class TestFullMode:

    def test_single_group_records(self, s1_files):
        assert main(full_args(s1_files)) == 0
        t1 = math.log(5 / 4) / (2 * math.log(2))
        t3 = math.log(5 / 6) / (2 * math.log(2))
        obs = read_lines(s1_files["obs"])
        assert obs[0] == tsv("chr1", 0, 200, 1, f"{t1:g}", 1, f"{t1 + t3:g}")
        scores = read_lines(s1_files["scores"])
        assert scores[0] == tsv("chr1", 0, 200, f"{t1:.4g}", 0, f"{t3:.4g}")
        assert len(obs) == len(scores) == 2

    def test_gz_inputs(self, s1_files, write_file):
        s1_files["infile"] = write_file("chr1_P.txt.gz", [tsv(0, 200, 1, 0, 1)])
        s1_files["q1"] = write_file("q1.txt.gz", ["4\t0\t6"])
        assert main(full_args(s1_files)) == 0
        assert len(read_lines(s1_files["obs"])) == 1

    def test_nsites_file(self, s1_files, write_file):
        args = full_args(s1_files)
        i = args.index("--nsites")
        args[i:i + 2] = ["--nsites-file", write_file("totalNumSites.txt", ["5"])]
        assert main(args) == 0
        assert read_lines(s1_files["obs"])[0].startswith("chr1\t0\t200\t1\t")

    def test_metric_two(self, write_file, tmp_path):
        infile = write_file("in.txt", [tsv(0, 200, 3, 0, 0)])
        q1 = write_file("q.txt", ["10\t10\t10"])
        obs, scores = str(tmp_path / "o.txt"), str(tmp_path / "s.txt")
        rc = main(["--infile", infile, "--metric", "2", "--nsites", "10", "--q1", q1,
                   "--out-obs", obs, "--out-scores", scores, "--chrom", "chr2", "--quiet"])
        assert rc == 0
        assert read_lines(obs) == ["chr2\t0\t200\t1\t1.58496\t1\t(1,1)\t1.58496\t1\t1.58496"]


class TestNullMode:

    def test_null_matches_full_total(self, s1_files, write_file):
        full_in = write_file("full.txt", [tsv(0, 200, 2, 0, 0, 0, 1, 1)])
        null_in = write_file("perm.txt", [tsv(2, 0, 0, 0, 1, 1)])
        s1_files["infile"] = full_in
        assert main(full_args(s1_files, "--q2", s1_files["q2"])) == 0

        rc = main(["--infile", null_in, "--metric", "1", "--nsites", "5",
                   "--q1", s1_files["q1"], "--q2", s1_files["q2"],
                   "--out-nulls", s1_files["nulls"], "--quiet"])
        assert rc == 0
        total = read_lines(s1_files["obs"])[0].split("\t")[-1]
        assert read_lines(s1_files["nulls"]) == [total]

    def test_null_requires_second_group(self, s1_files):
        with pytest.raises(SystemExit) as exc:
            main(["--infile", s1_files["infile"], "--metric", "1", "--nsites", "5",
                  "--q1", s1_files["q1"], "--out-nulls", s1_files["nulls"]])
        assert exc.value.code == 2


class TestArguments:

    def test_mixed_modes(self, s1_files):
        with pytest.raises(SystemExit) as exc:
            main(full_args(s1_files, "--q2", s1_files["q2"], "--out-nulls", s1_files["nulls"]))
        assert exc.value.code == 2

    def test_missing_full_outputs(self, s1_files):
        with pytest.raises(SystemExit) as exc:
            main(["--infile", s1_files["infile"], "--metric", "1", "--nsites", "5",
                  "--q1", s1_files["q1"], "--out-obs", s1_files["obs"]])
        assert exc.value.code == 2

    @pytest.mark.parametrize("metric", ["0", "4", "x"])
    def test_bad_metric(self, s1_files, metric):
        args = full_args(s1_files)
        args[args.index("--metric") + 1] = metric
        with pytest.raises(SystemExit) as exc:
            main(args)
        assert exc.value.code == 2

    def test_non_positive_nsites(self, s1_files):
        args = full_args(s1_files)
        args[args.index("--nsites") + 1] = "0"
        with pytest.raises(SystemExit):
            main(args)


class TestExitCodes:

    def test_missing_background(self, s1_files, tmp_path):
        s1_files["q1"] = str(tmp_path / "missing.txt")
        assert main(full_args(s1_files)) == 3

    def test_bad_background(self, s1_files, write_file):
        s1_files["q1"] = write_file("bad.txt", ["4\t0\t6", "1\t1\t1"])
        assert main(full_args(s1_files)) == 4

    def test_excess_columns_keep_earlier_lines(self, s1_files, write_file, capsys):
        s1_files["infile"] = write_file("in.txt", [tsv(0, 200, 1, 0, 1), tsv(200, 400, 1, 0, 1, 1)])
        assert main(full_args(s1_files)) == 5
        assert len(read_lines(s1_files["obs"])) == 1
        assert len(read_lines(s1_files["scores"])) == 1
        err = capsys.readouterr().err
        assert "ERROR" in err
        assert "line 2" in err

    def test_bad_value(self, s1_files, write_file):
        s1_files["infile"] = write_file("in.txt", [tsv(0, 200, 9, 0, 1)])
        assert main(full_args(s1_files)) == 5
