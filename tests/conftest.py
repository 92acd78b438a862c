"""Shared fixtures: small background/input files written under tmp_path."""

import gzip

import pytest


@pytest.fixture
def write_file(tmp_path):
    """write_file(name, lines) -> path (str); a .gz name is gzip-compressed."""
    def _write(name, lines):
        path = tmp_path / name
        text = "".join(f"{ln}\n" for ln in lines)
        if name.endswith(".gz"):
            with gzip.open(path, "wt") as fh:
                fh.write(text)
        else:
            path.write_text(text)
        return str(path)
    return _write