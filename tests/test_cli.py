"""Tests for the command line interface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from gridsync.__main__ import main


def write(path: Path, text: str) -> Path:
    path.write_text(text)
    return path


class TestDiffCommand:
    def test_prints_edits(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """Should print the edit payload for two differing CSV files."""
        baseline = write(tmp_path / "before.csv", "Name,Age\nAlice,30\nBob,25\n")
        edited = write(tmp_path / "after.csv", "Name,Age\nAlice,99\nBob,25\n")

        assert main(["diff", str(baseline), str(edited)]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output == {"edits": [{"row": 1, "column": 1, "value": "99"}]}

    def test_no_changes(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        baseline = write(tmp_path / "before.csv", "a,b\n")
        edited = write(tmp_path / "after.csv", "a,b\n")

        assert main(["diff", str(baseline), str(edited)]) == 0

        assert "No changes detected." in capsys.readouterr().out

    def test_missing_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        baseline = write(tmp_path / "before.csv", "a,b\n")

        assert main(["diff", str(baseline), str(tmp_path / "nope.csv")]) == 1

        assert "File not found" in capsys.readouterr().err

    def test_unsupported_file(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        baseline = write(tmp_path / "before.pdf", "%PDF")
        edited = write(tmp_path / "after.pdf", "%PDF")

        assert main(["diff", str(baseline), str(edited)]) == 1

        assert "unsupported document type" in capsys.readouterr().err


class TestArgumentParsing:
    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            main([])

    def test_unknown_token_action(self) -> None:
        with pytest.raises(SystemExit):
            main(["token", "rotate"])
