"""Tests for the stdin/stdout sandbox entrypoint."""

import io
import json
import tempfile
from pathlib import Path

import pytest

import sandbox_main


def run_main(monkeypatch, capsys, payload) -> tuple[int, dict]:
    monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps(payload)))
    code = 0
    try:
        sandbox_main.main()
    except SystemExit as e:
        code = e.code
    return code, json.loads(capsys.readouterr().out)


class TestSandboxMain:
    """Test input validation and output of the sandbox entrypoint."""

    def test_non_object_options_rejected(self, monkeypatch, capsys):
        code, output = run_main(monkeypatch, capsys, {"path": ".", "options": [1]})

        assert code == 1
        assert output["error"].startswith("Invalid options")

    def test_invalid_option_value_rejected(self, monkeypatch, capsys):
        code, output = run_main(monkeypatch, capsys, {"path": ".", "options": {"max_depth": -1}})

        assert code == 1
        assert output["error"].startswith("Invalid options")

    def test_non_object_input_rejected(self, monkeypatch, capsys):
        code, output = run_main(monkeypatch, capsys, ["."])

        assert code == 1
        assert output == {"error": "Input must be a JSON object"}

    def test_requires_exactly_one_source(self, monkeypatch, capsys):
        code, output = run_main(monkeypatch, capsys, {})

        assert code == 1
        assert "examples" in output

    def test_scans_local_path(self, monkeypatch, capsys):
        with tempfile.TemporaryDirectory() as tmpdir:
            Path(tmpdir, "run.js").write_text('exec("ls");\n')
            code, output = run_main(
                monkeypatch,
                capsys,
                {"path": tmpdir, "options": {"memory_limit": 64 * 1024 * 1024 * 1024}},
            )

        assert code == 0
        assert output["scanCompleted"] is True
        assert output["overallStatus"] == "UNSAFE"
        assert output["threats"][0]["file"] == "run.js"
