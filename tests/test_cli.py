from __future__ import annotations

import sys
from pathlib import Path

import yaml

from flowcascade.cli import main


def _definition(tmp_path: Path, units) -> Path:
    path = tmp_path / "cascade.yaml"
    path.write_text(yaml.safe_dump({"name": "cli-test", "units": units}), encoding="utf8")
    return path


def _python(code: str):
    return [sys.executable, "-c", code]


def _copy_units():
    return [
        {
            "name": "produce",
            "command": _python("open('raw.txt', 'w').write('data')"),
            "sinks": ["raw.txt"],
        },
        {
            "name": "copy",
            "command": _python("open('copy.txt', 'w').write(open('raw.txt').read())"),
            "sources": ["raw.txt"],
            "sinks": ["copy.txt"],
        },
    ]


def test_run_executes_and_then_skips_up_to_date_units(tmp_path, capsys):
    definition = _definition(tmp_path, _copy_units())
    log_dir = tmp_path / "logs"

    assert main(["run", str(definition), "--log-dir", str(log_dir), "--dot", str(tmp_path / "graph.dot")]) == 0

    assert (tmp_path / "copy.txt").read_text(encoding="utf8") == "data"
    assert (tmp_path / "graph.dot").read_text(encoding="utf8").startswith("digraph G {")
    assert list(log_dir.glob("*.jsonl"))
    out = capsys.readouterr().out
    assert "Cascade 'cli-test': successful" in out
    assert "produce" in out and "copy" in out

    assert main(["run", str(definition)]) == 0
    out = capsys.readouterr().out
    assert "skipped" in out


def test_run_reports_failure(tmp_path, capsys):
    definition = _definition(
        tmp_path,
        [{"name": "broken", "command": _python("import sys; sys.exit(4)"), "sinks": ["never.txt"]}],
    )

    assert main(["run", str(definition), "--max-concurrent", "1"]) == 1

    captured = capsys.readouterr()
    assert "failed" in captured.out
    assert "unit failed: broken" in captured.err


def test_dot_prints_identifier_graph(tmp_path, capsys):
    definition = _definition(tmp_path, _copy_units())

    assert main(["dot", str(definition)]) == 0

    out = capsys.readouterr().out
    assert out.startswith("digraph G {")
    assert '[label="copy"];' in out

    target = tmp_path / "out" / "graph.dot"
    assert main(["dot", str(definition), "--out", str(target)]) == 0
    assert target.exists()


def test_invalid_definition_exits_with_error(tmp_path, capsys):
    definition = _definition(tmp_path, [{"name": "a"}])

    assert main(["run", str(definition)]) == 2
    assert "error:" in capsys.readouterr().err
    assert main(["dot", str(tmp_path / "missing.yaml")]) == 2
