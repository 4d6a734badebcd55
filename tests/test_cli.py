import json
from pathlib import Path

import pytest

from cratebuild.__main__ import main


def _write_graph(path: Path) -> Path:
    payload = {
        "crates": [
            {
                "crate_name": "app",
                "version": "0.1.0",
                "dependencies": [{"name": "log", "version": "0.4.20"}],
            },
            {"crate_name": "log", "version": "0.4.20"},
        ]
    }
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_order_prints_build_order(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    graph = _write_graph(tmp_path / "graph.json")

    assert main(["order", str(graph)]) == 0

    assert capsys.readouterr().out.splitlines() == ["log-0.4.20", "app-0.1.0"]


def test_errors_are_reported_as_json(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = main(["build", str(tmp_path / "missing.json"), "--store", str(tmp_path / "s")])

    assert exit_code == 1
    payload = json.loads(capsys.readouterr().err)
    assert payload["code"] == "E_CONFIGURATION"
    assert payload["context"]["path"].endswith("missing.json")
