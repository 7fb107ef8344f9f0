from __future__ import annotations

import importlib.util
import json
from pathlib import Path

import pytest


def _load_script():
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "sprint_history.py"
    spec = importlib.util.spec_from_file_location("sprint_history_test_module", module_path)
    assert spec and spec.loader
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


SPRINT = {
    "goal": "Split the scheduler module",
    "tasks": [
        {"title": "extract queue", "status": "completed", "duration_seconds": 300, "cost_usd": 0.75},
        {"title": "update tests", "status": "failed", "duration_seconds": 120, "cost_usd": 0.25},
    ],
}


def test_add_list_and_report(tmp_path: Path, capsys) -> None:
    script = _load_script()
    path = str(tmp_path / "history.json")

    script.main(["--path", path, "add", json.dumps(SPRINT)])
    out = capsys.readouterr().out
    assert "recorded" in out
    assert "Tasks: 1 completed, 1 failed" in out
    assert "Cost: $1.0" in out

    script.main(["--path", path, "list"])
    out = capsys.readouterr().out
    assert "SPRINT HISTORY" in out
    assert "Split the scheduler module" in out
    assert "Showing 1 of 1 sprints" in out

    script.main(["--path", path, "report"])
    assert "## Tasks" in capsys.readouterr().out

    script.main(["--path", path, "stats", "--json"])
    stats = json.loads(capsys.readouterr().out)
    assert stats["cumulative"]["total_sprints"] == 1


def test_add_rejects_invalid_payload(tmp_path: Path, capsys) -> None:
    script = _load_script()

    with pytest.raises(SystemExit):
        script.main(["--path", str(tmp_path / "history.json"), "add", "{not json"])

    assert "Cannot record sprint" in capsys.readouterr().out


def test_empty_history(tmp_path: Path, capsys) -> None:
    script = _load_script()
    path = str(tmp_path / "history.json")

    script.main(["--path", path, "list"])
    assert "No sprints recorded yet." in capsys.readouterr().out

    with pytest.raises(SystemExit):
        script.main(["--path", path, "report", "sprint-2025-01-01-001"])
