"""
Smoke tests for ``python -m careerpath.cli``.
"""

import json
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from careerpath.cli import main
from careerpath.config import load_config

SAMPLE_PATH = os.path.join(os.path.dirname(__file__), "sample_career.json")


def _run(argv):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestCli:
    """build → routes → optimal → compare on a temp directory."""

    def test_build_then_query(self, tmp_path, capsys):
        graph_path = str(tmp_path / "graph.json")
        assert _run(["build", "--input", SAMPLE_PATH, "--out", graph_path]) == 0
        built = json.loads(capsys.readouterr().out)
        assert built["metrics"]["precomputed_routes"] == 5
        assert os.path.exists(graph_path)

        assert _run(["routes", "--graph", graph_path, "--max-routes", "2"]) == 0
        assert len(json.loads(capsys.readouterr().out)) == 2

        assert _run(["optimal", "--graph", graph_path, "--optimize-for", "cost"]) == 0
        optimal = json.loads(capsys.readouterr().out)
        assert optimal["nodes"][1] == "entrance_exam"

        assert _run(["compare", "--graph", graph_path]) == 0
        assert len(json.loads(capsys.readouterr().out)["rows"]) == 5

    def test_current_stage_flag(self, tmp_path, capsys):
        assert _run(["build", "--input", SAMPLE_PATH, "--current-stage", "bootcamp"]) == 0
        built = json.loads(capsys.readouterr().out)
        assert built["summary"]["behind_start"] == ["bootcamp"]

    def test_invalid_graph_exits_nonzero(self, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({
            "career_id": "loop",
            "milestones": [
                {"id": "root", "estimated_duration": 1},
                {"id": "a", "estimated_duration": 1, "prerequisites": ["root", "b"]},
                {"id": "b", "estimated_duration": 1, "prerequisites": ["a"]},
            ],
        }))
        assert _run(["build", "--input", str(bad)]) == 1

    def test_save_config(self, tmp_path):
        path = str(tmp_path / "cfg" / "engine.json")
        main(["--save-config", path])
        assert load_config(path).delay_ratio == 1.5
