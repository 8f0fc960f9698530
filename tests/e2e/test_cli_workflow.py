"""
End-to-end tests for the command-line workflow.

Tests the complete workflow from input file to exported cluster order:
- Dataset loading (.npy and .csv)
- Settings resolution (YAML, environment, flags)
- Ordering and JSONL export
- Error reporting and exit codes
"""

import json
import math

import numpy as np
import pytest

from reachability.cli import main


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Run the CLI from an empty directory so no settings file is picked up."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("OPTICS_CONFIG_PATH", raising=False)
    return tmp_path


@pytest.fixture
def line_npy(workspace):
    path = workspace / "line.npy"
    np.save(path, np.array([[0.0], [1.0], [10.0]]))
    return path


def read_jsonl(path):
    return [json.loads(line) for line in open(path, encoding="utf-8")]


@pytest.mark.e2e
class TestCLIWorkflow:
    """End-to-end tests for the reachability CLI."""

    def test_order_npy_with_json_summary(self, workspace, line_npy, capsys):
        out_dir = workspace / "orders"

        exit_code = main([
            "order", "--input", str(line_npy),
            "--epsilon", "2", "--min-pts", "2",
            "--output-dir", str(out_dir), "--json",
        ])

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["total_objects"] == 3
        assert summary["runs"] == 2
        assert summary["max_finite_reachability"] == 1.0
        assert summary["settings"]["min_pts"] == 2
        assert summary["settings"]["distance_function"] == "euclidean"

        rows = read_jsonl(summary["output_path"])
        assert [(r["object_id"], r["predecessor_id"], r["reachability"]) for r in rows] == [
            (0, None, math.inf),
            (1, 0, 1.0),
            (2, None, math.inf),
        ]

    def test_order_csv_with_id_column(self, workspace, capsys):
        csv_path = workspace / "points.csv"
        csv_path.write_text("A,0.0,0.0\nB,1.0,0.0\nC,10.0,0.0\n")
        out_dir = workspace / "orders"

        exit_code = main([
            "order", "--input", str(csv_path), "--id-column",
            "--epsilon", "2", "--min-pts", "2", "--metric", "manhattan",
            "--output-dir", str(out_dir),
        ])

        assert exit_code == 0
        stdout = capsys.readouterr().out
        assert "Ordered 3 objects into 2 runs" in stdout
        exported = list(out_dir.glob("cluster_order_*.jsonl"))
        assert len(exported) == 1
        rows = read_jsonl(exported[0])
        assert [r["object_id"] for r in rows] == ["A", "B", "C"]
        assert rows[1]["predecessor_id"] == "A"

    def test_config_file_with_env_substitution(self, workspace, line_npy, monkeypatch, capsys):
        monkeypatch.setenv("E2E_MIN_PTS", "3")
        config = workspace / "settings.yaml"
        config.write_text(
            "optics:\n"
            "  epsilon: 2.0\n"
            "  min_pts: ${E2E_MIN_PTS:2}\n"
            "storage:\n"
            "  jsonl:\n"
            f"    output_dir: {workspace / 'configured'}\n"
        )

        exit_code = main(["order", "--input", str(line_npy), "--config", str(config), "--json"])

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["min_pts"] == 3
        assert summary["runs"] == 3
        assert summary["max_finite_reachability"] is None
        assert summary["output_path"].startswith(str(workspace / "configured"))

    def test_flags_override_config_file(self, workspace, line_npy, capsys):
        config = workspace / "settings.yaml"
        config.write_text("optics:\n  epsilon: 0.5\n  min_pts: 4\nstorage:\n  jsonl:\n    enabled: false\n")

        exit_code = main([
            "order", "--input", str(line_npy), "--config", str(config),
            "--min-pts", "2", "--epsilon", "2", "--json",
        ])

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["min_pts"] == 2
        assert summary["runs"] == 2
        assert summary["output_path"] is None

    def test_describe(self, capsys):
        assert main(["describe"]) == 0
        stdout = capsys.readouterr().out
        assert stdout.startswith("OPTICS: Density-Based Hierarchical Clustering")
        assert "SIGMOD" in stdout

    def test_invalid_min_pts_reports_configuration_error(self, workspace, line_npy, capsys):
        exit_code = main([
            "order", "--input", str(line_npy), "--epsilon", "2", "--min-pts", "0",
            "--output-dir", str(workspace / "orders"),
        ])

        assert exit_code == 1
        assert "ConfigurationError" in capsys.readouterr().err
        assert not list((workspace / "orders").glob("*.jsonl"))

    def test_missing_input_file(self, workspace, capsys):
        exit_code = main(["order", "--input", str(workspace / "missing.npy"), "--epsilon", "1"])

        assert exit_code == 1
        assert "missing.npy" in capsys.readouterr().err

    def test_negative_epsilon_rejected_by_parser(self, workspace, line_npy):
        with pytest.raises(SystemExit):
            main(["order", "--input", str(line_npy), "--epsilon", "-1"])

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 2
        assert "usage" in capsys.readouterr().out
