import json
import logging

import pytest

from tca_trace import cli
from tca_trace.report import format_json, format_markdown
from tca_trace.trace_parser import parse


@pytest.fixture
def analysis(full_runner, settings, trace_path):
    return parse(trace_path, runner=full_runner, settings=settings)


@pytest.fixture
def cli_env(monkeypatch, tmp_path, full_runner):
    monkeypatch.setenv("TCA_TRACE_STORAGE_DIR", str(tmp_path / "store"))
    monkeypatch.delenv("TCA_TRACE_LOG_FILE", raising=False)
    monkeypatch.setattr(cli, "XCTraceRunner", lambda settings: full_runner)
    yield tmp_path / "store"
    logger = logging.getLogger("tca_trace")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)


class TestMarkdown:

    def test_sections(self, analysis):
        report = format_markdown(analysis)

        assert report.startswith("# TCA Trace Report: Session")
        assert "**Actions:** 2 (1 slow, >16ms)" in report
        assert "## Features" in report
        assert "| ReadingLibrary | 2 | 1 |" in report
        assert "## Slow Actions (>16ms)" in report
        assert "## Instrument Enrichment" in report
        assert "## Recommendations" in report
        assert "## Long-Running Effects" not in report
        assert "## Shared State Changes" not in report

    def test_slow_action_row_has_enrichment(self, analysis):
        report = format_markdown(analysis)
        row = next(line for line in report.splitlines() if line.startswith("| ReadingLibrary.selectArticle"))
        assert "CPU: Running(67%), Blocked(33%)" in row
        assert "Wait: mach_msg" in row
        assert "Alloc: +3.0 KB" in row

    def test_recommendation_details_are_indented(self, analysis):
        lines = format_markdown(analysis).splitlines()
        assert any(line.startswith("- 1 slow actions detected") for line in lines)
        assert any(line.startswith("   - ReadingLibrary.selectArticle") for line in lines)


def test_json_report(analysis):
    data = json.loads(format_json(analysis))
    assert data["metadata"]["name"] == "Session"
    assert len(data["actions"]) == 2
    assert data["actions"][0]["wait_state"] == "mach_msg"
    assert data["metrics"]["slow_actions"] == 1


class TestCLI:

    def test_markdown_to_stdout(self, cli_env, trace_path, capsys):
        assert cli.main(["analyze", str(trace_path)]) == 0
        assert "# TCA Trace Report: Session" in capsys.readouterr().out

    def test_json_with_filters(self, cli_env, trace_path, capsys):
        assert cli.main(["analyze", str(trace_path), "-f", "json", "--slow-only"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert [a["action_name"] for a in data["actions"]] == ["selectArticle"]

    def test_output_file(self, cli_env, trace_path, tmp_path, capsys):
        output = tmp_path / "report.md"
        assert cli.main(["analyze", str(trace_path), "--output", str(output)]) == 0
        assert output.read_text(encoding="utf-8").startswith("# TCA Trace Report")
        assert "Report saved to" in capsys.readouterr().err

    def test_save(self, cli_env, trace_path, capsys):
        args = ["analyze", str(trace_path), "-s", "--name", "baseline", "--tags", "ipad, release"]
        assert cli.main(args) == 0
        saved = list(cli_env.glob("baseline_*.json"))
        assert len(saved) == 1
        assert json.loads(saved[0].read_text(encoding="utf-8"))["metadata"]["tags"] == ["ipad", "release"]

    def test_errors_exit_with_one(self, cli_env, tmp_path, capsys):
        assert cli.main(["analyze", str(tmp_path / "Missing.trace")]) == 1
        assert capsys.readouterr().err.startswith("Error: File not found")

    def test_no_tca_data(self, cli_env, trace_path, capsys):
        assert cli.main(["analyze", str(trace_path), "--subsystem", "com.other.app"]) == 1
        assert "com.other.app" in capsys.readouterr().err

    def test_compare_saved_analysis_with_trace(self, cli_env, trace_path, capsys):
        assert cli.main(["analyze", str(trace_path), "-s", "--name", "baseline"]) == 0
        (saved,) = cli_env.glob("baseline_*.json")
        capsys.readouterr()

        assert cli.main(["compare", str(saved), str(trace_path)]) == 0
        report = capsys.readouterr().out
        assert report.startswith("# TCA Trace Comparison: baseline → Session")
        assert "No action changed beyond the threshold." in report

        assert cli.main(["compare", str(saved), str(trace_path), "-f", "json", "--threshold", "5"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["regressions"] == [] and data["improvements"] == []
        assert data["complexity_change"] == pytest.approx(0)

    def test_compare_missing_analysis(self, cli_env, trace_path, tmp_path, capsys):
        assert cli.main(["compare", str(tmp_path / "gone.json"), str(trace_path)]) == 1
        assert capsys.readouterr().err.startswith("Error:")
