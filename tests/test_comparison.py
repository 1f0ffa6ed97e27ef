import json

import pytest

from tca_trace.comparison import (
    FeatureStatus,
    compare,
    compare_features,
    percent_change,
    performance_summary,
)
from tca_trace.models import AnalysisMetadata, DomainAction, TraceAnalysis
from tca_trace.report import format_comparison_json, format_comparison_markdown


def build(name, *actions):
    return TraceAnalysis.build(AnalysisMetadata(name=name, trace_path=f"/tmp/{name}.trace"),
                               [DomainAction(f, a, t, d) for f, a, t, d in actions])


@pytest.fixture
def baseline():
    return build(
        "before",
        ("Library", "load", 1.0, 0.010),
        ("Library", "load", 2.0, 0.030),
        ("Library", "select", 3.0, 0.010),
        ("Search", "query", 4.0, 0.050),
        ("Settings", "toggle", 5.0, 0.004),
    )


@pytest.fixture
def current():
    return build(
        "after",
        ("Library", "load", 1.0, 0.030),
        ("Library", "select", 2.0, 0.0105),
        ("Search", "query", 3.0, 0.020),
        ("Profile", "open", 4.0, 0.002),
    )


def test_percent_change():
    assert percent_change(0.02, 0.03) == pytest.approx(50.0)
    assert percent_change(0.0, 0.01) is None


class TestCompare:

    def test_regressions_and_improvements(self, baseline, current):
        result = compare(baseline, current)

        assert [c.action_name for c in result.regressions] == ["Library.load"]
        regression = result.regressions[0]
        assert regression.baseline_duration == pytest.approx(0.020)
        assert regression.current_duration == pytest.approx(0.030)
        assert regression.percent_change == pytest.approx(50.0)

        assert [c.action_name for c in result.improvements] == ["Search.query"]
        assert result.improvements[0].percent_change == pytest.approx(60.0)
        assert result.has_regressions

    def test_changes_within_threshold_and_new_actions_are_ignored(self, baseline, current):
        result = compare(baseline, current)
        names = {c.action_name for c in result.regressions + result.improvements}
        assert "Library.select" not in names
        assert "Profile.open" not in names
        assert "Settings.toggle" not in names

    def test_threshold(self, baseline, current):
        result = compare(baseline, current, threshold=55.0)
        assert result.regressions == []
        assert [c.action_name for c in result.improvements] == ["Search.query"]

    def test_sorted_by_largest_change(self):
        before = build("a", ("A", "x", 0.0, 0.01), ("A", "y", 1.0, 0.01))
        after = build("b", ("A", "x", 0.0, 0.015), ("A", "y", 1.0, 0.03))
        assert [c.action_name for c in compare(before, after).regressions] == ["A.y", "A.x"]

    def test_zero_baseline_is_skipped(self):
        before = build("a", ("A", "x", 0.0, 0.0))
        after = build("b", ("A", "x", 0.0, 0.05))
        result = compare(before, after)
        assert result.regressions == [] and result.improvements == []

    def test_complexity_change(self, baseline, current):
        result = compare(baseline, current)
        assert result.complexity_change == pytest.approx(current.complexity_score - baseline.complexity_score)
        assert result.baseline.name == "before"
        assert result.current.name == "after"


def test_performance_summary(baseline, current):
    summary = performance_summary(baseline, current)

    assert summary.total_actions_change == -1
    assert summary.slow_actions_change == 0
    assert summary.new_features == {"Profile"}
    assert summary.removed_features == {"Settings"}
    assert "-1 actions" in summary.formatted
    assert "1 new features" in summary.formatted


def test_performance_summary_without_changes(baseline):
    assert performance_summary(baseline, baseline).formatted == "No significant changes"


def test_compare_features(baseline, current):
    features = {f.feature_name: f for f in compare_features(baseline, current)}

    assert list(features) == ["Library", "Profile", "Search", "Settings"]
    assert features["Profile"].status is FeatureStatus.NEW
    assert features["Settings"].status is FeatureStatus.REMOVED
    assert features["Search"].status is FeatureStatus.IMPROVED
    assert features["Library"].action_count_change == -1
    assert features["Profile"].action_count_change == 1


@pytest.mark.parametrize("before, after, status", [
    (0.010, 0.0104, FeatureStatus.STABLE),
    (0.010, 0.011, FeatureStatus.CHANGED),
    (0.010, 0.013, FeatureStatus.REGRESSED),
    (0.010, 0.007, FeatureStatus.IMPROVED),
    (0.0, 0.0, FeatureStatus.STABLE),
    (0.0, 0.01, FeatureStatus.CHANGED),
])
def test_feature_status(before, after, status):
    (feature,) = compare_features(build("a", ("A", "x", 0.0, before)), build("b", ("A", "x", 0.0, after)))
    assert feature.status is status


def test_comparison_reports(baseline, current):
    result = compare(baseline, current)

    report = format_comparison_markdown(baseline, current, result)
    assert report.startswith("# TCA Trace Comparison: before → after")
    assert "## Regressions (1)" in report
    assert "| Library.load | 20.00 | 30.00 | +50.0% |" in report
    assert "## Improvements (1)" in report
    assert "| Profile | new |" in report

    data = json.loads(format_comparison_json(result))
    assert data["regressions"][0]["action_name"] == "Library.load"
    assert data["improvements"][0]["action_name"] == "Search.query"
