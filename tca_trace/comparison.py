"""
2つの解析結果の比較（リグレッション / 改善の検出）

アクションは "Feature.action" 単位で平均時間を比べる。
ベースラインにしかない / 現在にしかないアクションは比較しない。
"""

from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .models import AnalysisMetadata, DomainAction, FeatureMetrics, TraceAnalysis

DEFAULT_THRESHOLD = 20.0
STABLE_THRESHOLD = 5.0


def percent_change(baseline: float, current: float) -> Optional[float]:
    """変化率（%）。ベースラインが 0 なら None"""
    if baseline == 0:
        return None
    return (current - baseline) / baseline * 100


def _average_by_action(actions: list[DomainAction]) -> dict[str, float]:
    grouped: dict[str, list[float]] = defaultdict(list)
    for action in actions:
        grouped[action.full_name].append(action.duration)
    return {name: sum(durations) / len(durations) for name, durations in grouped.items()}


@dataclass(frozen=True)
class ActionChange:
    """しきい値を超えて変化したアクション"""
    action_name: str  # "Feature.action"
    baseline_duration: float
    current_duration: float
    percent_change: float  # 改善は絶対値

    @property
    def baseline_ms(self) -> float:
        return self.baseline_duration * 1000

    @property
    def current_ms(self) -> float:
        return self.current_duration * 1000


@dataclass
class ComparisonResult:
    baseline: AnalysisMetadata
    current: AnalysisMetadata
    regressions: list[ActionChange] = field(default_factory=list)
    improvements: list[ActionChange] = field(default_factory=list)
    complexity_change: float = 0.0

    @property
    def has_regressions(self) -> bool:
        return bool(self.regressions)


def compare(baseline: TraceAnalysis, current: TraceAnalysis,
            threshold: float = DEFAULT_THRESHOLD) -> ComparisonResult:
    """平均時間が threshold % を超えて増えたらリグレッション、減ったら改善"""
    baseline_avgs = _average_by_action(baseline.actions)
    regressions: list[ActionChange] = []
    improvements: list[ActionChange] = []

    for name, current_avg in _average_by_action(current.actions).items():
        if name not in baseline_avgs:
            continue
        baseline_avg = baseline_avgs[name]
        change = percent_change(baseline_avg, current_avg)
        if change is None:
            continue
        if change > threshold:
            regressions.append(ActionChange(name, baseline_avg, current_avg, change))
        elif change < -threshold:
            improvements.append(ActionChange(name, baseline_avg, current_avg, abs(change)))

    return ComparisonResult(
        baseline=baseline.metadata,
        current=current.metadata,
        regressions=sorted(regressions, key=lambda c: c.percent_change, reverse=True),
        improvements=sorted(improvements, key=lambda c: c.percent_change, reverse=True),
        complexity_change=current.complexity_score - baseline.complexity_score,
    )


@dataclass(frozen=True)
class PerformanceSummary:
    total_actions_change: int
    slow_actions_change: int
    avg_duration_change: float
    max_duration_change: float
    new_features: frozenset[str]
    removed_features: frozenset[str]

    @property
    def formatted(self) -> str:
        parts = []
        if self.total_actions_change:
            sign = "+" if self.total_actions_change > 0 else "-"
            parts.append(f"{sign}{abs(self.total_actions_change)} actions")
        if self.slow_actions_change:
            sign = "+" if self.slow_actions_change > 0 else "-"
            parts.append(f"{sign}{abs(self.slow_actions_change)} slow actions")
        if self.avg_duration_change:
            sign = "+" if self.avg_duration_change > 0 else "-"
            parts.append(f"{sign}{abs(self.avg_duration_change) * 1000:.1f}ms avg duration")
        if self.new_features:
            parts.append(f"{len(self.new_features)} new features")
        if self.removed_features:
            parts.append(f"{len(self.removed_features)} removed features")
        return ", ".join(parts) if parts else "No significant changes"


def performance_summary(baseline: TraceAnalysis, current: TraceAnalysis) -> PerformanceSummary:
    before, after = baseline.metrics, current.metrics
    return PerformanceSummary(
        total_actions_change=after.total_actions - before.total_actions,
        slow_actions_change=after.slow_actions - before.slow_actions,
        avg_duration_change=after.avg_duration - before.avg_duration,
        max_duration_change=after.max_duration - before.max_duration,
        new_features=frozenset(after.features) - frozenset(before.features),
        removed_features=frozenset(before.features) - frozenset(after.features),
    )


class FeatureStatus(Enum):
    NEW = "new"
    REMOVED = "removed"
    IMPROVED = "improved"
    REGRESSED = "regressed"
    CHANGED = "changed"
    STABLE = "stable"


@dataclass(frozen=True)
class FeatureComparison:
    feature_name: str
    baseline: Optional[FeatureMetrics]
    current: Optional[FeatureMetrics]

    @property
    def action_count_change(self) -> int:
        return (self.current.action_count if self.current else 0) - \
            (self.baseline.action_count if self.baseline else 0)

    @property
    def avg_duration_change(self) -> float:
        return (self.current.avg_duration if self.current else 0.0) - \
            (self.baseline.avg_duration if self.baseline else 0.0)

    @property
    def status(self) -> FeatureStatus:
        if self.current is None:
            return FeatureStatus.REMOVED
        if self.baseline is None:
            return FeatureStatus.NEW

        change = percent_change(self.baseline.avg_duration, self.current.avg_duration)
        if change is None:
            # ベースラインが 0ms のときは増えたかどうかだけ見る
            return FeatureStatus.STABLE if self.current.avg_duration == 0 else FeatureStatus.CHANGED
        if abs(change) < STABLE_THRESHOLD:
            return FeatureStatus.STABLE
        if change > DEFAULT_THRESHOLD:
            return FeatureStatus.REGRESSED
        if change < -DEFAULT_THRESHOLD:
            return FeatureStatus.IMPROVED
        return FeatureStatus.CHANGED


def compare_features(baseline: TraceAnalysis, current: TraceAnalysis) -> list[FeatureComparison]:
    """Feature 名順に、両方の Feature 別メトリクスを並べる"""
    before, after = baseline.metrics.features, current.metrics.features
    return [
        FeatureComparison(name, before.get(name), after.get(name))
        for name in sorted(set(before) | set(after))
    ]
