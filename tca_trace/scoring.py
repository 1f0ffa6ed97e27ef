"""複雑度スコアと改善提案"""

import math

MAX_RECOMMENDATIONS = 8


def complexity_score(metrics, shared_state_changes: int, render_triggers: int) -> float:
    """0-100 の複雑度スコア"""
    slow_pct = metrics.slow_actions / max(metrics.total_actions, 1)
    avg_duration_penalty = min(metrics.avg_duration / 0.016, 1.0)
    shared_state_penalty = min(shared_state_changes / 10.0, 1.0)
    render_penalty = min(render_triggers / 5.0, 1.0)
    return min(100.0,
               slow_pct * 40.0
               + avg_duration_penalty * 30.0
               + shared_state_penalty * 15.0
               + render_penalty * 15.0)


def complexity_rating(score: float) -> str:
    if score < 25:
        return "Excellent"
    if score < 50:
        return "Good"
    if score < 75:
        return "Fair"
    return "Poor"


def feature_complexity(feature_metrics) -> float:
    slow_ratio = feature_metrics.slow_actions / max(feature_metrics.action_count, 1)
    avg_duration_penalty = min(feature_metrics.avg_duration / 0.016, 1.0)
    return min(100.0, slow_ratio * 60.0 + avg_duration_penalty * 40.0)


def _action_advice(action_name: str) -> str:
    if "Effect" in action_name or "effect" in action_name:
        return "Consider using @Dependency for heavy effects or break into smaller publishers"
    if "reader" in action_name or "load" in action_name:
        return "Consider pagination, caching, or using async/await with cancellation"
    if "selection" in action_name or "change" in action_name:
        return "Consider debouncing frequent state changes"
    if "inspector" in action_name or "detail" in action_name:
        return "Consider lazy loading details or using derived state"
    return "Consider breaking action into smaller, focused reducers"


def _effect_advice(effect_name: str) -> str:
    if "load" in effect_name or "fetch" in effect_name:
        return "Consider implementing caching or background refresh with @Dependency"
    if "process" in effect_name or "compute" in effect_name:
        return "Consider moving work to a background queue"
    if "save" in effect_name or "write" in effect_name:
        return "Consider batching writes or using an async persistence layer"
    return "Monitor for potential cancellation issues and add .cancellable()"


def count_overlapping_effects(effects) -> int:
    """開始時刻順に並べて重なっている Effect の組の数"""
    ordered = sorted(effects, key=lambda e: e.start_time)
    count = 0
    for i, first in enumerate(ordered):
        for second in ordered[i + 1:]:
            if first.end_time > second.start_time:
                count += 1
            else:
                break
    return count


def generate_recommendations(analysis) -> list[str]:
    """解析結果から改善提案を作る（最大8件）"""
    recs: list[str] = []
    actions = analysis.actions
    metrics = analysis.metrics

    # 複雑度
    if analysis.complexity_score > 70:
        recs.append(f"High complexity score ({analysis.complexity_score:.0f}/100). "
                    "Consider decomposing features or simplifying action chains.")
    if analysis.complexity_score > 50 and len(actions) > 50:
        recs.append(f"Many actions detected ({len(actions)}). "
                    "Consider breaking down complex interactions into smaller, focused features.")
    if len(metrics.features) > 10:
        recs.append(f"High feature coupling detected ({len(metrics.features)} features). "
                    "Consider isolating features to reduce shared dependencies.")

    # 遅いアクション
    slow = sorted((a for a in actions if a.is_slow), key=lambda a: a.duration, reverse=True)
    if slow:
        recs.append(f"{len(slow)} slow actions detected (>16ms). Consider optimizing:")
        for action in slow[:3]:
            recs.append(f"   - {action.full_name}: {action.duration_ms:.1f}ms - {_action_advice(action.action_name)}")

    durations = [a.duration for a in actions]
    if durations:
        avg = sum(durations) / len(durations)
        std_dev = math.sqrt(sum((d - avg) ** 2 for d in durations) / len(durations))
        if std_dev > avg * 0.5:
            recs.append("High variance in action execution times. "
                        "Consider standardizing action patterns and adding timeouts.")

    # 共有ステート
    changes = analysis.shared_state_changes
    if len(changes) > 15:
        recs.append(f"Excessive shared state changes ({len(changes)}). "
                    "Consider consolidating related state updates or using derived state.")
    per_feature: dict[str, int] = {}
    for change in changes:
        per_feature[change.feature_name] = per_feature.get(change.feature_name, 0) + 1
    churn = [(f, n) for f, n in per_feature.items() if n > 5]
    for feature, count in churn[:2]:
        recs.append(f"High state churn in {feature} ({count} changes). Consider batching updates or using local state.")

    # Effect
    long_effects = [e for e in analysis.effects if e.is_long_running]
    if long_effects:
        recs.append(f"{len(long_effects)} long-running effects (>500ms) detected:")
        for effect in long_effects[:2]:
            recs.append(f"   - {effect.name}: {effect.duration_ms:.0f}ms - {_effect_advice(effect.name)}")
    overlapping = count_overlapping_effects(analysis.effects)
    if overlapping:
        recs.append(f"{overlapping} overlapping effects detected. "
                    "Consider using effect cancellation to prevent race conditions.")

    # Feature 別
    ranked = sorted(((name, feature_complexity(m)) for name, m in metrics.features.items()),
                    key=lambda x: x[1], reverse=True)
    if ranked and ranked[0][1] > 60:
        recs.append(f"Most complex feature: {ranked[0][0]} (complexity: {ranked[0][1]:.0f}/100). "
                    "Focus optimization efforts here.")
    if len(changes) > len(actions) * 0.3:
        recs.append("Consider implementing the State Reducers pattern to centralize state mutations.")
    if len(analysis.effects) > len(actions) * 0.5:
        recs.append("Consider implementing Effect Cancellation to manage concurrent effects.")

    return recs[:MAX_RECOMMENDATIONS]
