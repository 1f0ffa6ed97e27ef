"""解析結果の Markdown / JSON 出力"""

import json
from dataclasses import asdict

from .comparison import ComparisonResult, compare_features, performance_summary
from .enrichment import enrichment_stats
from .extractor import clean_message
from .models import TraceAnalysis
from .scoring import complexity_rating, feature_complexity


def format_json(analysis: TraceAnalysis) -> str:
    return json.dumps(analysis.to_dict(), indent=2, sort_keys=True)


def format_markdown(analysis: TraceAnalysis) -> str:
    """レポートを生成"""
    lines = []
    metrics = analysis.metrics
    lines.append(f"# TCA Trace Report: {analysis.metadata.name}")
    lines.append("")
    lines.append(f"**Trace:** {analysis.metadata.trace_path}")
    lines.append(f"**Complexity:** {analysis.complexity_score:.1f}/100 ({complexity_rating(analysis.complexity_score)})")
    lines.append(f"**Actions:** {metrics.total_actions} ({metrics.slow_actions} slow, >16ms)")
    lines.append(f"**Average Duration:** {metrics.avg_duration * 1000:.2f} ms (max: {metrics.max_duration * 1000:.2f} ms)")
    lines.append("")

    # Feature 別
    if metrics.features:
        lines.append("## Features")
        lines.append("")
        lines.append("| Feature | Actions | Slow | Avg (ms) | Total (ms) | Complexity |")
        lines.append("|---------|---------|------|----------|------------|------------|")
        for name, fm in sorted(metrics.features.items(), key=lambda x: x[1].total_duration, reverse=True):
            lines.append(f"| {name} | {fm.action_count} | {fm.slow_actions} | {fm.avg_duration_ms:.2f} | "
                         f"{fm.total_duration_ms:.2f} | {feature_complexity(fm):.0f} |")
        lines.append("")

    slow = sorted((a for a in analysis.actions if a.is_slow), key=lambda a: a.duration, reverse=True)
    if slow:
        lines.append("## Slow Actions (>16ms)")
        lines.append("")
        lines.append("| Action | Duration (ms) | Context | Enrichment |")
        lines.append("|--------|---------------|---------|------------|")
        for action in slow[:20]:
            context = clean_message(action.metadata or "")
            context = context[:40] + "..." if len(context) > 40 else context
            lines.append(f"| {action.full_name} | {action.duration_ms:.2f} | {context} | {action.enrichment_summary} |")
        lines.append("")

    long_effects = [e for e in analysis.effects if e.is_long_running]
    if long_effects:
        lines.append("## Long-Running Effects (>500ms)")
        lines.append("")
        lines.append("| Effect | Feature | Duration (ms) | Enrichment |")
        lines.append("|--------|---------|---------------|------------|")
        for effect in sorted(long_effects, key=lambda e: e.duration, reverse=True)[:15]:
            lines.append(f"| {effect.name} | {effect.feature_name} | {effect.duration_ms:.0f} | {effect.enrichment_summary} |")
        lines.append("")

    stats = enrichment_stats(analysis.actions, analysis.effects)
    if stats.enriched_actions or stats.enriched_effects:
        lines.append("## Instrument Enrichment")
        lines.append("")
        lines.append("```")
        lines.append(stats.summary)
        lines.append("```")
        lines.append("")

    if analysis.shared_state_changes:
        lines.append(f"## Shared State Changes ({len(analysis.shared_state_changes)})")
        lines.append("")
        lines.append("| Time (s) | Feature | Property | Old | New |")
        lines.append("|----------|---------|----------|-----|-----|")
        for change in analysis.shared_state_changes[:20]:
            lines.append(f"| {change.timestamp:.3f} | {change.feature_name} | {change.property} | "
                         f"{change.old_value or ''} | {change.new_value or ''} |")
        lines.append("")

    if analysis.recommendations:
        lines.append("## Recommendations")
        lines.append("")
        for rec in analysis.recommendations:
            lines.append(rec if rec.startswith(" ") else f"- {rec}")
        lines.append("")

    return "\n".join(lines)


def format_comparison_markdown(baseline: TraceAnalysis, current: TraceAnalysis,
                               result: ComparisonResult) -> str:
    """比較レポートを生成"""
    lines = []
    summary = performance_summary(baseline, current)
    lines.append(f"# TCA Trace Comparison: {result.baseline.name} → {result.current.name}")
    lines.append("")
    lines.append(f"**Summary:** {summary.formatted}")
    lines.append(f"**Complexity:** {baseline.complexity_score:.1f} → {current.complexity_score:.1f} "
                 f"({result.complexity_change:+.1f})")
    lines.append("")

    for title, changes in (("Regressions", result.regressions), ("Improvements", result.improvements)):
        if not changes:
            continue
        lines.append(f"## {title} ({len(changes)})")
        lines.append("")
        lines.append("| Action | Baseline (ms) | Current (ms) | Change |")
        lines.append("|--------|---------------|--------------|--------|")
        sign = "+" if title == "Regressions" else "-"
        for change in changes[:20]:
            lines.append(f"| {change.action_name} | {change.baseline_ms:.2f} | {change.current_ms:.2f} | "
                         f"{sign}{change.percent_change:.1f}% |")
        lines.append("")

    if not result.regressions and not result.improvements:
        lines.append("No action changed beyond the threshold.")
        lines.append("")

    features = compare_features(baseline, current)
    if features:
        lines.append("## Features")
        lines.append("")
        lines.append("| Feature | Status | Actions Δ | Avg Δ (ms) |")
        lines.append("|---------|--------|-----------|------------|")
        for feature in features:
            lines.append(f"| {feature.feature_name} | {feature.status.value} | {feature.action_count_change:+d} | "
                         f"{feature.avg_duration_change * 1000:+.2f} |")
        lines.append("")

    return "\n".join(lines)


def format_comparison_json(result: ComparisonResult) -> str:
    data = {
        "baseline": result.baseline.to_dict(),
        "current": result.current.to_dict(),
        "regressions": [asdict(c) for c in result.regressions],
        "improvements": [asdict(c) for c in result.improvements],
        "complexity_change": result.complexity_change,
    }
    return json.dumps(data, indent=2, sort_keys=True)
