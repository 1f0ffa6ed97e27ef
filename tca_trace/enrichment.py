"""
遅いアクション / 長い Effect に CPU・syscall・メモリ割り当て情報を付与する

どの補助データも空でよい（空なら付与値も空 / 0）
"""

from collections import Counter, defaultdict
from dataclasses import dataclass, replace
from typing import Optional, Protocol, Sequence

from .models import (
    AllocationEvent,
    CPUState,
    DomainAction,
    DomainEffect,
    SystemCall,
    TimeProfilerSample,
)

# これ以下の待ち時間合計なら CPU バウンド扱い
WAIT_TIME_FLOOR = 0.001
BLOCKING_CALLS = ("kevent", "futex", "read", "write", "mach_msg", "select", "poll")


def _in_window(timestamp: float, start: float, end: float) -> bool:
    return start <= timestamp <= end


def cpu_state_histogram(samples: Sequence[TimeProfilerSample], start: float, end: float,
                        top_n: int = 3) -> list[CPUState]:
    """時間窓内のスレッド状態を重み付きで集計し、上位 top_n を返す"""
    weights: dict[str, float] = defaultdict(float)
    for sample in samples:
        if _in_window(sample.timestamp, start, end):
            state = sample.thread_state.strip() or "unknown"
            weights[state] += sample.weight

    total = sum(weights.values())
    if total <= 0:
        return []

    ranked = sorted(weights.items(), key=lambda x: x[1], reverse=True)
    return [CPUState(label=state, percent=weight / total * 100.0) for state, weight in ranked[:top_n]]


def classify_wait_call(call_name: str) -> str:
    for blocking in BLOCKING_CALLS:
        if blocking in call_name:
            return blocking
    return call_name


def dominant_wait_state(syscalls: Sequence[SystemCall], start: float, end: float) -> str:
    """最も待ち時間の長い syscall 名（待ちがなければ "cpu"、syscall がなければ空）"""
    window = [s for s in syscalls if _in_window(s.timestamp, start, end)]
    if not window:
        return ""
    total_wait = sum(s.wait_time for s in window)
    if total_wait > WAIT_TIME_FLOOR:
        dominant = max(window, key=lambda s: s.wait_time)
        return classify_wait_call(dominant.call_name)
    return "cpu"


def allocation_delta(allocations: Sequence[AllocationEvent], start: float, end: float) -> int:
    """時間窓内の割り当て - 解放（負もありうる）"""
    delta = 0
    for event in allocations:
        if _in_window(event.timestamp, start, end):
            delta += event.size if event.kind.is_allocation else -event.size
    return delta


@dataclass(frozen=True)
class InstrumentData:
    """補助インストゥルメントのデータ（取得できなかったものは空）"""
    samples: Sequence[TimeProfilerSample] = ()
    syscalls: Sequence[SystemCall] = ()
    allocations: Sequence[AllocationEvent] = ()

    def enrich_window(self, start: float, end: float) -> dict:
        return {
            "cpu_states": cpu_state_histogram(self.samples, start, end),
            "wait_state": dominant_wait_state(self.syscalls, start, end),
            "allocation_delta": allocation_delta(self.allocations, start, end),
        }


def enrich_action(action: DomainAction, data: InstrumentData) -> DomainAction:
    if not action.is_slow:
        return action
    return replace(action, **data.enrich_window(action.timestamp, action.timestamp + action.duration))


def enrich_effect(effect: DomainEffect, data: InstrumentData) -> DomainEffect:
    if not effect.is_long_running:
        return effect
    return replace(effect, **data.enrich_window(effect.start_time, effect.end_time))


def enrich(actions: list[DomainAction], effects: list[DomainEffect],
           data: Optional[InstrumentData] = None) -> tuple[list[DomainAction], list[DomainEffect]]:
    """付与済みのコピーを返す（元のリストは変更しない）"""
    data = data or InstrumentData()
    return ([enrich_action(a, data) for a in actions],
            [enrich_effect(e, data) for e in effects])


class EnrichedItem(Protocol):
    feature_name: str
    cpu_states: list[CPUState]
    wait_state: str


@dataclass
class EnrichmentStats:
    total_actions: int
    enriched_actions: int
    total_effects: int
    enriched_effects: int
    top_wait_states: list[tuple[str, int]]
    top_cpu_features: list[tuple[str, float]]

    @property
    def action_enrichment_rate(self) -> float:
        return self.enriched_actions / self.total_actions * 100 if self.total_actions else 0.0

    @property
    def effect_enrichment_rate(self) -> float:
        return self.enriched_effects / self.total_effects * 100 if self.total_effects else 0.0

    @property
    def summary(self) -> str:
        waits = ", ".join(f"{state} ({count})" for state, count in self.top_wait_states)
        features = ", ".join(f"{name} ({pct:.1f}%)" for name, pct in self.top_cpu_features)
        return "\n".join([
            "Enrichment Summary:",
            f"- Actions: {self.enriched_actions}/{self.total_actions} enriched ({self.action_enrichment_rate:.1f}%)",
            f"- Effects: {self.enriched_effects}/{self.total_effects} enriched ({self.effect_enrichment_rate:.1f}%)",
            f"- Top wait states: {waits}",
            f"- Top CPU features: {features}",
        ])


def _top_wait_states(items: Sequence[EnrichedItem], top_n: int = 5) -> list[tuple[str, int]]:
    counts = Counter(i.wait_state for i in items if i.wait_state and i.wait_state != "cpu")
    return counts.most_common(top_n)


def _top_cpu_features(items: Sequence[EnrichedItem], top_n: int = 5) -> list[tuple[str, float]]:
    totals: dict[str, float] = defaultdict(float)
    for item in items:
        totals[item.feature_name] += item.cpu_states[0].percent if item.cpu_states else 0.0
    return sorted(totals.items(), key=lambda x: x[1], reverse=True)[:top_n]


def enrichment_stats(actions: list[DomainAction], effects: list[DomainEffect]) -> EnrichmentStats:
    enriched_actions = [a for a in actions if a.has_enrichment]
    enriched_effects = [e for e in effects if e.has_enrichment]
    items: list[EnrichedItem] = [*enriched_actions, *enriched_effects]
    return EnrichmentStats(
        total_actions=len(actions),
        enriched_actions=len(enriched_actions),
        total_effects=len(effects),
        enriched_effects=len(enriched_effects),
        top_wait_states=_top_wait_states(items),
        top_cpu_features=_top_cpu_features(items),
    )
