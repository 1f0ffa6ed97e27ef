"""トレース解析のデータモデル"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

# 60fps のフレーム予算
SLOW_ACTION_THRESHOLD = 0.016
LONG_EFFECT_THRESHOLD = 0.5


def _format_bytes(count: int) -> str:
    size = float(abs(count))
    for unit in ("bytes", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            text = f"{int(size)} {unit}" if unit == "bytes" else f"{size:.1f} {unit}"
            return ("-" if count < 0 else "+") + text
        size /= 1024
    return str(count)


def _enrichment_summary(cpu_states: list["CPUState"], wait_state: str, allocation_delta: int) -> str:
    parts = []
    if cpu_states:
        parts.append("CPU: " + ", ".join(f"{s.label}({s.percent:.0f}%)" for s in cpu_states[:3]))
    if wait_state and wait_state != "cpu":
        parts.append(f"Wait: {wait_state}")
    if allocation_delta != 0:
        parts.append(f"Alloc: {_format_bytes(allocation_delta)}")
    return " | ".join(parts)


class MarkerKind(Enum):
    BEGIN = "begin"
    END = "end"
    INSTANT = "event"


@dataclass(frozen=True)
class RawMarkerEvent:
    """xctrace からエクスポートされたシグナルポスト1行"""
    id: str
    timestamp: float  # トレース開始からの秒
    subsystem: str
    category: str
    name: str
    message: str
    kind: MarkerKind


@dataclass(frozen=True)
class CPUState:
    """時間窓内のスレッド状態の割合"""
    label: str
    percent: float


@dataclass(frozen=True)
class DomainAction:
    """シグナルポストから復元したTCAアクション"""
    feature_name: str
    action_name: str
    timestamp: float
    duration: float
    metadata: Optional[str] = None
    cpu_states: list[CPUState] = field(default_factory=list)
    wait_state: str = ""
    allocation_delta: int = 0

    @property
    def full_name(self) -> str:
        return f"{self.feature_name}.{self.action_name}"

    @property
    def is_slow(self) -> bool:
        return self.duration > SLOW_ACTION_THRESHOLD

    @property
    def duration_ms(self) -> float:
        return self.duration * 1000

    @property
    def has_enrichment(self) -> bool:
        return bool(self.cpu_states) or bool(self.wait_state) or self.allocation_delta != 0

    @property
    def enrichment_summary(self) -> str:
        return _enrichment_summary(self.cpu_states, self.wait_state, self.allocation_delta)


@dataclass(frozen=True)
class DomainEffect:
    """長時間実行されうるEffect"""
    name: str
    feature_name: str
    start_time: float
    end_time: float
    cpu_states: list[CPUState] = field(default_factory=list)
    wait_state: str = ""
    allocation_delta: int = 0

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def duration_ms(self) -> float:
        return self.duration * 1000

    @property
    def is_long_running(self) -> bool:
        return self.duration > LONG_EFFECT_THRESHOLD

    @property
    def has_enrichment(self) -> bool:
        return bool(self.cpu_states) or bool(self.wait_state) or self.allocation_delta != 0

    @property
    def enrichment_summary(self) -> str:
        return _enrichment_summary(self.cpu_states, self.wait_state, self.allocation_delta)


@dataclass(frozen=True)
class SharedStateChange:
    """共有ステートの変更"""
    feature_name: str
    timestamp: float
    property: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None


@dataclass(frozen=True)
class TimeProfilerSample:
    """CPUサンプル"""
    timestamp: float
    thread_id: int
    thread_state: str
    sample_type: str
    weight: float = 1.0  # ms
    core_index: Optional[int] = None


@dataclass(frozen=True)
class SystemCall:
    """システムコール"""
    timestamp: float
    thread_id: int
    call_name: str
    duration: float
    wait_time: float = 0.0
    cpu_time: float = 0.0
    return_value: int = 0


class AllocationKind(Enum):
    ALLOCATE = "allocate"
    DEALLOCATE = "deallocate"
    REALLOCATE = "reallocate"

    @property
    def is_allocation(self) -> bool:
        return self is not AllocationKind.DEALLOCATE


@dataclass(frozen=True)
class AllocationEvent:
    """メモリ割り当てイベント"""
    timestamp: float
    address: int
    size: int
    kind: AllocationKind


@dataclass(frozen=True)
class TraceInfo:
    """トレースファイルの基本情報"""
    target_name: str
    duration: float
    file_path: str

    @property
    def formatted_duration(self) -> str:
        return f"{self.duration:.1f}s"


@dataclass
class FeatureMetrics:
    action_count: int
    slow_actions: int
    avg_duration: float
    max_duration: float
    total_duration: float

    @classmethod
    def from_actions(cls, actions: list[DomainAction]) -> "FeatureMetrics":
        durations = [a.duration for a in actions]
        return cls(
            action_count=len(actions),
            slow_actions=sum(1 for a in actions if a.is_slow),
            avg_duration=sum(durations) / len(durations) if durations else 0.0,
            max_duration=max(durations, default=0.0),
            total_duration=sum(durations),
        )

    @property
    def avg_duration_ms(self) -> float:
        return self.avg_duration * 1000

    @property
    def total_duration_ms(self) -> float:
        return self.total_duration * 1000


@dataclass
class PerformanceMetrics:
    total_actions: int
    slow_actions: int
    avg_duration: float
    max_duration: float
    min_duration: float
    features: dict[str, FeatureMetrics]

    @classmethod
    def from_actions(cls, actions: list[DomainAction]) -> "PerformanceMetrics":
        durations = [a.duration for a in actions]
        grouped: dict[str, list[DomainAction]] = {}
        for action in actions:
            grouped.setdefault(action.feature_name, []).append(action)
        return cls(
            total_actions=len(actions),
            slow_actions=sum(1 for a in actions if a.is_slow),
            avg_duration=sum(durations) / len(durations) if durations else 0.0,
            max_duration=max(durations, default=0.0),
            min_duration=min(durations, default=0.0),
            features={name: FeatureMetrics.from_actions(group) for name, group in grouped.items()},
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    """ISO 文字列を datetime に（タイムゾーンなしは UTC とみなす）"""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class AnalysisMetadata:
    name: str
    trace_path: str
    trace_date: Optional[datetime] = None
    analyzed_at: datetime = field(default_factory=_utcnow)
    stored_at: Optional[datetime] = None
    tags: list[str] = field(default_factory=list)
    version: str = "1.0.0"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "trace_path": self.trace_path,
            "trace_date": _iso(self.trace_date),
            "analyzed_at": _iso(self.analyzed_at),
            "stored_at": _iso(self.stored_at),
            "tags": list(self.tags),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalysisMetadata":
        return cls(
            name=data["name"],
            trace_path=data["trace_path"],
            trace_date=_from_iso(data.get("trace_date")),
            analyzed_at=_from_iso(data.get("analyzed_at")) or _utcnow(),
            stored_at=_from_iso(data.get("stored_at")),
            tags=list(data.get("tags", [])),
            version=data.get("version", "1.0.0"),
        )


def _cpu_states(items: list[dict[str, Any]]) -> list[CPUState]:
    return [CPUState(label=i["label"], percent=i["percent"]) for i in items]


@dataclass
class TraceAnalysis:
    """1トレースの解析結果（保存・出力の単位）"""
    metadata: AnalysisMetadata
    actions: list[DomainAction]
    effects: list[DomainEffect]
    shared_state_changes: list[SharedStateChange]
    metrics: PerformanceMetrics
    complexity_score: float
    recommendations: list[str]
    duration: float

    @classmethod
    def build(cls, metadata: AnalysisMetadata, actions: list[DomainAction],
              effects: Optional[list[DomainEffect]] = None,
              shared_state_changes: Optional[list[SharedStateChange]] = None,
              recommendations: Optional[list[str]] = None) -> "TraceAnalysis":
        from .scoring import complexity_score, generate_recommendations

        effects = effects or []
        shared_state_changes = shared_state_changes or []
        metrics = PerformanceMetrics.from_actions(actions)
        analysis = cls(
            metadata=metadata,
            actions=actions,
            effects=effects,
            shared_state_changes=shared_state_changes,
            metrics=metrics,
            complexity_score=complexity_score(
                metrics,
                shared_state_changes=len(shared_state_changes),
                render_triggers=sum(1 for e in effects if "render" in e.name),
            ),
            recommendations=[],
            duration=max((a.timestamp for a in actions), default=0.0),
        )
        analysis.recommendations = recommendations or generate_recommendations(analysis)
        return analysis

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict(),
            "actions": [asdict(a) for a in self.actions],
            "effects": [asdict(e) for e in self.effects],
            "shared_state_changes": [asdict(c) for c in self.shared_state_changes],
            "metrics": asdict(self.metrics),
            "complexity_score": self.complexity_score,
            "recommendations": list(self.recommendations),
            "duration": self.duration,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TraceAnalysis":
        actions = [
            DomainAction(**{**a, "cpu_states": _cpu_states(a.get("cpu_states", []))})
            for a in data.get("actions", [])
        ]
        effects = [
            DomainEffect(**{**e, "cpu_states": _cpu_states(e.get("cpu_states", []))})
            for e in data.get("effects", [])
        ]
        changes = [SharedStateChange(**c) for c in data.get("shared_state_changes", [])]
        metrics_data = data["metrics"]
        metrics = PerformanceMetrics(
            **{**metrics_data,
               "features": {k: FeatureMetrics(**v) for k, v in metrics_data.get("features", {}).items()}}
        )
        return cls(
            metadata=AnalysisMetadata.from_dict(data["metadata"]),
            actions=actions,
            effects=effects,
            shared_state_changes=changes,
            metrics=metrics,
            complexity_score=data["complexity_score"],
            recommendations=list(data.get("recommendations", [])),
            duration=data["duration"],
        )
