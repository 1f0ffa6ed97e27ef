"""トレース解析の全体フロー"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Optional, TypeVar, Union

from .config import Settings
from .enrichment import EnrichmentStats, InstrumentData, enrich, enrichment_stats
from .errors import NoDomainDataError, TCATraceError, TraceNotFoundError, XMLParsingError
from .extractor import SignpostExtractor, filter_tca_markers
from .models import (
    AnalysisMetadata,
    DomainAction,
    DomainEffect,
    RawMarkerEvent,
    SharedStateChange,
    TraceAnalysis,
    TraceInfo,
)
from .tables import (
    AllocationTableParser,
    SignpostTableParser,
    SyscallTableParser,
    TimeProfileTableParser,
)
from .xctrace import XCTraceRunner

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ParseFilters:
    feature_name: Optional[str] = None
    action_name: Optional[str] = None
    min_duration: float = 0.0
    slow_actions_only: bool = False

    def apply(self, data: "ParsedTraceData") -> "ParsedTraceData":
        actions = data.actions
        effects = data.effects
        changes = data.shared_state_changes

        if self.feature_name:
            actions = [a for a in actions if a.feature_name == self.feature_name]
            effects = [e for e in effects if e.feature_name == self.feature_name]
            changes = [c for c in changes if c.feature_name == self.feature_name]
        if self.action_name:
            actions = [a for a in actions if self.action_name in a.action_name]
        if self.min_duration > 0:
            actions = [a for a in actions if a.duration >= self.min_duration]
        if self.slow_actions_only:
            actions = [a for a in actions if a.is_slow]

        return replace(data, actions=actions, effects=effects, shared_state_changes=changes)


@dataclass(frozen=True)
class ExportedTables:
    """xctrace からのXML（補助テーブルは取得失敗時 None）"""
    signposts: bytes
    profiler: Optional[bytes] = None
    syscalls: Optional[bytes] = None
    allocations: Optional[bytes] = None


@dataclass
class ParsedTraceData:
    trace_info: TraceInfo
    all_signposts: list[RawMarkerEvent]
    tca_signposts: list[RawMarkerEvent]
    actions: list[DomainAction]
    effects: list[DomainEffect]
    shared_state_changes: list[SharedStateChange]
    instruments: InstrumentData = field(default_factory=InstrumentData)

    @property
    def duration(self) -> float:
        return max((a.timestamp for a in self.actions), default=0.0)

    @property
    def has_data(self) -> bool:
        return bool(self.actions or self.effects or self.shared_state_changes)

    @property
    def enrichment(self) -> EnrichmentStats:
        return enrichment_stats(self.actions, self.effects)


class TraceParser:
    """.trace ファイルから TCA のデータを取り出す"""

    def __init__(self, runner: Optional[XCTraceRunner] = None, settings: Optional[Settings] = None,
                 subsystem_filter: Optional[str] = None):
        self.settings = settings or Settings.from_env()
        self.runner = runner or XCTraceRunner(self.settings)
        self.subsystem_filter = subsystem_filter
        self.extractor = SignpostExtractor()

    def export_tables(self, trace_path: Path) -> ExportedTables:
        """4テーブルを並行にエクスポート（補助テーブルの失敗は None）"""
        settings = self.settings
        with ThreadPoolExecutor(max_workers=4) as pool:
            signposts = pool.submit(self.runner.export_table, trace_path, settings.signpost_schema)
            auxiliary = {
                name: pool.submit(self._export_optional, trace_path, schema)
                for name, schema in (
                    ("profiler", settings.profiler_schema),
                    ("syscalls", settings.syscall_schema),
                    ("allocations", settings.allocation_schema),
                )
            }
            return ExportedTables(
                signposts=signposts.result(),
                **{name: future.result() for name, future in auxiliary.items()},
            )

    def _export_optional(self, trace_path: Path, schema: str) -> Optional[bytes]:
        try:
            return self.runner.export_table(trace_path, schema)
        except TCATraceError as e:
            logger.warning("Skipping %s data: %s", schema, e)
            return None

    def parse(self, trace_path: Union[str, Path], filters: Optional[ParseFilters] = None) -> ParsedTraceData:
        """トレースを解析する"""
        trace_path = Path(trace_path)
        if not trace_path.exists():
            raise TraceNotFoundError(str(trace_path))

        trace_info = self.runner.get_trace_info(trace_path)
        tables = self.export_tables(trace_path)
        return self.parse_exported(tables, trace_info, filters)

    def parse_exported(self, tables: ExportedTables, trace_info: TraceInfo,
                       filters: Optional[ParseFilters] = None) -> ParsedTraceData:
        """エクスポート済みのXMLから解析する"""
        all_signposts = SignpostTableParser(self.settings.signpost_schema).parse(tables.signposts)
        tca_signposts = filter_tca_markers(all_signposts, self.subsystem_filter)
        if not tca_signposts:
            raise NoDomainDataError(self.subsystem_filter, len(all_signposts))

        logger.info("%d of %d signposts are TCA signposts", len(tca_signposts), len(all_signposts))

        data = ParsedTraceData(
            trace_info=trace_info,
            all_signposts=all_signposts,
            tca_signposts=tca_signposts,
            actions=self.extractor.extract_actions(tca_signposts),
            effects=self.extractor.extract_effects(tca_signposts),
            shared_state_changes=self.extractor.extract_shared_state_changes(tca_signposts),
            instruments=InstrumentData(
                samples=self._parse_optional(tables.profiler, TimeProfileTableParser(self.settings.profiler_schema).parse),
                syscalls=self._parse_optional(tables.syscalls, SyscallTableParser(self.settings.syscall_schema).parse),
                allocations=self._parse_optional(tables.allocations, AllocationTableParser(self.settings.allocation_schema).parse),
            ),
        )

        if filters:
            data = filters.apply(data)

        data.actions, data.effects = enrich(data.actions, data.effects, data.instruments)
        return data

    @staticmethod
    def _parse_optional(payload: Optional[bytes], parse: Callable[[bytes], list[T]]) -> list[T]:
        if payload is None:
            return []
        try:
            return parse(payload)
        except XMLParsingError as e:
            logger.warning("Ignoring auxiliary table: %s", e)
            return []


def build_analysis(data: ParsedTraceData, name: str, trace_path: Union[str, Path]) -> TraceAnalysis:
    metadata = AnalysisMetadata(name=name, trace_path=str(trace_path))
    return TraceAnalysis.build(metadata, data.actions, data.effects, data.shared_state_changes)


def parse(trace_path: Union[str, Path], filters: Optional[ParseFilters] = None, *,
          subsystem_filter: Optional[str] = None, name: Optional[str] = None,
          runner: Optional[XCTraceRunner] = None, settings: Optional[Settings] = None) -> TraceAnalysis:
    """.trace を解析して TraceAnalysis を返す"""
    parser = TraceParser(runner=runner, settings=settings, subsystem_filter=subsystem_filter)
    data = parser.parse(trace_path, filters)
    return build_analysis(data, name or Path(trace_path).stem, trace_path)
