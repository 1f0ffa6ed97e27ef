"""テーブル別パーサー（signpost / time-sample / syscall / allocations）"""

import logging
import re
from typing import Optional

from .models import (
    AllocationEvent,
    AllocationKind,
    MarkerKind,
    RawMarkerEvent,
    SystemCall,
    TimeProfilerSample,
)
from .xml_reader import Row, RowReader

logger = logging.getLogger(__name__)

NANOSECONDS_PER_SECOND = 1_000_000_000

# 単位サフィックス -> ナノ秒倍率（長いものから判定）
DURATION_UNITS = [
    ("µs", 1_000.0),
    ("μs", 1_000.0),
    ("us", 1_000.0),
    ("ms", 1_000_000.0),
    ("ns", 1.0),
    ("s", 1_000_000_000.0),
]

THREAD_ID_PATTERN = re.compile(r"0x[0-9a-fA-F]+")


def _number(text: str) -> Optional[float]:
    try:
        return float(text.replace(",", "").strip())
    except ValueError:
        return None


def ns_to_seconds(text: Optional[str]) -> Optional[float]:
    """ナノ秒の10進文字列を秒に変換（数値でなければ None）"""
    if not text:
        return None
    value = _number(text)
    if value is None:
        return None
    return value / NANOSECONDS_PER_SECOND


def parse_duration_seconds(text: Optional[str]) -> float:
    """
    "4.92 µs" / "5 ms" / "4917" などを秒に変換する

    単位がなければナノ秒とみなす。解釈できなければ 0。
    """
    if not text:
        return 0.0
    value = text.strip()
    for suffix, multiplier in DURATION_UNITS:
        if value.endswith(suffix):
            number = _number(value[:-len(suffix)])
            if number is not None:
                return number * multiplier / NANOSECONDS_PER_SECOND
    number = _number(value)
    if number is None:
        return 0.0
    return number / NANOSECONDS_PER_SECOND


def parse_thread_id(text: Optional[str]) -> int:
    """"Main Thread 0x53996c (Scroll, pid: 30463)" からスレッドIDを取り出す"""
    if not text:
        return 0
    match = THREAD_ID_PATTERN.search(text)
    return int(match.group(0), 16) if match else 0


def _first(row: Row, *names: str) -> str:
    for name in names:
        value = row.get(name)
        if value:
            return value if isinstance(value, str) else " ".join(value)
    return ""


class SignpostTableParser:
    """os-signpost テーブルのパーサー"""

    MESSAGE_FIELDS = ("os-log-metadata", "signpost-message", "message", "metadata")
    IDENTIFIER_FIELDS = ("os-signpost-identifier", "signpost-identifier", "identifier")
    EVENT_TYPES = {
        "begin": MarkerKind.BEGIN,
        "interval begin": MarkerKind.BEGIN,
        "start": MarkerKind.BEGIN,
        "end": MarkerKind.END,
        "interval end": MarkerKind.END,
        "event": MarkerKind.INSTANT,
        "point": MarkerKind.INSTANT,
        "instant": MarkerKind.INSTANT,
        "emit": MarkerKind.INSTANT,
    }

    def __init__(self, table: str = "os-signpost"):
        self.reader = RowReader(
            table,
            fields=("event-time", "subsystem", "category", "signpost-name", "event-type",
                    *self.IDENTIFIER_FIELDS),
            multi_fields=self.MESSAGE_FIELDS,
        )
        self.events: list[RawMarkerEvent] = []

    def parse(self, data: bytes) -> list[RawMarkerEvent]:
        """XMLをパースしてシグナルポスト一覧を返す"""
        self.events = []
        for row in self.reader.read(data):
            event = self._parse_row(row)
            if event:
                self.events.append(event)
        return self.events

    def _parse_row(self, row: Row) -> Optional[RawMarkerEvent]:
        time_text = _first(row, "event-time")
        timestamp = ns_to_seconds(time_text)
        if timestamp is None:
            return None

        kind = self.EVENT_TYPES.get(_first(row, "event-type").strip().lower())
        if kind is None:
            logger.debug("Skipping signpost with event-type %r", row.get("event-type"))
            return None

        name = _first(row, "signpost-name")
        messages = []
        for field_name in self.MESSAGE_FIELDS:
            messages.extend(row.get(field_name, []))

        identifier = _first(row, *self.IDENTIFIER_FIELDS)
        # 識別子がなければ時刻+名前+種別で合成
        marker_id = identifier or f"{time_text}_{name}_{kind.value}"

        return RawMarkerEvent(
            id=marker_id,
            timestamp=timestamp,
            subsystem=_first(row, "subsystem"),
            category=_first(row, "category"),
            name=name,
            message=" ".join(messages),
            kind=kind,
        )


class TimeProfileTableParser:
    """time-sample テーブル（スレッド状態サンプル）のパーサー"""

    CORE_PATTERN = re.compile(r"(\d+)")

    def __init__(self, table: str = "time-sample"):
        self.reader = RowReader(
            table,
            fields=("sample-time", "thread", "thread-state", "time-sample-kind", "core", "weight"),
        )
        self.samples: list[TimeProfilerSample] = []

    def parse(self, data: bytes) -> list[TimeProfilerSample]:
        self.samples = []
        for row in self.reader.read(data):
            sample = self._parse_row(row)
            if sample:
                self.samples.append(sample)
        return self.samples

    def _parse_row(self, row: Row) -> Optional[TimeProfilerSample]:
        timestamp = ns_to_seconds(_first(row, "sample-time"))
        if timestamp is None:
            return None

        core_index = None
        core_match = self.CORE_PATTERN.search(_first(row, "core"))
        if core_match:
            core_index = int(core_match.group(1))

        # Weight（ms）。なければ 1ms サンプリング
        weight_ms = parse_duration_seconds(_first(row, "weight")) * 1000
        if weight_ms <= 0:
            weight_ms = 1.0

        return TimeProfilerSample(
            timestamp=timestamp,
            thread_id=parse_thread_id(_first(row, "thread")),
            thread_state=_first(row, "thread-state"),
            sample_type=_first(row, "time-sample-kind"),
            weight=weight_ms,
            core_index=core_index,
        )


class SyscallTableParser:
    """syscall テーブルのパーサー"""

    def __init__(self, table: str = "syscall"):
        self.reader = RowReader(
            table,
            fields=("start-time", "thread", "syscall", "duration", "syscall-return",
                    "wait-time", "waittime", "cpu-time", "cputime"),
        )
        self.syscalls: list[SystemCall] = []

    def parse(self, data: bytes) -> list[SystemCall]:
        self.syscalls = []
        for row in self.reader.read(data):
            syscall = self._parse_row(row)
            if syscall:
                self.syscalls.append(syscall)
        return self.syscalls

    def _parse_row(self, row: Row) -> Optional[SystemCall]:
        call_name = _first(row, "syscall").strip()
        if not call_name:
            return None

        try:
            return_value = int(_first(row, "syscall-return") or "0", 0)
        except ValueError:
            return_value = 0

        return SystemCall(
            timestamp=ns_to_seconds(_first(row, "start-time")) or 0.0,
            thread_id=parse_thread_id(_first(row, "thread")),
            call_name=call_name,
            duration=parse_duration_seconds(_first(row, "duration")),
            wait_time=parse_duration_seconds(_first(row, "wait-time", "waittime")),
            cpu_time=parse_duration_seconds(_first(row, "cpu-time", "cputime")),
            return_value=return_value,
        )


class AllocationTableParser:
    """allocations テーブルのパーサー"""

    KINDS = {
        "malloc": AllocationKind.ALLOCATE,
        "allocate": AllocationKind.ALLOCATE,
        "alloc": AllocationKind.ALLOCATE,
        "new": AllocationKind.ALLOCATE,
        "free": AllocationKind.DEALLOCATE,
        "deallocate": AllocationKind.DEALLOCATE,
        "dealloc": AllocationKind.DEALLOCATE,
        "delete": AllocationKind.DEALLOCATE,
        "realloc": AllocationKind.REALLOCATE,
        "reallocate": AllocationKind.REALLOCATE,
    }
    BYTE_UNITS = {"bytes": 1, "byte": 1, "b": 1, "kb": 1024, "kib": 1024,
                  "mb": 1024**2, "mib": 1024**2, "gb": 1024**3, "gib": 1024**3}

    def __init__(self, table: str = "allocations"):
        self.reader = RowReader(
            table,
            fields=("timestamp", "event-time", "start-time", "address", "size", "type", "event-type"),
        )
        self.allocations: list[AllocationEvent] = []

    @staticmethod
    def is_empty_result(data: bytes) -> bool:
        """中身のない <trace-query-result> スタブかどうか"""
        if b"<row" in data:
            return False
        text = data.decode("utf-8", errors="replace")
        if "<trace-query-result>" not in text or "</trace-query-result>" not in text:
            return False
        non_blank = [line for line in text.splitlines() if line.strip()]
        return len(non_blank) <= 3

    def parse(self, data: bytes) -> list[AllocationEvent]:
        self.allocations = []
        if self.is_empty_result(data):
            return self.allocations
        for row in self.reader.read(data):
            event = self._parse_row(row)
            if event:
                self.allocations.append(event)
        return self.allocations

    def _parse_bytes(self, text: str) -> int:
        """バイト数をパース（"48" / "1.5 KB"）"""
        if not text:
            return 0
        try:
            return int(text.replace(",", ""))
        except ValueError:
            pass
        parts = text.lower().replace(",", "").split()
        try:
            if len(parts) >= 2:
                return int(float(parts[0]) * self.BYTE_UNITS.get(parts[1], 1))
            return int(float(parts[0]))
        except (ValueError, IndexError):
            return 0

    def _parse_row(self, row: Row) -> Optional[AllocationEvent]:
        timestamp = ns_to_seconds(_first(row, "timestamp", "event-time", "start-time"))
        if timestamp is None:
            return None

        address_text = _first(row, "address")
        try:
            address = int(address_text, 16) if address_text else 0
        except ValueError:
            address = 0

        kind = self.KINDS.get(_first(row, "type", "event-type").strip().lower(), AllocationKind.ALLOCATE)

        return AllocationEvent(
            timestamp=timestamp,
            address=address,
            size=self._parse_bytes(_first(row, "size")),
            kind=kind,
        )
