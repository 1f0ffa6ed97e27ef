from pathlib import Path
from typing import Optional, Union

import pytest

from tca_trace.config import Settings
from tca_trace.errors import ExportFailedError
from tca_trace.models import MarkerKind, RawMarkerEvent, TraceInfo


def marker(kind: MarkerKind, t: float, name: str = "", marker_id: str = "",
           subsystem: str = "com.example.app", category: str = "", message: str = "") -> RawMarkerEvent:
    return RawMarkerEvent(
        id=marker_id or f"{t}_{name}_{kind.value}",
        timestamp=t,
        subsystem=subsystem,
        category=category,
        name=name,
        message=message,
        kind=kind,
    )


def query_result(*rows: str) -> bytes:
    body = "\n".join(rows)
    return (
        '<?xml version="1.0"?>\n'
        "<trace-query-result>\n"
        '<node xpath="//trace-toc[1]/run[1]/data[1]/table[1]">\n'
        f"{body}\n"
        "</node>\n"
        "</trace-query-result>\n"
    ).encode("utf-8")


EMPTY_RESULT = b'<?xml version="1.0"?>\n<trace-query-result>\n</trace-query-result>\n'

SIGNPOST_XML = query_result(
    '<row><event-time id="1" fmt="00:01.000.000">1000000000</event-time>'
    '<event-type id="2" fmt="Begin">Begin</event-type>'
    '<os-signpost-identifier id="3" fmt="0xa1">a1</os-signpost-identifier>'
    '<subsystem id="4" fmt="com.example.app">com.example.app</subsystem>'
    '<category id="5" fmt="TCA">TCA</category>'
    '<signpost-name id="6" fmt="ReadingLibraryFeature.Action.selectArticle">ReadingLibraryFeature.Action.selectArticle</signpost-name>'
    "</row>",
    '<row><event-time id="7" fmt="00:01.050.000">1050000000</event-time>'
    '<event-type id="8" fmt="End">End</event-type>'
    '<os-signpost-identifier ref="3"/>'
    '<subsystem ref="4"/><category ref="5"/><signpost-name ref="6"/>'
    "</row>",
    '<row><event-time id="9" fmt="00:02.000.000">2000000000</event-time>'
    '<event-type id="10" fmt="Event">Event</event-type>'
    '<subsystem ref="4"/><category ref="5"/>'
    '<signpost-name id="11" fmt="Action">Action</signpost-name>'
    '<os-log-metadata id="12" fmt="[Scroll] ReadingLibraryFeature.Action.sidebarSelectionChanged"/>'
    "</row>",
    '<row><event-time id="13" fmt="00:03.000.000">3000000000</event-time>'
    '<event-type ref="10"/>'
    '<subsystem id="14" fmt="com.apple.UIKit">com.apple.UIKit</subsystem>'
    '<category id="15" fmt="PointsOfInterest">PointsOfInterest</category>'
    '<signpost-name id="16" fmt="VSYNC">VSYNC</signpost-name>'
    "</row>",
)

PROFILER_XML = query_result(
    '<row><sample-time id="1" fmt="00:01.010.000">1010000000</sample-time>'
    '<thread id="2" fmt="Main Thread 0x53996c (Scroll, pid: 30463)"><tid id="3" fmt="0x53996c">5478764</tid></thread>'
    '<thread-state id="4" fmt="Running">Running</thread-state>'
    '<time-sample-kind id="5" fmt="Timer Fired">Timer Fired</time-sample-kind>'
    '<core id="6" fmt="CPU 3 (P Core)">3</core>'
    "</row>",
    '<row><sample-time id="7" fmt="00:01.020.000">1020000000</sample-time>'
    '<thread ref="2"/><thread-state ref="4"/><time-sample-kind ref="5"/><core ref="6"/>'
    "</row>",
    '<row><sample-time id="8" fmt="00:01.030.000">1030000000</sample-time>'
    '<thread ref="2"/><thread-state id="9" fmt="Blocked">Blocked</thread-state><time-sample-kind ref="5"/>'
    "</row>",
    '<row><sample-time id="10" fmt="00:05.000.000">5000000000</sample-time>'
    '<thread ref="2"/><thread-state ref="4"/>'
    "</row>",
)

SYSCALL_XML = query_result(
    '<row><start-time id="1" fmt="00:01.005.000">1005000000</start-time>'
    '<thread id="2" fmt="Main Thread 0x53996c (Scroll, pid: 30463)"/>'
    '<syscall id="3" fmt="mach_msg2_trap">mach_msg2_trap</syscall>'
    '<duration id="4" fmt="4.92 µs">4920</duration>'
    '<wait-time id="5" fmt="20.00 ms">20000000</wait-time>'
    '<syscall-return id="6" fmt="0">0</syscall-return>'
    "</row>",
    '<row><start-time id="7" fmt="00:01.006.000">1006000000</start-time>'
    '<thread ref="2"/>'
    '<syscall id="8" fmt="read">read</syscall>'
    '<duration fmt="5 ms"/>'
    "</row>",
)

ALLOCATION_XML = query_result(
    "<row><timestamp>1010000000</timestamp><address>0x600000c04000</address><size>4096</size><type>malloc</type></row>",
    "<row><timestamp>1020000000</timestamp><address>0x600000c05000</address><size>1024</size><type>free</type></row>",
    "<row><timestamp>9000000000</timestamp><address>0x600000c06000</address><size>99</size><type>malloc</type></row>",
)


class FakeRunner:
    """xctrace の代わりにスキーマ名 -> XML を返す"""

    def __init__(self, tables: dict[str, Union[bytes, Exception]]):
        self.tables = tables
        self.requested: list[str] = []

    def export_table(self, trace_path: Path, schema: str) -> bytes:
        self.requested.append(schema)
        result = self.tables.get(schema)
        if result is None:
            raise ExportFailedError(schema, 1, "table not found")
        if isinstance(result, Exception):
            raise result
        return result

    def get_trace_info(self, trace_path: Path) -> TraceInfo:
        return TraceInfo(target_name="Scroll", duration=10.0, file_path=str(trace_path))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(storage_dir=tmp_path / "analyses")


@pytest.fixture
def trace_path(tmp_path) -> Path:
    path = tmp_path / "Session.trace"
    path.mkdir()
    return path


@pytest.fixture
def full_runner() -> FakeRunner:
    return FakeRunner({
        "os-signpost": SIGNPOST_XML,
        "time-sample": PROFILER_XML,
        "syscall": SYSCALL_XML,
        "allocations": ALLOCATION_XML,
    })


def make_runner(**overrides: Optional[Union[bytes, Exception]]) -> FakeRunner:
    tables = {
        "os-signpost": SIGNPOST_XML,
        "time-sample": PROFILER_XML,
        "syscall": SYSCALL_XML,
        "allocations": ALLOCATION_XML,
    }
    for key, value in overrides.items():
        tables[key.replace("_", "-")] = value
    return FakeRunner(tables)
