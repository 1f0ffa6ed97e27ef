import pytest

from tca_trace.errors import XMLParsingError
from tca_trace.models import AllocationKind, MarkerKind
from tca_trace.tables import (
    AllocationTableParser,
    SignpostTableParser,
    SyscallTableParser,
    TimeProfileTableParser,
    ns_to_seconds,
    parse_duration_seconds,
    parse_thread_id,
)

from .conftest import (
    ALLOCATION_XML,
    EMPTY_RESULT,
    PROFILER_XML,
    SIGNPOST_XML,
    SYSCALL_XML,
    query_result,
)


@pytest.mark.parametrize("text,expected", [
    ("4.92 µs", 0.00000492),
    ("4.92 μs", 0.00000492),
    ("5 ms", 0.005),
    ("12 ns", 0.000000012),
    ("1.5 s", 1.5),
    ("4917", 0.000004917),
    ("1,234,000", 0.001234),
    ("", 0.0),
    ("fast", 0.0),
])
def test_parse_duration_seconds(text, expected):
    assert parse_duration_seconds(text) == pytest.approx(expected)


def test_nanosecond_round_trip():
    for ns in (0, 1, 999, 1_050_000_000, 123_456_789_012):
        assert round(ns_to_seconds(str(ns)) * 1e9) == ns


def test_ns_to_seconds_rejects_formatted_time():
    assert ns_to_seconds("00:01.000") is None
    assert ns_to_seconds("") is None


def test_parse_thread_id():
    assert parse_thread_id("Main Thread 0x53996c (Scroll, pid: 30463)") == 0x53996C
    assert parse_thread_id("Thread") == 0


def test_signpost_parser_resolves_refs_and_kinds():
    events = SignpostTableParser().parse(SIGNPOST_XML)

    assert [e.kind for e in events] == [MarkerKind.BEGIN, MarkerKind.END, MarkerKind.INSTANT, MarkerKind.INSTANT]
    begin, end, instant, vsync = events
    assert begin.id == end.id == "a1"
    assert begin.timestamp == pytest.approx(1.0)
    assert end.timestamp == pytest.approx(1.05)
    assert end.name == "ReadingLibraryFeature.Action.selectArticle"
    assert end.subsystem == "com.example.app"
    assert instant.message == "[Scroll] ReadingLibraryFeature.Action.sidebarSelectionChanged"
    assert instant.id == "2000000000_Action_event"
    assert vsync.subsystem == "com.apple.UIKit"


def test_signpost_message_fields_are_space_joined():
    data = query_result(
        '<row><event-time>1</event-time><event-type fmt="Event"/>'
        '<signpost-message fmt="part one"/><os-log-metadata fmt="part two"/></row>'
    )

    (event,) = SignpostTableParser().parse(data)

    assert event.message == "part two part one"


def test_signpost_rows_without_time_or_known_type_are_skipped():
    data = query_result(
        '<row><event-type fmt="Begin"/><signpost-name fmt="A"/></row>',
        '<row><event-time>5</event-time><event-type fmt="Mystery"/></row>',
    )

    assert SignpostTableParser().parse(data) == []


def test_signpost_malformed_xml_raises():
    with pytest.raises(XMLParsingError):
        SignpostTableParser().parse(b"<trace-query-result><row>")


def test_time_profile_parser():
    samples = TimeProfileTableParser().parse(PROFILER_XML)

    assert len(samples) == 4
    first = samples[0]
    assert first.timestamp == pytest.approx(1.01)
    assert first.thread_id == 0x53996C
    assert first.thread_state == "Running"
    assert first.sample_type == "Timer Fired"
    assert first.core_index == 3
    assert first.weight == 1.0
    assert samples[1].thread_state == "Running"
    assert samples[2].thread_state == "Blocked"
    assert samples[2].core_index is None
    assert samples[3].sample_type == ""


def test_time_profile_weight_in_milliseconds():
    data = query_result('<row><sample-time>10</sample-time><weight fmt="2.00 ms">2000000</weight></row>')

    (sample,) = TimeProfileTableParser().parse(data)

    assert sample.weight == pytest.approx(2.0)


def test_syscall_parser():
    first, second = SyscallTableParser().parse(SYSCALL_XML)

    assert first.call_name == "mach_msg2_trap"
    assert first.timestamp == pytest.approx(1.005)
    assert first.duration == pytest.approx(0.00000492)
    assert first.wait_time == pytest.approx(0.02)
    assert first.thread_id == 0x53996C
    assert second.call_name == "read"
    assert second.duration == pytest.approx(0.005)
    assert second.wait_time == 0.0
    assert second.return_value == 0


def test_syscall_rows_without_name_are_skipped():
    data = query_result("<row><start-time>1</start-time></row>")

    assert SyscallTableParser().parse(data) == []


def test_allocation_parser():
    events = AllocationTableParser().parse(ALLOCATION_XML)

    assert [e.kind for e in events] == [AllocationKind.ALLOCATE, AllocationKind.DEALLOCATE, AllocationKind.ALLOCATE]
    assert events[0].address == 0x600000C04000
    assert events[0].size == 4096
    assert events[0].timestamp == pytest.approx(1.01)


def test_allocation_sizes_with_units_and_unknown_type():
    data = query_result(
        '<row><timestamp>1</timestamp><size fmt="1.5 KB"/><type>realloc</type></row>',
        "<row><timestamp>2</timestamp><size>64</size><type>mystery</type></row>",
    )

    first, second = AllocationTableParser().parse(data)

    assert first.size == 1536
    assert first.kind is AllocationKind.REALLOCATE
    assert second.kind is AllocationKind.ALLOCATE


def test_allocation_empty_stub_short_circuits():
    assert AllocationTableParser.is_empty_result(EMPTY_RESULT)
    assert AllocationTableParser().parse(EMPTY_RESULT) == []
    assert not AllocationTableParser.is_empty_result(ALLOCATION_XML)


def test_allocation_single_line_export_is_not_a_stub():
    data = (
        b'<?xml version="1.0"?>\n'
        b"<trace-query-result>\n"
        b'<node xpath="//trace-toc[1]/run[1]/data[1]/table[3]">'
        b"<row><timestamp>1000000000</timestamp><size>64</size><type>malloc</type></row>"
        b"<row><timestamp>1100000000</timestamp><size>32</size><type>free</type></row>"
        b"</node></trace-query-result>\n"
    )

    assert not AllocationTableParser.is_empty_result(data)
    events = AllocationTableParser().parse(data)
    assert [(e.size, e.kind) for e in events] == [(64, AllocationKind.ALLOCATE), (32, AllocationKind.DEALLOCATE)]
