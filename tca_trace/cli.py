"""tca-trace コマンド"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from .comparison import DEFAULT_THRESHOLD, compare
from .config import Settings
from .errors import TCATraceError
from .log import setup_logger
from .models import TraceAnalysis
from .report import format_comparison_json, format_comparison_markdown, format_json, format_markdown
from .storage import FileStorage
from .trace_parser import ParseFilters, TraceParser, build_analysis
from .xctrace import XCTraceRunner


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tca-trace",
        description="Analyze TCA signposts in an Instruments .trace file",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Analyze a .trace file")
    analyze.add_argument("trace", type=Path, help="Path to .trace file")
    analyze.add_argument("--subsystem", help="App subsystem to filter (e.g. com.myapp.app)")
    analyze.add_argument("--feature", help="Filter by feature name (e.g. ReadingLibrary)")
    analyze.add_argument("--filter", dest="action", help="Filter by action name (partial match)")
    analyze.add_argument("--min-duration", type=float, default=0.0, help="Minimum duration (seconds)")
    analyze.add_argument("--slow-only", action="store_true", help="Only slow actions (>16ms)")
    analyze.add_argument("-f", "--format", choices=["json", "markdown"], default="markdown")
    analyze.add_argument("--output", type=Path, help="Write report to file instead of stdout")
    analyze.add_argument("-s", "--save", action="store_true", help="Save analysis for later comparison")
    analyze.add_argument("--name", help="Name for the analysis")
    analyze.add_argument("--tags", help="Comma-separated tags for the saved analysis")
    analyze.add_argument("-v", "--verbose", action="store_true")

    comp = sub.add_parser("compare", help="Compare two analyses (.trace or saved .json)")
    comp.add_argument("baseline", type=Path, help="Baseline .trace or saved analysis .json")
    comp.add_argument("current", type=Path, help="Current .trace or saved analysis .json")
    comp.add_argument("--threshold", type=float, default=DEFAULT_THRESHOLD, help="Regression threshold percentage")
    comp.add_argument("--subsystem", help="App subsystem to filter when analyzing .trace files")
    comp.add_argument("-f", "--format", choices=["json", "markdown"], default="markdown")
    comp.add_argument("--output", type=Path, help="Write report to file instead of stdout")
    comp.add_argument("-v", "--verbose", action="store_true")

    return parser


def _write(output: str, path: Optional[Path]) -> None:
    if path:
        path.write_text(output, encoding="utf-8")
        print(f"Report saved to: {path}", file=sys.stderr)
    else:
        print(output)


def run_analyze(args: argparse.Namespace, settings: Settings) -> int:
    parser = TraceParser(runner=XCTraceRunner(settings), settings=settings,
                         subsystem_filter=args.subsystem)
    filters = ParseFilters(
        feature_name=args.feature,
        action_name=args.action,
        min_duration=args.min_duration,
        slow_actions_only=args.slow_only,
    )
    data = parser.parse(args.trace, filters)
    analysis = build_analysis(data, args.name or args.trace.stem, args.trace)

    output = format_json(analysis) if args.format == "json" else format_markdown(analysis)
    _write(output, args.output)

    if args.save:
        tags = [t.strip() for t in (args.tags or "").split(",") if t.strip()]
        path = FileStorage(settings.storage_dir).save(analysis, name=analysis.metadata.name, tags=tags)
        print(f"Analysis saved to: {path}", file=sys.stderr)
    return 0


def load_or_analyze(path: Path, settings: Settings, subsystem: Optional[str] = None) -> TraceAnalysis:
    """保存済み .json はそのまま読み込み、それ以外はトレースとして解析する"""
    if path.suffix == ".json":
        return FileStorage(settings.storage_dir).load(path)
    parser = TraceParser(runner=XCTraceRunner(settings), settings=settings, subsystem_filter=subsystem)
    return build_analysis(parser.parse(path), path.stem, path)


def run_compare(args: argparse.Namespace, settings: Settings) -> int:
    baseline = load_or_analyze(args.baseline, settings, args.subsystem)
    current = load_or_analyze(args.current, settings, args.subsystem)
    result = compare(baseline, current, args.threshold)

    if args.format == "json":
        output = format_comparison_json(result)
    else:
        output = format_comparison_markdown(baseline, current, result)
    _write(output, args.output)
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    setup_logger("tca_trace", settings.log_file,
                 logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING)

    try:
        if args.command == "compare":
            return run_compare(args, settings)
        return run_analyze(args, settings)
    except TCATraceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
