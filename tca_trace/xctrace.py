"""xcrun xctrace export のラッパー"""

import logging
import subprocess
import tempfile
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional

from .config import Settings
from .errors import ExportFailedError
from .models import TraceInfo

logger = logging.getLogger(__name__)

TOC_XPATH = "/trace-toc"


def table_xpath(schema: str) -> str:
    return f"/trace-toc/run/data/table[@schema='{schema}']"


def parse_toc(data: bytes, trace_path: str = "") -> tuple[TraceInfo, list[str]]:
    """TOC からトレース情報とスキーマ一覧を抽出"""
    root = ET.fromstring(data)

    schemas = []
    for table in root.iter("table"):
        schema = table.get("schema")
        if schema:
            schemas.append(schema)

    target_name = "Unknown"
    for tag in ("target-name", "process"):
        elem = root.find(f".//{tag}")
        if elem is not None:
            target_name = elem.get("name") or (elem.text or "").strip() or target_name
            break

    duration = 0.0
    for tag in ("run-duration", "duration"):
        elem = root.find(f".//{tag}")
        if elem is not None:
            try:
                duration = float((elem.text or elem.get("fmt") or "0").strip())
            except ValueError:
                pass
            break

    return TraceInfo(target_name=target_name, duration=duration, file_path=trace_path), schemas


class XCTraceRunner:
    """xctrace をテーブル単位で実行する（呼び出しごとに状態を持たない）"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings.from_env()

    def export_table(self, trace_path: Path, schema: str) -> bytes:
        """指定スキーマのテーブルをXMLバイト列としてエクスポート"""
        return self._export(trace_path, table_xpath(schema), schema)

    def export_toc(self, trace_path: Path) -> bytes:
        return self._export(trace_path, TOC_XPATH, "trace-toc")

    def get_trace_info(self, trace_path: Path) -> TraceInfo:
        """トレース情報を取得（失敗しても既定値を返す）"""
        try:
            info, schemas = parse_toc(self.export_toc(trace_path), str(trace_path))
        except (ExportFailedError, ET.ParseError) as e:
            logger.warning("Could not read trace info: %s", e)
            return TraceInfo(target_name="Unknown", duration=0.0, file_path=str(trace_path))
        logger.debug("Available schemas: %s", ", ".join(schemas))
        return info

    def is_available(self) -> bool:
        try:
            result = subprocess.run([self.settings.xcrun_path, "xctrace", "version"],
                                    capture_output=True, check=False)
        except OSError:
            return False
        return result.returncode == 0

    def _export(self, trace_path: Path, xpath: str, label: str) -> bytes:
        with tempfile.TemporaryDirectory(prefix="xctrace_export_") as tmp_dir:
            output = Path(tmp_dir) / "export.xml"
            command = [
                self.settings.xcrun_path, "xctrace", "export",
                "--input", str(trace_path),
                "--output", str(output),
                "--xpath", xpath,
            ]
            logger.debug("Running: %s", " ".join(command))
            try:
                result = subprocess.run(command, capture_output=True, check=False)
            except OSError as e:
                raise ExportFailedError(label, 127, str(e)) from e

            stderr = result.stderr.decode("utf-8", errors="replace")
            if stderr.strip():
                logger.debug("xctrace stderr (%s): %s", label, stderr.strip())
            if result.returncode != 0:
                raise ExportFailedError(label, result.returncode, stderr)
            if not output.exists():
                raise ExportFailedError(label, result.returncode, "no output file written")
            return output.read_bytes()
