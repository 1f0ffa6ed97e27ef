"""tca-trace のエラー定義"""

from typing import Optional


class TCATraceError(Exception):
    """tca-trace 全般の基底例外"""


class TraceNotFoundError(TCATraceError):
    """トレースファイルが存在しない"""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File not found: {path}")


class ExportFailedError(TCATraceError):
    """xctrace export が失敗した"""

    def __init__(self, table: str, exit_code: int, stderr: str = ""):
        self.table = table
        self.exit_code = exit_code
        self.stderr = stderr
        message = f"xctrace export of table '{table}' failed with exit code: {exit_code}"
        if stderr:
            message += f" ({stderr.strip()})"
        super().__init__(message)


class XMLParsingError(TCATraceError):
    """XMLの整形式エラー"""

    def __init__(self, table: str, detail: str):
        self.table = table
        self.detail = detail
        super().__init__(f"Parsing error in table '{table}': {detail}")


class NoDomainDataError(TCATraceError):
    """シグナルポストはあるがTCAのものが一つもない"""

    def __init__(self, subsystem_filter: Optional[str] = None, total_markers: int = 0):
        self.subsystem_filter = subsystem_filter
        self.total_markers = total_markers
        if subsystem_filter:
            message = f"No TCA data found for subsystem: '{subsystem_filter}'"
        else:
            message = "No TCA signpost data found in trace file"
        message += f" ({total_markers} signposts inspected)"
        super().__init__(message)


class StorageError(TCATraceError):
    """保存済み解析の読み書きエラー"""

    def __init__(self, message: str):
        super().__init__(f"Storage error: {message}")
