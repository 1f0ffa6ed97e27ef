"""環境変数 / .env からの設定読み込み"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    """xctrace 呼び出しと保存先の設定"""
    xcrun_path: str = "/usr/bin/xcrun"
    # スキーマ名は xctrace のバージョンで変わるので設定扱い
    signpost_schema: str = "os-signpost"
    profiler_schema: str = "time-sample"
    syscall_schema: str = "syscall"
    allocation_schema: str = "allocations"
    storage_dir: Path = Path.home() / ".tca-trace" / "analyses"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, dotenv_path: Optional[Path] = None) -> "Settings":
        load_dotenv(dotenv_path)
        defaults = cls()
        storage_dir = os.getenv("TCA_TRACE_STORAGE_DIR")
        return cls(
            xcrun_path=os.getenv("TCA_TRACE_XCRUN", defaults.xcrun_path),
            signpost_schema=os.getenv("TCA_TRACE_SIGNPOST_SCHEMA", defaults.signpost_schema),
            profiler_schema=os.getenv("TCA_TRACE_PROFILER_SCHEMA", defaults.profiler_schema),
            syscall_schema=os.getenv("TCA_TRACE_SYSCALL_SCHEMA", defaults.syscall_schema),
            allocation_schema=os.getenv("TCA_TRACE_ALLOCATION_SCHEMA", defaults.allocation_schema),
            storage_dir=Path(storage_dir).expanduser() if storage_dir else defaults.storage_dir,
            log_file=os.getenv("TCA_TRACE_LOG_FILE") or None,
        )
