"""解析結果のJSON保存"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .errors import StorageError
from .models import TraceAnalysis

logger = logging.getLogger(__name__)


class FileStorage:
    """ディレクトリに1解析1ファイルで保存する"""

    def __init__(self, directory: Path):
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)

    def save(self, analysis: TraceAnalysis, name: Optional[str] = None,
             tags: Optional[list[str]] = None) -> Path:
        now = datetime.now(timezone.utc)
        analysis.metadata.stored_at = now
        analysis.metadata.tags = list(tags or [])

        stamp = now.strftime("%Y%m%dT%H%M%S%fZ")
        if name:
            filename = f"{re.sub(r'[^a-zA-Z0-9_-]', '_', name)}_{stamp}.json"
        else:
            filename = f"trace_{stamp}.json"

        path = self.directory / filename
        try:
            path.write_text(json.dumps(analysis.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
        except OSError as e:
            raise StorageError(f"could not write {path}: {e}") from e
        return path

    def load(self, path: Path) -> TraceAnalysis:
        path = Path(path)
        if not path.is_absolute() and not path.exists():
            path = self.directory / path
        try:
            return TraceAnalysis.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise StorageError(f"could not load {path}: {e}") from e

    def list_analyses(self, tag: Optional[str] = None) -> list[TraceAnalysis]:
        """新しい順。壊れたファイルは飛ばす"""
        analyses = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                analysis = self.load(path)
            except StorageError as e:
                logger.warning("Skipping corrupted analysis file %s: %s", path.name, e)
                continue
            if tag and tag not in analysis.metadata.tags:
                continue
            analyses.append(analysis)
        return sorted(analyses, key=lambda a: a.metadata.stored_at or a.metadata.analyzed_at, reverse=True)
