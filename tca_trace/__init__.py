"""Instruments トレースから TCA のパフォーマンスを解析する"""

from .errors import (
    ExportFailedError,
    NoDomainDataError,
    StorageError,
    TCATraceError,
    TraceNotFoundError,
    XMLParsingError,
)
from .models import DomainAction, DomainEffect, SharedStateChange, TraceAnalysis
from .trace_parser import ParseFilters, TraceParser, parse

__version__ = "1.0.0"

__all__ = [
    "DomainAction",
    "DomainEffect",
    "ExportFailedError",
    "NoDomainDataError",
    "ParseFilters",
    "SharedStateChange",
    "StorageError",
    "TCATraceError",
    "TraceAnalysis",
    "TraceNotFoundError",
    "TraceParser",
    "XMLParsingError",
    "parse",
]
