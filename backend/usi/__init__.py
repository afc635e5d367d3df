"""USI engine bridge core.

This package runs a long-lived USI engine process and turns its
line-oriented output into ranked analysis results, one request at a time.
"""
from .aggregator import AnalysisResult, AnalysisVariant, VariantTable, rank_variants
from .errors import EngineError, HandshakeTimeout, RequestTimeout, StartupFailure, UnexpectedExit
from .line_reader import LineReader
from .process import EngineProcess
from .protocol import SessionOptions, State, UsiProtocol, build_position_command, parse_info
from .serializer import PendingRequest, RequestSerializer

__all__ = [
    "AnalysisResult",
    "AnalysisVariant",
    "VariantTable",
    "rank_variants",
    "EngineError",
    "HandshakeTimeout",
    "RequestTimeout",
    "StartupFailure",
    "UnexpectedExit",
    "LineReader",
    "EngineProcess",
    "SessionOptions",
    "State",
    "UsiProtocol",
    "build_position_command",
    "parse_info",
    "PendingRequest",
    "RequestSerializer",
]
