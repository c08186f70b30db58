# src/memcore/processing/__init__.py
"""
Parsing and persistence of backend replies.
"""

from .parser import ParsedObservation, ParsedSummary, ParseResult, ResponseParser
from .processor import ResponseProcessor, compute_record_id

__all__ = [
    "ParseResult",
    "ParsedObservation",
    "ParsedSummary",
    "ResponseParser",
    "ResponseProcessor",
    "compute_record_id",
]
