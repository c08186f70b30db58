# src/memcore/processing/parser.py
"""
Parser for backend replies.

Extracts ``<observation>`` and ``<summary>`` blocks from free-form model
output. Models do not always produce well-formed XML, so the blocks are
located and read with forgiving regular expressions instead of an XML parser.
Anything outside the blocks is ignored.

XML Format:
    <observation>
        <type>bugfix</type>
        <title>Fixed off-by-one in pager</title>
        <facts><fact>...</fact></facts>
        <files_modified><file>src/pager.py</file></files_modified>
    </observation>
"""

import html
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_OBSERVATION_TYPE = "discovery"


# =============================================================================
# PARSE RESULT
# =============================================================================


@dataclass
class ParsedObservation:
    type: str = DEFAULT_OBSERVATION_TYPE
    title: Optional[str] = None
    subtitle: Optional[str] = None
    facts: List[str] = field(default_factory=list)
    narrative: Optional[str] = None
    concepts: List[str] = field(default_factory=list)
    files_read: List[str] = field(default_factory=list)
    files_modified: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.title or self.subtitle or self.narrative or self.facts)


@dataclass
class ParsedSummary:
    request: Optional[str] = None
    investigated: Optional[str] = None
    learned: Optional[str] = None
    completed: Optional[str] = None
    next_steps: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not any(
            (self.request, self.investigated, self.learned, self.completed, self.next_steps, self.notes)
        )


@dataclass
class ParseResult:
    """Observations and at most one summary found in a reply."""
    observations: List[ParsedObservation] = field(default_factory=list)
    summary: Optional[ParsedSummary] = None
    errors: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.observations and self.summary is None


# =============================================================================
# RESPONSE PARSER
# =============================================================================


class ResponseParser:
    """
    Reads observation and summary blocks from backend output.

    Example:
        >>> parser = ResponseParser(valid_types=["bugfix", "discovery"])
        >>> result = parser.parse("<observation><type>bugfix</type><title>Fix</title></observation>")
        >>> result.observations[0].title
        'Fix'
    """

    OBSERVATION_PATTERN = re.compile(r"<observation\s*>(.*?)</observation\s*>", re.DOTALL | re.IGNORECASE)
    SUMMARY_PATTERN = re.compile(r"<summary\s*>(.*?)</summary\s*>", re.DOTALL | re.IGNORECASE)
    # Tells a summary the model explicitly declined to write apart from a real one.
    SKIP_SUMMARY_PATTERN = re.compile(r"<skip_summary\b[^>]*/?>", re.IGNORECASE)

    def __init__(self, valid_types: Optional[Sequence[str]] = None):
        self.valid_types = list(valid_types or [])

    @staticmethod
    def _field(block: str, tag: str) -> Optional[str]:
        match = re.search(rf"<{tag}\s*>(.*?)</{tag}\s*>", block, re.DOTALL | re.IGNORECASE)
        if not match:
            return None
        value = html.unescape(match.group(1).strip())
        return value or None

    @staticmethod
    def _list(block: str, container: str, item: str) -> List[str]:
        outer = re.search(rf"<{container}\s*>(.*?)</{container}\s*>", block, re.DOTALL | re.IGNORECASE)
        if not outer:
            return []
        values = re.findall(rf"<{item}\s*>(.*?)</{item}\s*>", outer.group(1), re.DOTALL | re.IGNORECASE)
        return [html.unescape(v.strip()) for v in values if v.strip()]

    def _normalize_type(self, raw_type: Optional[str]) -> str:
        value = (raw_type or "").strip().lower()
        if not self.valid_types:
            return value or DEFAULT_OBSERVATION_TYPE
        if value in self.valid_types:
            return value
        logger.debug(f"Observation type '{raw_type}' not valid for this mode, using '{self.valid_types[0]}'.")
        return self.valid_types[0]

    def parse_observation(self, block: str) -> ParsedObservation:
        return ParsedObservation(
            type=self._normalize_type(self._field(block, "type")),
            title=self._field(block, "title"),
            subtitle=self._field(block, "subtitle"),
            facts=self._list(block, "facts", "fact"),
            narrative=self._field(block, "narrative"),
            concepts=self._list(block, "concepts", "concept"),
            files_read=self._list(block, "files_read", "file"),
            files_modified=self._list(block, "files_modified", "file"),
        )

    def parse_summary(self, block: str) -> ParsedSummary:
        return ParsedSummary(
            request=self._field(block, "request"),
            investigated=self._field(block, "investigated"),
            learned=self._field(block, "learned"),
            completed=self._field(block, "completed"),
            next_steps=self._field(block, "next_steps"),
            notes=self._field(block, "notes"),
        )

    def parse(self, text: str) -> ParseResult:
        """
        Parses a backend reply.

        Empty blocks are reported in ``errors`` and dropped. When several
        summary blocks are present only the last one is kept.
        """
        result = ParseResult()
        if not text:
            return result

        for index, block in enumerate(self.OBSERVATION_PATTERN.findall(text)):
            observation = self.parse_observation(block)
            if observation.is_empty:
                result.errors.append(f"Observation block {index} has no content.")
                continue
            result.observations.append(observation)

        summary_blocks = self.SUMMARY_PATTERN.findall(text)
        if summary_blocks:
            summary = self.parse_summary(summary_blocks[-1])
            if summary.is_empty:
                result.errors.append("Summary block has no content.")
            else:
                result.summary = summary
        elif self.SKIP_SUMMARY_PATTERN.search(text):
            logger.debug("Backend declined to write a summary.")

        if result.errors:
            logger.debug(f"Response parsing reported {len(result.errors)} problem(s): {result.errors}")
        return result
