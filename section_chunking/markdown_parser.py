"""
Turns the markdown emitted by the PDF parser into flat section records.
"""

import logging
import re
from typing import Dict, List, Optional, Tuple

from .models import SectionRecord

logger = logging.getLogger(__name__)

_HEADING_PATTERN = re.compile(r"^ {0,3}(#{1,6})\s+(.+?)(?:\s+#+)?\s*$")
_FENCE_PATTERN = re.compile(r"^ {0,3}(`{3,}|~{3,})")
_TABLE_DELIMITER_PATTERN = re.compile(r"^\s*\|?\s*:?-+:?\s*(\|\s*:?-+:?\s*)*\|?\s*$")


class MarkdownSectionParser:
    """
    Splits markdown into one record per ATX heading.

    - Headings inside fenced code blocks are body text
    - GitHub-style pipe tables are lifted out of the body into ``tables``,
      keyed by the character position in the body where they stood
    - Text before the first heading becomes an untitled level-1 record

    Parser output is often messy; nothing here raises on malformed markdown.
    """

    def parse(self, markdown: str) -> List[SectionRecord]:
        """
        Parse a markdown document.

        Args:
            markdown: Document text

        Returns:
            Records in document order (empty for a blank document)
        """
        records: List[SectionRecord] = []
        lines = markdown.splitlines()

        heading: Optional[str] = None
        level = 1
        body_lines: List[str] = []
        pending_tables: List[Tuple[int, str]] = []  # (body line index, table text)
        fence: Optional[str] = None

        index = 0
        while index < len(lines):
            line = lines[index]

            if fence is not None:
                body_lines.append(line)
                if line.strip().startswith(fence):
                    fence = None
                index += 1
                continue

            fence_match = _FENCE_PATTERN.match(line)
            if fence_match:
                fence = fence_match.group(1)
                body_lines.append(line)
                index += 1
                continue

            heading_match = _HEADING_PATTERN.match(line)
            if heading_match:
                record = self._make_record(heading, level, body_lines, pending_tables)
                if record is not None:
                    records.append(record)
                heading = heading_match.group(2).strip()
                level = len(heading_match.group(1))
                body_lines, pending_tables = [], []
                index += 1
                continue

            if self._is_table_start(lines, index):
                end = index + 2
                while end < len(lines) and lines[end].strip() and "|" in lines[end]:
                    end += 1
                pending_tables.append((len(body_lines), "\n".join(lines[index:end])))
                index = end
                continue

            body_lines.append(line)
            index += 1

        record = self._make_record(heading, level, body_lines, pending_tables)
        if record is not None:
            records.append(record)

        logger.info(
            f"Parsed {len(records)} sections "
            f"({sum(len(record.tables) for record in records)} tables) from markdown"
        )
        return records

    @staticmethod
    def _is_table_start(lines: List[str], index: int) -> bool:
        return (
            index + 1 < len(lines)
            and "|" in lines[index]
            and "|" in lines[index + 1]
            and bool(_TABLE_DELIMITER_PATTERN.match(lines[index + 1]))
        )

    @staticmethod
    def _make_record(
        heading: Optional[str],
        level: int,
        body_lines: List[str],
        pending_tables: List[Tuple[int, str]],
    ) -> Optional[SectionRecord]:
        non_blank = [position for position, line in enumerate(body_lines) if line.strip()]
        first = non_blank[0] if non_blank else len(body_lines)
        last = non_blank[-1] + 1 if non_blank else len(body_lines)
        kept = body_lines[first:last]
        body = "\n".join(kept)

        # Preamble with nothing in it
        if heading is None and not body and not pending_tables:
            return None

        tables: Dict[int, str] = {}
        for line_index, table in pending_tables:
            offset = line_index - first
            if offset <= 0:
                position = 0
            else:
                position = min(len("\n".join(kept[:offset])) + 1, len(body))
            # Tables with nothing between them keep document order
            while position in tables:
                position += 1
            tables[position] = table

        return SectionRecord(heading=heading or "", level=level, body=body, tables=tables)


def parse_markdown(markdown: str) -> List[SectionRecord]:
    """Parse markdown with the default parser."""
    return MarkdownSectionParser().parse(markdown)
