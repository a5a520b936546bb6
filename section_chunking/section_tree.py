"""
Builds a section tree from the flat records produced by the document parser.
"""

import logging
import uuid
from typing import Dict, List, Optional, Sequence

from .errors import ValidationError
from .models import (
    HEADER_ROUTE_SEPARATOR,
    UNTITLED_SECTION,
    SectionNode,
    SectionRecord,
    StructuralInconsistency,
)

logger = logging.getLogger(__name__)


class SectionTreeBuilder:
    """
    Turns a flat sequence of heading records into a tree of sections.

    Parsed PDFs are noisy, so nesting jumps (a level-3 heading with no open
    level-2 section) never fail the build: the missing levels are filled with
    untitled sections and the anomaly is recorded in ``inconsistencies`` for
    the caller to report.
    """

    def __init__(self, document_id: str = ""):
        """
        Args:
            document_id: Identifier of the document, mixed into section ids so
                that ids are unique per document and stable across re-ingestion
        """
        self.document_id = document_id
        self.inconsistencies: List[StructuralInconsistency] = []

    def build(self, records: Sequence[SectionRecord]) -> SectionNode:
        """
        Build the section tree.

        Args:
            records: Flat records in document order

        Returns:
            Root node (level 0, empty title and route)

        Raises:
            ValidationError: If there are no records or a record has a level
                below 1
        """
        if not records:
            raise ValidationError("Cannot build a section tree from an empty document")

        self.inconsistencies = []
        root = SectionNode(title="", level=0)
        stack = [root]

        for index, record in enumerate(records):
            level = record.level
            if isinstance(level, bool) or not isinstance(level, int) or level < 1:
                raise ValidationError(f"Record {index} has invalid heading level {level!r}")

            # Close every open section at the same depth or deeper
            while stack[-1].level >= level:
                stack.pop()

            open_level = stack[-1].level
            missing = level - open_level - 1
            if missing > 0:
                self.inconsistencies.append(
                    StructuralInconsistency(
                        record_index=index,
                        heading=record.heading,
                        open_level=open_level,
                        level=level,
                        synthetic_sections=missing,
                    )
                )
                for synthetic_level in range(open_level + 1, level):
                    stack.append(self._add_child(stack[-1], "", synthetic_level))

            node = self._add_child(
                stack[-1],
                (record.heading or "").strip(),
                level,
                content=record.body or "",
                tables=record.tables,
            )
            stack.append(node)

        logger.info(
            f"Built section tree with {sum(1 for _ in root.iter_preorder()) - 1} sections "
            f"from {len(records)} records ({len(self.inconsistencies)} nesting anomalies)"
        )
        return root

    def adopt(self, root: SectionNode) -> SectionNode:
        """
        Normalize a tree produced directly by a structure-aware parser.

        Routes, header routes, section ids and levels are derived again from
        the nesting, so the result satisfies the same invariants as
        :meth:`build`. The input tree is left untouched.

        Args:
            root: Root of the parsed tree. If it carries a title, content or
                tables of its own it is kept as the first top-level section.

        Returns:
            A new root node
        """
        self.inconsistencies = []
        source = root
        if not root.is_root or root.title or root.content or root.tables:
            source = SectionNode(title="", level=0, subsections=[root])

        new_root = SectionNode(title="", level=0)
        self._adopt_children(source, new_root)
        return new_root

    def _adopt_children(self, source: SectionNode, target: SectionNode) -> None:
        for child in source.subsections:
            node = self._add_child(
                target,
                (child.title or "").strip(),
                target.level + 1,
                content=child.content,
                tables=child.tables,
            )
            self._adopt_children(child, node)

    def _add_child(
        self,
        parent: SectionNode,
        title: str,
        level: int,
        content: str = "",
        tables: Optional[Dict[int, str]] = None,
    ) -> SectionNode:
        index = len(parent.subsections) + 1
        if parent.header_route_levels:
            route = f"{parent.header_route_levels}>{index}"
        else:
            route = str(index)

        display_title = title or UNTITLED_SECTION
        if parent.header_route:
            header_route = f"{parent.header_route}{HEADER_ROUTE_SEPARATOR}{display_title}"
        else:
            header_route = display_title

        node = SectionNode(
            title=title,
            level=level,
            header_route_levels=route,
            header_route=header_route,
            section_id=self._section_id(route),
            content=content,
            # Copy to keep table order as given without sharing the mapping
            tables=dict(tables or {}),
        )
        parent.subsections.append(node)
        return node

    def _section_id(self, route: str) -> str:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{self.document_id}#{route}"))


def build_section_tree(records: Sequence[SectionRecord], document_id: str = "") -> SectionNode:
    """Convenience wrapper around :class:`SectionTreeBuilder` for callers that ignore anomalies."""
    return SectionTreeBuilder(document_id=document_id).build(records)
