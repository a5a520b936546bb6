"""
Shared data models for the section chunking pipeline.
"""

from typing import Any, Dict, Iterator, List, Optional, Tuple
from dataclasses import dataclass, field

from .errors import ValidationError

# Rendered in human-readable header routes for sections that have no title
# (synthetic intermediate sections, text before the first heading).
UNTITLED_SECTION = "N/A"
HEADER_ROUTE_SEPARATOR = " > "


@dataclass
class SectionRecord:
    """A single flat record as produced by the document parser."""

    heading: str
    level: int
    body: str = ""
    tables: Dict[int, str] = field(default_factory=dict)  # position in body -> table text


@dataclass
class SectionNode:
    """
    A titled section of a document and its ordered subsections.

    The root of a tree has level 0, an empty title and an empty route. Every
    other node's ``header_route_levels`` is its parent's route with its own
    1-based sibling index appended (``"1>2>1"``).
    """

    title: str
    level: int
    header_route_levels: str = ""
    header_route: str = ""
    section_id: str = ""
    content: str = ""
    tables: Dict[int, str] = field(default_factory=dict)
    subsections: List["SectionNode"] = field(default_factory=list)

    @property
    def is_root(self) -> bool:
        return self.level == 0 and not self.header_route_levels

    def iter_preorder(self) -> Iterator["SectionNode"]:
        """Yield this node and all its descendants in document order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.subsections))

    def find(self, header_route_levels: str) -> Optional["SectionNode"]:
        for node in self.iter_preorder():
            if node.header_route_levels == header_route_levels:
                return node
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "title": self.title,
            "level": self.level,
            "headerRouteLevels": self.header_route_levels,
            "headerRoute": self.header_route,
            "sectionId": self.section_id,
            "content": self.content,
            # JSON object keys must be strings; a list of pairs keeps the order
            "tables": [[position, table] for position, table in self.tables.items()],
            "subsections": [child.to_dict() for child in self.subsections],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], level: Optional[int] = None) -> "SectionNode":
        """
        Build a node (and its subtree) from a nested dictionary.

        Accepts both the output of :meth:`to_dict` and the looser shape a
        structure-aware parser may produce (only ``title`` and
        ``subsections`` are really needed). Missing levels are derived from
        the nesting depth.
        """
        if not isinstance(data, dict):
            raise ValidationError(f"Section must be an object, got {type(data).__name__}")

        node_level = data.get("level", level if level is not None else 0)
        if not isinstance(node_level, int) or node_level < 0:
            raise ValidationError(f"Invalid section level: {node_level!r}")

        tables = data.get("tables") or {}
        if isinstance(tables, dict):
            table_items = tables.items()
        else:
            table_items = tables

        return cls(
            title=str(data.get("title") or ""),
            level=node_level,
            header_route_levels=str(data.get("headerRouteLevels") or ""),
            header_route=str(data.get("headerRoute") or ""),
            section_id=str(data.get("sectionId") or ""),
            content=str(data.get("content") or ""),
            tables={int(position): str(table) for position, table in table_items},
            subsections=[
                cls.from_dict(child, level=node_level + 1)
                for child in data.get("subsections") or []
            ],
        )


@dataclass(frozen=True)
class Chunk:
    """
    A token-bounded slice of a section (or a whole table) with provenance.

    Chunks are immutable; renumbering produces new instances.
    """

    text: str
    header_route: str
    header_route_levels: str
    order: int
    total_order: int
    tokens: int
    char_count: int
    table: bool
    section_id: str
    reconciled: bool = False

    @property
    def chunk_id(self) -> str:
        """Deterministic identifier, stable across re-ingestion of the same document."""
        return f"{self.section_id}:{self.order}"

    def to_dict(self) -> dict:
        """Convert to the dictionary persisted by the vector store adapter."""
        return {
            "id": self.chunk_id,
            "payloadText": self.text,
            "headerRoute": self.header_route,
            "headerRouteLevels": self.header_route_levels,
            "order": self.order,
            "totalOrder": self.total_order,
            "tokens": self.tokens,
            "charCount": self.char_count,
            "table": self.table,
            "sectionId": self.section_id,
            "reconciled": self.reconciled,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        """
        Rebuild a chunk returned by storage or similarity search.

        This is the ingestion boundary for retrieved chunks: the metadata is
        checked here once and trusted afterwards.

        Raises:
            ValidationError: If a field is missing or malformed
        """
        from .validation import validate_chunk

        if not isinstance(data, dict):
            raise ValidationError(f"Chunk must be an object, got {type(data).__name__}")

        missing = [
            key for key in ("payloadText", "headerRouteLevels", "order", "totalOrder",
                            "tokens", "charCount", "table", "sectionId")
            if key not in data
        ]
        if missing:
            raise ValidationError(f"Chunk is missing fields: {', '.join(missing)}")

        chunk = cls(
            text=data["payloadText"],
            header_route=data.get("headerRoute") or "",
            header_route_levels=data["headerRouteLevels"],
            order=data["order"],
            total_order=data["totalOrder"],
            tokens=data["tokens"],
            char_count=data["charCount"],
            table=data["table"],
            section_id=data["sectionId"],
            reconciled=bool(data.get("reconciled", False)),
        )
        validate_chunk(chunk)
        return chunk


@dataclass(frozen=True)
class ReconstructedSection:
    """Ordered, concatenated chunk payloads of one section, built per query."""

    header_route: str
    header_route_levels: str
    text: str
    tokens: int
    char_count: int
    orders: Tuple[int, ...] = ()

    def to_dict(self) -> dict:
        return {
            "headerRoute": self.header_route,
            "headerRouteLevels": self.header_route_levels,
            "text": self.text,
            "tokens": self.tokens,
            "charCount": self.char_count,
        }


@dataclass(frozen=True)
class StructuralInconsistency:
    """
    A heading nesting anomaly found while building a section tree.

    Recoverable: the builder inserts ``synthetic_sections`` empty-title
    sections and carries on. The caller decides how to report it.
    """

    record_index: int
    heading: str
    open_level: int
    level: int
    synthetic_sections: int

    def describe(self) -> str:
        return (
            f"Heading '{self.heading}' (record {self.record_index}) jumps from level "
            f"{self.open_level} to level {self.level}; inserted "
            f"{self.synthetic_sections} untitled section(s)"
        )
