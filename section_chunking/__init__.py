"""
Section-Aware Chunking for Document Chat
========================================

This package turns a parsed document into a tree of titled sections, cuts the
tree into token-bounded chunks tagged with their position in the document,
and restores document order for any subset of those chunks at query time.
"""

__version__ = "0.1.0"

from .chunker import SectionChunker
from .errors import SectionChunkingError, ValidationError
from .models import Chunk, ReconstructedSection, SectionNode, SectionRecord, StructuralInconsistency
from .reconciler import ChunkReconciler
from .reconstructor import ChunkReconstructor, compare_header_routes, route_key, sort_chunks
from .section_tree import SectionTreeBuilder

__all__ = [
    "Chunk",
    "ChunkReconciler",
    "ChunkReconstructor",
    "ReconstructedSection",
    "SectionChunker",
    "SectionChunkingError",
    "SectionNode",
    "SectionRecord",
    "SectionTreeBuilder",
    "StructuralInconsistency",
    "ValidationError",
    "compare_header_routes",
    "route_key",
    "sort_chunks",
]
