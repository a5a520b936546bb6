"""
Core chunking implementation: section tree in, token-bounded chunks out.
"""

import logging
from concurrent.futures import Executor
from dataclasses import replace
from typing import List, Optional, Tuple

from .config import MAX_TOKENS_PER_CHUNK, TOKEN_OVERLAP
from .models import Chunk, SectionNode
from .splitter import TokenWindowSplitter, validate_budget
from .tokenization import Tokenizer

logger = logging.getLogger(__name__)


class SectionChunker:
    """
    Walks a section tree and emits token-bounded chunks.

    For every section, in pre-order:
    1. Each table becomes one chunk (never split, may exceed the budget)
    2. The section's own content is split into overlapping token windows
    3. ``order`` counts the section's chunks from 1, tables first

    ``total_order`` is assigned afterwards in a single pass over the
    pre-order result, so the numbering does not depend on how the per-section
    work was scheduled.
    """

    def __init__(
        self,
        tokenizer: Tokenizer,
        max_tokens_per_chunk: Optional[int] = None,
        token_overlap: Optional[int] = None,
        splitter: Optional[TokenWindowSplitter] = None,
    ):
        """
        Initialize the chunker with its budget policy.

        Args:
            tokenizer: Tokenizer used to count emitted payloads
            max_tokens_per_chunk: Window size in tokens (default from config)
            token_overlap: Tokens repeated between consecutive windows
                (default from config)
            splitter: Custom splitter; defaults to a token window splitter
                built from the same budget

        Raises:
            ValidationError: If the budget is invalid
        """
        self.max_tokens_per_chunk = MAX_TOKENS_PER_CHUNK if max_tokens_per_chunk is None else max_tokens_per_chunk
        self.token_overlap = TOKEN_OVERLAP if token_overlap is None else token_overlap
        validate_budget(self.max_tokens_per_chunk, self.token_overlap)

        self.tokenizer = tokenizer
        self.splitter = splitter or TokenWindowSplitter(
            tokenizer, self.max_tokens_per_chunk, self.token_overlap
        )

    def chunk(self, root: SectionNode, executor: Optional[Executor] = None) -> List[Chunk]:
        """
        Chunk a whole section tree.

        Args:
            root: Root of the tree (the root itself never produces chunks)
            executor: Optional executor to chunk sections concurrently

        Returns:
            Chunks in document order with ``total_order`` 1..N
        """
        nodes = [node for node in root.iter_preorder() if node.header_route_levels]

        if executor is None:
            per_node = [self._chunk_node(node) for node in nodes]
        else:
            # Executor.map yields results in submission order
            per_node = list(executor.map(self._chunk_node, nodes))

        chunks = [chunk for node_chunks in per_node for chunk in node_chunks]
        chunks = [replace(chunk, total_order=position) for position, chunk in enumerate(chunks, start=1)]

        table_count = sum(1 for chunk in chunks if chunk.table)
        logger.info(
            f"Created {len(chunks)} chunks ({table_count} tables) from {len(nodes)} sections"
        )
        return chunks

    def _chunk_node(self, node: SectionNode) -> List[Chunk]:
        payloads: List[Tuple[str, bool]] = []

        for table in node.tables.values():
            table_text = table.strip()
            if table_text:
                payloads.append((table_text, True))

        if node.content.strip():
            payloads.extend((piece, False) for piece in self.splitter.split_text(node.content))

        return [
            Chunk(
                text=text,
                header_route=node.header_route,
                header_route_levels=node.header_route_levels,
                order=order,
                total_order=0,  # assigned once the whole tree is chunked
                tokens=self.tokenizer.count(text),
                char_count=len(text),
                table=is_table,
                section_id=node.section_id,
            )
            for order, (text, is_table) in enumerate(payloads, start=1)
        ]
