"""
Post-processing pass that merges undersized chunks within a section.
"""

import copy
import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .config import CHUNK_SEPARATOR, MAX_TOKENS_PER_CHUNK, MIN_TOKENS_PER_CHUNK, TOKEN_OVERLAP
from .errors import ValidationError
from .models import Chunk, SectionNode
from .reconstructor import join_payloads
from .tokenization import Tokenizer

logger = logging.getLogger(__name__)


class ChunkReconciler:
    """
    Merges runs of small chunks into fewer, better-sized ones.

    Merging never crosses a section boundary (a change of
    ``header_route_levels``) and never touches tables: a table chunk is
    passed through as-is and closes whatever group was being accumulated.
    """

    def __init__(
        self,
        tokenizer: Tokenizer,
        min_tokens_per_chunk: Optional[int] = None,
        max_tokens_per_chunk: Optional[int] = None,
        separator: Optional[str] = None,
        token_overlap: Optional[int] = None,
    ):
        """
        Initialize the reconciler.

        Args:
            tokenizer: Tokenizer used to measure merged payloads
            min_tokens_per_chunk: Chunks below this size count as undersized
                (default from config)
            max_tokens_per_chunk: A group is grown until the next chunk would
                push it past this size (default from config)
            separator: Text placed between merged payloads (default from config)
            token_overlap: Overlap the chunks were cut with, written once in
                merged payloads; 0 keeps it twice (default from config)

        Raises:
            ValidationError: If the thresholds are not positive or ``min``
                is not below ``max``
        """
        self.min_tokens_per_chunk = MIN_TOKENS_PER_CHUNK if min_tokens_per_chunk is None else min_tokens_per_chunk
        self.max_tokens_per_chunk = MAX_TOKENS_PER_CHUNK if max_tokens_per_chunk is None else max_tokens_per_chunk

        if self.min_tokens_per_chunk <= 0 or self.max_tokens_per_chunk <= 0:
            raise ValidationError(
                f"Token thresholds must be positive (min={self.min_tokens_per_chunk}, "
                f"max={self.max_tokens_per_chunk})"
            )
        if self.min_tokens_per_chunk >= self.max_tokens_per_chunk:
            raise ValidationError(
                f"minTokensPerChunk ({self.min_tokens_per_chunk}) must be lower than "
                f"maxTokensPerChunk ({self.max_tokens_per_chunk})"
            )

        self.tokenizer = tokenizer
        self.separator = CHUNK_SEPARATOR if separator is None else separator
        self.token_overlap = TOKEN_OVERLAP if token_overlap is None else token_overlap

    def reconcile(self, chunks: Iterable[Chunk]) -> List[Chunk]:
        """
        Merge undersized chunks and renumber the result.

        Args:
            chunks: A document's chunks; processed in ``total_order``

        Returns:
            New chunks, all marked ``reconciled``, with ``order`` 1..k per
            section and ``total_order`` 1..N
        """
        ordered = sorted(chunks, key=lambda chunk: chunk.total_order)
        merged: List[Chunk] = []

        run: List[Chunk] = []
        for chunk in ordered:
            if run and chunk.header_route_levels != run[0].header_route_levels:
                merged.extend(self._reconcile_section(run))
                run = []
            run.append(chunk)
        if run:
            merged.extend(self._reconcile_section(run))

        result = self._renumber(merged)
        undersized = sum(1 for chunk in result if not chunk.table and chunk.tokens < self.min_tokens_per_chunk)
        logger.info(
            f"Reconciled {len(ordered)} chunks into {len(result)} "
            f"({undersized} below {self.min_tokens_per_chunk} tokens)"
        )
        return result

    def apply_to_tree(self, root: SectionNode, chunks: Iterable[Chunk]) -> SectionNode:
        """
        Rebuild section contents from (reconciled) text chunks.

        Sections with no text chunks keep their content; tables always come
        from the original tree. The input tree is not modified.

        Args:
            root: Tree the chunks were produced from
            chunks: Chunks of that tree

        Returns:
            A copy of the tree with rebuilt section contents
        """
        by_route: Dict[str, List[Chunk]] = {}
        for chunk in chunks:
            if not chunk.table:
                by_route.setdefault(chunk.header_route_levels, []).append(chunk)

        new_root = copy.deepcopy(root)
        for node in new_root.iter_preorder():
            section_chunks = sorted(by_route.get(node.header_route_levels, []), key=lambda chunk: chunk.order)
            if section_chunks:
                node.content = self._join(section_chunks)
        return new_root

    def _reconcile_section(self, run: List[Chunk]) -> List[Chunk]:
        output: List[Chunk] = []
        group: List[Chunk] = []
        group_text = ""
        group_tokens = 0

        for chunk in sorted(run, key=lambda chunk: chunk.order):
            if chunk.table:
                if group:
                    output.append(self._close(group, group_text, group_tokens))
                    group = []
                output.append(chunk)
                continue

            if group:
                candidate = self._join_pair(group[-1], group_text, chunk)
                candidate_tokens = self.tokenizer.count(candidate)
                if candidate_tokens <= self.max_tokens_per_chunk:
                    group.append(chunk)
                    group_text, group_tokens = candidate, candidate_tokens
                    continue
                output.append(self._close(group, group_text, group_tokens))

            group = [chunk]
            group_text, group_tokens = chunk.text, chunk.tokens

        if group:
            output.append(self._close(group, group_text, group_tokens))
        return output

    def _close(self, group: List[Chunk], text: str, tokens: int) -> Chunk:
        if len(group) == 1:
            return group[0]
        return replace(group[0], text=text, tokens=tokens, char_count=len(text))

    def _join_pair(self, previous: Chunk, text: str, following: Chunk) -> str:
        return join_payloads(
            text,
            following.text,
            separator=self.separator,
            tokenizer=self.tokenizer if following.order == previous.order + 1 else None,
            token_overlap=self.token_overlap,
        )

    def _join(self, section_chunks: List[Chunk]) -> str:
        text = section_chunks[0].text
        for previous, following in zip(section_chunks, section_chunks[1:]):
            text = self._join_pair(previous, text, following)
        return text

    @staticmethod
    def _renumber(chunks: List[Chunk]) -> List[Chunk]:
        counters: Dict[str, int] = {}
        renumbered = []
        for total_order, chunk in enumerate(chunks, start=1):
            order = counters.get(chunk.header_route_levels, 0) + 1
            counters[chunk.header_route_levels] = order
            renumbered.append(replace(chunk, order=order, total_order=total_order, reconciled=True))
        return renumbered
