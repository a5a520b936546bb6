"""
Restores document order for retrieved chunks and reassembles sections.

Ordering uses only ``header_route_levels`` and ``order``; documents are never
re-parsed at query time.
"""

import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import CHUNK_SEPARATOR, MAX_CONTEXT_TOKENS, MAX_SECTION_TOKENS, TOKEN_OVERLAP
from .models import Chunk, ReconstructedSection
from .splitter import clean_slice
from .tokenization import Tokenizer
from .validation import parse_header_route

logger = logging.getLogger(__name__)


def route_key(header_route_levels: str) -> Tuple[int, ...]:
    """
    Sort key for a header route.

    Python compares tuples element-wise and puts a strict prefix first, which
    is exactly document order: ``(1,) < (1, 1) < (1, 1, 2) < (1, 2) < (2,)``.
    """
    return parse_header_route(header_route_levels)


def compare_header_routes(first: str, second: str) -> int:
    """
    Three-way comparison of two header routes.

    Returns:
        Negative if ``first`` comes earlier in the document, positive if
        later, 0 for the same section
    """
    first_key, second_key = route_key(first), route_key(second)
    return (first_key > second_key) - (first_key < second_key)


def sort_chunks(chunks: Iterable[Chunk]) -> List[Chunk]:
    """Stable sort of chunks into document order by ``(route, order)``."""
    return sorted(chunks, key=lambda chunk: (route_key(chunk.header_route_levels), chunk.order))


def sort_sections(sections: Iterable[ReconstructedSection]) -> List[ReconstructedSection]:
    """Stable sort of reconstructed sections into document order."""
    return sorted(sections, key=lambda section: route_key(section.header_route_levels))


def join_payloads(
    previous: str,
    following: str,
    separator: str = CHUNK_SEPARATOR,
    tokenizer: Optional[Tokenizer] = None,
    token_overlap: int = 0,
) -> str:
    """
    Join two chunk payloads.

    When a tokenizer and the chunker's ``token_overlap`` are given, the
    context repeated at the start of ``following`` is written once instead of
    twice. The repeated text is taken from the first ``token_overlap`` tokens
    of ``following`` (fewer if trimming at the window edge shortened it) and
    is only dropped when ``previous`` ends with exactly that text. In every
    other case the payloads are joined with ``separator``. Only pass a
    tokenizer for consecutive text slices of the same section.
    """
    if tokenizer is not None and token_overlap > 0:
        head_ids = tokenizer.encode(following)[:token_overlap]
        for size in range(len(head_ids), 0, -1):
            head = clean_slice(tokenizer.decode(head_ids[:size]))
            if head and following.startswith(head) and previous.endswith(head):
                return previous + following[len(head):]
    return f"{previous}{separator}{following}"


def _is_continuation(previous: Chunk, following: Chunk) -> bool:
    return (
        following.order == previous.order + 1
        and not previous.table
        and not following.table
    )


class ChunkReconstructor:
    """
    Turns an unordered, possibly partial set of chunks back into readable
    sections in document order.
    """

    def __init__(
        self,
        tokenizer: Optional[Tokenizer] = None,
        token_overlap: Optional[int] = None,
        separator: Optional[str] = None,
    ):
        """
        Initialize the reconstructor.

        Args:
            tokenizer: Tokenizer the chunks were cut with; without one the
                context repeated between consecutive slices is kept twice
            token_overlap: Overlap the chunks were cut with (default from config)
            separator: Text placed between joined payloads (default from config)
        """
        self.tokenizer = tokenizer
        self.token_overlap = TOKEN_OVERLAP if token_overlap is None else token_overlap
        self.separator = CHUNK_SEPARATOR if separator is None else separator

    def reconstruct(self, chunks: Iterable[Chunk]) -> List[ReconstructedSection]:
        """
        Reassemble chunks into sections.

        Duplicates (same route and order) are dropped, keeping the first one
        seen. Missing chunks and missing sections are simply absent from the
        result.

        Args:
            chunks: Any subset of a document's chunks, in any order

        Returns:
            One reconstructed section per route present, in document order
        """
        unique = self.deduplicate(chunks)
        if not unique:
            return []

        sections = []
        group: List[Chunk] = []
        for chunk in sort_chunks(unique):
            if group and chunk.header_route_levels != group[0].header_route_levels:
                sections.append(self._join_group(group))
                group = []
            group.append(chunk)
        sections.append(self._join_group(group))

        logger.debug(f"Reconstructed {len(sections)} sections from {len(unique)} chunks")
        return sections

    def reconstruct_around_hits(
        self,
        hits: Sequence[Chunk],
        section_chunks: Iterable[Chunk],
        max_section_tokens: Optional[int] = None,
        max_total_tokens: Optional[int] = None,
    ) -> List[ReconstructedSection]:
        """
        Build answer context around similarity-search hits.

        Hits are visited in similarity order. For each hit whose section has
        not been used yet, a window of that section's chunks is grown around
        the hit, alternately one chunk above and one below, as long as the
        window stays within the section budget. Once the total budget is
        spent no further sections are added.

        Args:
            hits: Retrieved chunks, most similar first
            section_chunks: All stored chunks of the sections the hits belong to
            max_section_tokens: Budget per reconstructed section (default from config)
            max_total_tokens: Budget for all sections together (default from config)

        Returns:
            Reconstructed sections in document order
        """
        max_section_tokens = MAX_SECTION_TOKENS if max_section_tokens is None else max_section_tokens
        remaining = MAX_CONTEXT_TOKENS if max_total_tokens is None else max_total_tokens

        by_route: Dict[str, List[Chunk]] = {}
        for chunk in sort_chunks(self.deduplicate(section_chunks)):
            by_route.setdefault(chunk.header_route_levels, []).append(chunk)

        sections = []
        seen_routes = set()
        for hit in hits:
            if remaining <= 0:
                break
            if hit.header_route_levels in seen_routes:
                continue

            section = self._window_around(
                hit,
                by_route.get(hit.header_route_levels, []),
                min(max_section_tokens, remaining),
            )
            seen_routes.add(hit.header_route_levels)
            remaining -= section.tokens
            sections.append(section)

        logger.info(
            f"Reconstructed {len(sections)} sections around {len(hits)} hits "
            f"({sum(section.tokens for section in sections)} tokens)"
        )
        return sort_sections(sections)

    def render_context(self, sections: Iterable[ReconstructedSection], section_prefix: str = "") -> str:
        """Render sections as the context block handed to the answering model."""
        return "\n\n".join(
            f"{section_prefix}{section.header_route}\n{section.text}" for section in sections
        )

    @staticmethod
    def deduplicate(chunks: Iterable[Chunk]) -> List[Chunk]:
        """Drop chunks whose ``(header_route_levels, order)`` was already seen."""
        unique: "OrderedDict[Tuple[str, int], Chunk]" = OrderedDict()
        for chunk in chunks:
            unique.setdefault((chunk.header_route_levels, chunk.order), chunk)
        return list(unique.values())

    def _window_around(self, hit: Chunk, siblings: List[Chunk], budget: int) -> ReconstructedSection:
        position = next(
            (index for index, chunk in enumerate(siblings) if chunk.order == hit.order),
            None,
        )
        if position is None:
            # The store no longer holds the hit's section; use the hit alone
            siblings, position = [hit], 0

        low = high = position
        tokens = siblings[position].tokens
        while True:
            grew = False
            if low > 0 and tokens + siblings[low - 1].tokens <= budget:
                low -= 1
                tokens += siblings[low].tokens
                grew = True
            if high < len(siblings) - 1 and tokens + siblings[high + 1].tokens <= budget:
                high += 1
                tokens += siblings[high].tokens
                grew = True
            if not grew:
                break

        return self._join_group(siblings[low:high + 1])

    def _join_group(self, group: List[Chunk]) -> ReconstructedSection:
        text = group[0].text
        for previous, following in zip(group, group[1:]):
            text = join_payloads(
                text,
                following.text,
                separator=self.separator,
                tokenizer=self.tokenizer if _is_continuation(previous, following) else None,
                token_overlap=self.token_overlap,
            )

        first = group[0]
        return ReconstructedSection(
            header_route=first.header_route,
            header_route_levels=first.header_route_levels,
            text=text,
            tokens=sum(chunk.tokens for chunk in group),
            char_count=len(text),
            orders=tuple(chunk.order for chunk in group),
        )
