"""
Metadata validation for section trees and chunk sequences.

These checks run at the ingestion boundary only (chunks leaving the
pipeline, chunks coming back from storage). Internal transformations assume
well-formed data.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Sequence, Set, Tuple

from .errors import ValidationError
from .models import Chunk, SectionNode

logger = logging.getLogger(__name__)


def parse_header_route(header_route_levels: str) -> Tuple[int, ...]:
    """
    Parse a ``">"``-joined header route into its sibling indices.

    Args:
        header_route_levels: Route such as ``"1>2>1"``

    Returns:
        Tuple of positive integers, e.g. ``(1, 2, 1)``

    Raises:
        ValidationError: If the route is empty or has a non-positive or
            non-integer segment
    """
    if not isinstance(header_route_levels, str) or not header_route_levels.strip():
        raise ValidationError("headerRouteLevels must be a non-empty string")

    levels = []
    for segment in header_route_levels.split(">"):
        segment = segment.strip()
        if not segment.isdigit() or int(segment) < 1:
            raise ValidationError(
                f"Invalid segment {segment!r} in headerRouteLevels {header_route_levels!r}"
            )
        levels.append(int(segment))
    return tuple(levels)


def _require_positive_int(value, name: str) -> None:
    # bool is an int subclass; True is not a valid count
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{name} must be a positive integer, got {value!r}")


def validate_chunk(chunk: Chunk) -> None:
    """Check the metadata of a single chunk."""
    parse_header_route(chunk.header_route_levels)
    _require_positive_int(chunk.order, "order")
    _require_positive_int(chunk.total_order, "totalOrder")
    _require_positive_int(chunk.tokens, "tokens")
    _require_positive_int(chunk.char_count, "charCount")

    if not isinstance(chunk.text, str) or not chunk.text:
        raise ValidationError("payloadText must be a non-empty string")
    if not isinstance(chunk.table, bool):
        raise ValidationError(f"table must be a boolean, got {chunk.table!r}")
    if not isinstance(chunk.section_id, str) or not chunk.section_id:
        raise ValidationError("sectionId must be a non-empty string")


def validate_chunks(chunks: Sequence[Chunk]) -> None:
    """
    Check every chunk and the invariants of a complete document chunk set.

    For each ``header_route_levels`` the ``order`` values must be exactly
    ``1..k``, and ``total_order`` must not repeat across the document.

    Raises:
        ValidationError: On the first violation found
    """
    orders_by_route: Dict[str, List[int]] = defaultdict(list)
    seen_total_orders: Set[int] = set()

    for chunk in chunks:
        validate_chunk(chunk)

        if chunk.total_order in seen_total_orders:
            raise ValidationError(f"Duplicate totalOrder {chunk.total_order}")
        seen_total_orders.add(chunk.total_order)

        orders_by_route[chunk.header_route_levels].append(chunk.order)

    for route, orders in orders_by_route.items():
        if sorted(orders) != list(range(1, len(orders) + 1)):
            raise ValidationError(
                f"Chunks of section {route} have non-contiguous order values: {sorted(orders)}"
            )

    logger.debug(f"Validated {len(chunks)} chunks across {len(orders_by_route)} sections")


def validate_tree(root: SectionNode) -> None:
    """
    Check the route invariants of a section tree.

    Raises:
        ValidationError: If a route is malformed, does not extend its
            parent's route, repeats a sibling index or repeats anywhere in
            the tree
    """
    if root.header_route_levels:
        raise ValidationError("The root section must have an empty headerRouteLevels")

    seen_routes: Set[str] = set()
    stack = [root]
    while stack:
        parent = stack.pop()
        sibling_indices: Set[int] = set()
        parent_levels = parse_header_route(parent.header_route_levels) if parent.header_route_levels else ()

        for child in parent.subsections:
            levels = parse_header_route(child.header_route_levels)

            if levels[:-1] != parent_levels:
                raise ValidationError(
                    f"Section {child.header_route_levels!r} is not a child route of "
                    f"{parent.header_route_levels or '<root>'!r}"
                )
            if levels[-1] in sibling_indices:
                raise ValidationError(
                    f"Duplicate sibling index {levels[-1]} under {parent.header_route_levels or '<root>'}"
                )
            if child.header_route_levels in seen_routes:
                raise ValidationError(f"Duplicate headerRouteLevels {child.header_route_levels!r}")

            sibling_indices.add(levels[-1])
            seen_routes.add(child.header_route_levels)
            stack.append(child)

