"""
Token window splitting for section content.
"""

import logging
from typing import List, Tuple

from .errors import ValidationError
from .tokenization import Tokenizer

logger = logging.getLogger(__name__)

# Emitted by decoders when a window boundary cuts a multi-byte character
_REPLACEMENT_CHAR = "\ufffd"


def clean_slice(piece: str) -> str:
    """Trim surrounding whitespace and characters broken by a token cut."""
    return piece.strip().strip(_REPLACEMENT_CHAR).strip()


def validate_budget(max_tokens: int, overlap_tokens: int) -> None:
    """
    Check a ``{max tokens, overlap}`` windowing policy.

    Raises:
        ValidationError: If either value is non-positive or the overlap is
            not smaller than the window
    """
    if max_tokens <= 0 or overlap_tokens <= 0:
        raise ValidationError(
            f"Token budgets must be positive (max={max_tokens}, overlap={overlap_tokens})"
        )
    if max_tokens <= overlap_tokens:
        raise ValidationError(
            f"maxTokensPerChunk ({max_tokens}) must be greater than tokenOverlap ({overlap_tokens})"
        )


class TokenWindowSplitter:
    """
    Splits text into windows of at most ``max_tokens`` tokens.

    Consecutive windows share ``overlap_tokens`` tokens of context. Windows
    are cut on token ids and decoded back to text; the decoded slice is
    trimmed of surrounding whitespace and of characters broken by the cut,
    then shrunk until its own token count fits the budget.
    """

    def __init__(self, tokenizer: Tokenizer, max_tokens: int, overlap_tokens: int):
        validate_budget(max_tokens, overlap_tokens)
        self.tokenizer = tokenizer
        self.max_tokens = max_tokens
        self.overlap_tokens = overlap_tokens

    def split_text(self, text: str) -> List[str]:
        """
        Split text into overlapping token windows.

        Args:
            text: Text to split

        Returns:
            Non-blank slices in reading order
        """
        token_ids = self.tokenizer.encode(text)
        if not token_ids:
            return []

        slices = []
        start = 0

        while True:
            piece, size = self._decode_window(token_ids, start)
            if piece:
                slices.append(piece)
            if start + size >= len(token_ids):
                break
            # The next window overlaps the one actually used, not the nominal one
            start += max(1, size - self.overlap_tokens)

        logger.debug(f"Split {len(token_ids)} tokens into {len(slices)} windows")
        return slices

    def _decode_window(self, token_ids: List, start: int) -> Tuple[str, int]:
        size = min(self.max_tokens, len(token_ids) - start)
        while True:
            piece = clean_slice(self.tokenizer.decode(token_ids[start:start + size]))
            # Re-encoding a decoded slice can merge differently at its edges
            if size == 1 or self.tokenizer.count(piece) <= self.max_tokens:
                return piece, size
            size -= 1
