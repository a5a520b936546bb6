"""
Tokenizer collaborators used to measure and window chunk payloads.

The chunker and reconciler receive a tokenizer explicitly; nothing in the
package holds a process-wide tokenizer client.
"""

import logging
from typing import Any, List, Optional, Protocol, Sequence

import tiktoken
from tenacity import Retrying, before_sleep_log, stop_after_attempt, stop_after_delay, wait_exponential

from .config import TOKENIZER_ENCODING, TOKENIZER_MAX_RETRIES, TOKENIZER_MAX_WAIT

logger = logging.getLogger(__name__)


class Tokenizer(Protocol):
    """
    What the pipeline needs from a tokenizer.

    Implementations must be deterministic: the same text always yields the
    same tokens, otherwise ``order``/``totalOrder`` are not reproducible
    across re-ingestion.
    """

    def count(self, text: str) -> int:
        ...

    def encode(self, text: str) -> List[Any]:
        ...

    def decode(self, tokens: Sequence[Any]) -> str:
        ...


class TiktokenTokenizer:
    """Tokenizer backed by a ``tiktoken`` BPE encoding."""

    def __init__(self, encoding_name: Optional[str] = None):
        """
        Args:
            encoding_name: tiktoken encoding (defaults to ``TOKENIZER_ENCODING``)
        """
        self.encoding_name = encoding_name or TOKENIZER_ENCODING
        self._encoding = tiktoken.get_encoding(self.encoding_name)

    def encode(self, text: str) -> List[int]:
        # Document text may legitimately contain strings like "<|endoftext|>"
        return self._encoding.encode(text, disallowed_special=())

    def decode(self, tokens: Sequence[int]) -> str:
        return self._encoding.decode(list(tokens))

    def count(self, text: str) -> int:
        return len(self.encode(text))


class RetryingTokenizer:
    """
    Wraps another tokenizer with a bounded retry policy.

    Meant for remote or otherwise flaky tokenizers. The chunking components
    never retry on their own; the ingestion caller decides whether to wrap
    the tokenizer it hands them. After the last attempt the original
    exception is re-raised unchanged.
    """

    def __init__(self, inner: Tokenizer, attempts: int = 3, max_wait: float = 10.0):
        """
        Args:
            inner: Tokenizer to delegate to
            attempts: Maximum number of calls per operation
            max_wait: Upper bound in seconds for the backoff and for the whole
                retry sequence of one call
        """
        self.inner = inner
        self._retrying = Retrying(
            stop=stop_after_attempt(attempts) | stop_after_delay(max_wait),
            wait=wait_exponential(multiplier=0.5, max=max_wait),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def count(self, text: str) -> int:
        return self._retrying(self.inner.count, text)

    def encode(self, text: str) -> List[Any]:
        return self._retrying(self.inner.encode, text)

    def decode(self, tokens: Sequence[Any]) -> str:
        return self._retrying(self.inner.decode, tokens)


def build_tokenizer(
    encoding_name: Optional[str] = None,
    max_retries: Optional[int] = None,
) -> Tokenizer:
    """
    Create the tokenizer configured for this process.

    Args:
        encoding_name: tiktoken encoding name (defaults to config)
        max_retries: Extra attempts on failure; 0 disables the retry wrapper

    Returns:
        A tokenizer ready to be passed to the chunker and reconciler
    """
    tokenizer: Tokenizer = TiktokenTokenizer(encoding_name)
    retries = TOKENIZER_MAX_RETRIES if max_retries is None else max_retries
    if retries > 0:
        logger.info(f"Wrapping tokenizer with {retries} retries")
        tokenizer = RetryingTokenizer(tokenizer, attempts=retries + 1, max_wait=TOKENIZER_MAX_WAIT)
    return tokenizer
