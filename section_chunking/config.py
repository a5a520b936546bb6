import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Chunking budgets (tokens)
MAX_TOKENS_PER_CHUNK = int(os.getenv("MAX_TOKENS_PER_CHUNK", "500"))
TOKEN_OVERLAP = int(os.getenv("TOKEN_OVERLAP", "50"))
MIN_TOKENS_PER_CHUNK = int(os.getenv("MIN_TOKENS_PER_CHUNK", "100"))

# Tokenizer configuration
TOKENIZER_ENCODING = os.getenv("TOKENIZER_ENCODING", "o200k_base")  # gpt-4o encoding
TOKENIZER_MAX_RETRIES = int(os.getenv("TOKENIZER_MAX_RETRIES", "0"))  # 0 disables the retry wrapper
TOKENIZER_MAX_WAIT = float(os.getenv("TOKENIZER_MAX_WAIT", "10"))

# Reconstruction budgets (tokens)
MAX_SECTION_TOKENS = int(os.getenv("MAX_SECTION_TOKENS", "600"))
MAX_CONTEXT_TOKENS = int(os.getenv("MAX_CONTEXT_TOKENS", "6000"))


def unescape_separator(value: str) -> str:
    """Turn the literal \\n and \\t a .env file can hold into real whitespace."""
    return value.replace("\\n", "\n").replace("\\t", "\t")


# Joining chunk payloads back together
CHUNK_SEPARATOR = unescape_separator(os.getenv("CHUNK_SEPARATOR", "\n"))

# Ingestion
INGEST_MAX_WORKERS = int(os.getenv("INGEST_MAX_WORKERS", "4"))
LOG_FILE = os.getenv("LOG_FILE", "section_chunking.log")
