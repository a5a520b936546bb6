import os
import json
import logging
from concurrent.futures import Executor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from tqdm import tqdm

from .chunker import SectionChunker
from .config import INGEST_MAX_WORKERS
from .errors import SectionChunkingError, ValidationError
from .markdown_parser import MarkdownSectionParser
from .models import Chunk, ReconstructedSection, SectionNode, SectionRecord, StructuralInconsistency
from .reconciler import ChunkReconciler
from .reconstructor import ChunkReconstructor
from .section_tree import SectionTreeBuilder
from .tokenization import Tokenizer, build_tokenizer
from .validation import validate_chunks, validate_tree

logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = (".md", ".markdown", ".txt")

DocumentSource = Union[Sequence[SectionRecord], SectionNode]


@dataclass
class IngestionResult:
    """Everything produced while ingesting one document."""

    tree: SectionNode
    chunks: List[Chunk]
    reconciled: List[Chunk]
    inconsistencies: List[StructuralInconsistency] = field(default_factory=list)

    @property
    def total_sections(self) -> int:
        return sum(1 for node in self.tree.iter_preorder() if node.header_route_levels)


def _record_from_dict(data: Dict[str, Any], index: int) -> SectionRecord:
    if not isinstance(data, dict):
        raise ValidationError(f"Record {index} must be an object, got {type(data).__name__}")

    tables = data.get("tables") or {}
    table_items = tables.items() if isinstance(tables, dict) else tables
    return SectionRecord(
        heading=str(data.get("headingText", data.get("heading")) or ""),
        level=data.get("level"),
        body=str(data.get("bodyText", data.get("body")) or ""),
        tables={int(position): str(table) for position, table in table_items},
    )


def load_records(path: str) -> DocumentSource:
    """
    Load the parser output for one document.

    Args:
        path: Markdown/text file, or JSON holding either a list of
            ``{headingText, level, bodyText, tables}`` records or a section tree

    Returns:
        Flat records, or the root of a section tree

    Raises:
        SectionChunkingError: If the file type is not supported
        ValidationError: If the JSON content is malformed
    """
    extension = os.path.splitext(path)[1].lower()

    if extension in MARKDOWN_EXTENSIONS:
        with open(path, 'r', encoding='utf-8') as f:
            return MarkdownSectionParser().parse(f.read())

    if extension == ".json":
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if isinstance(data, list):
            return [_record_from_dict(item, index) for index, item in enumerate(data)]
        if isinstance(data, dict):
            return SectionNode.from_dict(data)
        raise ValidationError(f"Unsupported JSON document in {path}")

    raise SectionChunkingError(f"Unsupported input file type: {path}")


def ingest_document(
    source: DocumentSource,
    document_id: str = "",
    tokenizer: Optional[Tokenizer] = None,
    max_tokens_per_chunk: Optional[int] = None,
    token_overlap: Optional[int] = None,
    min_tokens_per_chunk: Optional[int] = None,
    reconcile: bool = True,
    executor: Optional[Executor] = None,
) -> IngestionResult:
    """
    Run the structuring pipeline for one document.

    Builds the section tree, chunks it, reconciles the chunks and validates
    the result before it is handed to storage.

    Args:
        source: Flat parser records or an already structured tree
        document_id: Identifier mixed into the section ids
        tokenizer: Tokenizer to use (built from config if omitted)
        max_tokens_per_chunk: Chunk budget (default from config)
        token_overlap: Overlap between consecutive slices (default from config)
        min_tokens_per_chunk: Reconciliation threshold (default from config)
        reconcile: Whether to run the reconciliation pass
        executor: Optional executor for chunking sections concurrently

    Returns:
        IngestionResult with the tree, the raw and the reconciled chunks
    """
    tokenizer = tokenizer or build_tokenizer()

    builder = SectionTreeBuilder(document_id=document_id)
    if isinstance(source, SectionNode):
        tree = builder.adopt(source)
    else:
        tree = builder.build(source)

    for inconsistency in builder.inconsistencies:
        logger.warning(f"{document_id or 'document'}: {inconsistency.describe()}")

    validate_tree(tree)

    chunker = SectionChunker(
        tokenizer,
        max_tokens_per_chunk=max_tokens_per_chunk,
        token_overlap=token_overlap,
    )
    chunks = chunker.chunk(tree, executor=executor)

    if reconcile:
        reconciler = ChunkReconciler(
            tokenizer,
            min_tokens_per_chunk=min_tokens_per_chunk,
            max_tokens_per_chunk=chunker.max_tokens_per_chunk,
            token_overlap=chunker.token_overlap,
        )
        reconciled = reconciler.reconcile(chunks)
    else:
        reconciled = list(chunks)

    validate_chunks(reconciled)

    return IngestionResult(
        tree=tree,
        chunks=chunks,
        reconciled=reconciled,
        inconsistencies=list(builder.inconsistencies),
    )


def process_document(input_path: str, output_path: str, tokenizer: Optional[Tokenizer] = None, **options) -> str:
    """
    Main orchestration function to turn one parsed document into stored chunks.

    Args:
        input_path: Path to the parser output (markdown or JSON)
        output_path: Path to save the output JSON file
        tokenizer: Tokenizer to use (built from config if omitted)
        **options: Budget overrides forwarded to :func:`ingest_document`

    Returns:
        Path to the generated output file
    """
    logger.info(f"Starting processing of document: {input_path}")

    document_name = os.path.basename(input_path)
    source = load_records(input_path)
    result = ingest_document(source, document_id=document_name, tokenizer=tokenizer, **options)

    result_dict = {
        "document_name": document_name,
        "total_sections": result.total_sections,
        "total_chunks": len(result.reconciled),
        "chunks": [chunk.to_dict() for chunk in result.reconciled],
    }

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(result_dict, f, indent=2, ensure_ascii=False)

    logger.info(f"Processing complete. Generated {len(result.reconciled)} chunks.")
    logger.info(f"Output saved to {output_path}")

    return output_path


def output_path_for(input_path: str, output_dir: str) -> str:
    input_name = os.path.splitext(os.path.basename(input_path))[0]
    return os.path.join(output_dir, f"{input_name}_chunks.json")


def process_documents(
    input_paths: Sequence[str],
    output_dir: str,
    max_workers: Optional[int] = None,
    tokenizer: Optional[Tokenizer] = None,
    **options,
) -> List[str]:
    """
    Process several documents in parallel, one pipeline per document.

    Every document is attempted; failures are logged and reported together
    once the batch is done.

    Args:
        input_paths: Parser output files
        output_dir: Directory receiving one ``<name>_chunks.json`` per document
        max_workers: Thread count (default ``INGEST_MAX_WORKERS``)
        tokenizer: Tokenizer shared by all documents (built from config if omitted)
        **options: Budget overrides forwarded to :func:`ingest_document`

    Returns:
        Output paths in the order of ``input_paths``

    Raises:
        SectionChunkingError: If at least one document failed
    """
    if not input_paths:
        return []

    os.makedirs(output_dir, exist_ok=True)
    tokenizer = tokenizer or build_tokenizer()
    workers = min(max_workers or INGEST_MAX_WORKERS, len(input_paths))

    outputs: Dict[str, str] = {}
    failures: Dict[str, str] = {}

    with ThreadPoolExecutor(max_workers=workers) as pool:
        future_map = {
            pool.submit(process_document, path, output_path_for(path, output_dir), tokenizer, **options): path
            for path in input_paths
        }
        for future in tqdm(as_completed(future_map), total=len(future_map), desc="Processing documents"):
            path = future_map[future]
            try:
                outputs[path] = future.result()
            except (SectionChunkingError, OSError, json.JSONDecodeError) as e:
                logger.error(f"Failed to process {path}: {str(e)}", exc_info=True)
                failures[path] = str(e)

    if failures:
        raise SectionChunkingError(
            f"{len(failures)} of {len(input_paths)} documents failed: {', '.join(sorted(failures))}"
        )

    return [outputs[path] for path in input_paths]


def load_chunks(path: str) -> List[Chunk]:
    """
    Load stored chunks (the output of :func:`process_document` or a plain list).

    Raises:
        ValidationError: If a chunk is malformed
    """
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    items = data.get("chunks", []) if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise ValidationError(f"Expected a list of chunks in {path}")
    return [Chunk.from_dict(item) for item in items]


def reconstruct_from_file(
    chunks_path: str,
    hits_path: Optional[str] = None,
    max_section_tokens: Optional[int] = None,
    max_total_tokens: Optional[int] = None,
    tokenizer: Optional[Tokenizer] = None,
    token_overlap: Optional[int] = None,
) -> List[ReconstructedSection]:
    """
    Reconstruct sections from stored chunks.

    Args:
        chunks_path: Chunks to reconstruct (any subset of a document)
        hits_path: Optional similarity-search hits, most similar first; when
            given, sections are rebuilt around the hits within the token
            budgets instead of from every chunk
        tokenizer: Tokenizer the chunks were cut with (built from config if omitted)
        token_overlap: Overlap the chunks were cut with (default from config)

    Returns:
        Reconstructed sections in document order
    """
    chunks = load_chunks(chunks_path)
    reconstructor = ChunkReconstructor(tokenizer or build_tokenizer(), token_overlap=token_overlap)

    if hits_path is None:
        return reconstructor.reconstruct(chunks)

    hits = load_chunks(hits_path)
    return reconstructor.reconstruct_around_hits(
        hits,
        chunks,
        max_section_tokens=max_section_tokens,
        max_total_tokens=max_total_tokens,
    )
