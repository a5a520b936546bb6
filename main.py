#!/usr/bin/env python3
import os
import argparse
import json
import logging
import sys

from section_chunking.config import LOG_FILE
from section_chunking.orchestrator import output_path_for, process_document, process_documents, reconstruct_from_file
from section_chunking.reconstructor import ChunkReconstructor

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(LOG_FILE)
    ]
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Section-Aware Chunking: structure parsed documents for retrieval"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Chunk one or more parsed documents")
    ingest.add_argument(
        "-i", "--input",
        required=True,
        nargs="+",
        help="Parser output files (markdown, or JSON records / section tree)"
    )
    ingest.add_argument(
        "-o", "--output",
        help="Output JSON file (single input) or directory (several inputs). "
             "Defaults to ./output/<name>_chunks.json"
    )
    ingest.add_argument("--max-tokens", type=int, help="Maximum tokens per chunk")
    ingest.add_argument("--overlap", type=int, help="Tokens repeated between consecutive chunks")
    ingest.add_argument("--min-tokens", type=int, help="Chunks below this size are merged")
    ingest.add_argument("--no-reconcile", action="store_true", help="Skip the merge pass")
    ingest.add_argument("--workers", type=int, help="Documents processed in parallel")

    reconstruct = subparsers.add_parser("reconstruct", help="Rebuild sections from stored chunks")
    reconstruct.add_argument("-i", "--input", required=True, help="Chunks JSON file")
    reconstruct.add_argument("--hits", help="Similarity-search hits JSON file, most similar first")
    reconstruct.add_argument("--overlap", type=int, help="Token overlap the chunks were cut with")
    reconstruct.add_argument("-o", "--output", help="Write sections as JSON instead of printing the context")
    reconstruct.add_argument("--section-prefix", default="", help="Prefix for each section heading in the context")
    reconstruct.add_argument("--max-section-tokens", type=int, help="Token budget per section (with --hits)")
    reconstruct.add_argument("--max-total-tokens", type=int, help="Token budget for all sections (with --hits)")

    return parser


def run_ingest(args) -> None:
    input_paths = [os.path.abspath(path) for path in args.input]
    for input_path in input_paths:
        if not os.path.exists(input_path):
            logger.error(f"Input file not found: {input_path}")
            sys.exit(1)

    options = {
        "max_tokens_per_chunk": args.max_tokens,
        "token_overlap": args.overlap,
        "min_tokens_per_chunk": args.min_tokens,
        "reconcile": not args.no_reconcile,
    }

    if len(input_paths) == 1 and args.output and args.output.lower().endswith(".json"):
        output_path = os.path.abspath(args.output)
        os.makedirs(os.path.dirname(output_path), exist_ok=True)
        process_document(input_paths[0], output_path, **options)
        logger.info(f"Processing complete. Results saved to {output_path}")
        return

    output_dir = os.path.abspath(args.output) if args.output else os.path.join(os.getcwd(), "output")
    if len(input_paths) == 1:
        os.makedirs(output_dir, exist_ok=True)
        output_path = process_document(input_paths[0], output_path_for(input_paths[0], output_dir), **options)
        logger.info(f"Processing complete. Results saved to {output_path}")
        return

    outputs = process_documents(input_paths, output_dir, max_workers=args.workers, **options)
    logger.info(f"Processing complete. {len(outputs)} documents saved to {output_dir}")


def run_reconstruct(args) -> None:
    chunks_path = os.path.abspath(args.input)
    if not os.path.exists(chunks_path):
        logger.error(f"Input file not found: {chunks_path}")
        sys.exit(1)

    sections = reconstruct_from_file(
        chunks_path,
        hits_path=os.path.abspath(args.hits) if args.hits else None,
        token_overlap=args.overlap,
        max_section_tokens=args.max_section_tokens,
        max_total_tokens=args.max_total_tokens,
    )

    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            json.dump([section.to_dict() for section in sections], f, indent=2, ensure_ascii=False)
        logger.info(f"Saved {len(sections)} sections to {args.output}")
    else:
        print(ChunkReconstructor().render_context(sections, section_prefix=args.section_prefix))


def main():
    """
    Main entry point for the Section-Aware Chunking system.
    """
    args = build_parser().parse_args()

    try:
        if args.command == "ingest":
            run_ingest(args)
        else:
            run_reconstruct(args)
    except Exception as e:
        logger.error(f"Error during processing: {str(e)}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
