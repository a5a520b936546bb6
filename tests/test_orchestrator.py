"""
End-to-end tests for the ingestion pipeline.
"""

import json
import os
import sys
import tempfile
import unittest
from pathlib import Path
import pytest

# Add the project root to the Python path
sys.path.append(str(Path(__file__).parent.parent))

from section_chunking.errors import SectionChunkingError, ValidationError
from section_chunking.models import SectionNode, SectionRecord
from section_chunking.orchestrator import (
    ingest_document,
    load_chunks,
    load_records,
    process_document,
    process_documents,
    reconstruct_from_file,
)

from fake_tokenizer import WhitespaceTokenizer, words

OPTIONS = {"max_tokens_per_chunk": 10, "token_overlap": 2, "min_tokens_per_chunk": 4}

MARKDOWN = f"""# Intro
{words("intro", 25)}

## Details
{words("detail", 6)}

| k | v |
|---|---|
| a | 1 |

# Summary
short summary
"""


class TestIngestDocument(unittest.TestCase):
    """Tests for ingest_document."""

    def setUp(self):
        self.tokenizer = WhitespaceTokenizer()

    def test_pipeline_invariants(self):
        """Test ordering and numbering of the stored chunks."""
        records = [
            SectionRecord(heading="Intro", level=1, body=words("intro", 25)),
            SectionRecord(heading="Details", level=2, body=words("detail", 6), tables={0: "| k |"}),
            SectionRecord(heading="Summary", level=1, body="short summary"),
        ]

        result = ingest_document(records, document_id="doc", tokenizer=self.tokenizer, **OPTIONS)

        self.assertEqual(result.total_sections, 3)
        self.assertEqual(
            [chunk.total_order for chunk in result.reconciled],
            list(range(1, len(result.reconciled) + 1)),
        )
        self.assertTrue(all(chunk.reconciled for chunk in result.reconciled))
        self.assertFalse(any(chunk.reconciled for chunk in result.chunks))
        self.assertLessEqual(
            sum(chunk.tokens for chunk in result.reconciled),
            sum(chunk.tokens for chunk in result.chunks),
        )

    def test_without_reconciliation(self):
        result = ingest_document(
            [SectionRecord(heading="A", level=1, body="a b c")],
            tokenizer=self.tokenizer,
            reconcile=False,
            **OPTIONS,
        )

        self.assertEqual(result.reconciled, result.chunks)

    def test_inconsistencies_are_logged(self):
        """Test that nesting anomalies are reported as warnings."""
        records = [SectionRecord(heading="A", level=1), SectionRecord(heading="Deep", level=4, body="x")]

        with self.assertLogs("section_chunking.orchestrator", level="WARNING") as logs:
            result = ingest_document(records, document_id="doc", tokenizer=self.tokenizer, **OPTIONS)

        self.assertEqual(len(result.inconsistencies), 1)
        self.assertIn("Deep", logs.output[0])
        self.assertEqual(result.reconciled[0].header_route, "A > N/A > N/A > Deep")

    def test_tree_source(self):
        """Test ingesting a tree produced directly by the parser."""
        tree = SectionNode.from_dict({"title": "", "subsections": [{"title": "Only", "content": "one two"}]})

        result = ingest_document(tree, tokenizer=self.tokenizer, **OPTIONS)

        self.assertEqual([(chunk.header_route_levels, chunk.text) for chunk in result.reconciled], [("1", "one two")])

    def test_invalid_budget(self):
        with self.assertRaises(ValidationError):
            ingest_document(
                [SectionRecord(heading="A", level=1, body="a")],
                tokenizer=self.tokenizer,
                max_tokens_per_chunk=5,
                token_overlap=5,
            )


class TestDocumentFiles(unittest.TestCase):
    """Tests for the file-based entry points."""

    def setUp(self):
        self.tokenizer = WhitespaceTokenizer()
        self.temp_dir = tempfile.TemporaryDirectory()
        self.dir = self.temp_dir.name

    def tearDown(self):
        self.temp_dir.cleanup()

    def write(self, name, content):
        path = os.path.join(self.dir, name)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content if isinstance(content, str) else json.dumps(content))
        return path

    def test_process_markdown_document(self):
        """Test the JSON payload written for one document."""
        input_path = self.write("report.md", MARKDOWN)
        output_path = os.path.join(self.dir, "report_chunks.json")

        process_document(input_path, output_path, tokenizer=self.tokenizer, **OPTIONS)

        with open(output_path, 'r', encoding='utf-8') as f:
            payload = json.load(f)

        self.assertEqual(payload["document_name"], "report.md")
        self.assertEqual(payload["total_sections"], 3)
        self.assertEqual(payload["total_chunks"], len(payload["chunks"]))
        self.assertEqual(
            [chunk["totalOrder"] for chunk in payload["chunks"]],
            list(range(1, payload["total_chunks"] + 1)),
        )
        tables = [chunk for chunk in payload["chunks"] if chunk["table"]]
        self.assertEqual([chunk["headerRoute"] for chunk in tables], ["Intro > Details"])

    def test_stored_chunks_reconstruct(self):
        """Test reading stored chunks back and reconstructing them."""
        input_path = self.write("report.md", MARKDOWN)
        output_path = os.path.join(self.dir, "report_chunks.json")
        process_document(input_path, output_path, tokenizer=self.tokenizer, **OPTIONS)

        chunks = load_chunks(output_path)
        sections = reconstruct_from_file(output_path, tokenizer=self.tokenizer, token_overlap=2)

        self.assertTrue(all(chunk.reconciled for chunk in chunks))
        self.assertEqual([section.header_route for section in sections], ["Intro", "Intro > Details", "Summary"])
        self.assertEqual(" ".join(sections[0].text.split()), words("intro", 25))
        self.assertEqual(sections[2].text, "short summary")

    def test_reconstruct_around_hits_from_file(self):
        input_path = self.write("report.md", MARKDOWN)
        output_path = os.path.join(self.dir, "report_chunks.json")
        process_document(input_path, output_path, tokenizer=self.tokenizer, **OPTIONS)
        with open(output_path, 'r', encoding='utf-8') as f:
            summary = [chunk for chunk in json.load(f)["chunks"] if chunk["headerRoute"] == "Summary"]
        hits_path = self.write("hits.json", summary)

        sections = reconstruct_from_file(
            output_path,
            hits_path=hits_path,
            max_section_tokens=50,
            max_total_tokens=50,
            tokenizer=self.tokenizer,
        )

        self.assertEqual([(section.header_route, section.text) for section in sections], [("Summary", "short summary")])

    def test_load_json_records(self):
        path = self.write("records.json", [
            {"headingText": "A", "level": 1, "bodyText": "alpha", "tables": {"0": "| t |"}},
            {"heading": "B", "level": 2, "body": "beta"},
        ])

        records = load_records(path)

        self.assertEqual(records[0], SectionRecord(heading="A", level=1, body="alpha", tables={0: "| t |"}))
        self.assertEqual(records[1], SectionRecord(heading="B", level=2, body="beta"))

    def test_load_json_tree(self):
        path = self.write("tree.json", {"title": "", "subsections": [{"title": "A"}]})

        tree = load_records(path)

        self.assertIsInstance(tree, SectionNode)
        self.assertEqual(tree.subsections[0].title, "A")

    def test_unsupported_file(self):
        path = self.write("scan.pdf", "%PDF-1.7")
        with self.assertRaises(SectionChunkingError):
            load_records(path)

    def test_load_chunks_rejects_bad_metadata(self):
        path = self.write("bad.json", {"chunks": [{"payloadText": "x", "headerRouteLevels": "1>0"}]})
        with self.assertRaises(ValidationError):
            load_chunks(path)

    def test_process_documents(self):
        """Test batch processing in parallel."""
        first = self.write("first.md", "# One\nalpha beta")
        second = self.write("second.md", "# Two\ngamma delta")
        output_dir = os.path.join(self.dir, "out")

        outputs = process_documents([first, second], output_dir, max_workers=2, tokenizer=self.tokenizer, **OPTIONS)

        self.assertEqual(outputs, [
            os.path.join(output_dir, "first_chunks.json"),
            os.path.join(output_dir, "second_chunks.json"),
        ])
        for path in outputs:
            self.assertTrue(os.path.exists(path))

    def test_process_documents_reports_failures(self):
        """Test that one bad document fails the batch after the others ran."""
        good = self.write("good.md", "# One\nalpha beta")
        bad = self.write("bad.pdf", "%PDF-1.7")
        output_dir = os.path.join(self.dir, "out")

        with self.assertRaises(SectionChunkingError):
            process_documents([good, bad], output_dir, tokenizer=self.tokenizer, **OPTIONS)
        self.assertTrue(os.path.exists(os.path.join(output_dir, "good_chunks.json")))


if __name__ == "__main__":
    pytest.main(["-xvs", __file__])
