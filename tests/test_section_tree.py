"""
Tests for building section trees from flat records.
"""

import sys
import unittest
from pathlib import Path
import pytest

# Add the project root to the Python path
sys.path.append(str(Path(__file__).parent.parent))

from section_chunking.errors import ValidationError
from section_chunking.models import SectionNode, SectionRecord
from section_chunking.section_tree import SectionTreeBuilder, build_section_tree
from section_chunking.validation import validate_tree


def routes(root):
    return [(node.header_route_levels, node.header_route) for node in root.iter_preorder() if not node.is_root]


class TestSectionTreeBuilder(unittest.TestCase):
    """Tests for the SectionTreeBuilder class."""

    def test_build_nested_sections(self):
        """Test routes and header routes for well-nested headings."""
        records = [
            SectionRecord(heading="Intro", level=1, body="intro body"),
            SectionRecord(heading="Background", level=2, body="background body"),
            SectionRecord(heading="Scope", level=2, body="scope body"),
            SectionRecord(heading="Methods", level=1, body="methods body"),
        ]

        builder = SectionTreeBuilder(document_id="doc.pdf")
        root = builder.build(records)

        self.assertTrue(root.is_root)
        self.assertEqual(root.title, "")
        self.assertEqual(routes(root), [
            ("1", "Intro"),
            ("1>1", "Intro > Background"),
            ("1>2", "Intro > Scope"),
            ("2", "Methods"),
        ])
        self.assertEqual(root.find("1>2").content, "scope body")
        self.assertEqual(root.find("1>1").level, 2)
        self.assertEqual(builder.inconsistencies, [])
        validate_tree(root)

    def test_nesting_jump_inserts_untitled_section(self):
        """Test that a skipped level is filled and reported, not fatal."""
        records = [
            SectionRecord(heading="A", level=1),
            SectionRecord(heading="Deep", level=3, body="deep body"),
            SectionRecord(heading="B", level=1),
        ]

        builder = SectionTreeBuilder()
        root = builder.build(records)

        self.assertEqual(routes(root), [
            ("1", "A"),
            ("1>1", "A > N/A"),
            ("1>1>1", "A > N/A > Deep"),
            ("2", "B"),
        ])
        self.assertEqual(root.find("1>1").title, "")
        self.assertEqual(root.find("1>1").content, "")

        self.assertEqual(len(builder.inconsistencies), 1)
        inconsistency = builder.inconsistencies[0]
        self.assertEqual(inconsistency.record_index, 1)
        self.assertEqual(inconsistency.open_level, 1)
        self.assertEqual(inconsistency.level, 3)
        self.assertEqual(inconsistency.synthetic_sections, 1)
        self.assertIn("Deep", inconsistency.describe())
        validate_tree(root)

    def test_document_starting_below_level_one(self):
        """Test a first heading at level 2."""
        builder = SectionTreeBuilder()
        root = builder.build([SectionRecord(heading="Sub", level=2, body="text")])

        self.assertEqual(routes(root), [("1", "N/A"), ("1>1", "N/A > Sub")])
        self.assertEqual(len(builder.inconsistencies), 1)

    def test_sibling_after_deeper_section(self):
        """Test that closing a deep section resumes the right parent."""
        root = build_section_tree([
            SectionRecord(heading="A", level=1),
            SectionRecord(heading="A1", level=2),
            SectionRecord(heading="A1a", level=3),
            SectionRecord(heading="A2", level=2),
        ])

        self.assertEqual([route for route, _ in routes(root)], ["1", "1>1", "1>1>1", "1>2"])

    def test_empty_input_raises(self):
        """Test that an empty document is rejected."""
        with self.assertRaises(ValidationError):
            SectionTreeBuilder().build([])

    def test_invalid_level_raises(self):
        """Test that levels below 1 are rejected."""
        with self.assertRaises(ValidationError):
            SectionTreeBuilder().build([SectionRecord(heading="Bad", level=0)])

    def test_section_ids_are_stable_per_document(self):
        """Test section ids across re-ingestion and across documents."""
        records = [SectionRecord(heading="A", level=1), SectionRecord(heading="B", level=2)]

        first = build_section_tree(records, document_id="doc-1")
        again = build_section_tree(records, document_id="doc-1")
        other = build_section_tree(records, document_id="doc-2")

        self.assertEqual(first.find("1>1").section_id, again.find("1>1").section_id)
        self.assertNotEqual(first.find("1>1").section_id, other.find("1>1").section_id)
        self.assertNotEqual(first.find("1").section_id, first.find("1>1").section_id)

    def test_tables_are_copied(self):
        """Test that node tables do not share the record's mapping."""
        record = SectionRecord(heading="A", level=1, body="text", tables={0: "| a |"})
        root = build_section_tree([record])
        record.tables[5] = "| b |"

        self.assertEqual(root.find("1").tables, {0: "| a |"})


class TestAdoptTree(unittest.TestCase):
    """Tests for normalizing parser-built trees."""

    def test_adopt_derives_routes(self):
        """Test that routes and levels come from the nesting."""
        parsed = SectionNode.from_dict({
            "title": "",
            "subsections": [
                {"title": "A", "content": "a text", "subsections": [{"title": "B"}, {"title": ""}]},
                {"title": "C"},
            ],
        })

        root = SectionTreeBuilder(document_id="doc").adopt(parsed)

        self.assertEqual(routes(root), [
            ("1", "A"),
            ("1>1", "A > B"),
            ("1>2", "A > N/A"),
            ("2", "C"),
        ])
        self.assertEqual(root.find("1>1").level, 2)
        self.assertEqual(root.find("1").content, "a text")
        self.assertTrue(root.find("1>1").section_id)
        validate_tree(root)

    def test_adopt_wraps_titled_root(self):
        """Test that a parser root with its own title becomes a section."""
        parsed = SectionNode(title="Document", level=0, content="body")

        root = SectionTreeBuilder().adopt(parsed)

        self.assertEqual(routes(root), [("1", "Document")])
        self.assertEqual(root.find("1").content, "body")
        # The input tree is untouched
        self.assertEqual(parsed.header_route_levels, "")

    def test_round_trip_through_dict(self):
        """Test that a serialized tree adopts to the same routes."""
        root = build_section_tree([
            SectionRecord(heading="A", level=1, body="x", tables={3: "| t |"}),
            SectionRecord(heading="B", level=2, body="y"),
        ], document_id="doc")

        restored = SectionTreeBuilder(document_id="doc").adopt(SectionNode.from_dict(root.to_dict()))

        self.assertEqual(routes(restored), routes(root))
        self.assertEqual(restored.find("1").tables, {3: "| t |"})
        self.assertEqual(restored.find("1>1").section_id, root.find("1>1").section_id)


if __name__ == "__main__":
    pytest.main(["-xvs", __file__])
