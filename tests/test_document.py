"""
Tests for structured text rewriting.
"""

import unittest

from blocklift.config import ReplacementPolicy
from blocklift.engine.document import (
    RichDocumentTransformer,
    document_has_block_type,
    inline_blocks_for_creation,
    replace_referenced_blocks,
)
from blocklift.errors import UnknownNodeError
from blocklift.models.blocks import make_block


def stored_document(children, blocks, links=None):
    value = {"schema": "dast", "document": {"type": "root", "children": children}, "blocks": blocks}
    if links is not None:
        value["links"] = links
    return value


CTA = "cta"
QUOTE = "quote"


class TestRichDocumentTransformer(unittest.TestCase):
    """Test rewriting block nodes into record references."""

    def setUp(self):
        self.blocks = [
            make_block(CTA, {"title": "Buy"}, "b1"),
            make_block(QUOTE, {"text": "Hi"}, "b2"),
            make_block(CTA, {"title": "Inline"}, "b3"),
        ]
        self.value = stored_document(
            [
                {"type": "heading", "level": 2, "children": [{"type": "span", "value": "Title"}]},
                {"type": "block", "item": "b1"},
                {"type": "block", "item": "b2"},
                {"type": "paragraph", "children": [
                    {"type": "span", "value": "see "},
                    {"type": "inlineBlock", "item": "b3"},
                ]},
                {"type": "thematicBreak"},
            ],
            self.blocks,
            links=[{"id": "existing"}],
        )
        self.mapping = {"b1": "rec1", "b3": "rec3"}

    def test_replace_root_block_with_paragraph(self):
        """Test that a root-level block becomes a paragraph wrapping an inlineItem."""
        result = RichDocumentTransformer(CTA, self.mapping).transform(self.value)

        children = result["document"]["children"]
        self.assertEqual(children[1], {"type": "paragraph", "children": [
            {"type": "span", "value": ""},
            {"type": "inlineItem", "item": "rec1"},
        ]})
        # Other block types are untouched
        self.assertEqual(children[2], {"type": "block", "item": "b2"})

    def test_replace_inline_block(self):
        """Test that a nested inlineBlock becomes an inlineItem in place."""
        result = RichDocumentTransformer(CTA, self.mapping).transform(self.value)

        paragraph = result["document"]["children"][3]
        self.assertEqual(paragraph["children"][1], {"type": "inlineItem", "item": "rec3"})

    def test_replace_cleans_block_and_link_lists(self):
        """Test the blocks/links lists after a replacement."""
        result = RichDocumentTransformer(CTA, self.mapping).transform(self.value)

        self.assertEqual(result["blocks"], [{"id": "b2"}])
        self.assertEqual(result["links"], [{"id": "existing"}, {"id": "rec1"}, {"id": "rec3"}])

    def test_augment_keeps_blocks(self):
        """Test that augmenting inserts the reference right after the kept node."""
        result = RichDocumentTransformer(CTA, self.mapping, ReplacementPolicy.AUGMENT).transform(self.value)

        children = result["document"]["children"]
        self.assertEqual(children[1], {"type": "block", "item": "b1"})
        self.assertEqual(children[2]["children"][1], {"type": "inlineItem", "item": "rec1"})
        paragraph = children[4]
        self.assertEqual(paragraph["children"][1:], [
            {"type": "inlineBlock", "item": "b3"},
            {"type": "inlineItem", "item": "rec3"},
        ])
        self.assertEqual(result["blocks"], [{"id": "b1"}, {"id": "b2"}, {"id": "b3"}])

    def test_unrelated_nodes_preserved(self):
        """Test that nodes without target blocks survive the rebuild."""
        result = RichDocumentTransformer(CTA, self.mapping).transform(self.value)

        children = result["document"]["children"]
        self.assertEqual(children[0], self.value["document"]["children"][0])
        self.assertEqual(children[-1], {"type": "thematicBreak"})

    def test_input_not_mutated(self):
        """Test that the transformer builds a new tree."""
        RichDocumentTransformer(CTA, self.mapping).transform(self.value)

        self.assertEqual(self.value["document"]["children"][1], {"type": "block", "item": "b1"})
        self.assertEqual(len(self.value["blocks"]), 3)

    def test_no_mapping_returns_none(self):
        """Test that a document without mapped target blocks is left alone."""
        self.assertIsNone(RichDocumentTransformer(CTA, {}).transform(self.value))
        self.assertIsNone(RichDocumentTransformer("other", self.mapping).transform(self.value))
        self.assertIsNone(RichDocumentTransformer(CTA, self.mapping).transform(None))

    def test_inlined_items(self):
        """Test documents whose nodes carry full block records."""
        value = {"schema": "dast", "document": {"type": "root", "children": [
            {"type": "block", "item": make_block(CTA, {"title": "Buy"}, "b1")},
        ]}}

        result = RichDocumentTransformer(CTA, self.mapping).transform(value)

        self.assertEqual(result["document"]["children"][0]["children"][1]["item"], "rec1")
        self.assertNotIn("blocks", result)

    def test_unknown_node_type(self):
        """Test that unknown node tags are rejected."""
        value = stored_document([{"type": "video", "children": []}, {"type": "block", "item": "b1"}],
                                [make_block(CTA, {}, "b1")])

        with self.assertRaises(UnknownNodeError):
            RichDocumentTransformer(CTA, self.mapping).transform(value)

    def test_documents_without_target_untouched(self):
        """Test that documents holding no block of the type are left alone."""
        value = stored_document([{"type": "video", "children": []}, {"type": "block", "item": "b2"}],
                                [make_block(QUOTE, {"text": "Hi"}, "b2")])

        self.assertIsNone(RichDocumentTransformer(CTA, self.mapping).transform(value))


class TestDocumentHelpers(unittest.TestCase):
    """Test document helper functions."""

    def test_document_has_block_type(self):
        """Test detecting block types through stored and inlined nodes."""
        value = stored_document(
            [{"type": "list", "style": "bulleted", "children": [
                {"type": "listItem", "children": [
                    {"type": "paragraph", "children": [{"type": "inlineBlock", "item": "b1"}]},
                ]},
            ]}],
            [make_block(CTA, {}, "b1")],
        )

        self.assertTrue(document_has_block_type(value, CTA))
        self.assertFalse(document_has_block_type(value, QUOTE))
        self.assertFalse(document_has_block_type(None, CTA))

    def test_replace_referenced_blocks(self):
        """Test swapping updated blocks into both the nodes and the blocks list."""
        old = make_block(CTA, {"title": "old"}, "b1")
        new = make_block(CTA, {"title": "new"}, "b1")
        value = {"schema": "dast",
                 "document": {"type": "root", "children": [{"type": "block", "item": old}]},
                 "blocks": [old]}

        result = replace_referenced_blocks(value, {"b1": new})

        self.assertEqual(result["document"]["children"][0]["item"], new)
        self.assertEqual(result["blocks"], [new])

    def test_inline_blocks_for_creation(self):
        """Test preparing a document for a new record."""
        value = stored_document(
            [
                {"type": "block", "item": "b1"},
                {"type": "paragraph", "children": [{"type": "itemLink", "item": {"id": "rec9"},
                                                    "children": [{"type": "span", "value": "x"}]}]},
            ],
            [make_block(QUOTE, {"text": "Hi"}, "b1")],
            links=[{"id": "rec9"}],
        )

        result = inline_blocks_for_creation(value, lambda b: {"payload": b["attributes"]["text"]})

        self.assertEqual(result["document"]["children"][0]["item"], {"payload": "Hi"})
        self.assertEqual(result["document"]["children"][1]["children"][0]["item"], "rec9")
        self.assertNotIn("blocks", result)
        self.assertNotIn("links", result)


if __name__ == '__main__':
    unittest.main(verbosity=2)
