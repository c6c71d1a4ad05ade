"""
Tests for the in-memory content repository and its write validation.
"""

import unittest

from blocklift.errors import RepositoryError
from blocklift.models import ContainerKind
from blocklift.repository import InMemoryRepository

from tests.helpers import (
    add_block_type,
    add_container_field,
    add_model,
    add_string_field,
    block,
    block_node,
    document,
    page_with_sections,
    text,
)


class TestSchemaOperations(unittest.TestCase):
    """Test type and field management."""

    def test_type_keys_unique(self):
        """Test that api_keys cannot be reused."""
        repo = InMemoryRepository()
        add_model(repo, "pages")

        with self.assertRaises(RepositoryError):
            add_model(repo, "pages")

    def test_plural_keys_on_rename(self):
        """Test the plural api_key rule for models."""
        repo = InMemoryRepository(plural_model_keys=True)
        model = add_model(repo, "things_conv")

        with self.assertRaises(RepositoryError):
            repo.update_type(model.id, {"api_key": "thing"})
        self.assertEqual(repo.update_type(model.id, {"api_key": "things"}).api_key, "things")

    def test_new_field_fills_existing_records(self):
        """Test that adding a field gives existing records its empty value."""
        repo, page, _ = page_with_sections(locales=["en", "it"])
        record = repo.create_record(page.id, {"name": "Home"})
        add_container_field(repo, page.id, "extra", ContainerKind.RICH_TEXT, [], localized=True)

        self.assertEqual(repo.find_record(record["id"])["extra"], {"en": [], "it": []})

    def test_field_rename_moves_values(self):
        """Test that renaming a field keeps record values."""
        repo, page, _ = page_with_sections()
        record = repo.create_record(page.id, {"name": "Home"})
        name = repo.find_field_by_key(page.id, "name")

        repo.update_field(name.id, {"api_key": "title"})

        stored = repo.find_record(record["id"])
        self.assertEqual(stored["title"], "Home")
        self.assertNotIn("name", stored)

    def test_destroy_block_type_in_use(self):
        """Test that a block type with instances cannot be destroyed."""
        repo, page, cta = page_with_sections()
        repo.create_record(page.id, {"sections": [block(cta.id, title="A")]})

        with self.assertRaises(RepositoryError):
            repo.destroy_type(cta.id)

    def test_destroy_type_cleans_validators(self):
        """Test that destroyed types disappear from other fields' validators."""
        repo, page, cta = page_with_sections()

        repo.destroy_type(cta.id)

        self.assertEqual(repo.find_field_by_key(page.id, "sections").allowed_block_ids(), [])


class TestRecordValidation(unittest.TestCase):
    """Test the write validation that mirrors the remote API."""

    def setUp(self):
        self.repo, self.page, self.cta = page_with_sections(locales=["en", "it"])
        self.quote = add_block_type(self.repo, "quote")
        add_string_field(self.repo, self.quote.id, "text")

    def test_block_ids_assigned_and_kept(self):
        """Test that new blocks get ids and referenced blocks keep theirs."""
        record = self.repo.create_record(self.page.id, {"sections": [block(self.cta.id, title="A")]})
        block_id = record["sections"][0]["id"]

        updated = self.repo.update_record(record["id"], {"sections": [block_id, block(self.cta.id, title="B")]})

        self.assertEqual(updated["sections"][0]["id"], block_id)
        self.assertEqual(updated["sections"][0]["attributes"]["title"], "A")
        self.assertEqual(len(updated["sections"]), 2)

    def test_disallowed_block_rejected(self):
        """Test that blocks of types a field does not allow are refused."""
        with self.assertRaises(RepositoryError):
            self.repo.create_record(self.page.id, {"sections": [block(self.quote.id, text="Q")]})

    def test_unknown_field_rejected(self):
        """Test that unknown attributes are refused."""
        with self.assertRaises(RepositoryError):
            self.repo.create_record(self.page.id, {"nope": 1})

    def test_localized_values_need_every_locale(self):
        """Test that a localized field must name exactly the project locales."""
        add_string_field(self.repo, self.page.id, "slug", localized=True)

        with self.assertRaises(RepositoryError):
            self.repo.create_record(self.page.id, {"slug": {"en": "home"}})
        record = self.repo.create_record(self.page.id, {"slug": {"en": "home", "it": "casa"}})
        self.assertEqual(record["slug"], {"en": "home", "it": "casa"})

    def test_links_checked(self):
        """Test that links must point at existing records of an allowed type."""
        other = add_model(self.repo, "others")
        self.repo.create_field(self.page.id, {
            "label": "Related", "api_key": "related", "field_type": "links",
            "validators": {"items_item_type": {"item_types": [self.page.id]}},
        })
        target = self.repo.create_record(self.page.id, {"name": "Target"})
        stranger = self.repo.create_record(other.id, {})

        with self.assertRaises(RepositoryError):
            self.repo.create_record(self.page.id, {"related": ["missing"]})
        with self.assertRaises(RepositoryError):
            self.repo.create_record(self.page.id, {"related": [stranger["id"]]})
        record = self.repo.create_record(self.page.id, {"related": [{"id": target["id"]}]})
        self.assertEqual(record["related"], [target["id"]])

    def test_failing_records(self):
        """Test the hook that rejects updates of chosen records."""
        record = self.repo.create_record(self.page.id, {"name": "Home"})
        self.repo.failing_record_ids.add(record["id"])

        with self.assertRaises(RepositoryError):
            self.repo.update_record(record["id"], {"name": "Other"})

    def test_non_nested_reads_collapse_blocks(self):
        """Test that reads without nesting return block ids."""
        record = self.repo.create_record(self.page.id, {"sections": [block(self.cta.id, title="A")]})

        flat = self.repo.find_record(record["id"], nested=False)

        self.assertEqual(flat["sections"], [record["sections"][0]["id"]])


class TestStructuredTextValidation(unittest.TestCase):
    """Test structured text storage."""

    def setUp(self):
        self.repo = InMemoryRepository()
        self.cta = add_block_type(self.repo, "cta")
        add_string_field(self.repo, self.cta.id, "title")
        self.post = add_model(self.repo, "posts")
        add_container_field(self.repo, self.post.id, "body", ContainerKind.STRUCTURED_TEXT, [self.cta.id],
                            validators={
                                "structured_text_blocks": {"item_types": [self.cta.id]},
                                "structured_text_links": {"item_types": [self.post.id]},
                            })

    def test_blocks_stored_beside_document(self):
        """Test that block nodes are stored as ids with a blocks list."""
        record = self.repo.create_record(self.post.id, {"body": document(
            text("intro"), block_node(block(self.cta.id, title="A")),
        )})

        body = record["body"]
        block_id = body["blocks"][0]["id"]
        self.assertEqual(body["document"]["children"][1], {"type": "block", "item": block_id})

    def test_reference_at_root_rejected(self):
        """Test that inline nodes cannot sit directly under the root."""
        target = self.repo.create_record(self.post.id, {})

        with self.assertRaises(RepositoryError):
            self.repo.create_record(self.post.id, {"body": document({"type": "inlineItem", "item": target["id"]})})

    def test_unknown_node_rejected(self):
        """Test that unknown node tags are refused."""
        with self.assertRaises(RepositoryError):
            self.repo.create_record(self.post.id, {"body": document({"type": "video"})})

    def test_links_collected(self):
        """Test that record nodes populate the links list."""
        target = self.repo.create_record(self.post.id, {})
        paragraph = {"type": "paragraph", "children": [{"type": "inlineItem", "item": target["id"]}]}

        record = self.repo.create_record(self.post.id, {"body": document(paragraph)})

        self.assertEqual(record["body"]["links"], [{"id": target["id"]}])


if __name__ == '__main__':
    unittest.main(verbosity=2)
