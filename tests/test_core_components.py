"""
Unit tests for core Blocklift components.

Tests configuration management, conversion options, data models and the
DuckDB state store.
"""

import os
import tempfile
import unittest
from pathlib import Path

from blocklift.config import ConfigManager, ConversionOptions, ReplacementPolicy
from blocklift.database import DatabaseManager
from blocklift.models import (
    BlockInstance,
    ContainerKind,
    FieldDefinition,
    FieldUsage,
    GroupedInstance,
    NestedPath,
    PathStep,
    TypeDefinition,
    instance_key,
)


class TestConfigManager(unittest.TestCase):
    """Test configuration management functionality."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = Path(self.temp_dir) / "test_config.yaml"

    def tearDown(self):
        """Clean up test fixtures."""
        if self.config_path.exists():
            self.config_path.unlink()
        os.rmdir(self.temp_dir)

    def test_config_creation_with_defaults(self):
        """Test config manager falls back to defaults when file missing."""
        config = ConfigManager(str(self.config_path))

        self.assertEqual(config.api_base_url, "https://site-api.datocms.com")
        self.assertEqual(config.page_size, 100)
        self.assertEqual(config.state_filename, "blocklift.db")
        self.assertTrue(config.state_enabled)

    def test_config_loading_from_file(self):
        """Test loading configuration from YAML file."""
        test_config = """
api:
  base_url: "http://test:3000"
  timeout: 60.0

conversion:
  replacement_policy: "augment"

state:
  filename: "test-state.db"
"""
        with open(self.config_path, 'w') as f:
            f.write(test_config)

        config = ConfigManager(str(self.config_path))

        self.assertEqual(config.api_base_url, "http://test:3000")
        self.assertEqual(config.api_timeout, 60.0)
        self.assertEqual(config.get("conversion.replacement_policy"), "augment")
        self.assertEqual(config.state_filename, "test-state.db")

    def test_dot_notation_access(self):
        """Test accessing config values with dot notation."""
        config = ConfigManager(str(self.config_path))  # Uses defaults

        self.assertEqual(config.get("performance.batch_size"), 10)
        self.assertEqual(config.get("conversion.replacement_policy"), "replace")
        self.assertEqual(config.get("nonexistent.key", "default"), "default")
        self.assertIn("batch_delay", config.get_section("performance"))

    def test_config_reload(self):
        """Test configuration reloading."""
        with open(self.config_path, 'w') as f:
            f.write("performance:\n  batch_size: 5")

        config = ConfigManager(str(self.config_path))
        self.assertEqual(config.get("performance.batch_size"), 5)

        with open(self.config_path, 'w') as f:
            f.write("performance:\n  batch_size: 20")

        config.reload()
        self.assertEqual(config.get("performance.batch_size"), 20)

    def test_invalid_yaml_falls_back_to_defaults(self):
        """Test that an unreadable file does not abort loading."""
        with open(self.config_path, 'w') as f:
            f.write("api: [unclosed")

        config = ConfigManager(str(self.config_path))
        self.assertEqual(config.page_size, 100)

    def test_api_token_read_from_environment(self):
        """Test that the token comes from the configured environment variable."""
        with open(self.config_path, 'w') as f:
            f.write("api:\n  token_env: 'BLOCKLIFT_TEST_TOKEN'")

        config = ConfigManager(str(self.config_path))
        os.environ["BLOCKLIFT_TEST_TOKEN"] = "secret"
        try:
            self.assertEqual(config.api_token, "secret")
        finally:
            del os.environ["BLOCKLIFT_TEST_TOKEN"]


class TestConversionOptions(unittest.TestCase):
    """Test the immutable conversion options."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = Path(self.temp_dir) / "missing.yaml"

    def tearDown(self):
        os.rmdir(self.temp_dir)

    def test_from_config_defaults(self):
        """Test options snapshot from the default configuration."""
        options = ConversionOptions.from_config(ConfigManager(str(self.config_path)))

        self.assertEqual(options.replacement_policy, ReplacementPolicy.REPLACE)
        self.assertFalse(options.fully_replace)
        self.assertEqual(options.batch_size, 10)
        self.assertAlmostEqual(options.batch_delay, 0.2)

    def test_overrides_take_precedence(self):
        """Test that CLI overrides win and None overrides are ignored."""
        options = ConversionOptions.from_config(
            ConfigManager(str(self.config_path)),
            replacement_policy="augment",
            fully_replace=None,
            name_suffix="debug",
        )

        self.assertEqual(options.replacement_policy, ReplacementPolicy.AUGMENT)
        self.assertFalse(options.fully_replace)
        self.assertEqual(options.name_suffix, "debug")

    def test_options_are_frozen(self):
        """Test that options cannot be changed after creation."""
        options = ConversionOptions()
        with self.assertRaises(Exception):
            options.skip_deletions = True

    def test_deletes_original_type(self):
        """Test when the original block type is destroyed."""
        self.assertTrue(ConversionOptions(fully_replace=True).deletes_original_type)
        self.assertFalse(ConversionOptions(fully_replace=True, skip_deletions=True).deletes_original_type)
        self.assertFalse(ConversionOptions(
            fully_replace=True, replacement_policy=ReplacementPolicy.AUGMENT
        ).deletes_original_type)


class TestDataModels(unittest.TestCase):
    """Test data model validation and functionality."""

    def test_field_container_kind(self):
        """Test detection of container fields and their allowed blocks."""
        field = FieldDefinition(
            id="f1", label="Body", api_key="body", field_type="structured_text",
            validators={"structured_text_blocks": {"item_types": ["b1"]},
                        "structured_text_links": {"item_types": ["m1"]}},
        )

        self.assertEqual(field.container_kind, ContainerKind.STRUCTURED_TEXT)
        self.assertEqual(field.allowed_block_ids(), ["b1"])
        self.assertEqual(field.allowed_link_ids(), ["m1"])

    def test_plain_field_has_no_blocks(self):
        """Test that plain fields allow no blocks."""
        field = FieldDefinition(id="f2", label="Title", api_key="title", field_type="string")

        self.assertIsNone(field.container_kind)
        self.assertEqual(field.allowed_block_ids(), [])

    def test_nested_path_description(self):
        """Test NestedPath helpers."""
        parent = TypeDefinition(id="t1", name="Section", api_key="section", modular_block=True)
        field = FieldDefinition(
            id="f3", label="Cards", api_key="cards", field_type="rich_text",
            validators={"rich_text_blocks": {"item_types": ["card"]}},
        )
        usage = FieldUsage.from_field(field, parent)
        path = NestedPath(
            root_type_id="p", root_type_name="Page", root_type_api_key="pages",
            steps=(
                PathStep(field_api_key="sections", expected_block_type_id="t1", localized=True,
                         field_kind=ContainerKind.RICH_TEXT),
                PathStep(field_api_key="cards", expected_block_type_id="card", localized=False,
                         field_kind=ContainerKind.RICH_TEXT),
            ),
            usage=usage,
        )

        self.assertEqual(usage.qualified_name, "section.cards")
        self.assertTrue(usage.parent_is_block)
        self.assertEqual(path.describe(), "pages -> sections -> cards")
        self.assertEqual(path.depth, 2)
        self.assertTrue(path.is_in_localized_context)

    def test_instance_keys(self):
        """Test slot keys shared by instances and groups."""
        instance = BlockInstance(record_id="r1", locale="en", data={}, instance_id="b1", indices=[0, 2])
        group = GroupedInstance(group_key=instance.slot_key, record_id="r1", instance_ids=["b1", "b2"])

        self.assertEqual(instance_key("r1", [0, 2]), "r1_0_2")
        self.assertEqual(instance.slot_key, "r1_0_2")
        self.assertEqual(group.all_keys, ["b1", "b2", "r1_0_2"])
        self.assertEqual(group.reference_id, "b1")


class TestDatabaseManager(unittest.TestCase):
    """Test database management functionality."""

    def setUp(self):
        """Set up test database."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / "test.db"

    def tearDown(self):
        """Clean up test database."""
        for path in Path(self.temp_dir).iterdir():
            path.unlink()
        os.rmdir(self.temp_dir)

    def test_database_initialization(self):
        """Test database creation and table initialization."""
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()

            self.assertTrue(self.db_path.exists())
            self.assertIsNotNone(db.connection)

    def test_requires_connection(self):
        """Test that operations fail without a connection."""
        db = DatabaseManager(str(self.db_path))
        with self.assertRaises(RuntimeError):
            db.initialize_database()

    def test_mapping_operations(self):
        """Test saving and loading instance mappings."""
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()

            self.assertTrue(db.save_mapping("block1", "inst1", "rec1"))
            self.assertTrue(db.save_mapping("block1", "inst2", "rec2"))
            self.assertTrue(db.save_mapping("block2", "inst1", "rec3"))

            # Same instance twice is refused
            self.assertFalse(db.save_mapping("block1", "inst1", "rec9"))

            self.assertEqual(db.load_mappings("block1"), {"inst1": "rec1", "inst2": "rec2"})
            self.assertEqual(db.load_mappings("block2"), {"inst1": "rec3"})

    def test_conversion_tracking(self):
        """Test remembering the destination of an unfinished conversion."""
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()
            self.assertIsNone(db.get_pending_destination("block1"))

            db.start_conversion("block1", "model1")
            self.assertEqual(db.get_pending_destination("block1"), "model1")

            db.start_conversion("block1", "model2")
            self.assertEqual(db.get_pending_destination("block1"), "model2")

            db.complete_conversion("block1")
            self.assertIsNone(db.get_pending_destination("block1"))

    def test_mappings_survive_reconnect(self):
        """Test that mappings persist across connections."""
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()
            db.save_mapping("block1", "inst1", "rec1")

        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()
            self.assertEqual(db.load_mappings("block1"), {"inst1": "rec1"})

    def test_failure_operations(self):
        """Test recording per-record failures."""
        with DatabaseManager(str(self.db_path)) as db:
            db.initialize_database()

            db.record_failure("block1", "rec1", "update_record", "422 rejected", "sections")
            db.record_failure("block2", "rec2", "update_record", "timeout")

            failures = db.list_failures("block1")
            self.assertEqual(len(failures), 1)
            self.assertEqual(failures[0]["record_id"], "rec1")
            self.assertEqual(failures[0]["field_api_key"], "sections")
            self.assertEqual(len(db.list_failures()), 2)


if __name__ == '__main__':
    # Run all tests
    unittest.main(verbosity=2)
