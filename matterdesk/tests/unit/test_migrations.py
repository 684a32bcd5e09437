import os
import sys
import tempfile
import unittest

# Provide minimal env for Settings validation during import.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

TEST_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if TEST_ROOT not in sys.path:
    sys.path.insert(0, TEST_ROOT)

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from api.app.db import Base
from api.app import models  # noqa: F401

API_ROOT = os.path.join(TEST_ROOT, "api")


class TestBaselineMigration(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.url = f"sqlite:///{os.path.join(self.tmpdir.name, 'migrate.db')}"
        self.config = Config(os.path.join(API_ROOT, "alembic.ini"))
        self.config.set_main_option("sqlalchemy.url", self.url)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_upgrade_creates_every_model_table(self):
        command.upgrade(self.config, "head")

        engine = create_engine(self.url)
        try:
            tables = set(inspect(engine).get_table_names())
            self.assertTrue(set(Base.metadata.tables).issubset(tables))

            value_constraints = inspect(engine).get_unique_constraints(
                "matter_field_values"
            )
            self.assertIn(
                ["matter_id", "field_id"],
                [c["column_names"] for c in value_constraints],
            )
        finally:
            engine.dispose()

    def test_downgrade_removes_tables(self):
        command.upgrade(self.config, "head")
        command.downgrade(self.config, "base")

        engine = create_engine(self.url)
        try:
            tables = set(inspect(engine).get_table_names())
            self.assertFalse(set(Base.metadata.tables) & tables)
        finally:
            engine.dispose()


if __name__ == "__main__":
    unittest.main()
