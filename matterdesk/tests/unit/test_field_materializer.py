import os
import sys
import unittest
from datetime import timezone
from unittest import mock

# Provide minimal env for Settings validation during import.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

TEST_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if TEST_ROOT not in sys.path:
    sys.path.insert(0, TEST_ROOT)

from api.app.field_materializer import materialize_fields
from api.app.field_types import FieldType, format_grouped_number

from matter_testdb import T0, MatterDB


class TestGroupedNumber(unittest.TestCase):
    def test_integers_are_grouped(self):
        self.assertEqual(format_grouped_number(1234567), "1,234,567")
        self.assertEqual(format_grouped_number(1500.0), "1,500")

    def test_fraction_digits_trimmed(self):
        self.assertEqual(format_grouped_number(1234.5), "1,234.5")
        self.assertEqual(format_grouped_number(0.125), "0.125")


class TestMaterializeFields(unittest.TestCase):
    def setUp(self):
        self.mdb = MatterDB()
        self.db = self.mdb.session

    def tearDown(self):
        self.mdb.close()

    def test_empty_input_returns_empty_without_query(self):
        with mock.patch.object(self.db, "execute") as execute:
            self.assertEqual(materialize_fields(self.db, []), {})
            execute.assert_not_called()

    def test_every_type_is_extracted(self):
        matter_id = self.mdb.add_matter(
            Status="Working",
            Title="Boundary wall dispute",
            Amount=1234567,
            Due=T0,
            Urgent=True,
            Fee={"amount": 1500, "currency": "GBP"},
            Owner="Ada",
            Priority="High",
        )

        fields = materialize_fields(self.db, [matter_id])[matter_id]

        self.assertEqual(fields["Title"].value, "Boundary wall dispute")
        self.assertIsNone(fields["Title"].display_value)

        self.assertEqual(fields["Amount"].value, 1234567.0)
        self.assertEqual(fields["Amount"].display_value, "1,234,567")

        self.assertEqual(fields["Due"].value, T0)
        self.assertEqual(fields["Due"].value.tzinfo, timezone.utc)

        self.assertIs(fields["Urgent"].value, True)
        self.assertEqual(fields["Urgent"].display_value, "✓")

        self.assertEqual(fields["Fee"].value, {"amount": 1500, "currency": "GBP"})
        self.assertEqual(fields["Fee"].display_value, "1,500 GBP")

        owner = fields["Owner"]
        self.assertEqual(owner.value["id"], self.mdb.users["Ada"])
        self.assertEqual(owner.value["email"], "ada@example.com")
        self.assertEqual(owner.value["displayName"], "Ada Lovelace")
        self.assertEqual(owner.display_value, "Ada Lovelace")

        self.assertEqual(fields["Priority"].value, str(self.mdb.options["High"]))
        self.assertEqual(fields["Priority"].display_value, "High")

        status = fields["Status"]
        self.assertIs(status.field_type, FieldType.STATUS)
        self.assertEqual(
            status.value,
            {"statusId": str(self.mdb.statuses["Working"]), "groupName": "In Progress"},
        )
        self.assertEqual(status.display_value, "Working")

    def test_false_boolean_glyph(self):
        matter_id = self.mdb.add_matter(Urgent=False)
        field = materialize_fields(self.db, [matter_id])[matter_id]["Urgent"]
        self.assertIs(field.value, False)
        self.assertEqual(field.display_value, "✗")

    def test_legacy_string_slot_used_for_text(self):
        matter_id = self.mdb.add_matter(Title=("string", "Short title"))
        field = materialize_fields(self.db, [matter_id])[matter_id]["Title"]
        self.assertEqual(field.value, "Short title")

    def test_stored_null_is_present_but_empty(self):
        matter_id = self.mdb.add_matter(Amount=None, Owner=None)
        fields = materialize_fields(self.db, [matter_id])[matter_id]
        self.assertIn("Amount", fields)
        self.assertIsNone(fields["Amount"].value)
        self.assertIsNone(fields["Owner"].value)

    def test_missing_rows_and_deleted_fields_are_absent(self):
        with_title = self.mdb.add_matter(Title="Only title", Archived="hidden")
        bare = self.mdb.add_matter()

        result = materialize_fields(self.db, [with_title, bare])
        self.assertEqual(set(result[with_title]), {"Title"})
        self.assertNotIn(bare, result)

    def test_one_query_for_many_matters(self):
        ids = [self.mdb.add_matter(Title=f"Matter {i}", Amount=i) for i in range(5)]
        with mock.patch.object(self.db, "execute", wraps=self.db.execute) as execute:
            result = materialize_fields(self.db, ids + ids[:2])
        self.assertEqual(execute.call_count, 1)
        self.assertEqual(len(result), 5)
        self.assertEqual(result[ids[3]]["Amount"].value, 3.0)

    def test_list_value_prefers_display(self):
        matter_id = self.mdb.add_matter(Amount=2500, Due=T0, Title="Plain")
        fields = materialize_fields(self.db, [matter_id])[matter_id]
        self.assertEqual(fields["Amount"].list_value(), "2,500")
        self.assertEqual(fields["Due"].list_value(), T0.isoformat())
        self.assertEqual(fields["Title"].list_value(), "Plain")


if __name__ == "__main__":
    unittest.main()
