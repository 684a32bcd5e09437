import os
import sys
import unittest
import uuid
from datetime import timedelta
from unittest import mock

# Provide minimal env for Settings validation during import.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

TEST_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if TEST_ROOT not in sys.path:
    sys.path.insert(0, TEST_ROOT)

from sqlalchemy.dialects import postgresql

from api.app.cycle_time import CycleTimeCalculator
from api.app.field_catalog import FieldCatalog
from api.app.field_types import FieldHandle, FieldType
from api.app.matter_query import (
    MatterQueryCompiler,
    SortDirection,
    build_search_predicate,
)

from matter_testdb import HOUR, T0, MatterDB

EIGHT_HOURS_MS = 8 * 60 * 60 * 1000
MINUTE = timedelta(minutes=1)


def _calculator():
    return CycleTimeCalculator(sla_threshold_ms=EIGHT_HOURS_MS, now=lambda: T0 + 30 * HOUR)


def _postgres_db():
    db = mock.Mock()
    db.get_bind.return_value.dialect.name = "postgresql"
    return db


def _render(stmt):
    return stmt.compile(dialect=postgresql.dialect())


class TestCompiledSQL(unittest.TestCase):
    """Statements rendered for PostgreSQL without a database."""

    def setUp(self):
        self.catalog = mock.Mock(spec=FieldCatalog)
        self.catalog.resolve.return_value = None
        self.compiler = MatterQueryCompiler(self.catalog, _calculator())

    def _compile(self, **kwargs):
        params = dict(
            page=1, limit=25, sort_by="created", sort_order=SortDirection.DESC, search=None
        )
        params.update(kwargs)
        return self.compiler.compile(_postgres_db(), **params)

    def test_default_order_is_created_then_id(self):
        sql = str(_render(self._compile().page))
        self.assertIn("ORDER BY matters.created_at DESC, matters.id DESC", sql)
        self.assertNotIn("first_transition", sql)
        self.catalog.resolve.assert_not_called()

    def test_field_sort_joins_value_row_with_nulls_last(self):
        field_id = uuid.uuid4()
        self.catalog.resolve.return_value = FieldHandle(
            field_id=field_id, field_type=FieldType.NUMBER, name="Amount"
        )
        compiled = _render(self._compile(sort_by="Amount", sort_order=SortDirection.ASC).page)
        sql = str(compiled)
        self.assertIn("LEFT OUTER JOIN matter_field_values AS mfv_sort", sql)
        self.assertIn("mfv_sort.number_value ASC NULLS LAST", sql)
        self.assertIn("matters.created_at ASC, matters.id ASC", sql)
        self.assertIn(field_id, compiled.params.values())

    def test_status_sort_orders_by_group_then_option(self):
        self.catalog.resolve.return_value = FieldHandle(
            field_id=uuid.uuid4(), field_type=FieldType.STATUS, name="Status"
        )
        sql = str(_render(self._compile(sort_by="Status").page))
        self.assertIn("status_group_sort.sequence DESC NULLS LAST", sql)
        self.assertIn("status_opt_sort.sequence DESC NULLS LAST", sql)

    def test_unknown_sort_key_falls_back_with_warning(self):
        with self.assertLogs("api.app.matter_query", level="WARNING"):
            sql = str(_render(self._compile(sort_by="Nope; DROP TABLE matters").page))
        self.assertNotIn("DROP TABLE", sql)
        self.assertIn("ORDER BY matters.created_at DESC, matters.id DESC", sql)

    def test_legacy_alias_maps_to_reserved_key(self):
        sql = str(_render(self._compile(sort_by="Resolution Time").page))
        self.assertIn("first_transition", sql)
        self.assertIn("NULLS LAST", sql)
        self.catalog.resolve.assert_not_called()

    def test_search_is_bound_and_escaped(self):
        compiled = _render(self._compile(search="50%_off' OR 1=1").count)
        sql = str(compiled)
        self.assertIn("EXISTS", sql)
        self.assertNotIn("OR 1=1", sql)
        self.assertIn("50/%/_off' OR 1=1", compiled.params.values())

    def test_blank_search_adds_no_predicate(self):
        compiled = self._compile(search="   ")
        self.assertIsNone(compiled.search)
        self.assertNotIn("EXISTS", str(_render(compiled.count)))

    def test_build_search_predicate_none_for_empty(self):
        self.assertIsNone(build_search_predicate(None))
        self.assertIsNone(build_search_predicate(""))
        self.assertIsNone(build_search_predicate(" \t "))

    def test_page_offset(self):
        compiled = _render(self._compile(page=3, limit=10).page)
        self.assertIn("LIMIT", str(compiled))
        self.assertIn(10, compiled.params.values())
        self.assertIn(20, compiled.params.values())


class MatterQueryDBTestCase(unittest.TestCase):
    def setUp(self):
        self.mdb = MatterDB()
        self.db = self.mdb.session
        self.compiler = MatterQueryCompiler(FieldCatalog(), _calculator())
        self._tick = 0

    def tearDown(self):
        self.mdb.close()

    def add(self, **values):
        self._tick += 1
        return self.mdb.add_matter(created_at=T0 + self._tick * MINUTE, **values)

    def run_query(self, sort_by="created", order=SortDirection.ASC, search=None):
        compiled = self.compiler.compile(
            self.db, page=1, limit=100, sort_by=sort_by, sort_order=order, search=search
        )
        total = self.db.scalar(compiled.count)
        ids = [row.id for row in self.db.execute(compiled.page)]
        return total, ids


class TestSorting(MatterQueryDBTestCase):
    CASES = [
        ("Amount", [30, 10, 20], [10, 20, 30]),
        ("Title", ["beta", "alpha", "gamma"], ["alpha", "beta", "gamma"]),
        ("Due", [T0 + 2 * HOUR, T0, T0 + HOUR], [T0, T0 + HOUR, T0 + 2 * HOUR]),
        ("Urgent", [True, False], [False, True]),
        (
            "Fee",
            [
                {"amount": 300, "currency": "GBP"},
                {"amount": 100, "currency": "USD"},
                {"amount": 200, "currency": "EUR"},
            ],
            [100, 200, 300],
        ),
        ("Owner", ["Alan", "Ada", "Grace"], ["Grace", "Ada", "Alan"]),
        ("Priority", ["High", "Low"], ["Low", "High"]),
        ("Status", ["Closed", "Open", "Working"], ["Open", "Working", "Closed"]),
    ]

    def _key(self, name, value):
        if name == "Fee":
            return value["amount"]
        return value

    def test_nulls_last_in_both_directions(self):
        for name, values, expected in self.CASES:
            with self.subTest(field=name):
                by_key = {self._key(name, v): self.add(**{name: v}) for v in values}
                stored_null = self.add(**{name: None})
                missing = self.add()

                _, asc_ids = self.run_query(sort_by=name, order=SortDirection.ASC)
                _, desc_ids = self.run_query(sort_by=name, order=SortDirection.DESC)

                mine = set(by_key.values()) | {stored_null, missing}
                asc_ids = [i for i in asc_ids if i in mine]
                desc_ids = [i for i in desc_ids if i in mine]

                ordered = [by_key[k] for k in expected]
                self.assertEqual(asc_ids[: len(ordered)], ordered)
                self.assertEqual(desc_ids[: len(ordered)], list(reversed(ordered)))
                self.assertEqual(set(asc_ids[len(ordered):]), {stored_null, missing})
                self.assertEqual(set(desc_ids[len(ordered):]), {stored_null, missing})

    def test_tie_break_on_created_at(self):
        first = self.add(Amount=5)
        second = self.add(Amount=5)
        third = self.add(Amount=5)

        _, asc_ids = self.run_query(sort_by="Amount", order=SortDirection.ASC)
        _, desc_ids = self.run_query(sort_by="Amount", order=SortDirection.DESC)
        self.assertEqual(asc_ids, [first, second, third])
        self.assertEqual(desc_ids, [third, second, first])

    def test_identical_created_at_is_still_total(self):
        ids = [self.mdb.add_matter(created_at=T0, Amount=1) for _ in range(4)]
        _, asc_ids = self.run_query(sort_by="Amount", order=SortDirection.ASC)
        self.assertEqual(asc_ids, sorted(ids, key=lambda i: i.hex))
        _, again = self.run_query(sort_by="Amount", order=SortDirection.ASC)
        self.assertEqual(asc_ids, again)

    def test_sla_status_rank(self):
        breached = self.add(Status="Closed")
        self.mdb.add_transition(breached, "Working", T0, from_label="Open")
        self.mdb.add_transition(breached, "Closed", T0 + 12 * HOUR, from_label="Working")
        met = self.add(Status="Closed")
        self.mdb.add_transition(met, "Working", T0, from_label="Open")
        self.mdb.add_transition(met, "Closed", T0 + HOUR, from_label="Working")
        in_progress = self.add(Status="Working")
        self.mdb.add_transition(in_progress, "Working", T0, from_label="Open")

        _, ids = self.run_query(sort_by="slaStatus", order=SortDirection.ASC)
        self.assertEqual(ids, [in_progress, met, breached])
        _, ids = self.run_query(sort_by="SLA", order=SortDirection.DESC)
        self.assertEqual(ids, [breached, met, in_progress])

    def test_resolution_time_nulls_last(self):
        slow = self.add(Status="Closed")
        self.mdb.add_transition(slow, "Working", T0, from_label="Open")
        self.mdb.add_transition(slow, "Closed", T0 + 5 * HOUR, from_label="Working")
        fast = self.add(Status="Closed")
        self.mdb.add_transition(fast, "Working", T0, from_label="Open")
        self.mdb.add_transition(fast, "Closed", T0 + HOUR, from_label="Working")
        never = self.add()

        _, ids = self.run_query(sort_by="resolutionTime", order=SortDirection.ASC)
        self.assertEqual(ids, [fast, slow, never])
        _, ids = self.run_query(sort_by="resolutionTime", order=SortDirection.DESC)
        self.assertEqual(ids, [slow, fast, never])

    def test_updated_sort(self):
        older = self.add()
        newer = self.add()
        _, ids = self.run_query(sort_by="updated", order=SortDirection.DESC)
        self.assertEqual(ids, [newer, older])


class TestSearch(MatterQueryDBTestCase):
    def setUp(self):
        super().setUp()
        self.wall = self.add(
            Title="Boundary Wall", Amount=1500, Owner="Ada", Priority="High", Status="Working"
        )
        self.roof = self.add(
            Title="Roof leak", Fee={"amount": 98765, "currency": "GBP"}, Status="Open"
        )
        self.discount = self.add(Title=("string", "100% snagging"), Archived="secret")

    def test_blank_search_equals_no_search(self):
        self.assertEqual(self.run_query(search="   "), self.run_query(search=None))
        self.assertEqual(self.run_query(search="")[0], 3)

    def test_case_insensitive_text(self):
        total, ids = self.run_query(search="bOUNDARY wall")
        self.assertEqual((total, ids), (1, [self.wall]))

    def test_legacy_string_slot(self):
        self.assertEqual(self.run_query(search="SNAGGING")[1], [self.discount])

    def test_number_as_text(self):
        self.assertEqual(self.run_query(search="150")[1], [self.wall])

    def test_currency_amount(self):
        self.assertEqual(self.run_query(search="9876")[1], [self.roof])

    def test_option_labels(self):
        self.assertEqual(self.run_query(search="high")[1], [self.wall])
        self.assertEqual(self.run_query(search="WORKING")[1], [self.wall])

    def test_user_names(self):
        self.assertEqual(self.run_query(search="lovelace")[1], [self.wall])
        self.assertEqual(self.run_query(search="ada love")[1], [self.wall])

    def test_sla_label(self):
        done = self.add(Status="Closed")
        self.mdb.add_transition(done, "Working", T0, from_label="Open")
        self.mdb.add_transition(done, "Closed", T0 + 20 * HOUR, from_label="Working")
        self.assertEqual(self.run_query(search="breach"), (1, [done]))

    def test_like_wildcards_are_literal(self):
        self.assertEqual(self.run_query(search="%")[1], [self.discount])
        self.assertEqual(self.run_query(search="_")[0], 0)

    def test_deleted_field_not_searched(self):
        self.assertEqual(self.run_query(search="secret")[0], 0)

    def test_count_matches_filter(self):
        total, ids = self.run_query(search="o")
        self.assertEqual(total, len(ids))


if __name__ == "__main__":
    unittest.main()
