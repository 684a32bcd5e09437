"""
Matter list query compiler.

Turns a sort key, direction and search term into SQLAlchemy statements over
the EAV store:

- Sorting: reserved keys map to built-in expressions; any other key is resolved
  through the field catalog to a (field id, type) handle and the value row for
  that field is LEFT JOINed so the type's sort rule can order on the right slot.
  Missing values always sort last, and every ordering ends with created_at then
  id in the same direction so pagination is stable.
- Searching: a single correlated EXISTS over the matter's value rows ORs the
  per-type match rules, plus a check on the computed SLA label.

Search terms are always bound parameters with LIKE wildcards escaped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum as PyEnum
from typing import Any, Callable

from sqlalchemy import and_, distinct, func, or_, select, cast, String
from sqlalchemy.orm import Session, aliased
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.selectable import Select

from .cycle_time import CycleTimeCalculator, CycleTimeColumns
from .field_catalog import FieldCatalog
from .field_types import FieldHandle, FieldType
from .models import (
    FieldDefinition,
    Matter,
    MatterFieldValue,
    SelectOption,
    StatusGroup,
    StatusOption,
    User,
)

logger = logging.getLogger(__name__)


class SortDirection(str, PyEnum):
    ASC = "asc"
    DESC = "desc"


SORT_CREATED = "created"
SORT_UPDATED = "updated"
SORT_RESOLUTION_TIME = "resolutionTime"
SORT_SLA_STATUS = "slaStatus"

RESERVED_SORT_KEYS = frozenset(
    {SORT_CREATED, SORT_UPDATED, SORT_RESOLUTION_TIME, SORT_SLA_STATUS}
)

# Keys accepted by earlier clients
SORT_KEY_ALIASES = {
    "created_at": SORT_CREATED,
    "updated_at": SORT_UPDATED,
    "Resolution Time": SORT_RESOLUTION_TIME,
    "SLA": SORT_SLA_STATUS,
}

Join = tuple[Any, ColumnElement[Any]]


@dataclass
class Ordering:
    keys: list[ColumnElement[Any]]
    joins: list[Join] = field(default_factory=list)
    uses_cycle_time: bool = False

    def apply(self, stmt: Select) -> Select:
        for target, onclause in self.joins:
            stmt = stmt.outerjoin(target, onclause)
        return stmt.order_by(*self.keys)


def _directed(expr: ColumnElement[Any], direction: SortDirection) -> ColumnElement[Any]:
    ordered = expr.asc() if direction is SortDirection.ASC else expr.desc()
    return ordered.nulls_last()


def _tie_break(direction: SortDirection) -> list[ColumnElement[Any]]:
    if direction is SortDirection.ASC:
        return [Matter.created_at.asc(), Matter.id.asc()]
    return [Matter.created_at.desc(), Matter.id.desc()]


# ---------------------------------------------------------------------------
# Per-type sort rules: value-row alias -> (sort expressions, extra joins)
# ---------------------------------------------------------------------------

SortRule = Callable[[Any], tuple[list[ColumnElement[Any]], list[Join]]]


def _sort_number(value):
    return [value.number_value], []


def _sort_text(value):
    return [func.coalesce(value.text_value, value.string_value)], []


def _sort_date(value):
    return [value.date_value], []


def _sort_boolean(value):
    return [value.boolean_value], []


def _sort_currency(value):
    # Amount only; the currency code does not take part in the comparison.
    return [value.currency_value["amount"].as_float()], []


def _sort_user(value):
    user = aliased(User, name="u_sort")
    return [user.last_name, user.first_name], [(user, value.user_value == user.id)]


def _sort_select(value):
    option = aliased(SelectOption, name="opt_sort")
    return (
        [option.sequence, option.label],
        [(option, value.select_option_id == option.id)],
    )


def _sort_status(value):
    option = aliased(StatusOption, name="status_opt_sort")
    group = aliased(StatusGroup, name="status_group_sort")
    return (
        [group.sequence, option.sequence, option.label],
        [
            (option, value.status_option_id == option.id),
            (group, option.group_id == group.id),
        ],
    )


SORT_RULES: dict[FieldType, SortRule] = {
    FieldType.NUMBER: _sort_number,
    FieldType.TEXT: _sort_text,
    FieldType.DATE: _sort_date,
    FieldType.BOOLEAN: _sort_boolean,
    FieldType.CURRENCY: _sort_currency,
    FieldType.USER: _sort_user,
    FieldType.SELECT: _sort_select,
    FieldType.STATUS: _sort_status,
}


# ---------------------------------------------------------------------------
# Per-type search rules
# ---------------------------------------------------------------------------


@dataclass
class SearchAliases:
    value: Any
    user: Any
    option: Any
    status_option: Any


SearchRule = Callable[[SearchAliases, str], ColumnElement[Any]]


def _contains(expr: ColumnElement[Any], term: str) -> ColumnElement[Any]:
    return expr.icontains(term, autoescape=True)


def _search_text(a: SearchAliases, term: str):
    return or_(_contains(a.value.string_value, term), _contains(a.value.text_value, term))


def _search_number(a: SearchAliases, term: str):
    return _contains(cast(a.value.number_value, String), term)


def _search_select(a: SearchAliases, term: str):
    return _contains(a.option.label, term)


def _search_status(a: SearchAliases, term: str):
    return _contains(a.status_option.label, term)


def _search_user(a: SearchAliases, term: str):
    return or_(
        _contains(a.user.first_name, term),
        _contains(a.user.last_name, term),
        _contains(a.user.first_name + " " + a.user.last_name, term),
    )


def _search_currency(a: SearchAliases, term: str):
    return _contains(a.value.currency_value["amount"].as_string(), term)


SEARCH_RULES: dict[FieldType, SearchRule] = {
    FieldType.TEXT: _search_text,
    FieldType.NUMBER: _search_number,
    FieldType.SELECT: _search_select,
    FieldType.STATUS: _search_status,
    FieldType.USER: _search_user,
    FieldType.CURRENCY: _search_currency,
}


def normalize_search_term(term: str | None) -> str | None:
    if term is None:
        return None
    stripped = term.strip()
    return stripped or None


def build_search_predicate(
    term: str | None, sla_status: ColumnElement[Any] | None = None
) -> ColumnElement[Any] | None:
    """Matter-level match for ``term``; None means match everything."""
    term = normalize_search_term(term)
    if term is None:
        return None

    aliases = SearchAliases(
        value=aliased(MatterFieldValue, name="mfv_search"),
        user=aliased(User, name="u_search"),
        option=aliased(SelectOption, name="opt_search"),
        status_option=aliased(StatusOption, name="status_opt_search"),
    )
    definition = aliased(FieldDefinition, name="field_search")
    value = aliases.value

    type_checks = [
        and_(definition.field_type == field_type.value, rule(aliases, term))
        for field_type, rule in SEARCH_RULES.items()
    ]

    matches_field = (
        select(value.id)
        .join(definition, value.field_id == definition.id)
        .outerjoin(aliases.user, value.user_value == aliases.user.id)
        .outerjoin(aliases.option, value.select_option_id == aliases.option.id)
        .outerjoin(
            aliases.status_option,
            value.status_option_id == aliases.status_option.id,
        )
        .where(
            value.matter_id == Matter.id,
            definition.deleted_at.is_(None),
            or_(*type_checks),
        )
        .correlate(Matter)
        .exists()
    )

    if sla_status is None:
        return matches_field
    return or_(matches_field, _contains(sla_status, term))


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------


@dataclass
class CompiledMatterQuery:
    count: Select
    page: Select
    ordering: Ordering
    search: ColumnElement[Any] | None


class MatterQueryCompiler:
    def __init__(self, catalog: FieldCatalog, cycle_time: CycleTimeCalculator):
        self.catalog = catalog
        self.cycle_time = cycle_time

    def resolve_sort_key(self, db: Session, sort_key: str) -> str | FieldHandle | None:
        """Reserved key name, field handle, or None when nothing matches."""
        key = SORT_KEY_ALIASES.get(sort_key, sort_key)
        if key in RESERVED_SORT_KEYS:
            return key
        return self.catalog.resolve(db, key)

    def build_ordering(
        self,
        db: Session,
        sort_key: str,
        direction: SortDirection,
        cycle_columns: CycleTimeColumns,
    ) -> Ordering:
        resolved = self.resolve_sort_key(db, sort_key)
        tie_break = _tie_break(direction)

        if resolved == SORT_CREATED:
            return Ordering(keys=tie_break)
        if resolved == SORT_UPDATED:
            return Ordering(keys=[_directed(Matter.updated_at, direction), *tie_break])
        if resolved == SORT_RESOLUTION_TIME:
            return Ordering(
                keys=[_directed(cycle_columns.resolution_time_ms, direction), *tie_break],
                uses_cycle_time=True,
            )
        if resolved == SORT_SLA_STATUS:
            return Ordering(
                keys=[_directed(cycle_columns.sla_rank, direction), *tie_break],
                uses_cycle_time=True,
            )

        if resolved is None:
            logger.warning(
                "Unknown sort key %s, falling back to created_at %s",
                sort_key,
                direction.value,
            )
            return Ordering(keys=tie_break)

        handle = resolved
        value = aliased(MatterFieldValue, name="mfv_sort")
        sort_exprs, extra_joins = SORT_RULES[handle.field_type](value)
        joins: list[Join] = [
            (
                value,
                and_(value.matter_id == Matter.id, value.field_id == handle.field_id),
            ),
            *extra_joins,
        ]
        keys = [_directed(expr, direction) for expr in sort_exprs]
        return Ordering(keys=[*keys, *tie_break], joins=joins)

    def compile(
        self,
        db: Session,
        *,
        page: int,
        limit: int,
        sort_by: str,
        sort_order: SortDirection,
        search: str | None,
    ) -> CompiledMatterQuery:
        dialect_name = db.get_bind().dialect.name
        cycle_columns = self.cycle_time.sql_columns(dialect_name, self.cycle_time.now())

        ordering = self.build_ordering(db, sort_by, sort_order, cycle_columns)
        predicate = build_search_predicate(search, cycle_columns.sla_status)

        count_stmt = select(func.count(distinct(Matter.id))).select_from(Matter)
        page_stmt = select(
            Matter.id, Matter.board_id, Matter.created_at, Matter.updated_at
        ).select_from(Matter)

        if predicate is not None:
            count_stmt = cycle_columns.outerjoin_onto(count_stmt, Matter.id)
            count_stmt = count_stmt.where(predicate)
        if predicate is not None or ordering.uses_cycle_time:
            page_stmt = cycle_columns.outerjoin_onto(page_stmt, Matter.id)
        if predicate is not None:
            page_stmt = page_stmt.where(predicate)

        page_stmt = ordering.apply(page_stmt).limit(limit).offset((page - 1) * limit)
        return CompiledMatterQuery(
            count=count_stmt, page=page_stmt, ordering=ordering, search=predicate
        )
