"""
Cycle time and SLA for matters.

Resolution time runs from a matter's first status transition to the first time
it entered the Done group. Both are minimums over the append-only transition
log, so a matter that completes, reopens and is still open keeps its original
completion timestamp while reporting ``is_in_progress=True``.

The same rules are available two ways:
- ``CycleTimeCalculator.calculate``: batched, one query per call, evaluated in Python
- ``CycleTimeCalculator.sql_columns``: SQL expressions used to sort and search on
  resolution time / SLA inside the list query
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum as PyEnum
from typing import Any, Callable, Sequence

from sqlalchemy import (
    DateTime,
    and_,
    case,
    extract,
    func,
    literal,
    or_,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.selectable import Select, Subquery

from .errors import StorageError
from .field_types import as_utc
from .models import (
    CycleTimeTransition,
    FieldDefinition,
    MatterFieldValue,
    StatusGroup,
    StatusOption,
)

logger = logging.getLogger(__name__)

IN_PROGRESS_PREFIX = "In Progress: "
NOT_AVAILABLE = "N/A"


class SLAStatus(str, PyEnum):
    IN_PROGRESS = "In Progress"
    MET = "Met"
    BREACHED = "Breached"


# Sort rank for the slaStatus key
SLA_RANK = {SLAStatus.IN_PROGRESS: 0, SLAStatus.MET: 1, SLAStatus.BREACHED: 2}

_ONE_MS = timedelta(milliseconds=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_duration(duration_ms: int | float | None, is_in_progress: bool) -> str:
    """Render milliseconds as e.g. "45s", "1h 30m", "2d 1h".

    Integer division throughout; minutes are dropped once days are shown.
    """
    if duration_ms is None or duration_ms < 0:
        return NOT_AVAILABLE

    seconds = int(duration_ms) // 1000
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    remaining_hours = hours % 24
    remaining_minutes = minutes % 60

    if days > 0:
        parts = [f"{days}d"]
        if remaining_hours > 0:
            parts.append(f"{remaining_hours}h")
    elif hours > 0:
        parts = [f"{hours}h"]
        if remaining_minutes > 0:
            parts.append(f"{remaining_minutes}m")
    elif minutes > 0:
        parts = [f"{minutes}m"]
    else:
        parts = [f"{seconds}s"]

    formatted = " ".join(parts)
    return f"{IN_PROGRESS_PREFIX}{formatted}" if is_in_progress else formatted


def determine_sla_status(
    resolution_time_ms: int | float | None,
    is_in_progress: bool,
    sla_threshold_ms: int,
) -> SLAStatus:
    if is_in_progress:
        return SLAStatus.IN_PROGRESS
    if resolution_time_ms is None:
        return SLAStatus.IN_PROGRESS
    if resolution_time_ms <= sla_threshold_ms:
        return SLAStatus.MET
    return SLAStatus.BREACHED


def calculate_resolution_time(
    started_at: datetime | None,
    completed_at: datetime | None,
    is_in_progress: bool = True,
    now: datetime | None = None,
) -> int | None:
    """Finalized duration when completed, ongoing duration while in progress."""
    if started_at is None:
        return None
    if completed_at is not None:
        return (as_utc(completed_at) - as_utc(started_at)) // _ONE_MS
    if not is_in_progress:
        return None
    current = as_utc(now) if now is not None else _utcnow()
    return (current - as_utc(started_at)) // _ONE_MS


@dataclass
class CycleTimeResult:
    started_at: datetime | None
    completed_at: datetime | None
    resolution_time_ms: int | None
    is_in_progress: bool
    resolution_time_formatted: str
    sla: SLAStatus


@dataclass
class CycleTimeColumns:
    """Cycle-time subqueries and the expressions derived from them."""

    first_transition: Subquery
    done_transition: Subquery
    current_status: Subquery
    resolution_time_ms: ColumnElement[Any]
    sla_status: ColumnElement[Any]
    sla_rank: ColumnElement[Any]

    def outerjoin_onto(self, stmt: Select, matter_id: ColumnElement[Any]) -> Select:
        for sub in (self.first_transition, self.done_transition, self.current_status):
            stmt = stmt.outerjoin(sub, sub.c.matter_id == matter_id)
        return stmt


def elapsed_ms_expr(
    dialect_name: str, start: ColumnElement[Any], end: ColumnElement[Any]
) -> ColumnElement[Any]:
    """Milliseconds between two timestamp expressions."""
    if dialect_name == "sqlite":
        return func.round((func.julianday(end) - func.julianday(start)) * 86400000.0)
    return extract("epoch", end - start) * 1000


class CycleTimeCalculator:
    def __init__(
        self,
        sla_threshold_ms: int,
        done_group: str = "Done",
        status_field_name: str = "Status",
        now: Callable[[], datetime] = _utcnow,
    ):
        self.sla_threshold_ms = sla_threshold_ms
        self.done_group = done_group
        self.status_field_name = status_field_name
        self._now = now

    def now(self) -> datetime:
        return as_utc(self._now())

    def evaluate(
        self,
        started_at: datetime | None,
        completed_at: datetime | None,
        current_status_group: str | None,
        now: datetime | None = None,
    ) -> CycleTimeResult:
        started_at = as_utc(started_at)
        completed_at = as_utc(completed_at)
        is_in_progress = current_status_group != self.done_group
        resolution_ms = calculate_resolution_time(
            started_at, completed_at, is_in_progress, now or self.now()
        )
        return CycleTimeResult(
            started_at=started_at,
            completed_at=completed_at,
            resolution_time_ms=resolution_ms,
            is_in_progress=is_in_progress,
            resolution_time_formatted=format_duration(resolution_ms, is_in_progress),
            sla=determine_sla_status(
                resolution_ms, is_in_progress, self.sla_threshold_ms
            ),
        )

    def calculate(
        self,
        db: Session,
        items: Sequence[tuple[uuid.UUID, str | None]],
    ) -> dict[uuid.UUID, CycleTimeResult]:
        """Cycle time and SLA for many matters with a single query.

        ``items`` pairs each matter id with its current status group name.
        """
        if not items:
            return {}

        matter_ids = [matter_id for matter_id, _ in items]
        stmt = (
            select(
                CycleTimeTransition.matter_id,
                func.min(CycleTimeTransition.transitioned_at).label("started_at"),
                func.min(
                    case(
                        (
                            StatusGroup.name == self.done_group,
                            CycleTimeTransition.transitioned_at,
                        ),
                    )
                ).label("completed_at"),
            )
            .join(StatusOption, CycleTimeTransition.to_status_id == StatusOption.id)
            .join(StatusGroup, StatusOption.group_id == StatusGroup.id)
            .where(CycleTimeTransition.matter_id.in_(matter_ids))
            .group_by(CycleTimeTransition.matter_id)
        )

        try:
            rows = db.execute(stmt).all()
        except SQLAlchemyError as e:
            logger.exception(
                "Error calculating cycle time and SLA for %s matters", len(matter_ids)
            )
            raise StorageError() from e

        by_matter = {row.matter_id: row for row in rows}
        now = self.now()
        results: dict[uuid.UUID, CycleTimeResult] = {}
        for matter_id, group_name in items:
            row = by_matter.get(matter_id)
            results[matter_id] = self.evaluate(
                row.started_at if row else None,
                row.completed_at if row else None,
                group_name,
                now,
            )
        return results

    def sql_columns(self, dialect_name: str, now: datetime) -> CycleTimeColumns:
        """Expressions mirroring ``evaluate`` for use inside the list query."""
        first_transition = (
            select(
                CycleTimeTransition.matter_id,
                func.min(CycleTimeTransition.transitioned_at).label(
                    "first_transition_at"
                ),
            )
            .group_by(CycleTimeTransition.matter_id)
            .subquery("first_transition")
        )
        done_transition = (
            select(
                CycleTimeTransition.matter_id,
                func.min(CycleTimeTransition.transitioned_at).label(
                    "done_transition_at"
                ),
            )
            .join(StatusOption, CycleTimeTransition.to_status_id == StatusOption.id)
            .join(StatusGroup, StatusOption.group_id == StatusGroup.id)
            .where(StatusGroup.name == self.done_group)
            .group_by(CycleTimeTransition.matter_id)
            .subquery("done_transition")
        )
        current_status = (
            select(
                MatterFieldValue.matter_id,
                StatusGroup.name.label("current_status_group"),
            )
            .join(
                FieldDefinition,
                and_(
                    MatterFieldValue.field_id == FieldDefinition.id,
                    FieldDefinition.name == self.status_field_name,
                    FieldDefinition.deleted_at.is_(None),
                ),
            )
            .join(StatusOption, MatterFieldValue.status_option_id == StatusOption.id)
            .join(StatusGroup, StatusOption.group_id == StatusGroup.id)
            .subquery("current_status")
        )

        started = first_transition.c.first_transition_at
        completed = done_transition.c.done_transition_at
        group = current_status.c.current_status_group
        now_param = literal(as_utc(now), DateTime(timezone=True))

        in_progress = or_(group.is_(None), group != self.done_group)
        finalized = and_(completed.isnot(None), started.isnot(None))
        finalized_ms = elapsed_ms_expr(dialect_name, started, completed)
        within_sla = finalized_ms <= self.sla_threshold_ms

        resolution_time_ms = case(
            (finalized, finalized_ms),
            (
                and_(started.isnot(None), in_progress),
                elapsed_ms_expr(dialect_name, started, now_param),
            ),
            else_=None,
        )
        sla_status = case(
            (in_progress, SLAStatus.IN_PROGRESS.value),
            (
                finalized,
                case((within_sla, SLAStatus.MET.value), else_=SLAStatus.BREACHED.value),
            ),
            else_=SLAStatus.IN_PROGRESS.value,
        )
        sla_rank = case(
            (in_progress, SLA_RANK[SLAStatus.IN_PROGRESS]),
            (
                finalized,
                case(
                    (within_sla, SLA_RANK[SLAStatus.MET]),
                    else_=SLA_RANK[SLAStatus.BREACHED],
                ),
            ),
            else_=SLA_RANK[SLAStatus.IN_PROGRESS],
        )

        return CycleTimeColumns(
            first_transition=first_transition,
            done_transition=done_transition,
            current_status=current_status,
            resolution_time_ms=resolution_time_ms,
            sla_status=sla_status,
            sla_rank=sla_rank,
        )
