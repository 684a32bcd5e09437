"""
Matter service: list / detail / update orchestration.

List: the query compiler yields count and page statements; the page's matter
ids then feed the field materializer and the cycle time calculator, one batched
query each. The page and the two batches are separate reads, so a concurrent
update can land between them.
"""

from __future__ import annotations

import logging
import math
import uuid

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .cycle_time import CycleTimeCalculator, CycleTimeResult
from .errors import MatterNotFoundError, StorageError
from .field_catalog import FieldCatalog, list_fields
from .field_materializer import FieldMap, materialize_fields
from .field_types import FieldType, as_utc
from .matter_query import MatterQueryCompiler
from .matter_schemas import (
    CycleTimeResponse,
    FieldDefinitionResponse,
    FieldValueResponse,
    MatterDetailResponse,
    MatterListItem,
    MatterListParams,
    MatterListResponse,
    MatterUpdateRequest,
)
from .matter_updates import update_field
from .models import Matter

logger = logging.getLogger(__name__)


class MatterService:
    def __init__(
        self,
        catalog: FieldCatalog,
        cycle_time: CycleTimeCalculator,
        default_actor_id: int | None = None,
    ):
        self.catalog = catalog
        self.cycle_time = cycle_time
        self.default_actor_id = default_actor_id
        self.compiler = MatterQueryCompiler(catalog, cycle_time)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _status_group(self, fields: FieldMap) -> str | None:
        status = fields.get(self.cycle_time.status_field_name)
        if status is None or status.field_type is not FieldType.STATUS:
            return None
        if not isinstance(status.value, dict):
            return None
        return status.value.get("groupName")

    def _load(
        self, db: Session, matter_ids: list[uuid.UUID]
    ) -> tuple[dict[uuid.UUID, FieldMap], dict[uuid.UUID, CycleTimeResult]]:
        fields_by_matter = materialize_fields(db, matter_ids)
        cycle_times = self.cycle_time.calculate(
            db,
            [
                (matter_id, self._status_group(fields_by_matter.get(matter_id, {})))
                for matter_id in matter_ids
            ],
        )
        return fields_by_matter, cycle_times

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def list_matters(self, db: Session, params: MatterListParams) -> MatterListResponse:
        try:
            compiled = self.compiler.compile(
                db,
                page=params.page,
                limit=params.limit,
                sort_by=params.sort_by,
                sort_order=params.sort_order,
                search=params.search,
            )
            total = db.scalar(compiled.count) or 0
            rows = db.execute(compiled.page).all()
        except SQLAlchemyError as e:
            logger.exception(
                "Error listing matters (sort=%s, order=%s, search=%s)",
                params.sort_by,
                params.sort_order.value,
                params.search,
            )
            raise StorageError() from e

        matter_ids = [row.id for row in rows]
        fields_by_matter, cycle_times = self._load(db, matter_ids)

        items = []
        for row in rows:
            fields = fields_by_matter.get(row.id, {})
            cycle = cycle_times[row.id]
            items.append(
                MatterListItem(
                    id=str(row.id),
                    board_id=str(row.board_id),
                    fields={name: f.list_value() for name, f in fields.items()},
                    resolution_time=cycle.resolution_time_formatted,
                    sla=cycle.sla,
                    created_at=as_utc(row.created_at),
                    updated_at=as_utc(row.updated_at),
                )
            )

        return MatterListResponse(
            data=items,
            total=total,
            page=params.page,
            limit=params.limit,
            total_pages=math.ceil(total / params.limit) if total else 0,
        )

    def get_matter(self, db: Session, matter_id: uuid.UUID) -> MatterDetailResponse:
        try:
            row = db.execute(
                select(
                    Matter.id, Matter.board_id, Matter.created_at, Matter.updated_at
                ).where(Matter.id == matter_id)
            ).first()
        except SQLAlchemyError as e:
            logger.exception("Error loading matter %s", matter_id)
            raise StorageError() from e
        if row is None:
            raise MatterNotFoundError(matter_id)

        fields_by_matter, cycle_times = self._load(db, [row.id])
        fields = fields_by_matter.get(row.id, {})
        cycle = cycle_times[row.id]

        return MatterDetailResponse(
            id=str(row.id),
            board_id=str(row.board_id),
            fields={
                name: FieldValueResponse(
                    field_id=str(f.field_id),
                    field_name=f.field_name,
                    field_type=f.field_type,
                    value=f.value,
                    display_value=f.display_value,
                )
                for name, f in fields.items()
            },
            cycle_time=CycleTimeResponse(
                resolution_time_ms=cycle.resolution_time_ms,
                resolution_time_formatted=cycle.resolution_time_formatted,
                is_in_progress=cycle.is_in_progress,
                started_at=cycle.started_at,
                completed_at=cycle.completed_at,
            ),
            sla=cycle.sla,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    def update_matter(
        self,
        db: Session,
        matter_id: uuid.UUID,
        request: MatterUpdateRequest,
        actor_id: int | None = None,
    ) -> MatterDetailResponse:
        update_field(
            db,
            matter_id,
            request.field_id,
            request.field_type,
            request.value,
            actor_id if actor_id is not None else self.default_actor_id,
            now=self.cycle_time.now(),
        )
        return self.get_matter(db, matter_id)

    def list_fields(self, db: Session) -> list[FieldDefinitionResponse]:
        try:
            definitions = list_fields(db)
        except SQLAlchemyError as e:
            logger.exception("Error listing field definitions")
            raise StorageError() from e
        return [
            FieldDefinitionResponse(
                id=str(d.id), name=d.name, type=d.field_type, sequence=d.sequence
            )
            for d in definitions
        ]
