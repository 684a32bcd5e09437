"""
Matters API - list, detail, field update, and field catalog endpoints

Mounted under /api/v1 by main.py. Handlers are thin: they validate input,
delegate to MatterService, and let MatterError subclasses propagate to the
exception handlers registered on the app.
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from .config import settings
from .cycle_time import CycleTimeCalculator
from .field_catalog import FieldCatalog
from .matter_schemas import (
    DbSession,
    FieldDefinitionResponse,
    MatterDetailResponse,
    MatterListParams,
    MatterListResponse,
    MatterUpdateRequest,
    _parse_uuid,
)
from .matter_service import MatterService

router = APIRouter(tags=["matters"])

# Process-wide; the catalog cache lives as long as the worker.
_field_catalog = FieldCatalog(ttl_seconds=settings.FIELD_CATALOG_TTL_SECONDS)
_cycle_time = CycleTimeCalculator(
    sla_threshold_ms=settings.sla_threshold_ms,
    done_group=settings.DONE_STATUS_GROUP,
    status_field_name=settings.STATUS_FIELD_NAME,
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_field_catalog() -> FieldCatalog:
    return _field_catalog


def get_cycle_time_calculator() -> CycleTimeCalculator:
    return _cycle_time


def get_matter_service(
    catalog: FieldCatalog = Depends(get_field_catalog),
    cycle_time: CycleTimeCalculator = Depends(get_cycle_time_calculator),
) -> MatterService:
    return MatterService(catalog, cycle_time, default_actor_id=settings.DEFAULT_ACTOR_ID)


MatterServiceDep = Annotated[MatterService, Depends(get_matter_service)]


def matter_list_params(
    page: int = Query(1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE),
    sort_by: str = Query("created", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    search: Optional[str] = Query(None),
) -> MatterListParams:
    """Collect list query parameters; constraint failures become a 400."""
    try:
        return MatterListParams(
            page=page,
            limit=limit,
            sortBy=sort_by,
            sortOrder=sort_order,
            search=search,
        )
    except ValidationError as e:
        raise RequestValidationError(
            [{**err, "loc": ("query", *err["loc"])} for err in e.errors()]
        )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/matters", response_model=MatterListResponse)
def list_matters(
    db: DbSession,
    service: MatterServiceDep,
    params: MatterListParams = Depends(matter_list_params),
):
    """Paginated matters with dynamic sort and free-text search."""
    return service.list_matters(db, params)


@router.get("/matters/{matter_id}", response_model=MatterDetailResponse)
def get_matter(matter_id: str, db: DbSession, service: MatterServiceDep):
    return service.get_matter(db, _parse_uuid(matter_id, "id"))


@router.patch("/matters/{matter_id}", response_model=MatterDetailResponse)
def update_matter(
    matter_id: str,
    payload: MatterUpdateRequest,
    db: DbSession,
    service: MatterServiceDep,
):
    """Set one field value; status changes are logged for cycle time."""
    return service.update_matter(db, _parse_uuid(matter_id, "id"), payload)


@router.get("/fields", response_model=list[FieldDefinitionResponse])
def list_fields(db: DbSession, service: MatterServiceDep):
    return service.list_fields(db)
