"""
Matter API - Schemas, Type Aliases, and Request Helpers

Pydantic models for the matter endpoints. Responses are serialized with
camelCase keys; Python code uses the snake_case attribute names.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, Any, Optional

from fastapi import Depends
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from .config import settings
from .cycle_time import SLAStatus
from .db import get_db
from .field_types import FieldType
from .matter_query import SortDirection

# ---------------------------------------------------------------------------
# Shared type aliases
# ---------------------------------------------------------------------------

DbSession = Annotated[Session, Depends(get_db)]

# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def _parse_uuid(value: Optional[str], field: str) -> uuid.UUID:
    """Parse a UUID path/query value and surface a 400 instead of a 500."""
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise RequestValidationError(
            [
                {
                    "loc": ("path", field),
                    "msg": f"Invalid {field} format. Expected UUID.",
                    "type": "uuid_parsing",
                }
            ]
        )


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class MatterListParams(CamelModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=settings.DEFAULT_PAGE_SIZE, ge=1)
    sort_by: str = Field(default="created", min_length=1, max_length=100)
    sort_order: SortDirection = SortDirection.DESC
    search: Optional[str] = None

    @field_validator("limit")
    @classmethod
    def limit_within_max(cls, v: int) -> int:
        if v > settings.MAX_PAGE_SIZE:
            raise ValueError(f"limit must be at most {settings.MAX_PAGE_SIZE}")
        return v

    @field_validator("sort_by")
    @classmethod
    def sort_key_printable(cls, v: str) -> str:
        if not v.strip() or not v.isprintable():
            raise ValueError("sortBy must be a printable, non-blank field name")
        return v

    @field_validator("sort_order", mode="before")
    @classmethod
    def lower_sort_order(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @field_validator("search", mode="before")
    @classmethod
    def trim_search(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("search")
    @classmethod
    def search_length(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and len(v) > settings.MAX_SEARCH_LENGTH:
            raise ValueError(
                f"search must be at most {settings.MAX_SEARCH_LENGTH} characters"
            )
        return v


class MatterUpdateRequest(CamelModel):
    field_id: uuid.UUID
    field_type: FieldType
    value: Any = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class FieldValueResponse(CamelModel):
    field_id: str
    field_name: str
    field_type: FieldType
    value: Any = None
    display_value: Optional[str] = None


class CycleTimeResponse(CamelModel):
    resolution_time_ms: Optional[int] = None
    resolution_time_formatted: str
    is_in_progress: bool
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class MatterListItem(CamelModel):
    id: str
    board_id: str
    fields: dict[str, Any] = Field(default_factory=dict)
    resolution_time: Optional[str] = None
    sla: SLAStatus
    created_at: datetime
    updated_at: Optional[datetime] = None


class MatterListResponse(CamelModel):
    data: list[MatterListItem]
    total: int
    page: int
    limit: int
    total_pages: int


class MatterDetailResponse(CamelModel):
    id: str
    board_id: str
    fields: dict[str, FieldValueResponse] = Field(default_factory=dict)
    cycle_time: CycleTimeResponse
    sla: SLAStatus
    created_at: datetime
    updated_at: Optional[datetime] = None


class FieldDefinitionResponse(CamelModel):
    id: str
    name: str
    type: str
    sequence: int
