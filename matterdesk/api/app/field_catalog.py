"""
Field catalog: field name -> (field id, field type) resolution.

Lookups are cached per process. By default cached entries never expire, so a
field renamed or retyped after its first lookup keeps resolving to the old
handle until ``invalidate()`` is called or a TTL is configured.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from .field_types import FieldHandle, parse_field_type
from .errors import UnsupportedFieldTypeError
from .models import FieldDefinition

logger = logging.getLogger(__name__)


class FieldCatalog:
    def __init__(
        self,
        ttl_seconds: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[FieldHandle, float]] = {}
        self._lock = threading.Lock()

    def resolve(self, db: Session, field_name: str) -> FieldHandle | None:
        """Return the handle for ``field_name`` or None when no live field has it."""
        cached = self._cached(field_name)
        if cached is not None:
            return cached

        row = db.execute(
            select(FieldDefinition.id, FieldDefinition.field_type)
            .where(
                FieldDefinition.name == field_name,
                FieldDefinition.deleted_at.is_(None),
            )
            .limit(1)
        ).first()
        if row is None:
            return None

        try:
            field_type = parse_field_type(row.field_type)
        except UnsupportedFieldTypeError:
            logger.warning(
                "Field %s has unrecognised type %s", field_name, row.field_type
            )
            return None

        handle = FieldHandle(field_id=row.id, field_type=field_type, name=field_name)
        with self._lock:
            self._entries[field_name] = (handle, self._clock())
        return handle

    def invalidate(self, field_name: str | None = None) -> None:
        """Drop one cached entry, or all of them."""
        with self._lock:
            if field_name is None:
                self._entries.clear()
            else:
                self._entries.pop(field_name, None)

    def _cached(self, field_name: str) -> FieldHandle | None:
        with self._lock:
            entry = self._entries.get(field_name)
            if entry is None:
                return None
            handle, stored_at = entry
            if (
                self._ttl_seconds is not None
                and self._clock() - stored_at >= self._ttl_seconds
            ):
                del self._entries[field_name]
                return None
            return handle


def list_fields(db: Session) -> list[FieldDefinition]:
    """Live field definitions in display order (read-only listing)."""
    return list(
        db.scalars(
            select(FieldDefinition)
            .where(FieldDefinition.deleted_at.is_(None))
            .order_by(FieldDefinition.sequence.asc(), FieldDefinition.name.asc())
        )
    )
