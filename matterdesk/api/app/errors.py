"""
Matter engine exceptions.

Services raise these; the API layer maps them onto HTTP responses in
``main.py``. Only validation-style errors carry caller-facing detail;
``StorageError`` is surfaced generically.
"""

from __future__ import annotations


class MatterError(Exception):
    """Base class for matter engine errors."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class MatterNotFoundError(MatterError):
    status_code = 404
    public_message = "Matter not found"

    def __init__(self, matter_id: object | None = None):
        super().__init__(self.public_message)
        self.matter_id = matter_id


class UnsupportedFieldTypeError(MatterError):
    status_code = 400

    def __init__(self, field_type: object):
        super().__init__(f"Unsupported field type: {field_type}")
        self.field_type = field_type


class FieldValueError(MatterError):
    """A value does not fit the slot of its declared field type."""

    status_code = 400


class StorageError(MatterError):
    """Any lower-layer database failure. Never retried here."""

    status_code = 500
