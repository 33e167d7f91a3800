from __future__ import annotations


class StoreError(Exception):
    """Base class for document store failures."""

    code = "store_error"


class InvalidDocument(StoreError):
    code = "invalid_request"


class DocumentNotFound(StoreError):
    code = "not_found"


class ImmutableFieldError(StoreError):
    code = "immutable_field"

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"field {field!r} cannot be updated")


class WriteRejected(StoreError):
    """Raised when a write-acceptance rule refuses an update."""

    code = "write_rejected"
