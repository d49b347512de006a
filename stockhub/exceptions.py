"""Typed failures raised by the stock services.

Every error derives from :class:`StockError`, which is a ``ValueError`` so
callers that only care about "the request was rejected" can keep catching
``ValueError``. Each class carries a machine-readable ``code``.
"""

from __future__ import annotations


class StockError(ValueError):
    code = "stock_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ResourceNotFound(StockError):
    code = "resource_not_found"

    def __init__(
        self,
        resource: str,
        field: str | None = None,
        value: object | None = None,
        *,
        message: str | None = None,
    ):
        if message is None:
            message = f"{resource} not found with {field}: '{value}'"
        super().__init__(message)
        self.resource = resource
        self.field = field
        self.value = value


class DuplicateResource(StockError):
    code = "duplicate_resource"

    def __init__(self, resource: str, field: str, value: object):
        super().__init__(f"{resource} already exists with {field}: '{value}'")
        self.resource = resource
        self.field = field
        self.value = value


class InvalidOperation(StockError):
    code = "invalid_operation"


class InsufficientStock(StockError):
    code = "insufficient_stock"

    def __init__(self, sku: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for SKU '{sku}'. "
            f"Available: {available}, Requested: {requested}"
        )
        self.sku = sku
        self.available = available
        self.requested = requested


class ConcurrentModification(StockError):
    code = "concurrent_modification"


class ImmutableActivity(StockError):
    code = "immutable_activity"
