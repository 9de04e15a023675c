"""
Exceptions raised by the storage layer.
"""


class StorageError(Exception):
    """Base exception for all storage errors.

    Catch this to handle any storage-related error.
    """

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class RecordNotFoundError(StorageError):
    """Raised when update or delete matches no row.

    A row owned by another tenant is reported exactly like a missing row.
    """

    def __init__(self, model: str, where: dict):
        super().__init__(f"No {model} record matches {where!r}")
        self.model = model
        self.where = where


class TenantScopeError(StorageError):
    """Raised when the tenant scope registry is misconfigured.

    For example, registering a model that has no tenant_id column.
    """

    pass
