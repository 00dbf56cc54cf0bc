"""
Typed errors of the depreciation engine.

Each class carries a machine-readable `code` and the HTTP status the API maps it to.
Per-asset CalculationError is recorded on the execution detail row and never aborts
a run; PersistenceFault is batch-level and does.
"""


class DepreciationError(Exception):
    code: str = "DEPRECIATION_ERROR"
    status_code: int = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(DepreciationError):
    code = "VALIDATION_ERROR"
    status_code = 422


class NotFoundError(DepreciationError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: int | str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class PermissionDeniedError(DepreciationError):
    code = "PERMISSION_DENIED"
    status_code = 403


class ScheduleBusyError(DepreciationError):
    """Another run holds the execution lock. Rejected, not queued."""

    code = "SCHEDULE_BUSY"
    status_code = 409

    def __init__(self, lock_key: str, execution_id: int | None = None):
        self.lock_key = lock_key
        self.execution_id = execution_id
        running = f" by execution {execution_id}" if execution_id else ""
        super().__init__(f"Depreciation run '{lock_key}' is already in progress{running}")


class CalculationError(DepreciationError):
    code = "CALCULATION_FAILURE"
    status_code = 422


class PersistenceFault(DepreciationError):
    code = "PERSISTENCE_FAULT"
    status_code = 503
