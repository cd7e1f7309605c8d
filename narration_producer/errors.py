"""Error taxonomy for the production pipeline."""


class ProductionError(RuntimeError):
    """Base class for all pipeline errors."""


class NetworkFailure(ProductionError):
    """A remote call was rejected or could not be completed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class BatchFailure(ProductionError):
    def __init__(self, message: str, errors: list | None = None, total_requested: int = 0):
        super().__init__(message)
        self.errors = list(errors or [])
        self.total_requested = total_requested


class PartialBatchFailure(BatchFailure):
    """Some, but not all, batch items failed."""


class TotalBatchFailure(BatchFailure):
    """Zero batch items succeeded."""


class NoInputData(ProductionError):
    """Mixing was requested with no voice tracks."""


class SerializationOverflow(ProductionError):
    """A serialized draft exceeds the store capacity."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"Draft of {size} bytes exceeds the {limit} byte limit")
        self.size = size
        self.limit = limit


class TaskFailure(ProductionError):
    """One media production task failed."""

    def __init__(self, task_type: str, cause: BaseException):
        super().__init__(f"{task_type} generation failed: {cause}")
        self.task_type = task_type
        self.cause = cause
