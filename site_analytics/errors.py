"""
Pipeline Error Taxonomy

- ValidationError: caller input missing or malformed (4xx, never retried)
- StoreError: the event store rejected or failed an operation (5xx)
- PartialFailure: a multi-step operation succeeded in part
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors"""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PipelineError):
    """Caller input is missing or malformed"""

    status_code = 400


class StoreError(PipelineError):
    """The event store failed an operation"""

    status_code = 500

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.table = table


class PartialFailure(PipelineError):
    """
    Some steps of a multi-step operation succeeded and a later one failed.

    Raised internally by the aggregator when entries reached the canonical
    table but could not be marked processed.
    """

    def __init__(self, message: str, completed_step: str, failed_step: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.completed_step = completed_step
        self.failed_step = failed_step
        self.cause = cause
