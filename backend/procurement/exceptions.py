"""
Workflow exceptions. Every error carries a machine readable ``code`` that the
views translate into an HTTP status.
"""


class WorkflowError(Exception):
    """Raised when a workflow operation fails."""

    code = "workflow_error"

    def __init__(self, message: str, code: str | None = None, field: str | None = None):
        self.message = message
        if code is not None:
            self.code = code
        self.field = field
        super().__init__(message)


class ValidationError(WorkflowError):
    code = "validation"


class InvalidTransition(WorkflowError):
    code = "invalid_transition"


class StockInsufficient(WorkflowError):
    code = "stock_insufficient"

    def __init__(self, item_id: int, requested: int, available: int | None = None):
        self.item_id = item_id
        self.requested = requested
        self.available = available
        message = f"Insufficient stock for item {item_id}: requested {requested}"
        if available is not None:
            message += f", available {available}"
        super().__init__(message + ".", field="items")


class NotFound(WorkflowError):
    code = "not_found"


class PermissionDenied(WorkflowError):
    code = "forbidden"


class ConcurrentModification(WorkflowError):
    """
    Raised when a document changed between the time it was read and the time
    an update was attempted.
    """

    code = "conflict"

    def __init__(self, model_name: str, record_id: object, message: str | None = None):
        self.model_name = model_name
        self.record_id = record_id
        if message is None:
            message = (
                f"{model_name} {record_id} was modified by another request. "
                "Please refresh and try again."
            )
        super().__init__(message)
