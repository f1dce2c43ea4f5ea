"""Error taxonomy for lifecycle operations.

Gateways and domain checks raise these; the lifecycle engine converts them
into :class:`~delivery_engine.models.result.OperationResult` failures so
nothing crosses the engine boundary as an exception.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories reported to callers."""

    GATEWAY_UNAVAILABLE = "GatewayUnavailable"
    ALREADY_ASSIGNED = "AlreadyAssigned"
    INVALID_TRANSITION = "InvalidTransition"
    CODE_MISMATCH = "CodeMismatch"
    TASK_NOT_FOUND = "TaskNotFound"
    PERSISTENCE_FAILURE = "PersistenceFailure"


class DeliveryError(Exception):
    """Base class for lifecycle errors."""

    kind: ErrorKind

    def __init__(self, message: str, task_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.task_id = task_id


class GatewayUnavailable(DeliveryError):
    """Network failure, timeout or server error talking to the backend."""

    kind = ErrorKind.GATEWAY_UNAVAILABLE


class AlreadyAssigned(DeliveryError):
    """Another partner accepted the task first."""

    kind = ErrorKind.ALREADY_ASSIGNED


class InvalidTransition(DeliveryError):
    """The requested status change is not allowed from the current state."""

    kind = ErrorKind.INVALID_TRANSITION


class CodeMismatch(DeliveryError):
    """The submitted confirmation code does not match."""

    kind = ErrorKind.CODE_MISMATCH


class TaskNotFound(DeliveryError):
    """The task is not where the operation expects it."""

    kind = ErrorKind.TASK_NOT_FOUND
