from rest_framework import status


class OrderWorkflowError(Exception):
    """Base error for order and pool operations.

    ``code`` is the machine-readable reason returned to API callers,
    ``status_code`` the HTTP status the API layer maps it to.
    """

    code = "ORDER_WORKFLOW_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NotFoundError(OrderWorkflowError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidStatusTransitionError(OrderWorkflowError):
    code = "INVALID_STATUS_TRANSITION"


class InvalidRoleTransitionError(OrderWorkflowError):
    code = "INVALID_ROLE_TRANSITION"


class TransitionRuleError(OrderWorkflowError):
    """A rule of the target status rejected the move; ``code`` names the rule."""

    code = "TRANSITION_RULE_FAILED"


class OrderLockedError(OrderWorkflowError):
    code = "ORDER_LOCKED"
    status_code = status.HTTP_409_CONFLICT


class PoolNotReadyError(OrderWorkflowError):
    code = "POOL_NOT_READY"
    status_code = status.HTTP_409_CONFLICT


_ERRORS_BY_CODE = {
    InvalidStatusTransitionError.code: InvalidStatusTransitionError,
    InvalidRoleTransitionError.code: InvalidRoleTransitionError,
    "INVALID_STATUS": InvalidStatusTransitionError,
}


def error_for(code: str, message: str) -> OrderWorkflowError:
    """Build the exception matching a validation ``code``."""
    cls = _ERRORS_BY_CODE.get(code, TransitionRuleError)
    return cls(message, code=code)
