"""
Error taxonomy for the metrics engine.

Each error carries the HTTP status it is reported with; the API layer renders
all of them as {"error": message}.
"""
from typing import Any, Dict, Optional

from starlette.status import (
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_500_INTERNAL_SERVER_ERROR,
)


class MetricsEngineError(Exception):
    """Base class for all errors that abort a metrics request."""
    status_code = HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class Unauthenticated(MetricsEngineError):
    """Missing, malformed or expired caller token."""
    status_code = HTTP_401_UNAUTHORIZED


class Forbidden(MetricsEngineError):
    """Valid identity without the admin role."""
    status_code = HTTP_403_FORBIDDEN


class UpstreamBillingError(MetricsEngineError):
    """Billing provider unreachable or rejecting credentials."""
    pass


class ComputationError(MetricsEngineError):
    """Internal invariant violation or failed load-bearing read."""
    pass


class DeadlineExceeded(MetricsEngineError):
    """The global request deadline expired before the snapshot was assembled."""
    pass


def unwrap_exception_group(group: BaseExceptionGroup) -> BaseException:
    """
    Pick the exception to re-raise from a failed TaskGroup.

    Engine errors win over anything else so the caller sees the taxonomy
    error rather than a sibling's cancellation fallout.
    """
    leaves = []
    pending = [group]
    while pending:
        current = pending.pop(0)
        for exc in current.exceptions:
            if isinstance(exc, BaseExceptionGroup):
                pending.append(exc)
            else:
                leaves.append(exc)

    for exc in leaves:
        if isinstance(exc, MetricsEngineError):
            return exc
    return leaves[0]
