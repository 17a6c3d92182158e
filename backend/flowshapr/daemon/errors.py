"""
Execution failure classification.

A failed run is reported with HTTP 200 and `success: false`; the error is
mapped to one of a few kinds so callers can tell a missing package from a
missing API key from a plain bug in the flow.
"""

from __future__ import annotations

from flowshapr.runtime.context import BlockExecutionError
from flowshapr.runtime.models import MissingAPIKeyError


class DaemonFault(Exception):
    """The daemon itself failed (scratch write, module cache); reported as HTTP 500."""


class ExecutionConflictError(Exception):
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution '{execution_id}' is already running")


class ExecutionError(Exception):
    error_type = "Unclassified"

    def __init__(self, message: str, original: BaseException | None = None):
        self.original = original
        super().__init__(message)


class MissingDependencyError(ExecutionError):
    error_type = "MissingDependency"


class CodeSyntaxError(ExecutionError):
    error_type = "CodeSyntaxError"


class MissingCredentialError(ExecutionError):
    error_type = "MissingCredential"


class UnclassifiedExecutionError(ExecutionError):
    pass


def classify_error(exc: BaseException) -> ExecutionError:
    """Map an exception raised while loading or running a flow to its ExecutionError."""
    original = exc.original if isinstance(exc, BlockExecutionError) else exc
    message = str(original)

    if isinstance(original, ModuleNotFoundError) or "Cannot resolve module" in message or "No module named" in message:
        return MissingDependencyError(f"Missing dependency: {message}", original)
    if isinstance(original, SyntaxError):
        return CodeSyntaxError(f"Code syntax error: {message}", original)
    if isinstance(original, MissingAPIKeyError) or "API_KEY" in message:
        return MissingCredentialError(f"Missing API key: {message}", original)
    return UnclassifiedExecutionError(message, original)
