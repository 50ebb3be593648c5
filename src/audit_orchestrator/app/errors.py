"""Error taxonomy shared by adapters and orchestration stages."""

from __future__ import annotations


class OrchestratorError(RuntimeError):
    """Base class for every error raised by this package."""


class AdapterUnavailable(OrchestratorError):
    """An external collaborator is not configured; callers fall back."""


class AdapterCallFailed(OrchestratorError):
    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class MalformedResponse(OrchestratorError):
    """An adapter answered, but the body could not be parsed into the expected shape."""


class SignatureMismatch(OrchestratorError):
    pass


class InvalidTransition(OrchestratorError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid project transition {current} -> {target}")
        self.current = current
        self.target = target


class ProjectNotFound(OrchestratorError):
    def __init__(self, reference: str) -> None:
        super().__init__(f"Project {reference} does not exist")
        self.reference = reference
