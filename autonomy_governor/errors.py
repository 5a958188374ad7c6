"""
Error Taxonomy
==============

Exceptions raised by the governance engine.

InvalidStateError and ConflictError always reach the caller. ExternalServiceError
is raised by service adapters and stores; inside the shadow-mode background
pipeline it is caught and logged instead of failing the capture.
"""


class GovernorError(Exception):
    """Base class for all governance engine errors."""
    pass


class ConfigurationError(GovernorError):
    """Unknown tenant or unusable configuration."""
    pass


class InvalidStateError(GovernorError):
    """Operation not allowed in the current state (session, level or edge)."""
    pass


class ConflictError(GovernorError):
    """Optimistic-concurrency mismatch while applying a transition."""

    def __init__(self, tenant_id: str, expected: str, actual: str):
        self.tenant_id = tenant_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Tenant {tenant_id} level changed concurrently: "
            f"expected {expected}, found {actual}"
        )


class ExternalServiceError(GovernorError):
    """A generation, evaluation or task-store call failed."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")
