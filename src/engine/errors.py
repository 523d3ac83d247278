"""Error taxonomy for the resource graph engine.

Only graph, registry and state errors abort a run. Resource-local errors
(ResourceError subclasses) are captured on that resource's result.
"""

from typing import Optional


class EngineError(Exception):
    """Base exception for engine errors."""


class GraphError(EngineError):
    """Invalid resource graph. Fatal: no execution begins."""


class DuplicateResourceError(GraphError):
    """Two declared resources share an ID."""

    def __init__(self, resource_id: str):
        self.resource_id = resource_id
        super().__init__(f"Duplicate resource ID: '{resource_id}'")


class DanglingDependencyError(GraphError):
    """A dependency edge references an ID not present in the graph."""

    def __init__(self, resource_id: str, dependency: str):
        self.resource_id = resource_id
        self.dependency = dependency
        super().__init__(
            f"Resource '{resource_id}' depends on unknown resource '{dependency}'"
        )


class CyclicDependencyError(GraphError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cyclic dependency: {' -> '.join(cycle)}")


class UnknownResourceTypeError(EngineError):
    """No provider is registered for a resource type."""

    def __init__(self, type_name: str, resource_id: Optional[str] = None):
        self.type_name = type_name
        self.resource_id = resource_id
        where = f" (resource '{resource_id}')" if resource_id else ''
        super().__init__(f"Unknown resource type '{type_name}'{where}")


class ResourceError(EngineError):
    """Failure local to one resource.

    Attributes:
        resource_id: ID of the failing resource
        cause: Underlying exception, if any
    """
    phase = 'resource'

    def __init__(self, resource_id: str, message: str, cause: Optional[BaseException] = None):
        self.resource_id = resource_id
        self.message = message
        self.cause = cause
        super().__init__(f"{self.phase} failed for '{resource_id}': {message}")


class ProviderInitError(ResourceError):
    """Provider could not be instantiated or initialized."""
    phase = 'init'


class CreateError(ResourceError):
    """Provider create() failed."""
    phase = 'create'


class HealthCheckTimeoutError(CreateError):
    """A resource did not reach its ready condition in time."""
    phase = 'health check'

    def __init__(self, resource_id: str, message: str, timeout: float = 0.0,
                 cause: Optional[BaseException] = None):
        self.timeout = timeout
        super().__init__(resource_id, message, cause)


class DestroyError(ResourceError):
    """Provider destroy() failed."""
    phase = 'destroy'


class RefreshError(ResourceError):
    """Provider refresh() or changed() failed."""
    phase = 'refresh'


class StateIOError(EngineError):
    """State could not be read or written. Fatal to the whole run."""


class StateCorruptError(StateIOError):
    """Persisted state exists but is malformed."""


class RetryableError(Exception):
    """Marks a provider failure as transient.

    Providers raise this (usually chaining the original error) when the
    operation may succeed if attempted again, e.g. reading key material that
    an upstream resource is still writing. Any other exception is fatal.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)
