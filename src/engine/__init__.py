"""Resource graph engine.

Builds a dependency graph from declared resources, diffs it against the
persisted state, and drives provider lifecycle calls level by level.
"""

from engine.diff import Decision, DiffEngine, config_hash
from engine.errors import (
    CreateError,
    CyclicDependencyError,
    DanglingDependencyError,
    DestroyError,
    DuplicateResourceError,
    EngineError,
    GraphError,
    HealthCheckTimeoutError,
    ProviderInitError,
    RefreshError,
    ResourceError,
    RetryableError,
    StateCorruptError,
    StateIOError,
    UnknownResourceTypeError,
)
from engine.executor import ResourceExecutor
from engine.graph import GraphNode, ResourceGraph
from engine.progress import LoggingProgressSink, ProgressSink
from engine.registry import Provider, ProviderContext, ProviderRegistry, Registration
from engine.result import ResourceResult, RunResult
from engine.retry import RetryPolicy
from engine.state import State, StateEntry, StateStore

__all__ = [
    'CreateError',
    'CyclicDependencyError',
    'DanglingDependencyError',
    'Decision',
    'DestroyError',
    'DiffEngine',
    'DuplicateResourceError',
    'EngineError',
    'GraphError',
    'GraphNode',
    'HealthCheckTimeoutError',
    'LoggingProgressSink',
    'ProgressSink',
    'Provider',
    'ProviderContext',
    'ProviderInitError',
    'ProviderRegistry',
    'RefreshError',
    'Registration',
    'ResourceError',
    'ResourceExecutor',
    'ResourceGraph',
    'ResourceResult',
    'RetryPolicy',
    'RetryableError',
    'RunResult',
    'State',
    'StateCorruptError',
    'StateEntry',
    'StateIOError',
    'StateStore',
    'UnknownResourceTypeError',
    'config_hash',
]
