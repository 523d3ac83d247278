"""Per-resource outcomes and the aggregated run result."""

import time
from dataclasses import dataclass, field
from typing import Any, Optional

# Outcomes
CREATED = 'created'
FAILED = 'failed'
BLOCKED = 'blocked'
DESTROYED = 'destroyed'
DESTROY_FAILED = 'destroy_failed'
ABSENT = 'absent'          # destroy requested, nothing in state
CANCELLED = 'cancelled'    # never scheduled because the run was cancelled
PENDING = 'pending'

FAILURE_OUTCOMES = {FAILED, BLOCKED, DESTROY_FAILED, CANCELLED}


@dataclass
class ResourceResult:
    """Outcome of one resource in a run.

    Attributes:
        id: Resource ID
        outcome: created, failed, blocked, destroyed, destroy_failed,
            absent, cancelled or pending
        action: create, replace, refresh or destroy (None if not run)
        error: Failure cause
        blocked_by: Failed ancestor for blocked resources
        started_at: Timestamp when the provider operation started
        completed_at: Timestamp when it finished
    """
    id: str
    outcome: str = PENDING
    action: Optional[str] = None
    error: Optional[str] = None
    blocked_by: Optional[str] = None
    started_at: Optional[float] = None
    completed_at: Optional[float] = None

    def start(self, action: str) -> None:
        self.action = action
        self.started_at = time.time()

    def finish(self, outcome: str, error: Optional[str] = None) -> None:
        self.outcome = outcome
        self.completed_at = time.time()
        if error is not None:
            self.error = error

    def block(self, blocked_by: Optional[str]) -> None:
        self.outcome = BLOCKED
        self.blocked_by = blocked_by

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None

    @property
    def failed(self) -> bool:
        return self.outcome in FAILURE_OUTCOMES

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'id': self.id,
            'outcome': self.outcome,
        }
        if self.action is not None:
            d['action'] = self.action
        if self.error is not None:
            d['error'] = self.error
        if self.blocked_by is not None:
            d['blocked_by'] = self.blocked_by
        if self.duration is not None:
            d['duration'] = round(self.duration, 2)
        return d


class RunResult:
    """Aggregated result of an apply or destroy run.

    success is False if any resource failed, is blocked, failed to destroy,
    or was never scheduled because the run was cancelled.
    """

    def __init__(self, operation: str):
        self.operation = operation
        self._results: dict[str, ResourceResult] = {}
        self.cancelled = False
        self.started_at: Optional[float] = None
        self.completed_at: Optional[float] = None

    def add(self, resource_id: str) -> ResourceResult:
        """Register a resource (idempotent) and return its result."""
        if resource_id not in self._results:
            self._results[resource_id] = ResourceResult(id=resource_id)
        return self._results[resource_id]

    def get(self, resource_id: str) -> ResourceResult:
        """Get a resource result.

        Raises:
            KeyError: If resource not registered
        """
        return self._results[resource_id]

    @property
    def results(self) -> dict[str, ResourceResult]:
        return dict(self._results)

    def with_outcome(self, outcome: str) -> list[ResourceResult]:
        return [r for r in self._results.values() if r.outcome == outcome]

    @property
    def failures(self) -> list[ResourceResult]:
        return [r for r in self._results.values() if r.failed]

    @property
    def success(self) -> bool:
        return not self.cancelled and not self.failures

    def start(self) -> None:
        self.started_at = time.time()

    def finish(self) -> None:
        self.completed_at = time.time()

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'operation': self.operation,
            'success': self.success,
            'cancelled': self.cancelled,
            'resources': [r.to_dict() for r in self._results.values()],
        }
        if self.duration is not None:
            d['duration_seconds'] = round(self.duration, 2)
        return d
