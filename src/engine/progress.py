"""Progress reporting interface for the executor.

The executor reports status transitions through a ProgressSink; how they
are displayed is up to the caller. LoggingProgressSink writes them to the
standard logging system.
"""

import logging
from typing import Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class ProgressSink(Protocol):
    """Receives per-resource status transitions."""

    def status(self, message: str) -> None:
        """Run-level status message (e.g. 'applying level 2/4')."""

    def resource_started(self, resource_id: str, action: str) -> None:
        """A provider operation started."""

    def resource_succeeded(self, resource_id: str, action: str, elapsed: float) -> None:
        """A provider operation finished successfully."""

    def resource_failed(self, resource_id: str, action: str, error: str, elapsed: float) -> None:
        """A provider operation failed."""

    def resource_blocked(self, resource_id: str, blocked_by: Optional[str]) -> None:
        """A resource was skipped because a dependency failed."""


class LoggingProgressSink:
    """ProgressSink that logs every transition."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def status(self, message: str) -> None:
        self.log.info(message)

    def resource_started(self, resource_id: str, action: str) -> None:
        self.log.info(f"[{action}] {resource_id}: started")

    def resource_succeeded(self, resource_id: str, action: str, elapsed: float) -> None:
        self.log.info(f"[{action}] {resource_id}: done ({elapsed:.1f}s)")

    def resource_failed(self, resource_id: str, action: str, error: str, elapsed: float) -> None:
        self.log.error(f"[{action}] {resource_id}: failed after {elapsed:.1f}s: {error}")

    def resource_blocked(self, resource_id: str, blocked_by: Optional[str]) -> None:
        self.log.warning(f"[blocked] {resource_id}: skipped, dependency '{blocked_by}' failed")
