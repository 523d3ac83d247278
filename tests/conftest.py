"""Shared pytest fixtures for converge tests."""

import sys
import threading
import time
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from engine.registry import ProviderRegistry, Registration
from engine.retry import RetryPolicy
from engine.executor import ResourceExecutor
from engine.state import StateStore


class Recorder:
    """Shared call log and scripted behaviour for RecordingProviders.

    calls: (action, resource_id) in call order
    events: ('start'|'end', action, resource_id) around each lifecycle call
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.calls: list[tuple[str, str]] = []
        self.events: list[tuple[str, str, str]] = []
        self.changed_ids: set[str] = set()
        self.delays: dict[str, float] = {}
        self.hooks: dict[tuple[str, str], object] = {}
        self._failures: dict[tuple[str, str], list] = {}

    def record(self, action: str, resource_id: str) -> None:
        with self.lock:
            self.calls.append((action, resource_id))

    def event(self, kind: str, action: str, resource_id: str) -> None:
        with self.lock:
            self.events.append((kind, action, resource_id))

    def fail_on(self, action: str, resource_id: str, exc: Exception = None, times: int = 0) -> None:
        """Make action fail for a resource; times=0 fails on every call."""
        self._failures[(action, resource_id)] = [exc or RuntimeError(f'{action} boom'), times]

    def pop_failure(self, action: str, resource_id: str):
        with self.lock:
            failure = self._failures.get((action, resource_id))
            if failure is None:
                return None
            exc, times = failure
            if times:
                if times == 1:
                    del self._failures[(action, resource_id)]
                else:
                    failure[1] = times - 1
            return exc

    def ids_for(self, action: str) -> list[str]:
        return [rid for act, rid in self.calls if act == action]

    def reset(self) -> None:
        with self.lock:
            self.calls.clear()
            self.events.clear()

    def registry(self, types=('test',), serialize=()) -> ProviderRegistry:
        return ProviderRegistry([
            Registration(t, lambda: RecordingProvider(self), serialize=t in serialize)
            for t in types
        ])


class RecordingProvider:
    """Provider that records every lifecycle call in a Recorder."""

    def __init__(self, recorder: Recorder):
        self.recorder = recorder
        self.resource = None
        self.context = None

    def init(self, resource, log, context):
        self.resource = resource
        self.context = context
        self.recorder.record('init', resource.id)
        exc = self.recorder.pop_failure('init', resource.id)
        if exc is not None:
            raise exc

    def _run(self, action: str) -> None:
        rid = self.resource.id
        self.recorder.record(action, rid)
        self.recorder.event('start', action, rid)
        try:
            delay = self.recorder.delays.get(rid)
            if delay:
                time.sleep(delay)
            hook = self.recorder.hooks.get((action, rid))
            if hook is not None:
                hook(self)
            exc = self.recorder.pop_failure(action, rid)
            if exc is not None:
                raise exc
        finally:
            self.recorder.event('end', action, rid)

    def create(self):
        self._run('create')
        self.resource.outputs['created'] = True
        self.resource.outputs['name'] = self.resource.name

    def destroy(self, force=False):
        self._run('destroy_force' if force else 'destroy')

    def refresh(self):
        self._run('refresh')

    def changed(self):
        self.recorder.record('changed', self.resource.id)
        exc = self.recorder.pop_failure('changed', self.resource.id)
        if exc is not None:
            raise exc
        return self.resource.id in self.recorder.changed_ids

    def lookup(self):
        return [self.resource.id]


@pytest.fixture
def recorder():
    """Recorder shared by all RecordingProviders of a test."""
    return Recorder()


@pytest.fixture
def state_path(tmp_path):
    return tmp_path / 'state' / 'state.json'


@pytest.fixture
def store(state_path):
    return StateStore(state_path)


@pytest.fixture
def make_executor(recorder, store):
    """Factory for executors bound to the recorder registry and tmp state."""
    def _make(registry=None, **kwargs):
        kwargs.setdefault('retry', RetryPolicy(attempts=1, delay=0))
        kwargs.setdefault('store', store)
        return ResourceExecutor(
            registry=registry or recorder.registry(),
            **kwargs,
        )
    return _make
