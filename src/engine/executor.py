"""Resource executor: converges declared resources in dependency order.

Walks the resource graph level by level. All resources of a level run
concurrently on a bounded thread pool; the next level starts only after
every resource of the current one has finished, because later levels may
read outputs written by earlier ones.

Per resource (apply):
- no state entry: create()
- entry and changed: destroy() then create()
- entry and unchanged: refresh()

A failed resource blocks all of its transitive dependents; independent
branches continue. Destroy walks the levels in reverse and is best effort.
"""

import contextlib
import copy
import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from engine.diff import Decision, DiffEngine, config_hash, hydrate
from engine.errors import (
    CreateError,
    DestroyError,
    ProviderInitError,
    RefreshError,
    ResourceError,
    RetryableError,
)
from engine.graph import GraphNode, ResourceGraph
from engine.progress import LoggingProgressSink, ProgressSink
from engine.registry import ProviderContext, ProviderRegistry
from engine.result import (
    ABSENT,
    BLOCKED,
    CANCELLED,
    CREATED,
    DESTROY_FAILED,
    DESTROYED,
    FAILED,
    PENDING,
    ResourceResult,
    RunResult,
)
from engine.retry import RetryPolicy
from engine.state import StateEntry, StateStore
import resources as res_model
from resources import Resource

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8


@dataclass
class ResourceExecutor:
    """Runs apply/destroy/plan over a resource graph.

    Attributes:
        registry: Provider registry resolving resource types
        store: State store (the only state shared between workers)
        max_workers: Upper bound on concurrent provider operations
        retry: Retry policy for RetryableError failures
        progress: Receives status transitions
        cancel_event: Set by cancel(); stops scheduling and is visible to
            in-flight providers. An executor stays cancelled once set.
    """
    registry: ProviderRegistry
    store: StateStore
    max_workers: int = DEFAULT_MAX_WORKERS
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    progress: ProgressSink = field(default_factory=LoggingProgressSink)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    diff: DiffEngine = field(default_factory=DiffEngine)
    _type_locks: dict[str, threading.Lock] = field(default_factory=dict, init=False, repr=False)
    _type_locks_guard: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {self.max_workers}")
        self._context = ProviderContext(
            cancelled=self.cancel_event,
            lookup_entry=self.store.find_by_id,
        )

    # -- run control ---------------------------------------------------

    def cancel(self) -> None:
        """Stop scheduling further work and signal in-flight providers."""
        if not self.cancel_event.is_set():
            logger.warning("Cancellation requested, stopping after in-flight operations")
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    # -- entry points --------------------------------------------------

    def apply(self, resources: Iterable[Resource]) -> RunResult:
        """Converge the declared resources.

        Resources present in state but no longer declared are destroyed
        first, in reverse dependency order.

        Raises:
            GraphError: If the resource graph is invalid (nothing runs)
            UnknownResourceTypeError: If a type has no provider (nothing runs)
            StateIOError: If state cannot be read or written (run aborts)
        """
        resources = list(resources)
        graph = ResourceGraph(resources)
        self.registry.check(resources)
        state = self.store.load()

        result = RunResult('apply')
        result.start()
        levels = graph.levels()
        for level in levels:
            for node in level:
                result.add(node.id)

        orphans = [e for e in state.entries if e.id not in graph]

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='converge') as pool:
            if orphans:
                self.progress.status(
                    f"Destroying {len(orphans)} resource(s) removed from configuration")
                self._destroy_walk(pool, _orphan_graph(orphans), result, force=False)

            for index, level in enumerate(levels, 1):
                if self.cancelled:
                    break
                runnable = []
                for node in level:
                    blocked_by = self._blocking_dependency(node, result)
                    if blocked_by is not None:
                        result.get(node.id).block(blocked_by)
                        node.resource.status = res_model.BLOCKED
                        self.progress.resource_blocked(node.id, blocked_by)
                    else:
                        runnable.append(node)
                if not runnable:
                    continue
                self.progress.status(
                    f"Applying level {index}/{len(levels)} ({len(runnable)} resource(s))")
                self._run_level(pool, runnable, lambda n: self._apply_node(n, result))
                for node in runnable:
                    if result.get(node.id).outcome == FAILED:
                        skipped = graph.descendants_of(node.id)
                        if skipped:
                            logger.warning(
                                f"'{node.id}' failed, skipping {len(skipped)} dependent resource(s): "
                                f"{', '.join(n.id for n in skipped)}")

        self._finish(result)
        return result

    def destroy(self, resources: Iterable[Resource] = (), force: bool = False) -> RunResult:
        """Tear down every resource with a state entry, dependents first.

        The graph is the declared resources plus any resources known only
        from state. Failures are logged and aggregated; teardown continues.
        With force, a failed destroy is retried once with destroy(force=True).

        Raises:
            GraphError: If the resource graph is invalid (nothing runs)
            StateIOError: If state cannot be read or written (run aborts)
        """
        declared = list(resources)
        state = self.store.load()
        declared_ids = {r.id for r in declared}
        extra = [e for e in state.entries if e.id not in declared_ids]

        known = declared_ids | {e.id for e in extra}
        graph = ResourceGraph(declared + _state_resources(extra, known))
        result = RunResult('destroy')
        result.start()
        for level in graph.destroy_levels():
            for node in level:
                result.add(node.id)

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='converge') as pool:
            self._destroy_walk(pool, graph, result, force=force)

        self._finish(result)
        return result

    def plan(self, resources: Iterable[Resource]) -> list[dict]:
        """Report what apply would do, without side effects.

        Returns:
            List of {'id', 'action', 'level'} dicts in execution order;
            action is destroy, create, replace, refresh or error. Applied
            resources also carry 'lookup', their backend identifiers
        """
        resources = [copy.deepcopy(r) for r in resources]
        graph = ResourceGraph(resources)
        self.registry.check(resources)
        state = self.store.load()

        planned: list[dict] = []
        for entry in state.entries:
            if entry.id not in graph:
                item = {'id': entry.id, 'action': 'destroy', 'level': 0}
                try:
                    item['lookup'] = self._lookup(entry)
                except ResourceError as e:
                    item['error'] = str(e)
                planned.append(item)

        for index, level in enumerate(graph.levels(), 1):
            for node in level:
                item = {'id': node.id, 'level': index}
                entry = state.get(node.id)
                try:
                    provider = None
                    if entry is not None:
                        hydrate(node.resource, entry)
                        provider = self.registry.create_provider(node.resource, self._context)
                    item['action'] = self.diff.decide(node.resource, entry, provider).value
                    if entry is not None:
                        item['lookup'] = self._lookup(entry)
                except ResourceError as e:
                    item['action'] = 'error'
                    item['error'] = str(e)
                planned.append(item)
        return planned

    def _lookup(self, entry: StateEntry) -> list[str]:
        """Backend identifiers of an applied resource, from its applied config."""
        provider = self.registry.create_provider(entry.to_resource(), self._context)
        try:
            return list(provider.lookup())
        except Exception as e:
            raise RefreshError(entry.id, f"lookup: {e}", cause=e) from e

    # -- scheduling ----------------------------------------------------

    def _run_level(self, pool: ThreadPoolExecutor, nodes: list[GraphNode],
                   fn: Callable[[GraphNode], None]) -> None:
        """Run fn for every node concurrently and wait for all of them.

        Resource-local failures are recorded by fn itself. Anything raised
        out of fn (e.g. StateIOError) is fatal: cancellation is signalled,
        in-flight workers are awaited, and the error is re-raised.
        """
        futures = [pool.submit(fn, node) for node in nodes]
        done, not_done = wait(futures, return_when=FIRST_EXCEPTION)
        fatal = next((f.exception() for f in done if f.exception() is not None), None)
        if fatal is not None:
            logger.error(f"Aborting run: {fatal}")
            self.cancel_event.set()
            for future in not_done:
                future.cancel()
            wait(not_done)
            raise fatal

    def _type_lock(self, type_name: str):
        """Per-type lock for serialized registrations, else a no-op context."""
        if not self.registry.is_serialized(type_name):
            return contextlib.nullcontext()
        with self._type_locks_guard:
            return self._type_locks.setdefault(type_name, threading.Lock())

    @staticmethod
    def _blocking_dependency(node: GraphNode, result: RunResult) -> Optional[str]:
        """Return the failed ancestor blocking this node, if any."""
        for dep in node.dependencies:
            dep_result = result.get(dep.id)
            if dep_result.outcome == FAILED:
                return dep.id
            if dep_result.outcome == BLOCKED:
                return dep_result.blocked_by
        return None

    def _call(self, fn: Callable[[], object], resource: Resource,
              error_cls: type, phase: str) -> None:
        """Run one provider call under the retry policy.

        Raises:
            ResourceError: error_cls wrapping any provider failure, or the
                provider's own ResourceError (e.g. HealthCheckTimeoutError)
        """
        try:
            self.retry.call(fn, cancelled=self.cancel_event, describe=f"{phase} {resource.id}")
        except ResourceError:
            raise
        except RetryableError as e:
            raise error_cls(resource.id, str(e), cause=e.cause or e) from e
        except Exception as e:
            raise error_cls(resource.id, str(e), cause=e) from e

    def _fail(self, res: ResourceResult, resource: Resource, error: ResourceError) -> None:
        if res.started_at is None:
            res.start(error.phase)
        res.finish(FAILED, str(error))
        resource.status = res_model.FAILED
        self.progress.resource_failed(resource.id, res.action or error.phase,
                                      str(error), res.duration or 0.0)

    # -- apply ---------------------------------------------------------

    def _apply_node(self, node: GraphNode, result: RunResult) -> None:
        resource = node.resource
        res = result.get(resource.id)
        if self.cancelled:
            res.finish(CANCELLED)
            return

        with self._type_lock(resource.type):
            entry = self.store.find_by_id(resource.id)
            try:
                provider = self.registry.create_provider(resource, self._context)
                if entry is not None:
                    hydrate(resource, entry)
                decision = self.diff.decide(resource, entry, provider)
            except ResourceError as e:
                self._fail(res, resource, e)
                return

            res.start(decision.value)
            self.progress.resource_started(resource.id, decision.value)
            try:
                if decision is Decision.CREATE:
                    self._call(provider.create, resource, CreateError, 'create')
                elif decision is Decision.REPLACE:
                    # Tear down what was applied; the new config may point elsewhere
                    applied = self.registry.create_provider(entry.to_resource(), self._context)
                    self._call(applied.destroy, resource, DestroyError, 'destroy')
                    self.store.remove(resource.id)
                    resource.outputs = {}
                    self._call(provider.create, resource, CreateError, 'create')
                else:
                    self._call(provider.refresh, resource, RefreshError, 'refresh')
            except ResourceError as e:
                self._fail(res, resource, e)
                return

            self.store.upsert(StateEntry.from_resource(resource, config_hash(resource.config)))
            resource.status = res_model.CREATED
            res.finish(CREATED)
            self.progress.resource_succeeded(resource.id, decision.value, res.duration or 0.0)

    # -- destroy -------------------------------------------------------

    def _destroy_walk(self, pool: ThreadPoolExecutor, graph: ResourceGraph,
                      result: RunResult, force: bool) -> None:
        levels = graph.destroy_levels()
        for index, level in enumerate(levels, 1):
            if self.cancelled:
                break
            for node in level:
                result.add(node.id)
            self.progress.status(f"Destroying level {index}/{len(levels)} ({len(level)} resource(s))")
            self._run_level(pool, level, lambda n: self._destroy_node(n, result, force))

    def _destroy_node(self, node: GraphNode, result: RunResult, force: bool) -> None:
        res = result.get(node.id)
        if self.cancelled:
            res.finish(CANCELLED)
            return

        entry = self.store.find_by_id(node.id)
        if entry is None:
            res.finish(ABSENT)
            return

        # Destroy what was applied, not what is declared now
        resource = entry.to_resource()
        with self._type_lock(resource.type):
            res.start('destroy')
            self.progress.resource_started(resource.id, 'destroy')
            try:
                provider = self.registry.create_provider(resource, self._context)
            except ProviderInitError as e:
                self._fail_destroy(res, resource, e)
                return

            try:
                self._call(provider.destroy, resource, DestroyError, 'destroy')
            except ResourceError as e:
                if not force:
                    self._fail_destroy(res, resource, e)
                    return
                logger.warning(f"Destroy of '{resource.id}' failed ({e}), retrying with force")
                try:
                    self._call(lambda: provider.destroy(force=True), resource, DestroyError, 'destroy')
                except ResourceError as forced:
                    self._fail_destroy(res, resource, forced)
                    return

            self.store.remove(resource.id)
            res.finish(DESTROYED)
            self.progress.resource_succeeded(resource.id, 'destroy', res.duration or 0.0)

    def _fail_destroy(self, res: ResourceResult, resource: Resource, error: ResourceError) -> None:
        res.finish(DESTROY_FAILED, str(error))
        self.progress.resource_failed(resource.id, 'destroy', str(error), res.duration or 0.0)

    # -- reporting -----------------------------------------------------

    def _finish(self, result: RunResult) -> None:
        if self.cancelled:
            result.cancelled = True
            for res in result.results.values():
                if res.outcome == PENDING:
                    res.finish(CANCELLED)
        result.finish()

        failures = result.failures
        if result.cancelled:
            logger.warning(f"{result.operation} cancelled")
        if failures:
            logger.error(f"{result.operation} finished with {len(failures)} unsuccessful resource(s):")
            for res in failures:
                detail = res.error or (f"blocked by '{res.blocked_by}'" if res.blocked_by else res.outcome)
                logger.error(f"  {res.id}: {res.outcome} ({detail})")
        else:
            logger.info(f"{result.operation} completed successfully ({len(result.results)} resources)")


def _state_resources(entries: list[StateEntry], known_ids: set[str]) -> list[Resource]:
    """Rebuild resources from state entries, dropping edges to unknown IDs."""
    resources = []
    for entry in entries:
        resource = entry.to_resource()
        resource.depends_on = [d for d in resource.depends_on if d in known_ids]
        resources.append(resource)
    return resources


def _orphan_graph(entries: list[StateEntry]) -> ResourceGraph:
    """Graph of resources known only from state, with edges among them."""
    return ResourceGraph(_state_resources(entries, {e.id for e in entries}))
