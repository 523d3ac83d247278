"""Provider registry and the provider contract.

The registry maps a resource type name to a provider factory and the
type's zero-value config. It is built once, from an explicit list of
registrations, and passed into the executor.
"""

import copy
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Protocol, runtime_checkable

from engine.errors import ProviderInitError, UnknownResourceTypeError
from resources import Resource

logger = logging.getLogger(__name__)


@runtime_checkable
class Provider(Protocol):
    """Executable logic bound to one resource instance.

    init() is called once with the resource before any lifecycle call.
    Providers write computed fields to resource.outputs (and a content
    checksum to resource.checksum where drift is content based).
    """

    def init(self, resource: Resource, log: logging.LoggerAdapter, context: 'ProviderContext') -> None:
        """Bind the provider to its resource."""

    def create(self) -> None:
        """Create the backing infrastructure."""

    def destroy(self, force: bool = False) -> None:
        """Remove the backing infrastructure; force skips graceful shutdown."""

    def refresh(self) -> None:
        """Re-derive computed outputs without side effects."""

    def changed(self) -> bool:
        """Report drift in external content the engine cannot see."""

    def lookup(self) -> list[str]:
        """Return backend identifiers for the resource (e.g. container IDs); shown by plan."""


@dataclass
class ProviderContext:
    """Run-scoped services handed to every provider.

    Attributes:
        cancelled: Set when the operator interrupts the run; long-running
            calls should poll it and abort as soon as possible
        lookup_entry: Callable returning the state entry for a resource ID
    """
    cancelled: threading.Event = field(default_factory=threading.Event)
    lookup_entry: Optional[Callable[[str], Any]] = None

    def find_outputs(self, resource_id: str) -> dict[str, Any]:
        """Outputs of an applied upstream resource.

        Raises:
            KeyError: If the resource has no state entry
        """
        entry = self.lookup_entry(resource_id) if self.lookup_entry else None
        if entry is None:
            raise KeyError(f"No applied state for resource '{resource_id}'")
        return dict(entry.outputs)


class ResourceLogAdapter(logging.LoggerAdapter):
    """Prefixes provider log lines with the resource ID."""

    def process(self, msg, kwargs):
        return f"[{self.extra['resource_id']}] {msg}", kwargs


@dataclass
class Registration:
    """One resource type known to the engine.

    Attributes:
        type_name: Resource type string used in declarations
        factory: Zero-argument callable returning a new Provider
        defaults: Zero-value config laid under declared config
        serialize: Run resources of this type one at a time, even within a
            level, for backends unsafe for concurrent writers
    """
    type_name: str
    factory: Callable[[], Provider]
    defaults: dict[str, Any] = field(default_factory=dict)
    serialize: bool = False


class ProviderRegistry:
    """Type name -> Registration lookup, fixed at construction."""

    def __init__(self, registrations: Iterable[Registration]):
        """Build the registry.

        Raises:
            ValueError: If a type name is registered twice
        """
        self._registrations: dict[str, Registration] = {}
        for reg in registrations:
            if reg.type_name in self._registrations:
                raise ValueError(f"Resource type '{reg.type_name}' registered twice")
            self._registrations[reg.type_name] = reg

    @property
    def types(self) -> list[str]:
        return sorted(self._registrations)

    def __contains__(self, type_name: object) -> bool:
        return type_name in self._registrations

    def get(self, type_name: str, resource_id: Optional[str] = None) -> Registration:
        """Get the registration for a type.

        Raises:
            UnknownResourceTypeError: If the type is not registered
        """
        try:
            return self._registrations[type_name]
        except KeyError:
            raise UnknownResourceTypeError(type_name, resource_id) from None

    def check(self, resources: Iterable[Resource]) -> None:
        """Ensure every resource type is registered before execution starts.

        Raises:
            UnknownResourceTypeError: For the first unknown type
        """
        for resource in resources:
            self.get(resource.type, resource.id)

    def is_serialized(self, type_name: str) -> bool:
        reg = self._registrations.get(type_name)
        return bool(reg and reg.serialize)

    def with_defaults(self, type_name: str, config: dict[str, Any]) -> dict[str, Any]:
        """Lay declared config over the type's zero-value config.

        Unknown types are returned unchanged; check() reports them.
        """
        reg = self._registrations.get(type_name)
        if reg is None:
            return dict(config)
        merged = copy.deepcopy(reg.defaults)
        merged.update(config)
        return merged

    def new_resource(self, type_name: str, name: str, module: str = '', **config: Any) -> Resource:
        """Create a Resource of a registered type with defaults applied.

        Raises:
            UnknownResourceTypeError: If the type is not registered
        """
        self.get(type_name)
        return Resource(name=name, type=type_name, module=module,
                        config=self.with_defaults(type_name, config))

    def create_provider(self, resource: Resource, context: ProviderContext) -> Provider:
        """Instantiate and initialize the provider for one resource.

        Raises:
            ProviderInitError: If the type is unknown or init() fails
        """
        try:
            reg = self.get(resource.type, resource.id)
        except UnknownResourceTypeError as e:
            raise ProviderInitError(resource.id, str(e), cause=e) from e

        log = ResourceLogAdapter(logging.getLogger(f'providers.{resource.type}'),
                                 {'resource_id': resource.id})
        try:
            provider = reg.factory()
            provider.init(resource, log, context)
        except Exception as e:
            raise ProviderInitError(resource.id, str(e), cause=e) from e
        return provider
