"""Diff engine: decides how to converge each declared resource.

A resource without a state entry is created. A resource with an entry is
replaced (destroy then create) when either signal reports a change:

1. the structural hash of its declared config differs from the hash
   recorded when it was last applied, or
2. its provider's changed() reports drift in content the engine cannot
   see directly (e.g. a build context directory).

Otherwise it is refreshed. Each resource is diffed on its own: a change in
an upstream resource's outputs does not mark its dependents as changed.
"""

import hashlib
import json
import logging
from enum import Enum
from typing import Any, Optional

from engine.errors import RefreshError
from engine.state import StateEntry
from resources import Resource

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    """What the executor does with a resource."""
    CREATE = 'create'
    REPLACE = 'replace'
    REFRESH = 'refresh'


def config_hash(config: dict[str, Any]) -> str:
    """Stable structural hash of a config mapping.

    Key order does not matter; list order does. Values that are not JSON
    types are hashed by their string form.
    """
    canonical = json.dumps(config, sort_keys=True, separators=(',', ':'), default=str)
    return 'sha256:' + hashlib.sha256(canonical.encode('utf-8')).hexdigest()


def hydrate(resource: Resource, entry: StateEntry) -> None:
    """Carry last-applied outputs and checksum onto a freshly declared resource.

    Providers compare external content against resource.checksum in
    changed(), and refresh() may reuse outputs it computed on create.
    """
    resource.outputs = dict(entry.outputs)
    if resource.checksum is None:
        resource.checksum = entry.checksum


class DiffEngine:
    """Combines config-hash drift and provider-reported drift."""

    def config_changed(self, resource: Resource, entry: StateEntry) -> bool:
        current = config_hash(resource.config)
        if current != entry.config_hash:
            logger.debug(f"{resource.id}: config hash changed ({entry.config_hash} -> {current})")
            return True
        return False

    def provider_changed(self, resource: Resource, provider) -> bool:
        """Ask the provider whether external content drifted.

        Raises:
            RefreshError: If changed() fails
        """
        try:
            changed = bool(provider.changed())
        except Exception as e:
            raise RefreshError(resource.id, f"change detection failed: {e}", cause=e) from e
        if changed:
            logger.debug(f"{resource.id}: provider reports change")
        return changed

    def decide(self, resource: Resource, entry: Optional[StateEntry], provider=None) -> Decision:
        """Decide create, replace or refresh for one resource.

        The provider is only consulted when the config hash is unchanged.

        Raises:
            RefreshError: If the provider's changed() fails
        """
        if entry is None:
            return Decision.CREATE
        if self.config_changed(resource, entry):
            return Decision.REPLACE
        if provider is not None and self.provider_changed(resource, provider):
            return Decision.REPLACE
        return Decision.REFRESH
