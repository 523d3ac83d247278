"""Base class for built-in providers."""

import logging
from typing import Any, Optional

from engine.registry import ProviderContext
from resources import Resource

logger = logging.getLogger(__name__)


class BaseProvider:
    """Holds the bound resource, logger and run context.

    Subclasses implement create() and destroy(); refresh(), changed() and
    lookup() default to no-ops.
    """

    def __init__(self):
        self.resource: Optional[Resource] = None
        self.log: logging.LoggerAdapter | logging.Logger = logger
        self.context = ProviderContext()

    def init(self, resource: Resource, log: logging.LoggerAdapter, context: ProviderContext) -> None:
        self.resource = resource
        self.log = log
        self.context = context
        self.validate()

    def validate(self) -> None:
        """Check the resource config; raise ValueError if it is unusable."""

    @property
    def config(self) -> dict[str, Any]:
        return self.resource.config

    def require(self, key: str) -> Any:
        """Return a required config value.

        Raises:
            ValueError: If the key is missing or empty
        """
        value = self.config.get(key)
        if value is None or value == '':
            raise ValueError(f"{self.resource.type} resource '{self.resource.name}' "
                             f"missing required config: {key}")
        return value

    def create(self) -> None:
        raise NotImplementedError

    def destroy(self, force: bool = False) -> None:
        raise NotImplementedError

    def refresh(self) -> None:
        self.log.debug("Nothing to refresh")

    def changed(self) -> bool:
        return False

    def lookup(self) -> list[str]:
        return []
