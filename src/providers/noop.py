"""Provider that tracks a resource without touching anything."""

from common import fqdn
from providers.base import BaseProvider


class NoopProvider(BaseProvider):
    """Records the resource in state; useful for grouping and tests."""

    def create(self) -> None:
        self.resource.outputs['fqdn'] = fqdn(self.resource.name, self.resource.module,
                                             self.resource.type)
        self.log.info("Created")

    def destroy(self, force: bool = False) -> None:
        self.log.info("Destroyed")

    def refresh(self) -> None:
        self.resource.outputs['fqdn'] = fqdn(self.resource.name, self.resource.module,
                                             self.resource.type)
