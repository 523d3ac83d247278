"""Built-in resource providers.

| Type        | Provider           |
|-------------|--------------------|
| noop        | NoopProvider       |
| file        | FileProvider       |
| copy        | CopyProvider       |
| http_health | HttpHealthProvider |
"""

from engine.registry import ProviderRegistry, Registration
from providers.base import BaseProvider
from providers.copy import CopyProvider
from providers.file import FileProvider
from providers.health import HttpHealthProvider
from providers.noop import NoopProvider


def builtin_registrations() -> list[Registration]:
    """Registrations for every built-in resource type."""
    return [
        Registration('noop', NoopProvider),
        Registration('file', FileProvider, defaults={'content': '', 'mode': '0644'}),
        Registration('copy', CopyProvider),
        Registration('http_health', HttpHealthProvider, defaults={
            'timeout': 30,
            'interval': 1,
            'status_codes': [200],
            'verify': True,
        }),
    ]


def default_registry() -> ProviderRegistry:
    return ProviderRegistry(builtin_registrations())


__all__ = [
    'BaseProvider',
    'CopyProvider',
    'FileProvider',
    'HttpHealthProvider',
    'NoopProvider',
    'builtin_registrations',
    'default_registry',
]
