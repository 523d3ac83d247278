"""Tests for engine.registry module."""

import logging
import sys
import threading
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from engine.errors import ProviderInitError, UnknownResourceTypeError
from engine.registry import (
    Provider,
    ProviderContext,
    ProviderRegistry,
    Registration,
    ResourceLogAdapter,
)
from engine.state import StateEntry
from resources import Resource


class _Provider:
    def init(self, resource, log, context):
        self.resource = resource
        self.log = log
        self.context = context

    def create(self):
        pass

    def destroy(self, force=False):
        pass

    def refresh(self):
        pass

    def changed(self):
        return False

    def lookup(self):
        return []


class _BrokenProvider(_Provider):
    def init(self, resource, log, context):
        raise ValueError("missing image")


def _registry(**kwargs):
    return ProviderRegistry([
        Registration('container', _Provider, defaults={'image': '', 'ports': []}, **kwargs),
        Registration('broken', _BrokenProvider),
    ])


class TestProviderRegistry:
    """Tests for ProviderRegistry."""

    def test_types(self):
        assert _registry().types == ['broken', 'container']
        assert 'container' in _registry()
        assert 'volume' not in _registry()

    def test_duplicate_registration(self):
        with pytest.raises(ValueError, match='registered twice'):
            ProviderRegistry([Registration('a', _Provider), Registration('a', _Provider)])

    def test_get_unknown_type(self):
        with pytest.raises(UnknownResourceTypeError) as exc_info:
            _registry().get('volume', 'volume.data')
        assert exc_info.value.type_name == 'volume'
        assert 'volume.data' in str(exc_info.value)

    def test_check(self):
        registry = _registry()
        registry.check([Resource(name='web', type='container')])
        with pytest.raises(UnknownResourceTypeError):
            registry.check([Resource(name='web', type='container'), Resource(name='d', type='volume')])

    def test_with_defaults(self):
        registry = _registry()
        config = registry.with_defaults('container', {'image': 'nginx'})
        assert config == {'image': 'nginx', 'ports': []}

    def test_with_defaults_does_not_share_values(self):
        registry = _registry()
        first = registry.with_defaults('container', {})
        first['ports'].append(80)
        assert registry.with_defaults('container', {})['ports'] == []

    def test_with_defaults_unknown_type(self):
        assert _registry().with_defaults('volume', {'a': 1}) == {'a': 1}

    def test_new_resource(self):
        resource = _registry().new_resource('container', 'web', module='app', image='nginx')
        assert resource.id == 'module.app.container.web'
        assert resource.config == {'image': 'nginx', 'ports': []}

    def test_is_serialized(self):
        registry = _registry(serialize=True)
        assert registry.is_serialized('container')
        assert not registry.is_serialized('broken')
        assert not registry.is_serialized('volume')


class TestCreateProvider:
    """Tests for ProviderRegistry.create_provider()."""

    def test_provider_initialized(self):
        resource = Resource(name='web', type='container')
        context = ProviderContext()
        provider = _registry().create_provider(resource, context)

        assert isinstance(provider, Provider)
        assert provider.resource is resource
        assert provider.context is context
        assert isinstance(provider.log, ResourceLogAdapter)

    def test_init_failure(self):
        with pytest.raises(ProviderInitError) as exc_info:
            _registry().create_provider(Resource(name='x', type='broken'), ProviderContext())
        assert exc_info.value.resource_id == 'broken.x'
        assert isinstance(exc_info.value.cause, ValueError)

    def test_unknown_type_is_init_error(self):
        with pytest.raises(ProviderInitError, match='Unknown resource type'):
            _registry().create_provider(Resource(name='x', type='volume'), ProviderContext())


class TestProviderContext:
    """Tests for ProviderContext."""

    def test_find_outputs(self):
        entry = StateEntry(id='container.db', name='db', type='container', outputs={'ip': '10.0.0.5'})
        context = ProviderContext(lookup_entry={'container.db': entry}.get)
        assert context.find_outputs('container.db') == {'ip': '10.0.0.5'}

    def test_find_outputs_missing(self):
        context = ProviderContext(lookup_entry={}.get)
        with pytest.raises(KeyError):
            context.find_outputs('container.db')

    def test_default_context(self):
        context = ProviderContext()
        assert isinstance(context.cancelled, threading.Event)
        with pytest.raises(KeyError):
            context.find_outputs('container.db')


class TestResourceLogAdapter:
    """Tests for ResourceLogAdapter."""

    def test_prefixes_resource_id(self, caplog):
        log = ResourceLogAdapter(logging.getLogger('providers.test'), {'resource_id': 'test.a'})
        with caplog.at_level(logging.INFO):
            log.info("created")
        assert '[test.a] created' in caplog.text
