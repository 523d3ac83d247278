"""Tests for resources module (resource model and YAML loader)."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config import ConfigError
from engine.registry import ProviderRegistry, Registration
from resources import Resource, ResourceSet, infer_dependencies, load_resources, make_id


class TestResource:
    """Tests for Resource dataclass."""

    def test_id(self):
        assert Resource(name='web', type='container').id == 'container.web'
        assert Resource(name='web', type='container', module='app').id == 'module.app.container.web'
        assert make_id('container', 'web', 'a.b') == 'module.a.b.container.web'

    def test_depends_on_deduplicated(self):
        resource = Resource(name='web', type='container', depends_on=['a.x', 'a.y', 'a.x'])
        assert resource.depends_on == ['a.x', 'a.y']

    def test_from_dict(self):
        resource = Resource.from_dict({
            'type': 'container',
            'name': 'web',
            'depends_on': 'network.main',
            'config': {'image': 'nginx'},
        }, module='app')
        assert resource.id == 'module.app.container.web'
        assert resource.depends_on == ['network.main']
        assert resource.config == {'image': 'nginx'}

    def test_from_dict_missing_field(self):
        with pytest.raises(ConfigError, match='name'):
            Resource.from_dict({'type': 'container'})

    def test_from_dict_invalid_name(self):
        with pytest.raises(ConfigError, match='invalid characters'):
            Resource.from_dict({'type': 'container', 'name': 'web.1'})

    def test_from_dict_bad_config(self):
        with pytest.raises(ConfigError, match='mapping'):
            Resource.from_dict({'type': 'container', 'name': 'web', 'config': ['x']})

    def test_to_dict_minimal(self):
        assert Resource(name='web', type='container').to_dict() == {
            'id': 'container.web', 'name': 'web', 'type': 'container',
        }


class TestInferDependencies:
    """Tests for ${...} reference inference."""

    def test_reference_adds_edge(self):
        ca = Resource(name='ca', type='cert')
        leaf = Resource(name='leaf', type='cert', config={'ca_key': '${cert.ca.outputs.key}'})
        infer_dependencies([ca, leaf])
        assert leaf.depends_on == ['cert.ca']

    def test_nested_values(self):
        db = Resource(name='db', type='container', module='data')
        app = Resource(name='app', type='container', config={
            'env': [{'DB_HOST': 'host=${module.data.container.db.outputs.ip}'}],
        })
        infer_dependencies([db, app])
        assert app.depends_on == ['module.data.container.db']

    def test_longest_prefix_wins(self):
        short = Resource(name='web', type='container')
        long = Resource(name='web', type='container', module='x')
        user = Resource(name='u', type='noop', config={'a': '${module.x.container.web.id}'})
        infer_dependencies([short, long, user])
        assert user.depends_on == ['module.x.container.web']

    def test_unknown_reference_ignored(self):
        resource = Resource(name='u', type='noop', config={'a': '${var.region}'})
        infer_dependencies([resource])
        assert resource.depends_on == []

    def test_self_reference_ignored(self):
        resource = Resource(name='u', type='noop', config={'a': '${noop.u.name}'})
        infer_dependencies([resource])
        assert resource.depends_on == []

    def test_reference_left_unevaluated(self):
        ca = Resource(name='ca', type='cert')
        leaf = Resource(name='leaf', type='cert', config={'ca': '${cert.ca.key}'})
        infer_dependencies([ca, leaf])
        assert leaf.config == {'ca': '${cert.ca.key}'}


class TestResourceSet:
    """Tests for ResourceSet."""

    def test_from_dict_with_modules(self):
        rs = ResourceSet.from_dict({
            'resources': [{'type': 'noop', 'name': 'root'}],
            'modules': [{
                'name': 'net',
                'resources': [{'type': 'noop', 'name': 'gw'}],
                'modules': [{'name': 'edge', 'resources': [{'type': 'noop', 'name': 'lb'}]}],
            }],
        })
        assert rs.ids == ['noop.root', 'module.net.noop.gw', 'module.net.edge.noop.lb']
        assert 'noop.root' in rs
        assert len(rs) == 3
        assert rs.get('module.net.noop.gw').module == 'net'

    def test_get_missing(self):
        with pytest.raises(KeyError):
            ResourceSet().get('noop.x')

    def test_registry_defaults_applied(self):
        registry = ProviderRegistry([Registration('file', object, defaults={'mode': '0644'})])
        rs = ResourceSet.from_dict(
            {'resources': [{'type': 'file', 'name': 'f', 'config': {'path': '/tmp/f'}}]},
            registry=registry,
        )
        assert rs.get('file.f').config == {'mode': '0644', 'path': '/tmp/f'}

    def test_module_without_name(self):
        with pytest.raises(ConfigError, match='name'):
            ResourceSet.from_dict({'modules': [{'resources': []}]})

    def test_resource_not_mapping(self):
        with pytest.raises(ConfigError, match='mapping'):
            ResourceSet.from_dict({'resources': ['noop.x']})


class TestLoadResources:
    """Tests for load_resources()."""

    def test_load_file(self, tmp_path):
        f = tmp_path / 'main.yaml'
        f.write_text("""
resources:
  - type: noop
    name: ca
  - type: noop
    name: leaf
    depends_on: [noop.ca]
""")
        rs = load_resources(f)
        assert rs.ids == ['noop.ca', 'noop.leaf']
        assert rs.get('noop.leaf').source_file == str(f)

    def test_load_directory_cross_file_references(self, tmp_path):
        (tmp_path / 'a.yaml').write_text("""
resources:
  - type: noop
    name: app
    config:
      db: ${noop.db.outputs.fqdn}
""")
        (tmp_path / 'b.yml').write_text("""
resources:
  - type: noop
    name: db
""")
        rs = load_resources(tmp_path)
        assert sorted(rs.ids) == ['noop.app', 'noop.db']
        assert rs.get('noop.app').depends_on == ['noop.db']

    def test_missing_path(self, tmp_path):
        with pytest.raises(ConfigError, match='not found'):
            load_resources(tmp_path / 'missing.yaml')

    def test_empty_directory(self, tmp_path):
        with pytest.raises(ConfigError, match='No resource files'):
            load_resources(tmp_path)

    def test_invalid_yaml(self, tmp_path):
        f = tmp_path / 'bad.yaml'
        f.write_text("resources: [unclosed")
        with pytest.raises(ConfigError, match='Invalid YAML'):
            load_resources(f)

    def test_not_a_mapping(self, tmp_path):
        f = tmp_path / 'list.yaml'
        f.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match='YAML object'):
            load_resources(f)
