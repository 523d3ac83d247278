"""Tests for engine.state module."""

import json
import sys
import threading
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from engine.errors import StateCorruptError, StateIOError
from engine.state import STATE_VERSION, State, StateEntry, StateStore
from resources import Resource


def _entry(name, **kwargs):
    kwargs.setdefault('config_hash', 'sha256:abc')
    return StateEntry(id=f'test.{name}', name=name, type='test', **kwargs)


class TestStateEntry:
    """Tests for StateEntry dataclass."""

    def test_from_resource(self):
        resource = Resource(name='web', type='test', module='app', depends_on=['test.db'],
                            config={'port': 80}, outputs={'ip': '10.0.0.2'}, checksum='h1:x')
        entry = StateEntry.from_resource(resource, 'sha256:123')

        assert entry.id == 'module.app.test.web'
        assert entry.config == {'port': 80}
        assert entry.outputs == {'ip': '10.0.0.2'}
        assert entry.depends_on == ['test.db']
        assert entry.checksum == 'h1:x'
        assert entry.config_hash == 'sha256:123'
        assert entry.applied_at is not None

    def test_from_resource_copies_config(self):
        resource = Resource(name='web', type='test', config={'tags': ['a']})
        entry = StateEntry.from_resource(resource, 'sha256:123')
        resource.config['tags'].append('b')
        assert entry.config == {'tags': ['a']}

    def test_to_resource(self):
        entry = _entry('db', module='data', config={'size': 2}, outputs={'ip': '1'},
                       depends_on=['test.net'])
        resource = entry.to_resource()
        assert resource.id == 'module.data.test.db'
        assert resource.config == {'size': 2}
        assert resource.outputs == {'ip': '1'}
        assert resource.depends_on == ['test.net']

    def test_from_dict_roundtrip(self):
        entry = _entry('db', config={'size': 2}, outputs={'ip': '1'}, checksum='h1:y')
        assert StateEntry.from_dict(entry.to_dict()) == entry

    def test_from_dict_missing_field(self):
        with pytest.raises(StateCorruptError, match='type'):
            StateEntry.from_dict({'id': 'test.a', 'name': 'a'})

    def test_from_dict_bad_outputs(self):
        with pytest.raises(StateCorruptError, match='outputs'):
            StateEntry.from_dict({'id': 'test.a', 'name': 'a', 'type': 'test', 'outputs': [1]})

    def test_from_dict_depends_on_must_be_list(self):
        with pytest.raises(StateCorruptError, match='depends_on'):
            StateEntry.from_dict({'id': 'test.b', 'name': 'b', 'type': 'test',
                                  'depends_on': 'test.a'})


class TestState:
    """Tests for State collection."""

    def test_upsert_keeps_position(self):
        state = State([_entry('a'), _entry('b')])
        state.upsert(_entry('a', config_hash='sha256:new'))
        assert state.ids == ['test.a', 'test.b']
        assert state.get('test.a').config_hash == 'sha256:new'

    def test_remove(self):
        state = State([_entry('a')])
        assert state.remove('test.a') is not None
        assert state.remove('test.a') is None
        assert len(state) == 0

    def test_to_dict(self):
        data = State([_entry('a')]).to_dict()
        assert data['version'] == STATE_VERSION
        assert [r['id'] for r in data['resources']] == ['test.a']

    def test_from_dict_rejects_unknown_version(self):
        with pytest.raises(StateCorruptError, match='version'):
            State.from_dict({'version': 99, 'resources': []})

    def test_from_dict_rejects_duplicates(self):
        item = _entry('a').to_dict()
        with pytest.raises(StateCorruptError, match='Duplicate'):
            State.from_dict({'version': STATE_VERSION, 'resources': [item, item]})

    def test_from_dict_rejects_non_object(self):
        with pytest.raises(StateCorruptError):
            State.from_dict([])


class TestStateStore:
    """Tests for StateStore persistence."""

    def test_load_missing_file_is_empty(self, tmp_path):
        store = StateStore(tmp_path / 'state.json')
        assert len(store.load()) == 0

    def test_save_creates_directory(self, tmp_path):
        path = tmp_path / 'nested' / 'dir' / 'state.json'
        store = StateStore(path)
        store.upsert(_entry('a'))
        assert path.exists()

    def test_upsert_persists_immediately(self, tmp_path):
        path = tmp_path / 'state.json'
        StateStore(path).upsert(_entry('a', outputs={'ip': '1'}))

        reloaded = StateStore(path).load()
        assert reloaded.get('test.a').outputs == {'ip': '1'}
        assert reloaded.updated_at is not None

    def test_remove_persists_immediately(self, tmp_path):
        path = tmp_path / 'state.json'
        store = StateStore(path)
        store.upsert(_entry('a'))
        store.upsert(_entry('b'))
        store.remove('test.a')

        assert StateStore(path).load().ids == ['test.b']

    def test_file_is_valid_json(self, tmp_path):
        path = tmp_path / 'state.json'
        StateStore(path).upsert(_entry('a'))
        data = json.loads(path.read_text())
        assert data['resources'][0]['id'] == 'test.a'

    def test_no_temp_files_left(self, tmp_path):
        store = StateStore(tmp_path / 'state.json')
        store.upsert(_entry('a'))
        store.upsert(_entry('b'))
        assert [p.name for p in tmp_path.iterdir()] == ['state.json']

    def test_failed_write_keeps_previous_state(self, tmp_path, monkeypatch):
        path = tmp_path / 'state.json'
        store = StateStore(path)
        store.upsert(_entry('a'))
        before = path.read_text()

        def boom(*args, **kwargs):
            raise OSError("no space left on device")

        monkeypatch.setattr('engine.state.json.dump', boom)
        with pytest.raises(StateIOError, match='no space'):
            store.upsert(_entry('b'))

        assert path.read_text() == before
        assert [p.name for p in tmp_path.iterdir()] == ['state.json']

    def test_unserializable_output_is_state_error(self, tmp_path):
        store = StateStore(tmp_path / 'state.json')
        with pytest.raises(StateIOError):
            store.upsert(_entry('a', outputs={'obj': object()}))

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / 'state.json'
        path.write_text('{"version": 1, "resources": [')
        with pytest.raises(StateCorruptError):
            StateStore(path).load()

    def test_non_utf8_file(self, tmp_path):
        path = tmp_path / 'state.json'
        path.write_bytes(b'{"version": 1, "resources": [\xff\xfe]}')
        with pytest.raises(StateCorruptError):
            StateStore(path).load()

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / 'state.json'
        path.mkdir()
        with pytest.raises(StateIOError):
            StateStore(path).load()

    def test_find_by_id(self, tmp_path):
        store = StateStore(tmp_path / 'state.json')
        store.upsert(_entry('a'))
        assert store.find_by_id('test.a').name == 'a'
        assert store.find_by_id('test.b') is None

    def test_concurrent_upserts(self, tmp_path):
        path = tmp_path / 'state.json'
        store = StateStore(path)
        threads = [threading.Thread(target=store.upsert, args=(_entry(f'r{i}'),)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(StateStore(path).load()) == 20
