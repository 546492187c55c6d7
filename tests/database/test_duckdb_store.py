import pytest

from association_finder.cache.association_cache import AssociationCache
from association_finder.database.db_duckdb import DuckDBSnapshotStore, get_db_config


@pytest.fixture
def db_url(tmp_path):
    return f'duckdb:///{tmp_path}/data/test.duckdb'


@pytest.fixture
def store(db_url):
    store = DuckDBSnapshotStore(db_url, {'database': {'connection': {'options': {'threads': 1}}}})
    yield store
    if store.conn is not None:
        store.close()


class TestDuckDBSnapshotStore:
    def test_database_file_created(self, store, tmp_path):
        """Test database and parent directory are created on init"""
        assert (tmp_path / 'data' / 'test.duckdb').exists()

        tables = {row[0] for row in store.conn.execute("SHOW TABLES").fetchall()}
        assert {'snapshot_meta', 'associations', 'kv_store'} <= tables

    def test_missing_snapshot_reads_none(self, store):
        assert store.read_snapshot('association_dict') is None

    def test_snapshot_written_and_read_back(self, store):
        record = {'formatVersion': 'v2', 'createdAt': 1700000000000,
                  'entries': {'p2': ['730'], 'p1': ['730', '570']}}

        store.write_snapshot('association_dict', record)

        assert store.read_snapshot('association_dict') == {
            'formatVersion': 'v2',
            'createdAt': 1700000000000,
            'entries': {'p1': ['570', '730'], 'p2': ['730']},
        }

    def test_write_replaces_whole_snapshot(self, store):
        store.write_snapshot('association_dict', {'formatVersion': 'v2', 'createdAt': 1,
                                                  'entries': {'p1': ['730'], 'p2': ['730']}})
        store.write_snapshot('association_dict', {'formatVersion': 'v2', 'createdAt': 2,
                                                  'entries': {'p3': ['570']}})

        assert store.read_snapshot('association_dict') == {
            'formatVersion': 'v2', 'createdAt': 2, 'entries': {'p3': ['570']}
        }

    def test_empty_snapshot(self, store):
        store.write_snapshot('association_dict', {'formatVersion': 'v2', 'createdAt': 5, 'entries': {}})

        assert store.read_snapshot('association_dict') == {'formatVersion': 'v2', 'createdAt': 5, 'entries': {}}

    def test_delete_snapshot(self, store):
        store.write_snapshot('association_dict', {'formatVersion': 'v2', 'createdAt': 1, 'entries': {'p1': ['730']}})

        store.delete_snapshot('association_dict')

        assert store.read_snapshot('association_dict') is None
        assert store.conn.execute("SELECT COUNT(*) FROM associations").fetchone()[0] == 0

    def test_values_round_trip_as_json(self, store):
        checkpoint = {'resource': '730', 'peerList': ['a', 'b'], 'cursor': 1, 'collected': ['a']}

        store.write_value('scan_progress:730', checkpoint)
        assert store.read_value('scan_progress:730') == checkpoint

        store.write_value('scan_progress:730', {'cursor': 2})
        assert store.read_value('scan_progress:730') == {'cursor': 2}

        store.delete_value('scan_progress:730')
        assert store.read_value('scan_progress:730') is None

    def test_data_survives_reopen(self, db_url):
        first = DuckDBSnapshotStore(db_url)
        first.write_snapshot('association_dict', {'formatVersion': 'v2', 'createdAt': 1, 'entries': {'p1': ['730']}})
        first.write_value('scan_progress:730', {'cursor': 3})
        first.close()

        second = DuckDBSnapshotStore(db_url)
        try:
            assert second.read_snapshot('association_dict')['entries'] == {'p1': ['730']}
            assert second.read_value('scan_progress:730') == {'cursor': 3}
        finally:
            second.close()

    def test_backs_association_cache(self, store, cache_settings, fake_clock):
        cache = AssociationCache(store, cache_settings, clock=fake_clock)
        cache.reset()
        cache.add('p1', '730')
        cache.add('p2', '730')
        assert cache.save()

        reloaded = AssociationCache(store, cache_settings, clock=fake_clock)
        assert reloaded.load()
        assert reloaded.lookup('730') == {'p1', 'p2'}


def test_db_config_defaults_and_overrides():
    assert get_db_config({}) == {'threads': 2, 'memory_limit': '1GB'}
    config = {'database': {'connection': {'options': {'threads': 4, 'unknown': 1}}}}
    assert get_db_config(config) == {'threads': 4, 'memory_limit': '1GB'}
