import pytest

from buzzquiz.errors import NotFound, VersionConflict


def test_write_full_and_read_paths(store):
    store.write_full('games/1234', {'status': 'waiting', 'players': {'a': {'score': 0}}})
    assert store.read_once('games/1234')['status'] == 'waiting'
    assert store.read_once('games/1234/players/a/score') == 0
    assert store.read_once('games/1234/players/zz') is None
    assert store.read_once('games/9999') is None
    # Collection read returns every document keyed by id
    assert set(store.read_once('games')) == {'1234'}


def test_read_returns_a_copy(store):
    store.write_full('games/1', {'status': 'waiting', 'players': {}})
    snapshot = store.read_once('games/1')
    snapshot['status'] = 'mutated'
    assert store.read_once('games/1')['status'] == 'waiting'


def test_write_partial_merges_leaves(store):
    store.write_full('games/1', {'status': 'waiting', 'players': {'a': {'score': 0, 'name': 'A'}}})
    store.write_partial('games/1', {'players/a/score': 3})
    store.write_partial('games/1', {'players/b': {'score': 1, 'name': 'B'}, 'status': 'playing'})
    game = store.read_once('games/1')
    assert game['players']['a'] == {'score': 3, 'name': 'A'}
    assert game['players']['b']['name'] == 'B'
    assert game['status'] == 'playing'


def test_write_partial_bumps_version_and_checks_expected(store):
    store.write_full('games/1', {'status': 'waiting'})
    _, version = store.read_versioned('games/1')
    new_version = store.write_partial('games/1', {'status': 'playing'}, expected_version=version)
    assert new_version == version + 1
    with pytest.raises(VersionConflict):
        store.write_partial('games/1', {'status': 'finished'}, expected_version=version)
    assert store.read_once('games/1/status') == 'playing'


def test_write_partial_never_resurrects_removed_document(store):
    store.write_full('games/1', {'status': 'waiting'})
    store.remove('games/1')
    with pytest.raises(NotFound):
        store.write_partial('games/1', {'status': 'playing'})
    assert store.read_once('games/1') is None


def test_write_full_none_removes(store):
    store.write_full('pools/1', [{'id': 'q1'}])
    store.write_full('pools/1', None)
    assert store.read_once('pools/1') is None


def test_remove_nested_path(store):
    store.write_full('games/1', {'status': 'waiting', 'hostError': 'x'})
    store.remove('games/1/hostError')
    assert store.read_once('games/1') == {'status': 'waiting'}


def test_query_by_equality_oldest_first(store):
    store.write_full('games/2000', {'status': 'waiting'})
    store.write_full('games/3000', {'status': 'playing'})
    store.write_full('games/1000', {'status': 'waiting'})
    found = store.query_by_equality('games', 'status', 'waiting')
    assert [key for key, _ in found] == ['2000', '1000']
    assert store.query_by_equality('games', 'status', 'waiting', limit=1)[0][0] == '2000'
    # Index follows partial updates
    store.write_partial('games/2000', {'status': 'playing'})
    assert [key for key, _ in store.query_by_equality('games', 'status', 'waiting')] == ['1000']


def test_query_by_unindexed_field_rejected(store):
    with pytest.raises(ValueError):
        store.query_by_equality('games', 'isOpenMatch', True)


def test_subscribe_delivers_snapshots_and_removal(store):
    seen = []
    unsubscribe = store.subscribe('games/1', seen.append)
    store.write_full('games/1', {'status': 'waiting'})
    store.write_partial('games/1', {'status': 'playing'})
    # Unrelated document does not notify
    store.write_full('games/2', {'status': 'waiting'})
    store.remove('games/1')
    assert seen == [{'status': 'waiting'}, {'status': 'playing'}, None]

    unsubscribe()
    assert 'games/1' not in store._subscriptions
    store.write_full('games/1', {'status': 'waiting'})
    assert len(seen) == 3


def test_nested_writes_delivered_in_order(store):
    store.write_full('games/1', {'status': 'waiting', 'step': 0})
    seen = []

    def bump(snapshot):
        if snapshot and snapshot['step'] < 3:
            store.write_partial('games/1', {'step': snapshot['step'] + 1})

    store.subscribe('games/1', bump)
    store.subscribe('games/1', lambda s: seen.append(s['step']))
    store.write_partial('games/1', {'status': 'playing'})
    # Every observer sees steps in order and never an older one after a newer one
    assert seen == [0, 1, 2, 3]
    assert store.read_once('games/1/step') == 3


def test_failing_subscriber_does_not_block_others(store):
    seen = []

    def broken(_):
        raise RuntimeError('boom')

    store.subscribe('games/1', broken)
    store.subscribe('games/1', seen.append)
    store.write_full('games/1', {'status': 'waiting'})
    assert seen == [{'status': 'waiting'}]


def test_create_only_writes_missing_documents(store):
    seen = []
    store.subscribe('pools/1', seen.append)
    assert store.create('pools/1', [{'id': 'q1'}]) is True
    assert store.create('pools/1', [{'id': 'other'}]) is False
    assert store.read_once('pools/1') == [{'id': 'q1'}]
    assert seen == [[{'id': 'q1'}]]
    with pytest.raises(ValueError):
        store.create('pools/1/0', {'id': 'q'})
