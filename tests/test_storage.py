"""Tests for the JSON session store."""

import json
from datetime import timedelta

from nighttrail.lib.models import DrinkCounts
from nighttrail.lib.storage import SessionStorage


def test_missing_file_is_empty_history(tmp_path) -> None:
    """Test loading before anything was saved."""
    assert SessionStorage(tmp_path / 'sessions.json').load_all() == []


def test_save_and_load_newest_first(tmp_path, t0, make_fix, make_dwell, make_session) -> None:
    """Test sessions come back intact and ordered newest first."""
    storage = SessionStorage(tmp_path / 'nested' / 'sessions.json')
    older = make_session(t0, route=[make_fix(0), make_fix(1, 50)], dwells=[make_dwell(name='The Crown')])
    newer = make_session(t0 + timedelta(days=1), drinks=DrinkCounts(beer=2), rating=3)

    storage.save(older)
    storage.save(newer)

    assert storage.load_all() == [newer, older]


def test_save_replaces_same_id(tmp_path, t0, make_session) -> None:
    """Test saving a session again updates it in place."""
    storage = SessionStorage(tmp_path / 'sessions.json')
    session = make_session(t0)
    storage.save(session)
    storage.save(session.with_rating(5))

    loaded = storage.load_all()
    assert len(loaded) == 1
    assert loaded[0].rating == 5


def test_get_by_prefix(tmp_path, t0, make_session) -> None:
    """Test sessions can be found by id or id prefix."""
    storage = SessionStorage(tmp_path / 'sessions.json')
    session = make_session(t0)
    storage.save(session)

    assert storage.get(session.id) == session
    assert storage.get(str(session.id)[:8]) == session
    assert storage.get('not-an-id') is None


def test_delete_and_clear(tmp_path, t0, make_session) -> None:
    """Test removing one session and then all of them."""
    storage = SessionStorage(tmp_path / 'sessions.json')
    first = make_session(t0)
    second = make_session(t0 + timedelta(days=1))
    storage.save(first)
    storage.save(second)

    assert storage.delete(first.id)
    assert not storage.delete(first.id)
    assert storage.load_all() == [second]

    storage.clear_all()
    assert storage.load_all() == []
    assert not storage.path.exists()


def test_unreadable_record_keeps_rest_of_history(tmp_path, t0, make_session) -> None:
    """Test one damaged record is skipped on load and survives the next save."""
    path = tmp_path / 'sessions.json'
    storage = SessionStorage(path)
    sessions = [make_session(t0 + timedelta(days=day)) for day in range(3)]
    for session in sessions:
        storage.save(session)

    data = json.loads(path.read_text())
    damaged = next(r for r in data['sessions'] if r['id'] == str(sessions[1].id))
    damaged['start_time'] = 'yesterday-ish'
    path.write_text(json.dumps(data))

    assert storage.load_all() == [sessions[2], sessions[0]]

    newest = make_session(t0 + timedelta(days=5))
    storage.save(newest)
    assert storage.load_all() == [newest, sessions[2], sessions[0]]
    stored_ids = [r['id'] for r in json.loads(path.read_text())['sessions']]
    assert str(sessions[1].id) in stored_ids
    assert len(stored_ids) == 4


def test_unparseable_file_is_moved_aside_before_save(tmp_path, t0, make_session) -> None:
    """Test a store that is not valid JSON is never overwritten."""
    path = tmp_path / 'sessions.json'
    garbage = '{"sessions": [{"id": '
    path.write_text(garbage)
    storage = SessionStorage(path)

    assert storage.load_all() == []

    session = make_session(t0)
    storage.save(session)
    assert storage.load_all() == [session]
    assert storage.corrupt_path.read_text() == garbage


def test_invalid_record_alone_yields_empty_history(tmp_path) -> None:
    """Test a store whose only record is invalid loads as empty."""
    path = tmp_path / 'sessions.json'
    path.write_text('{"sessions": [{"id": "nope"}]}')
    assert SessionStorage(path).load_all() == []
