from __future__ import annotations

import pytest

from phantomauth.core.auth.session_control import SessionError, SessionRegistry, hash_token


def test_open_returns_token_once(sessions, app, alice, db):
    session = sessions.open(app.id, alice.id, ip_address="10.0.0.1")
    assert session.token
    assert session.token_hash == hash_token(session.token)
    assert session.token not in repr(session)

    with db.connect() as conn:
        stored = conn.execute("SELECT token_hash FROM sessions").fetchone()["token_hash"]
    assert stored == session.token_hash
    assert sessions.get_by_token(session.token).token is None


def test_tokens_are_unique(sessions, app, alice):
    tokens = {sessions.open(app.id, alice.id).token for _ in range(20)}
    assert len(tokens) == 20


def test_heartbeat_updates_last_activity(sessions, app, alice, clock):
    session = sessions.open(app.id, alice.id)
    clock.advance(minutes=5)
    assert sessions.heartbeat(session.token) is True
    assert sessions.get_by_token(session.token).last_activity == clock.now


def test_terminate_is_terminal(sessions, app, alice):
    session = sessions.open(app.id, alice.id)
    assert sessions.terminate(session.token) is True
    assert sessions.terminate(session.token) is False
    assert sessions.heartbeat(session.token) is False
    assert sessions.get_by_token(session.token).is_active is False


def test_unknown_token(sessions):
    assert sessions.heartbeat("nope") is False
    assert sessions.terminate("nope") is False
    assert sessions.heartbeat("") is False
    assert sessions.get_by_token("nope") is None


def test_list_active_is_scoped_per_application(sessions, applications, operator, users, app, alice):
    other_app = applications.create(operator.id, "Other")
    bob = users.create(other_app.id, "bob", "hunter22")
    mine = sessions.open(app.id, alice.id)
    sessions.open(other_app.id, bob.id)
    ended = sessions.open(app.id, alice.id)
    sessions.terminate(ended.token)

    assert [s.id for s in sessions.list_active(app.id)] == [mine.id]


def test_replace_existing_terminates_prior_sessions(sessions, app, alice):
    first = sessions.open(app.id, alice.id)
    second = sessions.open(app.id, alice.id, replace_existing=True)
    assert sessions.heartbeat(first.token) is False
    assert sessions.heartbeat(second.token) is True
    assert [s.id for s in sessions.list_active(app.id, alice.id)] == [second.id]


def test_terminate_all(sessions, app, alice):
    for _ in range(3):
        sessions.open(app.id, alice.id)
    assert sessions.terminate_all(alice.id) == 3
    assert sessions.list_active(app.id) == []


def test_reap_idle(sessions, app, alice, clock):
    idle = sessions.open(app.id, alice.id)
    clock.advance(minutes=30)
    busy = sessions.open(app.id, alice.id)

    assert sessions.reap_idle(600) == 1
    assert sessions.get_by_token(idle.token).is_active is False
    assert sessions.get_by_token(busy.token).is_active is True


def test_idle_timeout_rejects_heartbeat(db, app, alice, clock):
    registry = SessionRegistry(db, idle_timeout_seconds=60, clock=clock)
    session = registry.open(app.id, alice.id)
    clock.advance(seconds=30)
    assert registry.heartbeat(session.token) is True
    clock.advance(seconds=61)
    assert registry.heartbeat(session.token) is False
    assert registry.get_by_token(session.token).is_active is False


def test_token_collision_draws_again(sessions, app, alice, monkeypatch):
    existing = sessions.open(app.id, alice.id)
    tokens = iter([existing.token, "fresh-token-value"])
    monkeypatch.setattr(SessionRegistry, "_generate_token", lambda self: next(tokens))

    session = sessions.open(app.id, alice.id)
    assert session.token == "fresh-token-value"


def test_persistent_collision_gives_up(sessions, app, alice, monkeypatch):
    existing = sessions.open(app.id, alice.id)
    monkeypatch.setattr(SessionRegistry, "_generate_token", lambda self: existing.token)
    with pytest.raises(SessionError):
        sessions.open(app.id, alice.id)


def test_rejects_short_tokens(db):
    with pytest.raises(ValueError):
        SessionRegistry(db, token_bytes=8)


def test_sessions_survive_user_deletion_for_audit(sessions, users, app, alice, db):
    session = sessions.open(app.id, alice.id)
    users.delete(alice.id)
    stored = sessions.get_by_token(session.token)
    assert stored.is_active is False
    assert stored.app_user_id is None
