from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from phantomauth.core.applications import ApplicationNotFoundError
from phantomauth.core.auth.account_lifecycle import AccountUpdate
from phantomauth.core.auth.session_control import SessionRegistry
from phantomauth.core.auth.user_manager import AppUserExistsError, AppUserNotFoundError
from phantomauth.db.connection import StoreError
from phantomauth.utils.validators import ValidationError


def test_create_hashes_password(users, hasher, app):
    user = users.create(app.id, "bob", "hunter22", email="bob@example.com")
    assert user.password_hash != "hunter22"
    assert hasher.verify("hunter22", user.password_hash)
    assert user.hwid is None
    assert user.is_paused is False
    assert users.get_by_email(app.id, "bob@example.com").id == user.id


def test_usernames_are_unique_per_application(users, applications, operator, app, alice):
    with pytest.raises(AppUserExistsError):
        users.create(app.id, "alice", "other-pass")
    other = applications.create(operator.id, "Other")
    assert users.create(other.id, "alice", "other-pass").application_id == other.id


def test_emails_are_unique_per_application(users, app):
    users.create(app.id, "bob", "hunter22", email="shared@example.com")
    with pytest.raises(AppUserExistsError):
        users.create(app.id, "carol", "hunter22", email="shared@example.com")
    # Several holders may have no email at all
    users.create(app.id, "dave", "hunter22")
    users.create(app.id, "erin", "hunter22", email="")


def test_create_in_missing_application(users):
    with pytest.raises(ApplicationNotFoundError):
        users.create(404, "bob", "hunter22")


@pytest.mark.parametrize("username, password", [("", "pw"), (" bob", "pw"), ("bob", ""), ("x" * 65, "pw")])
def test_create_validation(users, app, username, password):
    with pytest.raises(ValidationError):
        users.create(app.id, username, password)


def test_create_with_prebound_hwid_and_expiry(users, app, clock):
    expires = clock.now + timedelta(days=30)
    user = users.create(app.id, "bob", "hunter22", hwid="HW-7", expires_at=expires)
    assert user.hwid == "HW-7"
    assert user.expires_at == expires


def test_update_rotates_password(users, hasher, alice):
    updated = users.update(alice.id, AccountUpdate(password="n3w-pass"))
    assert hasher.verify("n3w-pass", updated.password_hash)
    assert not hasher.verify("secret123", updated.password_hash)


def test_update_can_clear_expiry(users, alice, clock):
    users.update(alice.id, AccountUpdate(expires_at=clock.now + timedelta(days=1)))
    assert users.get(alice.id).expires_at is not None
    users.update(alice.id, AccountUpdate(expires_at=None))
    assert users.get(alice.id).expires_at is None


def test_update_leaves_unset_fields_alone(users, app):
    bob = users.create(app.id, "bob", "hunter22", email="bob@example.com")
    updated = users.update(bob.id, AccountUpdate(username="robert"))
    assert updated.username == "robert"
    assert updated.email == "bob@example.com"
    assert updated.password_hash == bob.password_hash


def test_update_is_validated_before_the_store(users, alice):
    with pytest.raises(ValidationError):
        users.update(alice.id, AccountUpdate(username="ok", email="broken"))
    assert users.get(alice.id).username == "alice"


def test_update_conflict_and_missing(users, app, alice):
    users.create(app.id, "bob", "hunter22")
    with pytest.raises(AppUserExistsError):
        users.update(alice.id, AccountUpdate(username="bob"))
    with pytest.raises(AppUserNotFoundError):
        users.update(404, AccountUpdate(username="zed"))


def test_pause_is_idempotent(users, activity, app, alice):
    assert users.pause(alice.id) is True
    assert users.pause(alice.id) is True
    assert users.get(alice.id).is_paused is True
    assert [e.event for e in activity.for_user(alice.id)].count("user_paused") == 1

    assert users.unpause(alice.id) is True
    assert users.get(alice.id).is_paused is False
    assert users.pause(404) is False


def test_delete_terminates_sessions(users, sessions, app, alice):
    session = sessions.open(app.id, alice.id)
    assert users.delete(alice.id) is True
    assert sessions.heartbeat(session.token) is False
    assert users.get(alice.id) is None
    assert users.delete(alice.id) is False


def test_login_racing_a_delete_leaves_no_active_session(users, sessions, app, alice, monkeypatch):
    original = SessionRegistry.terminate_all_within
    started = threading.Event()
    outcome = {}

    def late_login():
        started.set()
        try:
            outcome["session"] = sessions.open(app.id, alice.id)
        except StoreError as e:
            outcome["error"] = e

    racer = threading.Thread(target=late_login)

    def terminate_then_race(self, conn, app_user_id):
        count = original(self, conn, app_user_id)
        # the login starts while delete still holds the write lock
        racer.start()
        started.wait(timeout=5)
        return count

    monkeypatch.setattr(SessionRegistry, "terminate_all_within", terminate_then_race)
    assert users.delete(alice.id) is True
    racer.join(timeout=15)

    assert "session" not in outcome
    assert isinstance(outcome["error"], StoreError)
    assert sessions.list_active(app.id) == []


def test_hwid_admin_operations(users, alice):
    assert users.set_hwid(alice.id, "HW-1") is True
    assert users.get(alice.id).hwid == "HW-1"
    assert users.reset_hwid(alice.id) is True
    assert users.get(alice.id).hwid is None
    assert users.reset_hwid(404) is False
    assert users.set_hwid(404, "HW-1") is False


def test_list_for_application(users, app, alice):
    bob = users.create(app.id, "bob", "hunter22")
    assert [u.id for u in users.list_for_application(app.id)] == [alice.id, bob.id]
