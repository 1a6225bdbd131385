from __future__ import annotations

import pytest

from phantomauth.security.activity import ActivityEvent


def test_recent_is_newest_first_and_paged(activity, app):
    for i in range(5):
        activity.record(app.id, ActivityEvent.LOGIN_FAILED, details={"n": i})

    page = activity.recent(app.id, limit=2)
    assert [e.details["n"] for e in page] == [4, 3]
    page = activity.recent(app.id, limit=2, offset=2)
    assert [e.details["n"] for e in page] == [2, 1]


def test_for_user(activity, app, alice):
    activity.record(app.id, ActivityEvent.LOGIN_SUCCESS, app_user_id=alice.id)
    activity.record(app.id, ActivityEvent.LOGIN_FAILED, app_user_id=999)
    entries = activity.for_user(alice.id)
    assert [e.event for e in entries] == ["login_success", "user_created"]


def test_chain_verifies(activity, app):
    for _ in range(3):
        activity.record(app.id, ActivityEvent.LOGIN_FAILED)
    ok, count = activity.verify_integrity(app.id)
    assert ok is True
    assert count == 4  # including application_created


def test_chains_are_per_application(activity, applications, operator, app):
    other = applications.create(operator.id, "Other")
    activity.record(app.id, ActivityEvent.LOGIN_FAILED)
    activity.record(other.id, ActivityEvent.LOGIN_FAILED)
    assert activity.verify_integrity(app.id) == (True, 2)
    assert activity.verify_integrity(other.id) == (True, 2)


def test_tampering_is_detected(activity, app, db):
    activity.record(app.id, ActivityEvent.LOGIN_FAILED, details={"reason": "hwid_mismatch"})
    activity.record(app.id, ActivityEvent.LOGIN_SUCCESS)

    with db.connect() as conn:
        conn.execute(
            "UPDATE activity_logs SET details = ? WHERE event = ?",
            ('{"reason": "invalid_credentials"}', "login_failed"),
        )

    ok, count = activity.verify_integrity(app.id)
    assert ok is False
    assert count == 1


def test_deleted_entry_breaks_the_chain(activity, app, db):
    first = activity.record(app.id, ActivityEvent.LOGIN_FAILED)
    activity.record(app.id, ActivityEvent.LOGIN_FAILED)
    with db.connect() as conn:
        conn.execute("DELETE FROM activity_logs WHERE id = ?", (first.id,))
    assert activity.verify_integrity(app.id)[0] is False


def test_entries_outlive_deleted_users(activity, users, app, alice):
    users.delete(alice.id)
    assert [e.event for e in activity.for_user(alice.id)] == ["user_deleted", "user_created"]


@pytest.mark.parametrize("limit, offset", [(0, 0), (10, -1)])
def test_invalid_paging(activity, app, limit, offset):
    with pytest.raises(ValueError):
        activity.recent(app.id, limit=limit, offset=offset)
