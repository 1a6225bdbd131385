from __future__ import annotations

import pytest

from phantomauth.security.blacklist import BlacklistType
from phantomauth.utils.validators import ValidationError


def test_active_entry_blocks(deny_list, app):
    deny_list.add(app.id, "hwid", "HW-9")
    assert deny_list.is_blocked(app.id, BlacklistType.HWID, "HW-9") is True
    assert deny_list.is_blocked(app.id, BlacklistType.HWID, "HW-1") is False
    assert deny_list.is_blocked(app.id, BlacklistType.IP, "HW-9") is False


def test_deactivated_entry_never_matches(deny_list, app):
    entry = deny_list.add(app.id, BlacklistType.IP, "10.0.0.1")
    assert deny_list.deactivate(entry.id) is True
    assert deny_list.is_blocked(app.id, "ip", "10.0.0.1") is False
    assert deny_list.deactivate(entry.id) is False
    assert deny_list.list(app.id)[0].is_active is False


def test_tenant_entries_do_not_leak(deny_list, applications, operator, app):
    other = applications.create(operator.id, "Other")
    deny_list.add(app.id, "username", "mallory")
    assert deny_list.is_blocked(other.id, "username", "mallory") is False


def test_global_entries_match_every_tenant(deny_list, applications, operator, app):
    other = applications.create(operator.id, "Other")
    entry = deny_list.add(None, "hwid", "HW-GLOBAL")
    assert entry.is_global
    assert deny_list.is_blocked(app.id, "hwid", "HW-GLOBAL")
    assert deny_list.is_blocked(other.id, "hwid", "HW-GLOBAL")
    assert [e.id for e in deny_list.list(app.id, include_global=True)] == [entry.id]
    assert deny_list.list(app.id) == []


def test_first_match_respects_probe_order(deny_list, app):
    ip_entry = deny_list.add(app.id, "ip", "10.0.0.1")
    deny_list.add(app.id, "hwid", "HW-9")

    match = deny_list.first_match(app.id, [
        (BlacklistType.USERNAME, "alice"),
        (BlacklistType.IP, "10.0.0.1"),
        (BlacklistType.HWID, "HW-9"),
    ])
    assert match.id == ip_entry.id


def test_first_match_skips_empty_values(deny_list, app):
    deny_list.add(app.id, "hwid", "HW-9")
    assert deny_list.first_match(app.id, [(BlacklistType.HWID, None), (BlacklistType.IP, "")]) is None


def test_remove(deny_list, app, activity):
    entry = deny_list.add(app.id, "username", "mallory", reason="chargeback")
    assert entry.reason == "chargeback"
    assert deny_list.remove(entry.id) is True
    assert deny_list.remove(entry.id) is False
    assert deny_list.get(entry.id) is None
    assert [e.event for e in activity.recent(app.id, limit=2)] == ["blacklist_removed", "blacklist_added"]


def test_unknown_type_is_rejected(deny_list, app):
    with pytest.raises(ValidationError):
        deny_list.add(app.id, "email", "x@example.com")


def test_entries_cascade_with_application(deny_list, applications, app):
    deny_list.add(app.id, "hwid", "HW-9")
    applications.delete(app.id)
    assert deny_list.list() == []
