from __future__ import annotations

from phantomauth.core.bootstrap import DEFAULT_ROLE, OperatorDirectory, OperatorProfile
from phantomauth.core.config import DEFAULT_OWNER_PERMISSIONS, BootstrapIdentity


def test_regular_operator_gets_default_role(operators):
    op = operators.upsert(OperatorProfile(id="op-9", email="someone@example.com"))
    assert op.role == DEFAULT_ROLE
    assert op.permissions == []
    assert not op.has_permission("manage_users")


def test_bootstrap_email_is_elevated(operators):
    op = operators.upsert(OperatorProfile(id="op-root", email="Owner@Example.com"))
    assert op.role == "owner"
    assert op.permissions == list(DEFAULT_OWNER_PERMISSIONS)
    assert op.has_permission("manage_users")


def test_upsert_updates_profile(operators):
    operators.upsert(OperatorProfile(id="op-1", email="a@example.com", first_name="Ann"))
    op = operators.upsert(OperatorProfile(id="op-1", email="a@example.com", first_name="Anne"))
    assert op.first_name == "Anne"


def test_removed_bootstrap_identity_is_demoted_on_next_upsert(db, clock):
    elevated = OperatorDirectory(db, (BootstrapIdentity(email="ops@example.com"),), clock)
    assert elevated.upsert(OperatorProfile(id="op-1", email="ops@example.com")).role == "owner"

    plain = OperatorDirectory(db, (), clock)
    assert plain.upsert(OperatorProfile(id="op-1", email="ops@example.com")).role == DEFAULT_ROLE


def test_seed_promotes_existing_operators(db, clock):
    OperatorDirectory(db, (), clock).upsert(OperatorProfile(id="op-1", email="ops@example.com"))

    directory = OperatorDirectory(
        db, (BootstrapIdentity(email="ops@example.com", role="admin", permissions=("manage_users",)),), clock
    )
    assert directory.seed() == ["op-1"]
    assert directory.get("op-1").role == "admin"
    assert directory.seed() == []
