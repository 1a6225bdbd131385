from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from phantomauth.core.applications import ApplicationManager
from phantomauth.core.auth.argon2_auth import Argon2Hasher
from phantomauth.core.auth.authenticator import AuthenticationAuthority
from phantomauth.core.auth.session_control import SessionRegistry
from phantomauth.core.auth.user_manager import AppUserManager
from phantomauth.core.bootstrap import OperatorDirectory, OperatorProfile
from phantomauth.core.config import BootstrapIdentity, SecurityConfig
from phantomauth.core.device.hwid_binding import HardwareBindingManager
from phantomauth.db.connection import Database
from phantomauth.notifications.webhooks import WebhookRegistry
from phantomauth.security.activity import ActivityLog
from phantomauth.security.blacklist import DenyList


FAST_ARGON2 = {"memory_cost": 8192, "time_cost": 1, "parallelism": 1}


class FixedClock:
    """Settable clock; advance() moves it forward."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingNotifier:
    def __init__(self) -> None:
        self.events = []

    def notify(self, application_id, event, payload):
        self.events.append((application_id, event, payload))

    def names(self):
        return [event.value for _, event, _ in self.events]


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "authority.db")


@pytest.fixture
def hasher():
    return Argon2Hasher(**FAST_ARGON2)


@pytest.fixture
def activity(db, clock):
    return ActivityLog(db, clock)


@pytest.fixture
def operators(db, clock):
    return OperatorDirectory(db, (BootstrapIdentity(email="owner@example.com"),), clock)


@pytest.fixture
def applications(db, activity, operators, clock):
    return ApplicationManager(db, activity, clock)


@pytest.fixture
def operator(operators):
    return operators.upsert(OperatorProfile(id="op-1", email="dev@example.com"))


@pytest.fixture
def app(applications, operator):
    return applications.create(operator.id, "Loader")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def sessions(db, clock):
    return SessionRegistry(db, clock=clock)


@pytest.fixture
def binding(db, activity, notifier, clock):
    return HardwareBindingManager(db, activity, notifier, clock)


@pytest.fixture
def users(db, hasher, activity, binding, sessions, clock):
    return AppUserManager(db, hasher, activity, binding, sessions, clock)


@pytest.fixture
def deny_list(db, activity, clock):
    return DenyList(db, activity, clock)


@pytest.fixture
def webhooks(db, clock):
    return WebhookRegistry(db, clock)


@pytest.fixture
def alice(users, app):
    return users.create(app.id, "alice", "secret123")


@pytest.fixture
def make_authority(hasher, activity, operators, applications, users, binding, deny_list,
                   sessions, webhooks, notifier, clock):
    def _make(**security):
        return AuthenticationAuthority(
            hasher=hasher,
            activity=activity,
            operators=operators,
            applications=applications,
            users=users,
            binding=binding,
            deny_list=deny_list,
            sessions=sessions,
            webhooks=webhooks,
            notifier=notifier,
            security=SecurityConfig(
                argon2_memory_cost=FAST_ARGON2["memory_cost"],
                argon2_time_cost=FAST_ARGON2["time_cost"],
                argon2_parallelism=FAST_ARGON2["parallelism"],
                **security,
            ),
            clock=clock,
        )
    return _make


@pytest.fixture
def authority(make_authority):
    return make_authority()
