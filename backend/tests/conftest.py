"""Shared fixtures: an app on in-memory SQLite, a hand-driven clock and a
notifier that records every emitted event."""
from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from lostfound import create_app
from lostfound.extensions import db
from lostfound.models.report import Report
from lostfound.models.user import User
from lostfound.modules.matches.service import get_match_resolution
from lostfound.modules.notifications.bus import EventEmitter

_emails = itertools.count(1)


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier(EventEmitter):
    def __init__(self) -> None:
        super().__init__()
        self.events: list[tuple[str, dict]] = []
        self.on("*", lambda name, payload: self.events.append((name, payload)))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def count(self, name: str) -> int:
        return self.names().count(name)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def app(clock, notifier):
    app = create_app("testing", notifier=notifier, clock=clock)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def res(app):
    return get_match_resolution()


@pytest.fixture
def make_user(app):
    def _make(role: str = "student", name: str | None = None) -> User:
        n = next(_emails)
        u = User(email=f"user{n}@example.edu", name=name or f"User {n}", role=role)
        db.session.add(u)
        db.session.commit()
        return u
    return _make


@pytest.fixture
def make_report(app):
    def _make(kind: str, owner: User | None, title: str = "Blue backpack") -> Report:
        r = Report(kind=kind, owner_user_id=owner.id if owner else None, title=title)
        db.session.add(r)
        db.session.commit()
        return r
    return _make


@pytest.fixture
def owner(make_user):
    """Reporter of the lost item (initiates matches)."""
    return make_user(name="Owner")


@pytest.fixture
def finder(make_user):
    return make_user(name="Finder")


@pytest.fixture
def lost_report(make_report, owner):
    return make_report("lost", owner)


@pytest.fixture
def found_report(make_report, finder):
    return make_report("found", finder)


@pytest.fixture
def match(res, lost_report, found_report):
    return res.lifecycle.create_match(lost_report.id, found_report.id, notes="Looks like mine")
