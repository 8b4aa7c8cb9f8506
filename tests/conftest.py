"""Shared fixtures: a temporary SQLite database, stores, and fake collaborators."""

from __future__ import annotations

import pytest

from weather_alerts.db import Database
from weather_alerts.dispatch import NotificationDispatcher
from weather_alerts.scanner import AlertScanner
from weather_alerts.stores import AlertRuleStore, HistoryStore, PreferenceStore

from helpers import FakeEmail, FakeUsers


@pytest.fixture()
async def db(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await database.init()
    yield database
    await database.close()


@pytest.fixture()
def preferences(db):
    return PreferenceStore(db)


@pytest.fixture()
def rules(db):
    return AlertRuleStore(db)


@pytest.fixture()
def history(db):
    return HistoryStore(db)


@pytest.fixture()
def users():
    return FakeUsers({"u1": "one@example.com", "u2": "two@example.com", "u3": "three@example.com"})


@pytest.fixture()
def email():
    return FakeEmail()


@pytest.fixture()
def dispatcher(history, email):
    return NotificationDispatcher(history, email, dashboard_url="https://example.com/")


@pytest.fixture()
def scanner(rules, preferences, history, dispatcher, users):
    return AlertScanner(rules, preferences, history, dispatcher, users)
