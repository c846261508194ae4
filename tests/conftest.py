import itertools
from datetime import timedelta

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from apps.chat.services import MessagingService

User = get_user_model()


class RecordingBroadcaster:
    """Stands in for the Broadcaster; remembers what would have been pushed."""

    def __init__(self):
        self.published = []
        self.notified = []

    def publish_sync(self, conversation_id, payload):
        self.published.append((conversation_id, payload))
        return True

    def notify_user_sync(self, user_id, payload):
        self.notified.append((user_id, payload))
        return True


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make_user(username=None, **extra):
        n = next(counter)
        username = username or f"user{n}"
        return User.objects.create_user(
            username=username,
            email=f"{username}@example.com",
            password="s3cret-pass",
            **extra,
        )

    return _make_user


@pytest.fixture
def alice(make_user):
    return make_user("alice")


@pytest.fixture
def bob(make_user):
    return make_user("bob")


@pytest.fixture
def carol(make_user):
    return make_user("carol")


@pytest.fixture
def dave(make_user):
    return make_user("dave")


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def service(broadcaster):
    return MessagingService(broadcaster=broadcaster)


@pytest.fixture
def clock(monkeypatch):
    """Makes timezone.now() tick one second per call so orderings never tie."""
    start = timezone.now()
    ticks = itertools.count()

    def _now():
        return start + timedelta(seconds=next(ticks))

    monkeypatch.setattr(timezone, "now", _now)
    return _now


@pytest.fixture
def api_client():
    return APIClient()
