"""Tests for the notification fan-out."""

import asyncio

import pytest
from pydantic import ValidationError

from matfinder_sync.sync.notifications import (
    OFFLINE_MESSAGE,
    Notifier,
    Severity,
    SyncNotification,
)


class TestNotifier:
    def test_post_records_history(self, notifier):
        note = notifier.post("reviews", "synced", Severity.SUCCESS, "Synced successfully.")

        assert notifier.history == [note]
        assert note.persistent is False
        assert note.created_at.tzinfo is not None

    def test_history_bounded(self):
        notifier = Notifier(history_size=2)
        for i in range(3):
            notifier.post("c", "a", Severity.INFO, str(i))
        assert [n.message for n in notifier.history] == ["1", "2"]

    def test_clear(self, notifier):
        notifier.post("c", "a", Severity.INFO, "x")
        notifier.clear()
        assert notifier.history == []

    def test_delivered_inline_without_loop(self, notifier):
        received = []
        notifier.subscribe(received.append)

        note = notifier.post("c", "a", Severity.INFO, "x")
        assert received == [note]

    async def test_delivered_on_loop(self, notifier):
        received = []
        notifier.subscribe(received.append)

        note = notifier.post("c", "a", Severity.INFO, "x")
        # post() never calls back synchronously while a loop runs
        assert received == []
        await asyncio.sleep(0)
        assert received == [note]

    def test_unsubscribe(self, notifier):
        received = []
        unsubscribe = notifier.subscribe(received.append)
        unsubscribe()
        unsubscribe()

        notifier.post("c", "a", Severity.INFO, "x")
        assert received == []

    def test_failing_subscriber_isolated(self, notifier, caplog):
        received = []

        def broken(note):
            raise RuntimeError("presenter crashed")

        notifier.subscribe(broken)
        notifier.subscribe(received.append)

        notifier.post("c", "a", Severity.ERROR, "x", persistent=True)
        assert len(received) == 1
        assert received[0].persistent is True
        assert "Notification subscriber failed" in caplog.text


def test_notification_frozen():
    note = SyncNotification(
        collection="MatTime",
        action="offline",
        severity=Severity.INFO,
        message=OFFLINE_MESSAGE.format(collection="MatTime"),
    )
    assert note.message == "Offline mode, skipping MatTime sync."
    with pytest.raises(ValidationError):
        note.message = "other"
