"""Tests for the monthly usage ledger."""

from __future__ import annotations

from datetime import datetime, timezone

from common.document_store import MemoryDocumentStore
from server.credentials import UsageStore


def test_mutations_persist_ledger_format(usage: UsageStore, clock) -> None:
    usage.record_upload("key-1")
    usage.set_connected("key-1", "facebook", True)
    usage.touch_channel("key-1", "page-9", "facebook")

    document = usage.repository.load()
    assert document["key-1"] == {
        "uploadsThisMonth": 1,
        "facebookConnected": True,
        "youtubeConnected": False,
        "month": "2026-03",
        "channels": {"page-9": {"platform": "facebook", "lastActiveAt": clock.now.isoformat()}},
    }


def test_monthly_rollover_resets_counter_but_keeps_channels(clock) -> None:
    repository = MemoryDocumentStore(
        {
            "key-1": {
                "uploadsThisMonth": 100,
                "facebookConnected": True,
                "youtubeConnected": False,
                "month": "2026-02",
                "channels": {"page-1": {"platform": "facebook", "lastActiveAt": "2026-02-27T10:00:00+00:00"}},
            }
        }
    )
    usage = UsageStore(repository, clock=clock)

    record = usage.get("key-1")

    assert record.uploads_this_month == 0
    assert record.month == "2026-03"
    assert record.facebook_connected is True
    assert list(record.channels) == ["page-1"]
    assert repository.load()["key-1"]["uploadsThisMonth"] == 0


def test_reading_does_not_write(usage: UsageStore) -> None:
    usage.get("key-1")
    usage.get("key-1")
    assert usage.repository.saves == 0


def test_owner_of_prefers_latest_activity(usage: UsageStore) -> None:
    usage.touch_channel("key-1", "page-1", "facebook", when=datetime(2026, 3, 1, tzinfo=timezone.utc))
    usage.touch_channel("key-2", "page-1", "facebook", when=datetime(2026, 3, 2, tzinfo=timezone.utc))

    assert usage.owner_of("page-1") == "key-2"
    assert usage.owner_of("page-1", "youtube") is None
    assert usage.owner_of("unknown") is None


def test_reset_and_reload(usage: UsageStore) -> None:
    usage.record_upload("key-1")
    usage.repository.save({"key-2": {"uploadsThisMonth": 4, "month": "2026-03"}})

    assert "key-2" not in usage.snapshot()
    usage.reload()
    assert usage.get("key-2").uploads_this_month == 4

    usage.reset()
    assert usage.snapshot() == {}
    assert usage.get("key-2").uploads_this_month == 0
