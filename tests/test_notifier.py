from __future__ import annotations

import pytest

from kiosk_queue.queue.events import (
    AnnouncementRequested,
    BroadcastNotifier,
    NullNotifier,
    TicketIssued,
    event_payload,
)


def test_event_payload_includes_event_type():
    event = AnnouncementRequested(display_number="PR001", window_number=1)

    assert event_payload(event) == {
        "event": "announcement_requested",
        "display_number": "PR001",
        "window_number": 1,
        "repeat": False,
    }


@pytest.mark.asyncio
async def test_broadcast_reaches_every_subscriber():
    notifier = BroadcastNotifier()
    event = TicketIssued(ticket_id="t-1", display_number="PR001", transaction_name="Permit Renewal", window_number=1)

    async with notifier.subscribe() as first, notifier.subscribe() as second:
        assert notifier.subscriber_count == 2
        await notifier.publish(event)
        assert first.get_nowait() == event
        assert second.get_nowait() == event

    assert notifier.subscriber_count == 0


@pytest.mark.asyncio
async def test_slow_subscriber_drops_events(caplog):
    notifier = BroadcastNotifier(queue_size=1)

    async with notifier.subscribe() as events:
        await notifier.publish(AnnouncementRequested(display_number="PR001", window_number=1))
        await notifier.publish(AnnouncementRequested(display_number="PR002", window_number=1))

        assert events.qsize() == 1
        assert events.get_nowait().display_number == "PR001"
    assert "Dropping announcement_requested" in caplog.text


def test_broadcast_requires_positive_queue_size():
    with pytest.raises(ValueError):
        BroadcastNotifier(queue_size=0)


@pytest.mark.asyncio
async def test_null_notifier_accepts_events():
    assert await NullNotifier().publish(AnnouncementRequested(display_number="PR001", window_number=1)) is None
