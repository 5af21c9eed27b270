"""Tests for the observability feed."""

from eca.core.events import ColonyEvent, EventFeed, EventKind


def test_publish_and_recent():
    """Published events are kept newest last."""
    feed = EventFeed(history=10)
    feed.publish([
        ColonyEvent(EventKind.CELL_UPDATED, 1, (0, 0)),
        ColonyEvent(EventKind.CYCLE_COMPLETED, 1),
    ])
    assert [e.kind for e in feed.recent()] == [EventKind.CELL_UPDATED, EventKind.CYCLE_COMPLETED]
    assert feed.recent(1)[0].kind is EventKind.CYCLE_COMPLETED
    assert feed.published == 2


def test_history_is_bounded():
    """Old events fall off the end."""
    feed = EventFeed(history=3)
    feed.publish([ColonyEvent(EventKind.CYCLE_COMPLETED, n) for n in range(5)])
    assert [e.cycle for e in feed.recent()] == [2, 3, 4]
    assert len(feed) == 3


def test_subscribers_filter_by_kind():
    """A subscriber with a kind only sees that kind."""
    feed = EventFeed()
    seen_all, seen_thoughts = [], []
    feed.subscribe(seen_all.append)
    feed.subscribe(seen_thoughts.append, kind=EventKind.THOUGHT_CREATED)

    feed.publish([
        ColonyEvent(EventKind.THOUGHT_CREATED, 1, (1, 1), {"thought_id": "a"}),
        ColonyEvent(EventKind.CELL_UPDATED, 1, (1, 1)),
    ])
    assert len(seen_all) == 2
    assert [e.data["thought_id"] for e in seen_thoughts] == ["a"]


def test_failing_handler_does_not_stop_feed():
    """A raising subscriber is counted, others still run."""
    feed = EventFeed()
    seen = []

    def broken(event):
        raise RuntimeError("display crashed")

    feed.subscribe(broken)
    feed.subscribe(seen.append)
    feed.publish([ColonyEvent(EventKind.CYCLE_COMPLETED, 1)])

    assert feed.handler_errors == 1
    assert len(seen) == 1


def test_unsubscribe():
    """Unsubscribed handlers receive nothing."""
    feed = EventFeed()
    seen = []
    sid = feed.subscribe(seen.append)
    assert feed.unsubscribe(sid)
    assert not feed.unsubscribe(sid)
    feed.publish([ColonyEvent(EventKind.CYCLE_COMPLETED, 1)])
    assert seen == []


def test_event_to_dict():
    """Events serialize with plain values."""
    event = ColonyEvent(EventKind.CELL_SPAWNED, 7, (2, 3), {"parent": [1, 3]})
    assert event.to_dict() == {
        "kind": "cell_spawned", "cycle": 7, "position": [2, 3], "data": {"parent": [1, 3]},
    }
