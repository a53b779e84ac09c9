"""
Tests for the notification dispatcher and subscriber hub.
"""

from drivewatch.monitor.dispatcher import BROADCAST, NotificationDispatcher, Scope, SubscriberHub

from conftest import RecordingSubscriber


class BrokenSubscriber:
    def send(self, message):
        raise ConnectionError("socket closed")


class TestPublish:
    """Tests for NotificationDispatcher.publish()."""

    def test_sequence_numbers_increase(self):
        """Each published event gets the next sequence number."""
        hub = SubscriberHub()
        sub = RecordingSubscriber()
        hub.subscribe(sub)
        dispatcher = NotificationDispatcher(hub)

        dispatcher.publish("D1", "a.csv", "one", BROADCAST)
        dispatcher.publish("D2", "b.csv", "two", BROADCAST)

        assert [e["sequenceNumber"] for e in sub.events] == [1, 2]
        assert dispatcher.sequence == 2

    def test_payload_shape(self):
        """The payload uses the subscriber-facing field names."""
        hub = SubscriberHub()
        sub = RecordingSubscriber()
        hub.subscribe(sub)

        event = NotificationDispatcher(hub).publish("D1", "Budget", "text", BROADCAST)

        assert sub.messages == [{"event": "file-updated", "data": {
            "documentId": "D1",
            "documentName": "Budget",
            "message": 'File "Budget" updated (Update #1).',
            "sequenceNumber": 1,
            "fullText": "text",
        }}]
        assert event.sequence_number == 1

    def test_empty_text_not_published(self):
        """Empty text is not an update and uses no sequence number."""
        hub = SubscriberHub()
        sub = RecordingSubscriber()
        hub.subscribe(sub)
        dispatcher = NotificationDispatcher(hub)

        assert dispatcher.publish("D1", "a", None) is None
        assert dispatcher.publish("D1", "a", "") is None
        assert sub.messages == []
        assert dispatcher.sequence == 0

    def test_missing_name_defaults(self):
        """Documents without a name are reported as cloud_file."""
        hub = SubscriberHub()
        event = NotificationDispatcher(hub).publish("D1", "", "x")
        assert event.document_name == "cloud_file"

    def test_room_scope_reaches_members_only(self):
        """Room events only reach subscribers in that room."""
        hub = SubscriberHub()
        member, other = RecordingSubscriber(), RecordingSubscriber()
        hub.subscribe(member)
        hub.subscribe(other)
        hub.join(member, "D1")

        NotificationDispatcher(hub).publish("D1", "a", "x", Scope.document("D1"))

        assert len(member.events) == 1
        assert other.events == []

    def test_broadcast_reaches_everyone(self):
        """Broadcast events reach every subscriber."""
        hub = SubscriberHub()
        subs = [RecordingSubscriber() for _ in range(3)]
        for s in subs:
            hub.subscribe(s)
        hub.join(subs[0], "D9")

        NotificationDispatcher(hub).publish("D1", "a", "x", BROADCAST)

        assert all(len(s.events) == 1 for s in subs)


class TestSubscriberHub:
    """Tests for SubscriberHub membership."""

    def test_failing_subscriber_dropped(self):
        """A subscriber whose send raises is removed."""
        hub = SubscriberHub()
        good = RecordingSubscriber()
        hub.subscribe(BrokenSubscriber())
        hub.subscribe(good)

        delivered = hub.emit("file-updated", {"x": 1})

        assert delivered == 1
        assert len(hub) == 1
        assert good.messages

    def test_leave_room(self):
        """Leaving a room stops room events."""
        hub = SubscriberHub()
        sub = RecordingSubscriber()
        hub.join(sub, "D1")
        hub.leave(sub, "D1")
        assert hub.members("D1") == []
        assert hub.members() == [sub]
