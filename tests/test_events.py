from __future__ import annotations

from feedwatch.events import EventChannel


class TestEventChannel:
    def test_publish_reaches_every_handler_in_order(self):
        channel: EventChannel[int] = EventChannel("numbers")
        calls = []
        channel.subscribe(lambda v: calls.append(("a", v)))
        channel.subscribe(lambda v: calls.append(("b", v)))

        channel.publish(1)

        assert calls == [("a", 1), ("b", 1)]

    def test_unsubscribe_stops_delivery(self):
        channel: EventChannel[int] = EventChannel()
        seen = []
        sub = channel.subscribe(seen.append)
        channel.publish(1)
        sub.unsubscribe()
        sub.unsubscribe()  # idempotent
        channel.publish(2)

        assert seen == [1]
        assert sub.active is False
        assert len(channel) == 0

    def test_subscription_as_context_manager(self):
        channel: EventChannel[str] = EventChannel()
        seen = []
        with channel.subscribe(seen.append):
            channel.publish("in")
        channel.publish("out")
        assert seen == ["in"]

    def test_failing_handler_does_not_block_others(self):
        channel: EventChannel[int] = EventChannel()
        seen = []

        def broken(value: int) -> None:
            raise RuntimeError("boom")

        channel.subscribe(broken)
        channel.subscribe(seen.append)
        channel.publish(7)

        assert seen == [7]
