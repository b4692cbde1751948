import asyncio
import json

import pytest

from backend.models.enums import InvoiceType, OrderStatus
from backend.models.invoice import Invoice
from backend.services.order_feed import (
    FeedStatus,
    OrderEvent,
    OrderEventHandler,
    OrderEventPublisher,
    OrderFeedListener,
)


def _event(order_id=1, new_status="shipped", number="ORD-20261019-0001"):
    return OrderEvent(order_id=order_id, order_number=number, old_status="ready_to_ship",
                      new_status=new_status, occurred_at="2026-10-19T09:00:00")


class FakePubSub:
    def __init__(self, messages):
        self.messages = messages
        self.closed = False

    async def listen(self):
        for message in self.messages:
            yield message

    async def aclose(self):
        self.closed = True


class TestOrderEvent:
    def test_json_round_trip(self):
        event = _event()
        assert OrderEvent.from_json(event.to_json().encode()) == event

    @pytest.mark.parametrize("raw", ["not json", json.dumps({"order_id": 1}), json.dumps([1, 2])])
    def test_malformed(self, raw):
        with pytest.raises(ValueError):
            OrderEvent.from_json(raw)


class TestListener:
    def test_gives_up_after_max_attempts(self):
        calls, delays = [], []

        async def connect():
            calls.append(1)
            raise ConnectionError("redis down")

        async def sleep(delay):
            delays.append(delay)

        listener = OrderFeedListener(connect=connect, sleep=sleep, max_reconnect_attempts=3,
                                     base_delay=0.1, on_event=lambda event: None)
        asyncio.run(listener.run())

        assert listener.status == FeedStatus.FAILED
        assert len(calls) == 4
        assert delays == pytest.approx([0.1, 0.2, 0.4])
        assert listener.last_error == "redis down"

    def test_dispatches_messages_and_reconnects(self):
        received = []
        subscriptions = [
            FakePubSub([
                {"type": "subscribe", "data": 1},
                {"type": "message", "data": _event(order_id=7).to_json()},
                {"type": "message", "data": "{broken"},
            ]),
            FakePubSub([{"type": "message", "data": _event(order_id=8, new_status="delivered").to_json()}]),
        ]
        attempts = []

        async def connect():
            attempts.append(1)
            if subscriptions:
                return subscriptions.pop(0)
            raise ConnectionError("gone")

        async def on_event(event):
            received.append((event.order_id, event.new_status))

        async def sleep(delay):
            pass

        listener = OrderFeedListener(connect=connect, on_event=on_event, sleep=sleep,
                                     max_reconnect_attempts=1, base_delay=0.1)
        asyncio.run(listener.run())

        assert received == [(7, "shipped"), (8, "delivered")]
        assert listener.events_processed == 2
        # each successful subscription resets the counter
        assert len(attempts) == 3
        assert listener.status == FeedStatus.FAILED

    def test_handler_errors_do_not_stop_the_feed(self):
        pubsub = FakePubSub([
            {"type": "message", "data": _event(order_id=1).to_json()},
            {"type": "message", "data": _event(order_id=2).to_json()},
        ])
        seen = []

        async def connect():
            if pubsub.closed:
                raise ConnectionError("closed")
            pubsub.closed = True
            return pubsub

        def on_event(event):
            seen.append(event.order_id)
            if event.order_id == 1:
                raise RuntimeError("boom")

        async def sleep(delay):
            pass

        listener = OrderFeedListener(connect=connect, on_event=on_event, sleep=sleep,
                                     max_reconnect_attempts=0, base_delay=0.1)
        asyncio.run(listener.run())

        assert seen == [1, 2]
        assert listener.events_processed == 1

    def test_reconnects_reuse_one_client_and_close_subscriptions(self, monkeypatch):
        from backend.services import order_feed

        class FakeSubscriber(FakePubSub):
            def __init__(self, fail):
                super().__init__([])
                self.fail = fail

            async def subscribe(self, channel):
                if self.fail:
                    raise ConnectionError("redis down")

        class FakeRedis:
            def __init__(self):
                self.subscribers = []
                self.closed = False

            def pubsub(self):
                subscriber = FakeSubscriber(fail=len(self.subscribers) >= 2)
                self.subscribers.append(subscriber)
                return subscriber

            async def aclose(self):
                self.closed = True

        clients = []

        def from_url(url, **kwargs):
            clients.append(FakeRedis())
            return clients[-1]

        async def sleep(delay):
            pass

        monkeypatch.setattr(order_feed.aioredis, "from_url", from_url)
        listener = OrderFeedListener(redis_url="redis://cache:6379", channel="orders", sleep=sleep,
                                     max_reconnect_attempts=1, base_delay=0.1, on_event=lambda event: None)
        asyncio.run(listener.run())

        assert listener.status == FeedStatus.FAILED
        assert len(clients) == 1
        assert len(clients[0].subscribers) == 3
        assert all(subscriber.closed for subscriber in clients[0].subscribers)
        assert clients[0].closed

    def test_stop(self):
        async def scenario():
            async def connect():
                return FakePubSub([])

            listener = OrderFeedListener(connect=connect, on_event=lambda event: None,
                                         sleep=lambda delay: asyncio.sleep(3600))
            listener.start()
            await asyncio.sleep(0)
            await listener.stop()
            return listener

        listener = asyncio.run(scenario())
        assert listener.status == FeedStatus.STOPPED


class TestPublisher:
    def test_local_dispatch_without_redis(self):
        received = []
        publisher = OrderEventPublisher(channel="orders")
        publisher.subscribe_local(received.append)

        assert publisher.publish(_event(), fallback=lambda event: received.append("fallback")) is False
        assert received == [_event(), "fallback"]

    def test_redis_failure_falls_back(self):
        class BrokenRedis:
            def publish(self, channel, message):
                raise ConnectionError("refused")

        received = []
        publisher = OrderEventPublisher(BrokenRedis(), channel="orders")
        assert publisher.publish(_event(), fallback=received.append) is False
        assert len(received) == 1

    def test_publishes_to_channel(self):
        class RecordingRedis:
            def __init__(self):
                self.published = []

            def publish(self, channel, message):
                self.published.append((channel, json.loads(message)))

        redis_client = RecordingRedis()
        publisher = OrderEventPublisher(redis_client, channel="orders")

        assert publisher.publish(_event(order_id=3)) is True
        assert redis_client.published[0][0] == "orders"
        assert redis_client.published[0][1]["order_id"] == 3


class TestEventHandler:
    def test_shipped_generates_invoice_and_tracking_email(self, db, make):
        order = make.order(make.customer(), OrderStatus.SHIPPED)

        results = OrderEventHandler(db).handle(_event(order.id, "shipped", order.order_number))

        assert results == {"commercial_invoice": "ok", "tracking_email": "ok"}
        invoice = db.query(Invoice).filter(Invoice.order_id == order.id).one()
        assert invoice.invoice_type == InvoiceType.COMMERCIAL

    def test_unknown_status_and_order_are_ignored(self, db):
        handler = OrderEventHandler(db)
        assert handler.handle(_event(new_status="teleported")) == {}
        assert handler.handle(_event(order_id=999)) == {}

    def test_confirmed_has_no_side_effects(self, db, make):
        order = make.order(make.customer(), OrderStatus.ORDER_CONFIRMED)
        assert OrderEventHandler(db).handle(_event(order.id, "order_confirmed")) == {}
