"""
Realtime order feed.

Order status changes are published as JSON on a Redis pub/sub channel.
``OrderFeedListener`` subscribes to that channel and runs the side effects
of each change through ``OrderEventHandler``:

* ready_to_ship generates the packing list
* shipped generates the commercial invoice
* processing, ready_to_ship, shipped and delivered email the customer

When Redis is unavailable the publisher dispatches events in-process.
"""
import asyncio
import json
from dataclasses import dataclass, asdict
from datetime import datetime
from functools import lru_cache
from typing import Any, Awaitable, Callable, Dict, List, Optional

import redis.asyncio as aioredis
from sqlalchemy.orm import Session

from ..config.database import SessionLocal
from ..config.logging import get_logger
from ..config.settings import get_settings
from ..core.dependencies import get_redis_client
from ..core.retry import backoff_delay
from ..models.enums import OrderStatus, StrValueEnum
from ..models.order import Order
from .email_service import EmailDeliveryService
from .invoice_service import InvoiceService
from .order_status import TRACKING_EMAIL_STATUSES, get_status_label

logger = get_logger("order_feed")
settings = get_settings()


@dataclass
class OrderEvent:
    order_id: int
    order_number: str
    old_status: Optional[str]
    new_status: str
    occurred_at: str

    @classmethod
    def from_order(cls, order: Order, old_status) -> "OrderEvent":
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            old_status=str(old_status) if old_status else None,
            new_status=str(order.status),
            occurred_at=datetime.utcnow().isoformat(),
        )

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw) -> "OrderEvent":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            data = json.loads(raw)
            return cls(
                order_id=int(data["order_id"]),
                order_number=data["order_number"],
                old_status=data.get("old_status"),
                new_status=data["new_status"],
                occurred_at=data.get("occurred_at") or datetime.utcnow().isoformat(),
            )
        except (TypeError, KeyError, json.JSONDecodeError) as e:
            raise ValueError(f"Malformed order event: {e}")


EventCallback = Callable[[OrderEvent], Any]


class OrderEventPublisher:
    """Publishes order events to Redis, or to local callbacks without Redis."""

    def __init__(self, redis_client=None, channel: str = None):
        self.redis_client = redis_client
        self.channel = channel or settings.ORDER_FEED_CHANNEL
        self._local_handlers: List[EventCallback] = []

    def subscribe_local(self, handler: EventCallback):
        self._local_handlers.append(handler)

    def publish(self, event: OrderEvent, fallback: Optional[EventCallback] = None) -> bool:
        """Returns True when the event went out over Redis."""
        if self.redis_client is not None:
            try:
                self.redis_client.publish(self.channel, event.to_json())
                logger.debug(f"Published {event.order_number} {event.old_status} -> {event.new_status}")
                return True
            except Exception as e:
                logger.error(f"Order feed publish failed, dispatching in-process: {e}")

        handlers = list(self._local_handlers)
        if fallback is not None:
            handlers.append(fallback)
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"In-process order event handler failed for {event.order_number}: {e}")
        return False


class OrderEventHandler:
    """Side effects of an order status change."""

    def __init__(self, db: Session, invoices: InvoiceService = None,
                 email_delivery: EmailDeliveryService = None):
        self.db = db
        self.email_delivery = email_delivery or EmailDeliveryService(db)
        self.invoices = invoices or InvoiceService(db, self.email_delivery)

    def _side_effects(self, status: OrderStatus) -> List[tuple]:
        effects = []
        if status == OrderStatus.READY_TO_SHIP:
            effects.append(("packing_list", self.invoices.generate_packing_list))
        if status == OrderStatus.SHIPPED:
            effects.append(("commercial_invoice", self.invoices.generate_commercial_invoice))
        if status in TRACKING_EMAIL_STATUSES:
            effects.append(("tracking_email", self.send_tracking_email))
        return effects

    def handle(self, event: OrderEvent) -> Dict[str, str]:
        """Run every side effect for the event. One failing does not stop the rest."""
        try:
            status = OrderStatus(event.new_status)
        except ValueError:
            logger.warning(f"Ignoring event with unknown status '{event.new_status}'")
            return {}

        order = self.db.query(Order).filter(Order.id == event.order_id).first()
        if order is None:
            logger.warning(f"Order {event.order_id} from feed event not found")
            return {}

        results = {}
        for name, effect in self._side_effects(status):
            try:
                effect(order)
                results[name] = "ok"
            except Exception as e:
                self.db.rollback()
                results[name] = "failed"
                logger.error(f"Order {event.order_number}: {name} failed: {e}")
        return results

    def send_tracking_email(self, order: Order):
        customer = order.customer
        result = self.email_delivery.send_template(
            "order_tracking",
            customer.email if customer else None,
            {
                "order_number": order.order_number,
                "customer_name": customer.contact_name or customer.company_name if customer else "",
                "status_label": get_status_label(order.status),
                "carrier": order.carrier,
                "tracking_number": order.tracking_number,
            },
            email_type="order_tracking",
            order_id=order.id,
            customer_id=order.customer_id,
        )
        self.db.commit()
        return result


@lru_cache()
def get_order_publisher() -> OrderEventPublisher:
    """Redis publisher while the feed listener is enabled, in-process dispatch otherwise."""
    redis_client = get_redis_client() if settings.ORDER_FEED_ENABLED else None
    return OrderEventPublisher(redis_client)


def handle_event_in_new_session(event: OrderEvent) -> Dict[str, str]:
    db = SessionLocal()
    try:
        return OrderEventHandler(db).handle(event)
    finally:
        db.close()


class FeedStatus(StrValueEnum):
    IDLE = "idle"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    STOPPED = "stopped"


class OrderFeedListener:
    """
    Async subscriber for the order change channel.

    Lost connections are retried with exponential backoff. After
    ``max_reconnect_attempts`` consecutive failures the listener gives up
    with status ``failed``. A successful subscription resets the counter.
    """

    def __init__(
        self,
        redis_url: str = None,
        channel: str = None,
        max_reconnect_attempts: int = None,
        base_delay: float = None,
        connect: Callable[[], Awaitable[Any]] = None,
        on_event: EventCallback = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.redis_url = redis_url or settings.REDIS_URL
        self.channel = channel or settings.ORDER_FEED_CHANNEL
        self.max_reconnect_attempts = (
            settings.ORDER_FEED_MAX_RECONNECT_ATTEMPTS if max_reconnect_attempts is None else max_reconnect_attempts
        )
        self.base_delay = settings.ORDER_FEED_BASE_DELAY if base_delay is None else base_delay
        self._connect = connect or self._subscribe
        self.on_event = on_event or handle_event_in_new_session
        self._sleep = sleep

        self.status = FeedStatus.IDLE
        self.reconnect_attempts = 0
        self.events_processed = 0
        self.last_error: Optional[str] = None
        self._client = None
        self._pubsub = None
        self._stopping = False
        self._task: Optional[asyncio.Task] = None

    async def _subscribe(self):
        if self._client is None:
            self._client = aioredis.from_url(self.redis_url, decode_responses=True)
        pubsub = self._client.pubsub()
        try:
            await pubsub.subscribe(self.channel)
        except Exception:
            await pubsub.aclose()
            raise
        return pubsub

    async def _close_subscription(self):
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is not None:
            try:
                await pubsub.aclose()
            except Exception as e:
                logger.debug(f"Error closing order feed subscription: {e}")

    async def _close_client(self):
        client, self._client = self._client, None
        if client is not None:
            try:
                await client.aclose()
            except Exception as e:
                logger.debug(f"Error closing order feed client: {e}")

    async def run(self):
        while not self._stopping:
            try:
                self._pubsub = await self._connect()
                self.status = FeedStatus.CONNECTED
                self.reconnect_attempts = 0
                logger.info(f"Subscribed to order feed '{self.channel}'")

                await self._consume(self._pubsub)
                if self._stopping:
                    break
                raise ConnectionError("Order feed subscription closed")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self._stopping:
                    break
                self.last_error = str(e)
                await self._close_subscription()
                if self.reconnect_attempts >= self.max_reconnect_attempts:
                    await self._close_client()
                    self.status = FeedStatus.FAILED
                    logger.error(
                        f"Order feed gave up after {self.reconnect_attempts} reconnect attempts: {e}"
                    )
                    return
                delay = backoff_delay(self.reconnect_attempts, self.base_delay)
                self.reconnect_attempts += 1
                self.status = FeedStatus.RECONNECTING
                logger.warning(
                    f"Order feed connection lost ({e}). Reconnect "
                    f"{self.reconnect_attempts}/{self.max_reconnect_attempts} in {delay:.1f}s"
                )
                await self._sleep(delay)

        self.status = FeedStatus.STOPPED

    async def _consume(self, pubsub):
        async for message in pubsub.listen():
            if self._stopping:
                return
            if message.get("type") != "message":
                continue
            await self._dispatch(message.get("data"))

    async def _dispatch(self, raw):
        try:
            event = OrderEvent.from_json(raw)
        except ValueError as e:
            logger.warning(str(e))
            return

        try:
            if asyncio.iscoroutinefunction(self.on_event):
                await self.on_event(event)
            else:
                await asyncio.to_thread(self.on_event, event)
            self.events_processed += 1
        except Exception as e:
            logger.error(f"Order feed handler failed for {event.order_number}: {e}")

    def start(self) -> asyncio.Task:
        self._stopping = False
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        self._stopping = True
        await self._close_subscription()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        await self._close_client()
        self.status = FeedStatus.STOPPED
