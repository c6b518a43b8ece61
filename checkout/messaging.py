import enum
import logging
from datetime import datetime
from typing import Optional
from uuid import uuid4

import aio_pika
from pydantic import BaseModel, Field

from checkout.config import RABBITMQ_URL
from checkout.schemas import OrderRead

logger = logging.getLogger(__name__)

CHECKOUT_EXCHANGE = "checkout_exchange"


class OrderEventType(str, enum.Enum):
    ORDER_CREATED = "OrderCreated"
    ORDER_STATUS_CHANGED = "OrderStatusChanged"


ROUTING_KEYS = {
    OrderEventType.ORDER_CREATED: "order.created",
    OrderEventType.ORDER_STATUS_CHANGED: "order.status_changed",
}


class OrderEvent(BaseModel):
    """Body of every message this service puts on the checkout exchange."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: OrderEventType
    timestamp: datetime
    order_id: str
    status: str
    payment_id: Optional[str] = None
    payment_method: Optional[str] = None
    product_id: Optional[str] = None
    total_amount: Optional[float] = None
    reason: Optional[str] = None

    @property
    def routing_key(self) -> str:
        return ROUTING_KEYS[self.event_type]

    @classmethod
    def order_created(cls, order: OrderRead) -> "OrderEvent":
        return cls(
            event_type=OrderEventType.ORDER_CREATED,
            timestamp=order.created_at,
            order_id=order.id,
            status=order.status,
            payment_id=order.payment_id,
            payment_method=order.payment_method,
            product_id=order.product_id,
            total_amount=order.product_price,
        )

    @classmethod
    def status_changed(
        cls, order_id: str, status: str, timestamp: datetime, payment_id: Optional[str] = None, reason: Optional[str] = None
    ) -> "OrderEvent":
        return cls(
            event_type=OrderEventType.ORDER_STATUS_CHANGED,
            timestamp=timestamp,
            order_id=order_id,
            status=status,
            payment_id=payment_id,
            reason=reason,
        )


connection = None
channel = None

async def setup_rabbitmq():
    global connection, channel
    try:
        connection = await aio_pika.connect_robust(RABBITMQ_URL)
        channel = await connection.channel()
        await channel.declare_exchange(CHECKOUT_EXCHANGE, aio_pika.ExchangeType.TOPIC, durable=True)
        logger.info("RabbitMQ setup complete.")
    except Exception as e:
        logger.error("Error setting up RabbitMQ: %s", e)

async def close_rabbitmq():
    global connection, channel
    if connection is not None:
        await connection.close()
    connection = None
    channel = None

async def publish_event(exchange_name: str, event: OrderEvent):
    if not channel:
        logger.warning("RabbitMQ channel not available. Cannot publish %s for order %s.", event.event_type.value, event.order_id)
        return

    message = aio_pika.Message(
        event.model_dump_json(exclude_none=True).encode("utf-8"),
        content_type="application/json",
        message_id=event.event_id,
        type=event.event_type.value,
        delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
    )

    try:
        exchange = await channel.get_exchange(exchange_name)
        await exchange.publish(message, routing_key=event.routing_key)
        logger.info("Published %s for order %s to %s", event.event_type.value, event.order_id, event.routing_key)
    except Exception as e:
        logger.error("Error publishing %s: %s", event.event_type.value, e)
