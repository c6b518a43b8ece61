import asyncio
import json
import logging
import aio_pika
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from checkout.config import RABBITMQ_URL
from checkout.database import get_session
from checkout.models import Order, utcnow
from checkout.messaging import CHECKOUT_EXCHANGE, OrderEvent, publish_event
from checkout.schemas import PaymentStatus
from checkout.status import to_persisted_label

logger = logging.getLogger(__name__)

PAYMENT_EXCHANGE = "payment_exchange"
CHECKOUT_QUEUE = "checkout_q"

async def update_order_status(order_id: str, new_status: PaymentStatus, db: AsyncSession):
    result = await db.execute(select(Order).where(Order.id == order_id))
    order = result.scalar_one_or_none()
    if order:
        order.status = to_persisted_label(new_status).value
        order.updated_at = utcnow()
        db.add(order)
        await db.commit()
        await db.refresh(order)
        logger.info("Order %s status updated to %s", order_id, order.status)
        return order
    logger.warning("Order %s not found, status %s dropped", order_id, new_status.value)
    return None

async def _apply_payment_event(message: aio_pika.IncomingMessage, new_status: PaymentStatus, event_name: str):
    async with message.process():
        try:
            event_data = json.loads(message.body.decode())
            order_id = event_data["order_id"]
            logger.info("Checkout Service received %s for order %s", event_name, order_id)

            async for session in get_session():
                order = await update_order_status(order_id, new_status, session)
                if order:
                    event = OrderEvent.status_changed(
                        order_id,
                        order.status,
                        order.updated_at,
                        payment_id=order.payment_id,
                        reason=event_data.get("reason", event_name),
                    )
                    await publish_event(CHECKOUT_EXCHANGE, event)

        except Exception as e:
            logger.error("Error processing %s: %s", event_name, e)

async def process_payment_confirmed(message: aio_pika.IncomingMessage):
    await _apply_payment_event(message, PaymentStatus.CONFIRMED, "PaymentConfirmed")

async def process_payment_declined(message: aio_pika.IncomingMessage):
    await _apply_payment_event(message, PaymentStatus.DECLINED, "PaymentDeclined")

async def process_payment_expired(message: aio_pika.IncomingMessage):
    # An unpaid QR code lapses into a failed order
    await _apply_payment_event(message, PaymentStatus.FAILED, "PaymentExpired")

HANDLERS = {
    "payment.confirmed": process_payment_confirmed,
    "payment.declined": process_payment_declined,
    "payment.expired": process_payment_expired,
}

async def on_message(message: aio_pika.IncomingMessage):
    handler = HANDLERS.get(message.routing_key)
    if handler is not None:
        await handler(message)
    else:
        async with message.process():
            logger.info("Ignored event with routing key: %s", message.routing_key)

async def start_consumer():
    connection = await aio_pika.connect_robust(RABBITMQ_URL)
    async with connection:
        channel = await connection.channel()

        payment_exchange = await channel.declare_exchange(PAYMENT_EXCHANGE, aio_pika.ExchangeType.TOPIC, durable=True)

        queue = await channel.declare_queue(CHECKOUT_QUEUE, durable=True)
        for routing_key in HANDLERS:
            await queue.bind(payment_exchange, routing_key)

        logger.info("Checkout Service Consumer is listening for events...")

        await queue.consume(on_message, no_ack=False)

        # Keep the main task running
        await asyncio.Future()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    try:
        asyncio.run(start_consumer())
    except KeyboardInterrupt:
        logger.info("Checkout Service Consumer stopped.")
