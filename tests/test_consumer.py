import pytest
from unittest.mock import AsyncMock, patch, MagicMock
from sqlalchemy.ext.asyncio import AsyncSession
from checkout.models import Order, OrderStatus
import json
from datetime import datetime, timezone

@pytest.fixture
def mock_message_context():
    """Async context manager standing in for message.process()"""
    class AsyncContextManager:
        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc_val, exc_tb):
            pass

    return AsyncContextManager()

def make_order(status=OrderStatus.AWAITING_PAYMENT):
    return Order(
        id="test-order-id",
        customer_name="Jane Doe",
        customer_email="jane@example.com",
        customer_tax_id="52998224725",
        product_id="ebook-1",
        product_name="E-book",
        price=49.90,
        payment_method="PIX",
        payment_id="pix_test",
        status=status.value,
    )

def make_message(mock_message_context, event_type, routing_key="payment.confirmed", **extra):
    mock_message = AsyncMock()
    mock_message.routing_key = routing_key
    mock_message.body = json.dumps({
        "event_id": "evt-1",
        "event_type": event_type,
        "order_id": "test-order-id",
        **extra,
    }).encode('utf-8')
    mock_message.process = MagicMock(return_value=mock_message_context)
    return mock_message

def mock_session_for(order):
    mock_session = AsyncMock(spec=AsyncSession)
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = order
    mock_session.execute.return_value = mock_result
    return mock_session

@pytest.mark.asyncio
async def test_consumer_payment_confirmed(mock_message_context):
    """
    A confirmed PIX payment marks the order as paid.
    """
    from checkout.consumer import process_payment_confirmed

    mock_order = make_order()
    mock_session = mock_session_for(mock_order)

    async def mock_async_context():
        yield mock_session

    with patch("checkout.consumer.get_session", side_effect=mock_async_context):
        with patch("checkout.consumer.publish_event", new=AsyncMock()) as mock_publish_event:
            mock_message = make_message(mock_message_context, "PaymentConfirmed", payment_id="pix_test")

            await process_payment_confirmed(mock_message)

            mock_message.process.assert_called_once()
            assert mock_order.status == OrderStatus.PAID.value
            mock_session.commit.assert_called_once()

            mock_publish_event.assert_called_once()
            args, _ = mock_publish_event.call_args
            assert args[0] == "checkout_exchange"
            assert args[1].routing_key == "order.status_changed"
            assert args[1].event_type == "OrderStatusChanged"
            assert args[1].status == "Paid"
            assert args[1].payment_id == "pix_test"

@pytest.mark.asyncio
async def test_consumer_payment_declined(mock_message_context):
    """
    A declined payment moves the order to Declined.
    """
    from checkout.consumer import process_payment_declined

    mock_order = make_order(OrderStatus.UNDER_REVIEW)
    mock_session = mock_session_for(mock_order)

    async def mock_async_context():
        yield mock_session

    with patch("checkout.consumer.get_session", side_effect=mock_async_context):
        with patch("checkout.consumer.publish_event", new=AsyncMock()) as mock_publish_event:
            mock_message = make_message(
                mock_message_context, "PaymentDeclined", routing_key="payment.declined", reason="Insufficient funds"
            )

            await process_payment_declined(mock_message)

            assert mock_order.status == OrderStatus.DECLINED.value
            args, _ = mock_publish_event.call_args
            assert args[1].reason == "Insufficient funds"

@pytest.mark.asyncio
async def test_consumer_payment_expired(mock_message_context):
    """
    An expired QR code fails the order.
    """
    from checkout.consumer import process_payment_expired

    mock_order = make_order()
    mock_session = mock_session_for(mock_order)

    async def mock_async_context():
        yield mock_session

    with patch("checkout.consumer.get_session", side_effect=mock_async_context):
        with patch("checkout.consumer.publish_event", new=AsyncMock()) as mock_publish_event:
            mock_message = make_message(mock_message_context, "PaymentExpired", routing_key="payment.expired")

            await process_payment_expired(mock_message)

            assert mock_order.status == OrderStatus.FAILED.value
            mock_publish_event.assert_called_once()

@pytest.mark.asyncio
async def test_consumer_unknown_order_is_ignored(mock_message_context):
    """
    Events for orders this service never stored are acknowledged and dropped.
    """
    from checkout.consumer import process_payment_confirmed

    mock_session = mock_session_for(None)

    async def mock_async_context():
        yield mock_session

    with patch("checkout.consumer.get_session", side_effect=mock_async_context):
        with patch("checkout.consumer.publish_event", new=AsyncMock()) as mock_publish_event:
            mock_message = make_message(mock_message_context, "PaymentConfirmed")

            await process_payment_confirmed(mock_message)

            mock_message.process.assert_called_once()
            mock_session.commit.assert_not_called()
            mock_publish_event.assert_not_called()

@pytest.mark.asyncio
async def test_consumer_malformed_message_does_not_raise(mock_message_context):
    from checkout.consumer import process_payment_confirmed

    with patch("checkout.consumer.publish_event", new=AsyncMock()) as mock_publish_event:
        mock_message = AsyncMock()
        mock_message.body = b"not json"
        mock_message.process = MagicMock(return_value=mock_message_context)

        await process_payment_confirmed(mock_message)

        mock_publish_event.assert_not_called()

@pytest.mark.asyncio
async def test_on_message_routes_and_ignores_unknown_keys(mock_message_context):
    from checkout import consumer

    handler = AsyncMock()
    with patch.dict(consumer.HANDLERS, {"payment.confirmed": handler}):
        known = make_message(mock_message_context, "PaymentConfirmed", routing_key="payment.confirmed")
        await consumer.on_message(known)
        handler.assert_awaited_once_with(known)

        unknown = make_message(mock_message_context, "Refund", routing_key="payment.refunded")
        await consumer.on_message(unknown)
        unknown.process.assert_called_once()
        handler.assert_awaited_once()

@pytest.mark.asyncio
async def test_publish_event_without_channel_is_noop():
    from checkout import messaging

    event = messaging.OrderEvent.status_changed("test-order-id", "Paid", datetime.now(timezone.utc))
    with patch.object(messaging, "channel", None):
        await messaging.publish_event("checkout_exchange", event)

@pytest.mark.asyncio
async def test_publish_event_sends_json_body_with_routing_key():
    from checkout import messaging

    exchange = AsyncMock()
    mock_channel = AsyncMock()
    mock_channel.get_exchange.return_value = exchange
    event = messaging.OrderEvent.status_changed(
        "test-order-id", "Declined", datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc), reason="Insufficient funds"
    )

    with patch.object(messaging, "channel", mock_channel):
        await messaging.publish_event("checkout_exchange", event)

    mock_channel.get_exchange.assert_awaited_once_with("checkout_exchange")
    message = exchange.publish.call_args.args[0]
    assert exchange.publish.call_args.kwargs["routing_key"] == "order.status_changed"
    body = json.loads(message.body)
    assert body["event_type"] == "OrderStatusChanged"
    assert body["event_id"] == event.event_id
    assert body["reason"] == "Insufficient funds"
    assert body["timestamp"].startswith("2024-05-01T12:00:00")
    assert "total_amount" not in body

def test_order_created_event_copies_order_fields():
    from checkout.messaging import OrderEvent, OrderEventType
    from checkout.schemas import Customer, OrderRead

    order = OrderRead(
        id="test-order-id",
        customer=Customer(name="Jane Doe", email="jane@example.com", cpf="52998224725"),
        product_id="ebook-1",
        product_name="E-book",
        product_price=49.9,
        is_digital_product=True,
        payment_method="CREDIT_CARD",
        status="Paid",
        payment_id="card_abc",
        created_at=datetime.now(timezone.utc),
    )

    event = OrderEvent.order_created(order)

    assert event.event_type == OrderEventType.ORDER_CREATED
    assert event.routing_key == "order.created"
    assert event.total_amount == 49.9
    assert event.timestamp == order.created_at
    assert event.event_id != OrderEvent.order_created(order).event_id
