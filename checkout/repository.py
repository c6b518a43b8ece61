import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol
from uuid import uuid4
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from checkout.models import Order, OrderStatus, utcnow
from checkout.schemas import (
    AltPaymentDetails,
    CardDetails,
    Customer,
    OrderInsert,
    OrderRead,
    ShippingAddressColumn,
)

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised by repositories when the order store cannot complete a call."""


class OrderRepository(Protocol):
    async def insert_order(self, request: OrderInsert) -> OrderRead:
        ...

    async def find_recent_duplicate(self, request: OrderInsert, since: datetime) -> Optional[OrderRead]:
        ...

    async def get_order(self, order_id: str) -> Optional[OrderRead]:
        ...

    async def update_status(self, order_id: str, label: OrderStatus) -> Optional[OrderRead]:
        ...


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def order_to_read(order: Order) -> OrderRead:
    address = ShippingAddressColumn(address=order.shipping_address).address
    customer = Customer(
        name=order.customer_name,
        email=order.customer_email,
        tax_id=order.customer_tax_id,
        phone=order.customer_phone or "",
        address=address,
    )
    card = None
    if order.card_number_masked:
        month, _, year = (order.card_expiry or "/").partition("/")
        card = CardDetails(
            masked_number=order.card_number_masked,
            brand=order.card_brand or "unknown",
            expiry_month=month,
            expiry_year=year,
        )
    alt = None
    if order.qr_code:
        alt = AltPaymentDetails(
            qr_code=order.qr_code,
            qr_code_image=order.qr_code_image or "",
            expires_at=_as_utc(order.qr_expires_at),
        )
    return OrderRead(
        id=order.id,
        customer=customer,
        product_id=order.product_id,
        product_name=order.product_name,
        product_price=order.price,
        is_digital_product=bool(order.is_digital_product),
        payment_method=order.payment_method,
        status=order.status,
        payment_id=order.payment_id,
        card=card,
        alt=alt,
        created_at=_as_utc(order.created_at),
        updated_at=_as_utc(order.updated_at),
    )


def order_from_insert(request: OrderInsert) -> Order:
    customer = request.customer
    return Order(
        id=str(uuid4()),
        customer_name=customer.name.strip(),
        customer_email=customer.email.strip(),
        customer_tax_id=customer.tax_id.strip(),
        customer_phone=customer.phone or None,
        shipping_address=customer.address.model_dump_json() if customer.address else None,
        product_id=request.product_id,
        product_name=request.product_name,
        price=request.product_price,
        is_digital_product=request.is_digital_product,
        payment_method=request.payment_method,
        status=request.status,
        payment_id=request.payment_id,
        card_number_masked=request.card.masked_number if request.card else None,
        card_brand=request.card.brand if request.card else None,
        card_expiry=f"{request.card.expiry_month}/{request.card.expiry_year}" if request.card else None,
        qr_code=request.alt.qr_code if request.alt else None,
        qr_code_image=request.alt.qr_code_image if request.alt else None,
        qr_expires_at=_naive_utc(request.alt.expires_at) if request.alt else None,
    )


class SqlAlchemyOrderRepository:
    """Order store backed by the async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def insert_order(self, request: OrderInsert) -> OrderRead:
        new_order = order_from_insert(request)
        try:
            async with self._session_factory() as session:
                session.add(new_order)
                await session.commit()
                await session.refresh(new_order)
        except SQLAlchemyError as exc:
            raise StorageError(f"Error creating order: {exc}") from exc
        logger.info("Order %s created with status %s", new_order.id, new_order.status)
        return order_to_read(new_order)

    async def find_recent_duplicate(self, request: OrderInsert, since: datetime) -> Optional[OrderRead]:
        customer = request.customer
        async with self._session_factory() as session:
            result = await session.execute(
                select(Order).where(
                    Order.customer_email == customer.email.strip(),
                    Order.product_id == request.product_id,
                    Order.product_name == request.product_name,
                    Order.payment_method == request.payment_method,
                    # A retry that settled differently is a new attempt
                    Order.status == request.status,
                    Order.created_at >= _naive_utc(since),
                ).order_by(Order.created_at.desc())
            )
            candidates = result.scalars().all()
        card = request.card
        for order in candidates:
            if (
                order.price == request.product_price
                and order.customer_name == customer.name.strip()
                and order.customer_tax_id == customer.tax_id.strip()
                and order.card_number_masked == (card.masked_number if card else None)
                and order.card_brand == (card.brand if card else None)
            ):
                return order_to_read(order)
        return None

    async def get_order(self, order_id: str) -> Optional[OrderRead]:
        async with self._session_factory() as session:
            order = await session.get(Order, order_id)
            return order_to_read(order) if order else None

    async def update_status(self, order_id: str, label: OrderStatus) -> Optional[OrderRead]:
        async with self._session_factory() as session:
            order = await session.get(Order, order_id)
            if not order:
                return None
            order.status = OrderStatus(label).value
            order.updated_at = utcnow()
            session.add(order)
            await session.commit()
            await session.refresh(order)
        logger.info("Order %s status updated to %s", order_id, order.status)
        return order_to_read(order)


def duplicate_window_start(window_seconds: int, now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now - timedelta(seconds=window_seconds)
