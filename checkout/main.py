import asyncio
import logging
from functools import lru_cache

import uvicorn
from fastapi import Depends, FastAPI, HTTPException

from checkout.cards import classify_brand, collect_card_errors
from checkout.config import EnvConfigurationProvider, LOG_LEVEL
from checkout.consumer import start_consumer
from checkout.database import AsyncSessionLocal, init_db
from checkout.guard import SessionRegistry
from checkout.messaging import CHECKOUT_EXCHANGE, OrderEvent, close_rabbitmq, publish_event, setup_rabbitmq
from checkout.pipeline import CheckoutPipeline
from checkout.repository import OrderRepository, SqlAlchemyOrderRepository
from checkout.results import Failure, GENERIC_RETRY_MESSAGE, ErrorKind
from checkout.schemas import (
    AltCheckoutRequest,
    CardCheckoutRequest,
    CardValidationResponse,
    CheckoutResult,
    OrderRead,
    RawCardInput,
    StatusUpdate,
)
from checkout.status import to_persisted_label

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Checkout Service")

FAILURE_STATUS_CODES = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.CONCURRENCY: 409,
    ErrorKind.UNAVAILABLE: 403,
    ErrorKind.STORAGE: 503,
    ErrorKind.PAYMENT: 502,
}


@lru_cache
def get_repository() -> OrderRepository:
    return SqlAlchemyOrderRepository(AsyncSessionLocal)


@lru_cache
def get_registry() -> SessionRegistry:
    return SessionRegistry(get_repository())


@lru_cache
def get_pipeline() -> CheckoutPipeline:
    return CheckoutPipeline(EnvConfigurationProvider())


def raise_for_failure(failure: Failure):
    raise HTTPException(
        status_code=FAILURE_STATUS_CODES[failure.kind],
        detail={
            "kind": failure.kind.value,
            "message": failure.first_error,
            "field_errors": failure.field_errors,
        },
    )


async def publish_order_created(result: CheckoutResult):
    await publish_event(CHECKOUT_EXCHANGE, OrderEvent.order_created(result.order))


@app.on_event("startup")
async def startup_event():
    await init_db()
    await setup_rabbitmq()
    asyncio.create_task(start_consumer())


@app.on_event("shutdown")
async def shutdown_event():
    await close_rabbitmq()


@app.post("/api/cards/validate", response_model=CardValidationResponse)
async def validate_card(card: RawCardInput):
    errors = collect_card_errors(card)
    return CardValidationResponse(
        valid=not errors,
        brand=classify_brand(card.number),
        first_error=next(iter(errors.values()), None),
        errors=errors,
    )


@app.post("/api/checkout/card", response_model=CheckoutResult, status_code=201)
async def checkout_card(
    request: CardCheckoutRequest,
    pipeline: CheckoutPipeline = Depends(get_pipeline),
    registry: SessionRegistry = Depends(get_registry),
):
    guard = registry.guard_for(request.session_id)
    result = await pipeline.process_card_checkout(guard, request.customer, request.product, request.card)
    if not result.ok:
        raise_for_failure(result)

    checkout_result: CheckoutResult = result.value
    if checkout_result.order is None:
        # Settlement never produced a verdict; nothing was stored
        raise_for_failure(
            Failure(kind=ErrorKind.PAYMENT, message=GENERIC_RETRY_MESSAGE, detail=checkout_result.outcome.error)
        )

    await publish_order_created(checkout_result)
    return checkout_result


@app.post("/api/checkout/alt", response_model=CheckoutResult, status_code=201)
async def checkout_alt(
    request: AltCheckoutRequest,
    pipeline: CheckoutPipeline = Depends(get_pipeline),
    registry: SessionRegistry = Depends(get_registry),
):
    guard = registry.guard_for(request.session_id)
    result = await pipeline.process_alt_checkout(guard, request.customer, request.product)
    if not result.ok:
        raise_for_failure(result)

    await publish_order_created(result.value)
    return result.value


@app.get("/api/orders/{order_id}", response_model=OrderRead)
async def get_order(order_id: str, repository: OrderRepository = Depends(get_repository)):
    order = await repository.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@app.patch("/api/orders/{order_id}/status", response_model=OrderRead)
async def update_order_status(
    order_id: str,
    update: StatusUpdate,
    repository: OrderRepository = Depends(get_repository),
):
    order = await repository.update_status(order_id, to_persisted_label(update.status))
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
