import logging
from typing import Any, Dict, Mapping, Optional, Union

from checkout.cards import validate_card_instrument
from checkout.config import ConfigurationProvider, normalize_configuration
from checkout.credentials import generate_alt_payment_credential
from checkout.guard import OrderCommitGuard
from checkout.notifications import (
    LoggingNotifier,
    Navigator,
    Notification,
    Notifier,
    error_notification,
    outcome_notification,
)
from checkout.resolver import Settle, resolve_card_payment_status
from checkout.results import (
    Failure,
    GENERIC_RETRY_MESSAGE,
    METHOD_UNAVAILABLE,
    PROCESSING_IN_PROGRESS,
    ErrorKind,
    Ok,
    Result,
)
from checkout.schemas import (
    CheckoutResult,
    Customer,
    Destination,
    OrderRead,
    PaymentConfiguration,
    PaymentOutcome,
    PaymentStatus,
    ProductInfo,
    ProductOverride,
    RawCardInput,
)
from checkout.status import route_outcome
from checkout.validators import validate_customer

logger = logging.getLogger(__name__)


class CheckoutPipeline:
    """Runs one checkout attempt end to end and reports a typed result.

    Validation, settlement, commit and routing happen in that order. The
    notifier and navigator are told about the result but never consulted;
    anything they raise is logged and dropped.
    """

    def __init__(
        self,
        configuration: ConfigurationProvider,
        notifier: Optional[Notifier] = None,
        navigator: Optional[Navigator] = None,
        settle: Optional[Settle] = None,
    ):
        self._configuration = configuration
        self._notifier = notifier or LoggingNotifier()
        self._navigator = navigator
        self._settle = settle

    async def load_configuration(self) -> Optional[PaymentConfiguration]:
        try:
            return normalize_configuration(await self._configuration.get_configuration())
        except Exception:
            logger.exception("Error loading payment configuration")
            return None

    def _notify(self, notification: Notification) -> None:
        try:
            self._notifier.notify(notification)
        except Exception:
            logger.exception("Notifier failed")

    def _navigate(self, destination: Destination, state: Dict[str, Any]) -> None:
        if self._navigator is None:
            return
        try:
            self._navigator.navigate(destination, state)
        except Exception:
            logger.exception("Navigator failed")

    def _fail(self, failure: Failure) -> Failure:
        self._notify(error_notification(failure.first_error))
        return failure

    def _finish(self, outcome: PaymentOutcome, product: ProductInfo, order: Optional[OrderRead]) -> Ok:
        destination = route_outcome(outcome.status)
        self._notify(outcome_notification(outcome.status, outcome.method))
        state = {
            "order_id": order.id if order else None,
            "product_id": product.id,
            "product_name": product.name,
            "product_price": product.price,
            "payment_method": outcome.method.value,
            "payment_status": outcome.status.value,
            "payment_id": outcome.payment_id,
        }
        self._navigate(destination, state)
        return Ok(value=CheckoutResult(outcome=outcome, order=order, destination=destination))

    async def _commit(self, guard: OrderCommitGuard, customer: Customer, product: ProductInfo, outcome: PaymentOutcome) -> Result:
        committed = await guard.commit_order(customer, product, outcome)
        if not committed.ok:
            if committed.kind is ErrorKind.STORAGE:
                logger.error("Order not stored for payment %s: %s", outcome.payment_id, committed.detail)
            return self._fail(committed)
        return self._finish(outcome, product, committed.value)

    async def process_card_checkout(
        self,
        guard: OrderCommitGuard,
        customer: Customer,
        product: ProductInfo,
        raw_card: Union[RawCardInput, Mapping[str, Any]],
    ) -> Result:
        config = await self.load_configuration()
        if config is None:
            return self._fail(Failure(kind=ErrorKind.UNAVAILABLE, message=GENERIC_RETRY_MESSAGE))
        if not config.enabled or not config.card_enabled:
            return self._fail(Failure(kind=ErrorKind.UNAVAILABLE, message=METHOD_UNAVAILABLE))
        if guard.is_locked:
            # Double click while the previous attempt is still settling
            return self._fail(Failure(kind=ErrorKind.CONCURRENCY, message=PROCESSING_IN_PROGRESS))

        customer_errors = validate_customer(customer)
        if customer_errors:
            return self._fail(Failure.from_field_errors(customer_errors))

        validated = validate_card_instrument(raw_card)
        if not validated.ok:
            return self._fail(validated)

        outcome = await resolve_card_payment_status(
            validated.value, config, ProductOverride.from_product(product), settle=self._settle
        )
        if outcome.status is PaymentStatus.FAILED:
            logger.error("Card payment failed: %s", outcome.error)
            return self._finish(outcome, product, None)

        return await self._commit(guard, customer, product, outcome)

    async def process_alt_checkout(self, guard: OrderCommitGuard, customer: Customer, product: ProductInfo) -> Result:
        config = await self.load_configuration()
        if config is None:
            return self._fail(Failure(kind=ErrorKind.UNAVAILABLE, message=GENERIC_RETRY_MESSAGE))
        if not config.enabled or not config.alt_enabled:
            return self._fail(Failure(kind=ErrorKind.UNAVAILABLE, message=METHOD_UNAVAILABLE))
        if guard.is_locked:
            return self._fail(Failure(kind=ErrorKind.CONCURRENCY, message=PROCESSING_IN_PROGRESS))

        generated = await generate_alt_payment_credential(customer, amount=product.price)
        if not generated.ok:
            return self._fail(generated)

        return await self._commit(guard, customer, product, generated.value)
