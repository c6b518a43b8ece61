import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional, Union
from uuid import uuid4
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from checkout.cards import mask_card_number
from checkout.config import SETTLEMENT_DELAY_SECONDS, SETTLEMENT_MAX_ATTEMPTS, normalize_configuration
from checkout.schemas import (
    CardDetails,
    CardInstrument,
    ManualCardStatus,
    OverridePrecedence,
    PaymentConfiguration,
    PaymentMethod,
    PaymentOutcome,
    PaymentStatus,
    ProductOverride,
)

logger = logging.getLogger(__name__)

# Sandbox card numbers with a fixed settlement result
TEST_DECLINE_PREFIXES = ("4000000000000002", "5105105105105100")
TEST_APPROVE_PREFIXES = ("4111", "5555")

MANUAL_TO_STATUS = {
    ManualCardStatus.APPROVED: PaymentStatus.CONFIRMED,
    ManualCardStatus.DENIED: PaymentStatus.DECLINED,
    ManualCardStatus.ANALYSIS: PaymentStatus.PENDING,
}

Settle = Callable[..., Awaitable[PaymentStatus]]


class SettlementError(Exception):
    """Transient failure talking to the settlement backend. Retried."""


settlement_wait = wait_exponential(multiplier=1, min=2, max=10)


async def simulate_settlement(instrument: CardInstrument, live: bool, delay: float = SETTLEMENT_DELAY_SECONDS) -> PaymentStatus:
    await asyncio.sleep(delay)
    if not live:
        if instrument.number.startswith(TEST_DECLINE_PREFIXES):
            logger.info("Sandbox card ****%s forced to decline", instrument.last4)
            return PaymentStatus.DECLINED
        if instrument.number.startswith(TEST_APPROVE_PREFIXES):
            return PaymentStatus.CONFIRMED
    return PaymentStatus.CONFIRMED


async def settle_with_retry(settle: Settle, instrument: CardInstrument, live: bool) -> PaymentStatus:
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(SETTLEMENT_MAX_ATTEMPTS),
        wait=settlement_wait,
        retry=retry_if_exception_type(SettlementError),
        reraise=True,
    ):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.warning("Retrying settlement for card ****%s (attempt %d)", instrument.last4, attempt.retry_state.attempt_number)
            return PaymentStatus(await settle(instrument, live=live))


def select_manual_status(config: PaymentConfiguration, override: Optional[ProductOverride] = None) -> ManualCardStatus:
    product_status = None
    if override is not None and override.use_custom_processing:
        product_status = override.manual_card_status
    if product_status is None or config.override_precedence is OverridePrecedence.GLOBAL_FIRST:
        return config.manual_card_status
    return product_status


def _card_details(instrument: CardInstrument) -> CardDetails:
    return CardDetails(
        masked_number=mask_card_number(instrument.number),
        brand=instrument.brand,
        expiry_month=instrument.expiry_month,
        expiry_year=instrument.expiry_year,
    )


def _failed_outcome(instrument: Optional[CardInstrument], error: str) -> PaymentOutcome:
    return PaymentOutcome(
        success=False,
        method=PaymentMethod.CARD,
        status=PaymentStatus.FAILED,
        timestamp=datetime.now(timezone.utc),
        error=error,
        card=_card_details(instrument) if instrument is not None else None,
    )


async def resolve_card_payment_status(
    instrument: CardInstrument,
    config: Union[PaymentConfiguration, Mapping[str, Any], None],
    override: Optional[ProductOverride] = None,
    settle: Optional[Settle] = None,
) -> PaymentOutcome:
    """Decide the outcome of one card attempt.

    Manual mode applies the administrator's fixed result (or the product's,
    depending on the precedence policy); automatic mode runs settlement.
    Always returns an outcome: any error becomes a ``FAILED`` one.
    """
    try:
        config = normalize_configuration(config)
        if not config.enabled or not config.card_enabled:
            logger.warning("Card resolution requested while card payments are disabled")
            return _failed_outcome(instrument, "Card payments are disabled")

        if config.manual_card_processing:
            manual_status = select_manual_status(config, override)
            status = MANUAL_TO_STATUS[manual_status]
            payment_id = f"manual_{uuid4()}"
            logger.info("Manual card processing applied %s -> %s", manual_status.value, status.value)
        else:
            status = await settle_with_retry(settle or simulate_settlement, instrument, config.live)
            payment_id = f"card_{uuid4()}"
            logger.info("Card ****%s settled as %s", instrument.last4, status.value)

        return PaymentOutcome(
            success=status in (PaymentStatus.CONFIRMED, PaymentStatus.PENDING),
            method=PaymentMethod.CARD,
            status=status,
            payment_id=payment_id,
            timestamp=datetime.now(timezone.utc),
            card=_card_details(instrument),
        )
    except Exception as e:
        logger.exception("Error resolving card payment status")
        return _failed_outcome(instrument if isinstance(instrument, CardInstrument) else None, str(e) or type(e).__name__)
