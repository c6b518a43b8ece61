import asyncio
import logging
import time
from typing import Dict, Optional

from checkout.config import (
    DUPLICATE_ORDER_WINDOW_SECONDS,
    GUARD_IDLE_TTL_SECONDS,
    LATCH_RELEASE_DELAY_SECONDS,
    LATCH_SAFETY_TIMEOUT_SECONDS,
)
from checkout.repository import OrderRepository, duplicate_window_start
from checkout.results import (
    Failure,
    GENERIC_RETRY_MESSAGE,
    PROCESSING_IN_PROGRESS,
    ErrorKind,
    Ok,
    Result,
)
from checkout.schemas import Customer, OrderInsert, PaymentOutcome, ProductInfo
from checkout.status import persisted_label_for, persisted_method_for
from checkout.validators import validate_customer

logger = logging.getLogger(__name__)


def build_order_insert(customer: Customer, product: ProductInfo, outcome: PaymentOutcome) -> OrderInsert:
    return OrderInsert(
        customer=customer,
        product_id=product.id,
        product_name=product.name,
        product_price=product.price,
        is_digital_product=product.is_digital,
        payment_method=persisted_method_for(outcome.method),
        status=persisted_label_for(outcome).value,
        payment_id=outcome.payment_id,
        card=outcome.card,
        alt=outcome.alt,
    )


class OrderCommitGuard:
    """At most one in-flight order creation per checkout session.

    The latch is released ``release_delay`` seconds after an attempt settles
    so a late double click still sees it held. Independently, a safety timer
    clears it after ``safety_timeout`` seconds if the store never answers.
    """

    def __init__(
        self,
        repository: OrderRepository,
        session_id: str = "",
        release_delay: float = LATCH_RELEASE_DELAY_SECONDS,
        safety_timeout: float = LATCH_SAFETY_TIMEOUT_SECONDS,
        duplicate_window: int = DUPLICATE_ORDER_WINDOW_SECONDS,
    ):
        self.session_id = session_id
        self._repository = repository
        self._release_delay = release_delay
        self._safety_timeout = safety_timeout
        self._duplicate_window = duplicate_window
        self._held = False
        self._attempt = 0
        self._safety_handle: Optional[asyncio.TimerHandle] = None
        self.idle_since: Optional[float] = time.monotonic()

    @property
    def is_locked(self) -> bool:
        return self._held

    def _acquire(self) -> int:
        self._held = True
        self.idle_since = None
        self._attempt += 1
        attempt = self._attempt
        loop = asyncio.get_running_loop()
        self._safety_handle = loop.call_later(self._safety_timeout, self._force_release, attempt)
        return attempt

    def _schedule_release(self, attempt: int) -> None:
        asyncio.get_running_loop().call_later(self._release_delay, self._release, attempt)

    def _release(self, attempt: int) -> None:
        # A newer attempt owns the latch after a forced release
        if attempt != self._attempt:
            return
        if self._safety_handle is not None:
            self._safety_handle.cancel()
            self._safety_handle = None
        self._held = False
        self.idle_since = time.monotonic()

    def _force_release(self, attempt: int) -> None:
        if attempt != self._attempt or not self._held:
            return
        logger.warning(
            "Order commit for session %s still running after %.0fs, releasing latch",
            self.session_id, self._safety_timeout,
        )
        self._safety_handle = None
        self._held = False
        self.idle_since = time.monotonic()

    async def commit_order(self, customer: Customer, product: ProductInfo, outcome: PaymentOutcome) -> Result:
        if self._held:
            logger.warning("Duplicate order submission rejected for session %s", self.session_id)
            return Failure(kind=ErrorKind.CONCURRENCY, message=PROCESSING_IN_PROGRESS)

        attempt = self._acquire()
        try:
            errors = validate_customer(customer)
            if errors:
                return Failure.from_field_errors(errors)

            request = build_order_insert(customer, product, outcome)
            try:
                if self._duplicate_window > 0:
                    existing = await self._repository.find_recent_duplicate(
                        request, duplicate_window_start(self._duplicate_window)
                    )
                    if existing is not None:
                        logger.info("Identical order %s found, returning it instead of inserting", existing.id)
                        return Ok(value=existing)
                order = await self._repository.insert_order(request)
            except Exception as e:
                logger.exception("Error creating order for session %s", self.session_id)
                return Failure(kind=ErrorKind.STORAGE, message=GENERIC_RETRY_MESSAGE, detail=str(e))

            return Ok(value=order)
        finally:
            self._schedule_release(attempt)


class SessionRegistry:
    """One commit guard per checkout session id.

    Guards left unlocked for ``idle_ttl`` seconds are dropped on the next
    lookup.
    """

    def __init__(self, repository: OrderRepository, idle_ttl: float = GUARD_IDLE_TTL_SECONDS, **guard_options):
        self._repository = repository
        self._idle_ttl = idle_ttl
        self._guard_options = guard_options
        self._guards: Dict[str, OrderCommitGuard] = {}

    def guard_for(self, session_id: str) -> OrderCommitGuard:
        self.prune()
        guard = self._guards.get(session_id)
        if guard is None:
            guard = OrderCommitGuard(self._repository, session_id=session_id, **self._guard_options)
            self._guards[session_id] = guard
        elif not guard.is_locked:
            guard.idle_since = time.monotonic()
        return guard

    def prune(self, now: Optional[float] = None) -> int:
        now = time.monotonic() if now is None else now
        stale = [
            session_id
            for session_id, guard in self._guards.items()
            if not guard.is_locked and guard.idle_since is not None and now - guard.idle_since >= self._idle_ttl
        ]
        for session_id in stale:
            del self._guards[session_id]
        if stale:
            logger.debug("Dropped %d idle checkout session guards", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._guards)
