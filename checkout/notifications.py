import enum
import logging
from typing import Any, Dict, Protocol

from pydantic import BaseModel, ConfigDict

from checkout.schemas import Destination, PaymentMethod, PaymentStatus

logger = logging.getLogger(__name__)


class NotificationLevel(str, enum.Enum):
    SUCCESS = "success"
    INFO = "info"
    ERROR = "error"


class Notification(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: NotificationLevel
    title: str
    description: str


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None:
        ...


class Navigator(Protocol):
    def navigate(self, destination: Destination, state: Dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    def notify(self, notification: Notification) -> None:
        level = logging.WARNING if notification.level is NotificationLevel.ERROR else logging.INFO
        logger.log(level, "[%s] %s: %s", notification.level.value, notification.title, notification.description)


def outcome_notification(status: PaymentStatus, method: PaymentMethod) -> Notification:
    if method is PaymentMethod.ALT:
        return Notification(
            level=NotificationLevel.SUCCESS,
            title="QR code generated",
            description="Scan the QR code or copy the code to complete your payment.",
        )
    if status is PaymentStatus.CONFIRMED:
        return Notification(
            level=NotificationLevel.SUCCESS,
            title="Payment approved",
            description="Your payment was approved.",
        )
    if status is PaymentStatus.DECLINED:
        return Notification(
            level=NotificationLevel.ERROR,
            title="Payment declined",
            description="Your payment was declined. Please try again.",
        )
    if status is PaymentStatus.FAILED:
        return Notification(
            level=NotificationLevel.ERROR,
            title="Payment error",
            description="We could not complete your payment. Please try again.",
        )
    return Notification(
        level=NotificationLevel.INFO,
        title="Payment under review",
        description="Your payment was received and is under review.",
    )


def error_notification(message: str) -> Notification:
    return Notification(level=NotificationLevel.ERROR, title="Checkout error", description=message)
