"""Translation between payment statuses and the labels stored on orders.

The checkout pipeline reasons in ``PaymentStatus``; the ``orders`` table and
the admin screens use the human-readable ``OrderStatus`` labels. Both
directions are total: every status has one label, every label one status,
and anything unrecognised read back from storage falls to ``PENDING``.
"""

from typing import Union

from checkout.models import OrderStatus
from checkout.schemas import Destination, PaymentMethod, PaymentOutcome, PaymentStatus

SUCCESS_PATH = "/payment-success"
FAILURE_PATH = "/payment-failed"

DEFAULT_STATUS = PaymentStatus.PENDING

STATUS_TO_LABEL = {
    PaymentStatus.CONFIRMED: OrderStatus.PAID,
    PaymentStatus.PENDING: OrderStatus.AWAITING_PAYMENT,
    PaymentStatus.ANALYSIS: OrderStatus.UNDER_REVIEW,
    PaymentStatus.DECLINED: OrderStatus.DECLINED,
    PaymentStatus.FAILED: OrderStatus.FAILED,
}

LABEL_TO_STATUS = {label.value: status for status, label in STATUS_TO_LABEL.items()}

# Values written by earlier releases of the admin screens
LEGACY_LABELS = {
    "CONFIRMED": PaymentStatus.CONFIRMED,
    "PAID": PaymentStatus.CONFIRMED,
    "APPROVED": PaymentStatus.CONFIRMED,
    "Pago": PaymentStatus.CONFIRMED,
    "PENDING": PaymentStatus.PENDING,
    "Aguardando": PaymentStatus.PENDING,
    "Pendente": PaymentStatus.PENDING,
    "ANALYSIS": PaymentStatus.ANALYSIS,
    "DECLINED": PaymentStatus.DECLINED,
    "DENIED": PaymentStatus.DECLINED,
    "FAILED": PaymentStatus.FAILED,
    "CANCELLED": PaymentStatus.DECLINED,
    "Cancelado": PaymentStatus.DECLINED,
}

METHOD_TO_LABEL = {
    PaymentMethod.CARD: "CREDIT_CARD",
    PaymentMethod.ALT: "PIX",
}


def to_persisted_label(status: PaymentStatus) -> OrderStatus:
    return STATUS_TO_LABEL[PaymentStatus(status)]


def from_persisted_label(label: str) -> PaymentStatus:
    if label is None:
        return DEFAULT_STATUS
    label = str(label).strip()
    if label in LABEL_TO_STATUS:
        return LABEL_TO_STATUS[label]
    return LEGACY_LABELS.get(label, DEFAULT_STATUS)


def map_status(value: Union[PaymentStatus, OrderStatus, str]) -> Union[OrderStatus, PaymentStatus]:
    """Map a payment status to its label, or a stored label back to a status."""
    if isinstance(value, PaymentStatus):
        return to_persisted_label(value)
    return from_persisted_label(value.value if isinstance(value, OrderStatus) else value)


def persisted_label_for(outcome: PaymentOutcome) -> OrderStatus:
    label = to_persisted_label(outcome.status)
    # An unsuccessful attempt is never stored as paid
    if not outcome.success and label is OrderStatus.PAID:
        return OrderStatus.FAILED
    return label


def persisted_method_for(method: PaymentMethod) -> str:
    return METHOD_TO_LABEL[PaymentMethod(method)]


def route_outcome(status: PaymentStatus) -> Destination:
    status = PaymentStatus(status)
    if status in (PaymentStatus.DECLINED, PaymentStatus.FAILED):
        return Destination(path=FAILURE_PATH, status=status, paid=False)
    return Destination(path=SUCCESS_PATH, status=status, paid=status is PaymentStatus.CONFIRMED)
