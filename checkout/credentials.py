"""Alternate-payment (PIX) credentials.

Builds a merchant-presented EMV "BR Code" payload, an image URL that renders
it as a QR code, and a fixed validity window. The result is always
``PENDING``; a later confirmation message moves the order forward.
"""

import asyncio
import logging
import unicodedata
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode
from uuid import uuid4

from checkout.config import (
    ALT_PAYMENT_TTL_MINUTES,
    MERCHANT_CITY,
    MERCHANT_NAME,
    PIX_KEY,
    QR_IMAGE_BASE_URL,
)
from checkout.results import Failure, GENERIC_RETRY_MESSAGE, ErrorKind, Ok, Result
from checkout.schemas import AltPaymentDetails, Customer, PaymentMethod, PaymentOutcome, PaymentStatus
from checkout.validators import validate_customer

logger = logging.getLogger(__name__)

PIX_GUI = "BR.GOV.BCB.PIX"
CURRENCY_BRL = "986"
COUNTRY_CODE = "BR"


def _field(tag: str, value: str) -> str:
    return f"{tag}{len(value):02d}{value}"


def _ascii(value: str, limit: int) -> str:
    # Payload fields must be plain ASCII
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return normalized.strip()[:limit]


def crc16_ccitt(data: str) -> str:
    crc = 0xFFFF
    for byte in data.encode("ascii"):
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return f"{crc:04X}"


def build_pix_payload(
    key: str = PIX_KEY,
    merchant_name: str = MERCHANT_NAME,
    merchant_city: str = MERCHANT_CITY,
    amount: Optional[float] = None,
    txid: str = "***",
) -> str:
    """Assemble a static BR Code. Without ``amount`` the payer types the value."""
    account = _field("00", PIX_GUI) + _field("01", key)
    payload = (
        _field("00", "01")
        + _field("26", account)
        + _field("52", "0000")
        + _field("53", CURRENCY_BRL)
    )
    if amount is not None:
        payload += _field("54", f"{amount:.2f}")
    payload += (
        _field("58", COUNTRY_CODE)
        + _field("59", _ascii(merchant_name, 25))
        + _field("60", _ascii(merchant_city, 15))
        + _field("62", _field("05", txid))
    )
    payload += "6304"
    return payload + crc16_ccitt(payload)


def qr_image_url(payload: str, size: int = 300, base_url: str = QR_IMAGE_BASE_URL) -> str:
    return f"{base_url}?{urlencode({'size': f'{size}x{size}', 'data': payload})}"


async def generate_alt_payment_credential(
    customer: Customer,
    amount: Optional[float] = None,
    now: Optional[datetime] = None,
    ttl_minutes: int = ALT_PAYMENT_TTL_MINUTES,
    delay: float = 0.0,
) -> Result:
    errors = validate_customer(customer)
    if errors:
        logger.info("QR credential refused, customer field %s invalid", next(iter(errors)))
        return Failure.from_field_errors(errors)

    try:
        if delay:
            await asyncio.sleep(delay)
        generated_at = now or datetime.now(timezone.utc)
        payload = build_pix_payload(amount=amount)
        outcome = PaymentOutcome(
            success=True,
            method=PaymentMethod.ALT,
            status=PaymentStatus.PENDING,
            payment_id=f"pix_{uuid4()}",
            timestamp=generated_at,
            alt=AltPaymentDetails(
                qr_code=payload,
                qr_code_image=qr_image_url(payload),
                expires_at=generated_at + timedelta(minutes=max(ttl_minutes, 1)),
            ),
        )
    except Exception as e:
        logger.exception("Error generating QR credential")
        return Failure(kind=ErrorKind.PAYMENT, message=GENERIC_RETRY_MESSAGE, detail=str(e))

    logger.info("QR credential %s issued, expires %s", outcome.payment_id, outcome.alt.expires_at.isoformat())
    return Ok(value=outcome)
