import pytest
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse
from checkout.credentials import (
    build_pix_payload,
    crc16_ccitt,
    generate_alt_payment_credential,
    qr_image_url,
)
from checkout.results import ErrorKind
from checkout.schemas import Customer, PaymentMethod, PaymentStatus


def make_customer(**overrides):
    data = {
        "name": "Jane Doe",
        "email": "jane@example.com",
        "cpf": "52998224725",
        "phone": "11987654321",
    }
    data.update(overrides)
    return Customer(**data)


def test_crc16_check_value():
    assert crc16_ccitt("123456789") == "29B1"


def test_payload_layout():
    payload = build_pix_payload(key="jane@example.com", merchant_name="Loja São João", merchant_city="São Paulo", amount=49.9)

    assert payload.startswith("000201")
    assert "0014BR.GOV.BCB.PIX" in payload
    assert "5303986" in payload
    assert "540549.90" in payload
    assert "5802BR" in payload
    assert "5913Loja Sao Joao" in payload
    assert "6009Sao Paulo" in payload
    assert "62070503***" in payload
    assert payload[-8:-4] == "6304"
    assert payload[-4:] == crc16_ccitt(payload[:-4])


def test_payload_without_amount():
    # Currency is followed directly by the country code
    assert "53039865802BR" in build_pix_payload(key="k", merchant_name="M", merchant_city="C")


def test_qr_image_url_encodes_payload():
    url = qr_image_url("000201abc", base_url="https://qr.example/render")
    query = parse_qs(urlparse(url).query)

    assert url.startswith("https://qr.example/render?")
    assert query["data"] == ["000201abc"]
    assert query["size"] == ["300x300"]


@pytest.mark.asyncio
async def test_generate_credential_expires_in_thirty_minutes():
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    result = await generate_alt_payment_credential(make_customer(), amount=99.9, now=now)

    assert result.ok
    outcome = result.value
    assert outcome.success is True
    assert outcome.method == PaymentMethod.ALT
    assert outcome.status == PaymentStatus.PENDING
    assert outcome.payment_id.startswith("pix_")
    assert outcome.timestamp == now
    assert outcome.alt.expires_at == now + timedelta(minutes=30)
    assert outcome.alt.qr_code.startswith("000201")
    assert outcome.alt.qr_code_image.startswith("http")


@pytest.mark.asyncio
async def test_invalid_customer_returns_failure():
    result = await generate_alt_payment_credential(make_customer(email="not-an-email"))

    assert not result.ok
    assert result.kind == ErrorKind.VALIDATION
    assert result.first_error == "Invalid email"


@pytest.mark.asyncio
async def test_payload_error_becomes_payment_failure(monkeypatch):
    def broken_payload(**kwargs):
        raise RuntimeError("encoder down")

    monkeypatch.setattr("checkout.credentials.build_pix_payload", broken_payload)

    result = await generate_alt_payment_credential(make_customer())

    assert not result.ok
    assert result.kind == ErrorKind.PAYMENT
    assert result.detail == "encoder down"
