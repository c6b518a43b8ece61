import pytest
from checkout.config import EnvConfigurationProvider, StaticConfigurationProvider, normalize_configuration
from checkout.notifications import NotificationLevel, outcome_notification
from checkout.schemas import ManualCardStatus, OverridePrecedence, PaymentConfiguration, PaymentMethod, PaymentStatus


def test_missing_settings_use_defaults():
    config = normalize_configuration(None)

    assert config.enabled is True
    assert config.card_enabled is True
    assert config.alt_enabled is True
    assert config.manual_card_processing is False
    assert config.manual_card_status == ManualCardStatus.ANALYSIS
    assert config.live is False
    assert config.override_precedence == OverridePrecedence.PRODUCT_FIRST


def test_nested_partial_settings():
    config = normalize_configuration(
        {"settings": {"isEnabled": True, "allowPix": None, "manualCardProcessing": True, "manualCardStatus": "denied"}}
    )

    assert config.alt_enabled is True
    assert config.manual_card_processing is True
    assert config.manual_card_status == ManualCardStatus.DENIED


def test_snake_case_keys_accepted():
    config = normalize_configuration({"card_enabled": False, "live": True})

    assert config.card_enabled is False
    assert config.live is True


def test_sandbox_mode_flag():
    assert normalize_configuration({"sandboxMode": False}).live is True
    assert normalize_configuration({"sandboxMode": True}).live is False


def test_configuration_is_frozen():
    config = normalize_configuration({})
    with pytest.raises(Exception):
        config.enabled = False


@pytest.mark.asyncio
async def test_static_provider():
    provider = StaticConfigurationProvider({"allowCreditCard": False})

    config = await provider.get_configuration()

    assert isinstance(config, PaymentConfiguration)
    assert config.card_enabled is False


@pytest.mark.asyncio
async def test_env_provider(monkeypatch):
    monkeypatch.setenv("CARD_PAYMENTS_ENABLED", "false")
    monkeypatch.setenv("MANUAL_CARD_PROCESSING", "1")
    monkeypatch.setenv("MANUAL_CARD_STATUS", "APPROVED")
    monkeypatch.setenv("OVERRIDE_PRECEDENCE", "global_first")
    monkeypatch.delenv("LIVE_MODE", raising=False)

    config = await EnvConfigurationProvider().get_configuration()

    assert config.card_enabled is False
    assert config.manual_card_processing is True
    assert config.manual_card_status == ManualCardStatus.APPROVED
    assert config.override_precedence == OverridePrecedence.GLOBAL_FIRST
    assert config.live is False


def test_outcome_notifications():
    assert outcome_notification(PaymentStatus.CONFIRMED, PaymentMethod.CARD).level == NotificationLevel.SUCCESS
    assert outcome_notification(PaymentStatus.DECLINED, PaymentMethod.CARD).level == NotificationLevel.ERROR
    assert outcome_notification(PaymentStatus.PENDING, PaymentMethod.CARD).title == "Payment under review"
    assert outcome_notification(PaymentStatus.PENDING, PaymentMethod.ALT).title == "QR code generated"
