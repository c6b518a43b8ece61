import logging
import re
from datetime import date
from typing import Any, Dict, Mapping, Optional, Union

from checkout.results import Failure, Ok, Result
from checkout.schemas import CardInstrument, RawCardInput

logger = logging.getLogger(__name__)

UNKNOWN_BRAND = "unknown"

# (brand, prefix pattern, accepted lengths); order matters, first match wins.
# Elo and Hipercard share leading digits with Visa/Discover/Diners so they
# are checked first.
BRAND_FINGERPRINTS = (
    ("elo", re.compile(r"^(4011|4312|4389|4514|4576|5041|5066|5067|509\d|6277|6362|6363|650\d|6516|6550)"), (16,)),
    ("hipercard", re.compile(r"^(606282|637095|637568|637599|637609|637612|3841)"), (13, 16, 19)),
    ("amex", re.compile(r"^3[47]"), (15,)),
    ("diners", re.compile(r"^3(0[0-5]|[689])"), (14, 16)),
    ("discover", re.compile(r"^(6011|64[4-9]|65)"), (16, 17, 18, 19)),
    ("jcb", re.compile(r"^35(2[89]|[3-8]\d)"), (16, 17, 18, 19)),
    ("mastercard", re.compile(r"^(5[1-5]|222[1-9]|22[3-9]\d|2[3-6]\d\d|27[01]\d|2720)"), (16,)),
    ("visa", re.compile(r"^4"), (13, 16, 19)),
)

_SEPARATORS = re.compile(r"[\s\-.]")


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def classify_brand(number: str) -> str:
    """Return the brand family for a card number, or ``"unknown"``.

    Advisory only: the brand is shown to the customer and stored for audit,
    it never decides whether a payment goes through.
    """
    clean = _digits(number)
    for brand, pattern, lengths in BRAND_FINGERPRINTS:
        if len(clean) in lengths and pattern.match(clean):
            return brand
    return UNKNOWN_BRAND


def format_card_number(number: str) -> str:
    digits = _digits(number)
    return " ".join(digits[i:i + 4] for i in range(0, len(digits), 4))


def card_number_max_length(number: str) -> int:
    brand = classify_brand(number)
    if brand == "amex":
        return 15
    if brand == "diners":
        return 14
    return 16


def mask_card_number(number: str) -> str:
    return _digits(number)[-4:].rjust(16, "*")


def is_card_expired(month: str, year: str, today: Optional[date] = None) -> bool:
    # Two-digit years are compared against the current two-digit year as is,
    # so "00" reads as earlier than "99".
    today = today or date.today()
    current_year = today.year % 100
    exp_year = int(year)
    exp_month = int(month)
    if exp_year > current_year:
        return False
    if exp_year == current_year and exp_month >= today.month:
        return False
    return True


def collect_card_errors(raw: RawCardInput, today: Optional[date] = None) -> Dict[str, str]:
    """Check every card field and return the failures in form order."""
    errors: Dict[str, str] = {}
    today = today or date.today()

    holder = raw.holder_name.strip()
    if not holder:
        errors["holder_name"] = "Cardholder name is required"
    elif len(holder) < 3:
        errors["holder_name"] = "Cardholder name must be at least 3 characters"

    number = _SEPARATORS.sub("", raw.number)
    if not re.fullmatch(r"\d{13,19}", number):
        errors["number"] = "Invalid card number"

    month = raw.expiry_month.strip()
    month_ok = re.fullmatch(r"0[1-9]|1[0-2]", month) is not None
    if not month_ok:
        errors["expiry_month"] = "Invalid expiry month"

    year = raw.expiry_year.strip()
    if not re.fullmatch(r"\d{2}", year):
        errors["expiry_year"] = "Invalid expiry year"
    elif int(year) < today.year % 100 or (month_ok and is_card_expired(month, year, today)):
        errors["expiry_year"] = "Card has expired"

    code = raw.security_code.strip()
    if not re.fullmatch(r"\d{3,4}", code):
        errors["security_code"] = "Invalid security code"
    elif code == "000":
        errors["security_code"] = "Security code cannot be 000"

    return errors


def validate_card_instrument(
    raw: Union[RawCardInput, Mapping[str, Any]], today: Optional[date] = None
) -> Result:
    if not isinstance(raw, RawCardInput):
        raw = RawCardInput.model_validate({k: v for k, v in raw.items() if v is not None})

    errors = collect_card_errors(raw, today)
    if errors:
        logger.info("Card rejected on %s: %s", next(iter(errors)), next(iter(errors.values())))
        return Failure.from_field_errors(errors)

    number = _SEPARATORS.sub("", raw.number)
    instrument = CardInstrument(
        holder_name=raw.holder_name.strip(),
        number=number,
        expiry_month=raw.expiry_month.strip(),
        expiry_year=raw.expiry_year.strip(),
        security_code=raw.security_code.strip(),
        brand=classify_brand(number),
    )
    logger.debug("Card ****%s accepted (%s)", instrument.last4, instrument.brand)
    return Ok(value=instrument)
