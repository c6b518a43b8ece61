import re
from typing import Dict

from checkout.schemas import Address, Customer

EMAIL_PATTERN = re.compile(r"\S+@\S+\.\S+")


def validate_cpf(cpf: str) -> bool:
    """Validate a Brazilian CPF (formatted or digits only)."""
    digits = re.sub(r"\D", "", cpf or "")
    if len(digits) != 11:
        return False
    # 000.000.000-00, 111.111.111-11 ... pass the checksum but are not issued
    if digits == digits[0] * 11:
        return False

    for position in (9, 10):
        total = sum(int(digits[i]) * (position + 1 - i) for i in range(position))
        check = (total * 10) % 11
        if check == 10:
            check = 0
        if check != int(digits[position]):
            return False
    return True


def _validate_address(address: Address) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    if not address.postal_code.strip():
        errors["address.postal_code"] = "Postal code is required"
    elif len(re.sub(r"\D", "", address.postal_code)) != 8:
        errors["address.postal_code"] = "Invalid postal code"
    if not address.street.strip():
        errors["address.street"] = "Street is required"
    if not address.number.strip():
        errors["address.number"] = "Number is required"
    if not address.neighborhood.strip():
        errors["address.neighborhood"] = "Neighborhood is required"
    if not address.city.strip():
        errors["address.city"] = "City is required"
    if not address.state.strip():
        errors["address.state"] = "State is required"
    elif not re.fullmatch(r"[A-Za-z]{2}", address.state.strip()):
        errors["address.state"] = "Invalid state"
    return errors


def validate_customer(customer: Customer) -> Dict[str, str]:
    """Data-quality check run before an order is committed or a QR code issued.

    Returns the failing fields in form order; an empty dict means the
    customer can be attached to an order.
    """
    errors: Dict[str, str] = {}

    name = customer.name.strip()
    if not name:
        errors["name"] = "Name is required"
    elif len(name) < 3:
        errors["name"] = "Name must be at least 3 characters"

    if not customer.email.strip():
        errors["email"] = "Email is required"
    elif not EMAIL_PATTERN.fullmatch(customer.email.strip()):
        errors["email"] = "Invalid email"

    if not customer.tax_id.strip():
        errors["tax_id"] = "Tax ID (CPF) is required"
    elif not validate_cpf(customer.tax_id):
        errors["tax_id"] = "Invalid tax ID (CPF)"

    phone = re.sub(r"\D", "", customer.phone)
    if not phone:
        errors["phone"] = "Phone is required"
    elif not 10 <= len(phone) <= 13:
        errors["phone"] = "Invalid phone"

    if customer.address is not None:
        errors.update(_validate_address(customer.address))

    return errors
