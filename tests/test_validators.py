import pytest
from checkout.schemas import Address, Customer
from checkout.validators import validate_cpf, validate_customer


def make_customer(**overrides):
    data = {
        "name": "Jane Doe",
        "email": "jane@example.com",
        "cpf": "529.982.247-25",
        "phone": "(11) 98765-4321",
    }
    data.update(overrides)
    return Customer(**data)


@pytest.mark.parametrize("cpf", ["52998224725", "529.982.247-25"])
def test_valid_cpf(cpf):
    assert validate_cpf(cpf) is True


@pytest.mark.parametrize("cpf", ["52998224724", "11111111111", "1234567890", "", None])
def test_invalid_cpf(cpf):
    assert validate_cpf(cpf) is False


def test_valid_customer_has_no_errors():
    assert validate_customer(make_customer()) == {}


def test_missing_fields_reported_in_form_order():
    errors = validate_customer(Customer())

    assert list(errors) == ["name", "email", "tax_id", "phone"]
    assert errors["name"] == "Name is required"


def test_invalid_email_and_cpf():
    errors = validate_customer(make_customer(email="jane@example", cpf="12345678900"))

    assert errors == {"email": "Invalid email", "tax_id": "Invalid tax ID (CPF)"}


def test_phone_length():
    assert validate_customer(make_customer(phone="123456789")) == {"phone": "Invalid phone"}
    assert validate_customer(make_customer(phone="5511987654321")) == {}


def test_address_checked_when_present():
    address = Address(street="Rua A", number="10", neighborhood="Centro", city="Sao Paulo", state="SPX", postalCode="0131")

    errors = validate_customer(make_customer(address=address))

    assert errors == {
        "address.postal_code": "Invalid postal code",
        "address.state": "Invalid state",
    }


def test_complete_address_accepted():
    address = Address(
        street="Rua A", number="10", neighborhood="Centro", city="Sao Paulo", state="SP", postal_code="01310-100"
    )
    assert validate_customer(make_customer(address=address)) == {}


@pytest.mark.parametrize("name", ["Jo", "  A  "])
def test_short_name_rejected(name):
    assert validate_customer(make_customer(name=name)) == {"name": "Name must be at least 3 characters"}


def test_three_letter_name_accepted():
    assert validate_customer(make_customer(name="Ana")) == {}
