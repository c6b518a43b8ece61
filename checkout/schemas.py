import enum
import json
from datetime import datetime
from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class PaymentStatus(str, enum.Enum):
    CONFIRMED = "CONFIRMED"
    PENDING = "PENDING"
    DECLINED = "DECLINED"
    FAILED = "FAILED"
    ANALYSIS = "ANALYSIS"


class ManualCardStatus(str, enum.Enum):
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    ANALYSIS = "ANALYSIS"


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    ALT = "alt"


class OverridePrecedence(str, enum.Enum):
    PRODUCT_FIRST = "product_first"
    GLOBAL_FIRST = "global_first"


class PaymentConfiguration(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    enabled: bool = Field(True, alias="isEnabled")
    card_enabled: bool = Field(True, alias="allowCreditCard")
    alt_enabled: bool = Field(True, alias="allowPix")
    manual_card_processing: bool = Field(False, alias="manualCardProcessing")
    manual_card_status: ManualCardStatus = Field(ManualCardStatus.ANALYSIS, alias="manualCardStatus")
    live: bool = Field(False, alias="liveMode")
    override_precedence: OverridePrecedence = Field(
        OverridePrecedence.PRODUCT_FIRST, alias="overridePrecedence"
    )

    @model_validator(mode="before")
    @classmethod
    def sandbox_flag(cls, data: Any) -> Any:
        # Older settings rows only carry sandboxMode
        if isinstance(data, dict) and "sandboxMode" in data:
            data = dict(data)
            sandbox = data.pop("sandboxMode")
            if "liveMode" not in data and "live" not in data:
                data["liveMode"] = not bool(sandbox)
        return data

    @field_validator("manual_card_status", mode="before")
    @classmethod
    def coerce_manual_status(cls, v: Any) -> ManualCardStatus:
        if isinstance(v, ManualCardStatus):
            return v
        try:
            return ManualCardStatus(str(v).strip().upper())
        except ValueError:
            return ManualCardStatus.ANALYSIS

    @field_validator("override_precedence", mode="before")
    @classmethod
    def coerce_precedence(cls, v: Any) -> OverridePrecedence:
        if isinstance(v, OverridePrecedence):
            return v
        try:
            return OverridePrecedence(str(v).strip().lower())
        except ValueError:
            return OverridePrecedence.PRODUCT_FIRST


class Address(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    street: str = ""
    number: str = ""
    complement: Optional[str] = None
    neighborhood: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = Field("", alias="postalCode")


class Customer(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = ""
    email: str = ""
    tax_id: str = Field("", alias="cpf")
    phone: str = ""
    address: Optional[Address] = None


class ProductInfo(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    price: float = Field(..., gt=0.0)
    is_digital: bool = Field(False, alias="isDigital")
    use_custom_processing: bool = Field(False, alias="useCustomProcessing")
    manual_card_status: Optional[ManualCardStatus] = Field(None, alias="manualCardStatus")

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> str:
        return str(v)


class ProductOverride(BaseModel):
    model_config = ConfigDict(frozen=True)

    use_custom_processing: bool = False
    manual_card_status: Optional[ManualCardStatus] = None

    @classmethod
    def from_product(cls, product: ProductInfo) -> "ProductOverride":
        return cls(
            use_custom_processing=product.use_custom_processing,
            manual_card_status=product.manual_card_status,
        )


class RawCardInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    holder_name: str = Field("", alias="cardName")
    number: str = Field("", alias="cardNumber", repr=False)
    expiry_month: str = Field("", alias="expiryMonth")
    expiry_year: str = Field("", alias="expiryYear")
    security_code: str = Field("", alias="cvv", repr=False)


class CardInstrument(BaseModel):
    model_config = ConfigDict(frozen=True)

    holder_name: str
    number: str = Field(..., repr=False)
    expiry_month: str
    expiry_year: str
    security_code: str = Field(..., repr=False)
    brand: str

    @property
    def last4(self) -> str:
        return self.number[-4:]


class CardDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    masked_number: str
    brand: str
    expiry_month: str
    expiry_year: str


class AltPaymentDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    qr_code: str
    qr_code_image: str
    expires_at: datetime


class PaymentOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    method: PaymentMethod
    status: PaymentStatus
    payment_id: Optional[str] = None
    timestamp: datetime
    error: Optional[str] = None
    card: Optional[CardDetails] = None
    alt: Optional[AltPaymentDetails] = None


class OrderInsert(BaseModel):
    customer: Customer
    product_id: str
    product_name: str
    product_price: float
    is_digital_product: bool = False
    payment_method: str
    status: str
    payment_id: Optional[str] = None
    card: Optional[CardDetails] = None
    alt: Optional[AltPaymentDetails] = None


class OrderRead(BaseModel):
    id: str
    customer: Customer
    product_id: str
    product_name: str
    product_price: float
    is_digital_product: bool
    payment_method: str
    status: str
    payment_id: Optional[str] = None
    card: Optional[CardDetails] = None
    alt: Optional[AltPaymentDetails] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class Destination(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    status: PaymentStatus
    paid: bool


class CheckoutResult(BaseModel):
    outcome: PaymentOutcome
    order: Optional[OrderRead] = None
    destination: Destination


class CardCheckoutRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    customer: Customer
    product: ProductInfo
    card: RawCardInput


class AltCheckoutRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    customer: Customer
    product: ProductInfo


class CardValidationResponse(BaseModel):
    valid: bool
    brand: str
    first_error: Optional[str] = None
    errors: Dict[str, str] = {}


class StatusUpdate(BaseModel):
    status: PaymentStatus


class ShippingAddressColumn(BaseModel):
    """Decodes the JSON text stored in ``orders.shipping_address``."""

    address: Optional[Address] = None

    @field_validator("address", mode="before")
    @classmethod
    def parse_address(cls, v: Union[str, dict, None]) -> Any:
        if isinstance(v, str):
            return json.loads(v) if v else None
        return v
