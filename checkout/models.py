from sqlalchemy import Column, String, Float, DateTime, Boolean, Text
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone
import enum

Base = declarative_base()

def utcnow() -> datetime:
    # Naive UTC, matching what SQLite hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)

class OrderStatus(str, enum.Enum):
    PAID = "Paid"
    AWAITING_PAYMENT = "Awaiting payment"
    UNDER_REVIEW = "Under review"
    DECLINED = "Declined"
    FAILED = "Failed"

class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, index=True)
    customer_name = Column(String, nullable=False)
    customer_email = Column(String, index=True, nullable=False)
    customer_tax_id = Column(String, nullable=False)
    customer_phone = Column(String, nullable=True)
    shipping_address = Column(Text, nullable=True) # Storing as JSON string
    product_id = Column(String, index=True, nullable=False)
    product_name = Column(String, nullable=False)
    price = Column(Float, nullable=False)
    is_digital_product = Column(Boolean, default=False, nullable=False)
    payment_method = Column(String, nullable=False) # CREDIT_CARD, PIX
    # Plain string so rows written with older labels still load
    status = Column(String, default=OrderStatus.AWAITING_PAYMENT.value, nullable=False)
    payment_id = Column(String, nullable=True)
    card_number_masked = Column(String, nullable=True)
    card_brand = Column(String, nullable=True)
    card_expiry = Column(String, nullable=True) # MM/YY
    qr_code = Column(Text, nullable=True)
    qr_code_image = Column(Text, nullable=True)
    qr_expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
