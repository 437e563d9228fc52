# pydantic models for orders entering fraud screening and for the api

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CreditCardInfo(BaseModel):
    """card details attached to a payment method"""
    exp_year: int = Field(..., description="card expiry year")
    exp_month: int = Field(..., ge=1, le=12, description="card expiry month")
    brand: Optional[str] = Field(None, description="visa, mastercard, ...")
    funding: Optional[str] = Field(None, description="credit, debit, prepaid")
    country: Optional[str] = Field(None, description="issuing country")
    fingerprint: Optional[str] = Field(None, description="processor card fingerprint")


class PaymentMethodInput(BaseModel):
    type: str = Field("creditcard", description="payment method type")
    name: Optional[str] = Field(None, description="cardholder / payment method name")
    credit_card_info: Optional[CreditCardInfo] = None


class GuestInfo(BaseModel):
    email: Optional[str] = None


class OrderInput(BaseModel):
    """the parts of an order fraud screening looks at"""
    guest_info: Optional[GuestInfo] = None
    payment_method: Optional[PaymentMethodInput] = None


class ScreenOrderRequest(BaseModel):
    """request body for /orders/screen"""
    remote_user_id: Optional[int] = Field(None, description="authenticated user placing the order")
    order: OrderInput

    class Config:
        json_schema_extra = {
            "example": {
                "remote_user_id": 42,
                "order": {
                    "payment_method": {
                        "type": "creditcard",
                        "name": "Jane Doe",
                        "credit_card_info": {
                            "exp_year": 2030,
                            "exp_month": 3,
                            "brand": "visa",
                            "funding": "credit",
                            "country": "US"
                        }
                    }
                }
            }
        }


class CheckResult(BaseModel):
    passed: bool
    message: str
    breached_limit: Optional[List[Any]] = None


class ScreenOrderResponse(BaseModel):
    """response from /orders/screen when the order may proceed"""
    allowed: bool
    checks: Dict[str, CheckResult]
    flagged: List[str]


class RejectionResponse(BaseModel):
    message: str
    context: Dict[str, Any]


class SuspensionResponse(BaseModel):
    asset_type: str
    fingerprint: str
    reason: Optional[str] = None
    created_at: Optional[Any] = None
