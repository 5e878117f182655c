from pydantic import BaseModel
from typing import Optional


class PaymentCreateRequest(BaseModel):
    bookingId: str
    provider: str
    returnUrl: str


class PaymentCreateOut(BaseModel):
    paymentUrl: str
    providerTxnId: str
    transactionId: str
    amount: int
    currency: str


class PaymentSyncRequest(BaseModel):
    provider: str
    providerTxnId: Optional[str] = None
    token: Optional[str] = None  # PayPal returns the order id as `token` on the return URL
