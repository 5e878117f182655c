from pydantic import BaseModel, Field
from typing import List, Optional


class ContactIn(BaseModel):
    name: str = ""
    email: str = ""  # plain str to allow .local and other dev domains
    phone: str = ""


class CartItemIn(BaseModel):
    productId: Optional[str] = None
    name: str = ""
    price: int = 0  # smallest currency unit
    quantity: int = 1


class CheckoutRequest(BaseModel):
    # Everything optional here; per-category required fields are checked by the checkout service
    category: Optional[str] = None
    resourceId: Optional[str] = None
    date: Optional[str] = None  # YYYY-MM-DD
    time: Optional[str] = None  # HH:MM
    checkIn: Optional[str] = None
    checkOut: Optional[str] = None
    partySize: int = 1
    offerId: Optional[str] = None
    amount: Optional[int] = None  # flight offers are priced by the airline
    items: List[CartItemIn] = Field(default_factory=list)
    currency: Optional[str] = None
    voucherCode: Optional[str] = None
    userId: Optional[str] = None
    contact: ContactIn = Field(default_factory=ContactIn)
    title: Optional[str] = None
    notes: str = ""


class CheckoutOut(BaseModel):
    bookingId: str
    bookingCode: str
    status: str
    subtotalAmount: int
    discountAmount: int
    totalAmount: int
    currency: str
    expiresAt: Optional[str] = None
