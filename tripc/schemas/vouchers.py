from pydantic import BaseModel


class VoucherRedeemRequest(BaseModel):
    templateId: str


class LedgerCreditRequest(BaseModel):
    userId: str
    amount: int
    reason: str = "goodwill"
    description: str = ""


class ExchangeRateUpdate(BaseModel):
    usdToVnd: int
