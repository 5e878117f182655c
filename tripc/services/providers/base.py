from abc import ABC, abstractmethod
from dataclasses import dataclass, field

SUCCESS = "success"
PENDING = "pending"
FAILED = "failed"


@dataclass
class IntentResult:
    payment_url: str
    provider_txn_id: str
    metadata: dict = field(default_factory=dict)


@dataclass
class ProviderEvent:
    """Normalised outcome reported by a provider (webhook or status query)."""
    provider_txn_id: str
    outcome: str  # success | pending | failed
    amount: int | None = None
    currency: str | None = None
    booking_hint: str | None = None  # booking id recovered from the payload, if any
    metadata: dict = field(default_factory=dict)


class PaymentProvider(ABC):
    name: str = ""
    currency: str = "USD"  # currency the provider charges in

    @abstractmethod
    def create_intent(self, booking_id: str, txn_ref: str, amount: int, currency: str, return_url: str, notify_url: str) -> IntentResult:
        ...

    @abstractmethod
    def verify_webhook(self, headers: dict, raw_body: bytes, payload: dict) -> bool:
        ...

    @abstractmethod
    def parse_webhook(self, payload: dict) -> ProviderEvent:
        ...

    def acknowledgement(self, result: str) -> dict:
        return {"ok": True}

    def query_status(self, provider_txn_id: str) -> ProviderEvent:
        raise NotImplementedError(f"{self.name} does not support status sync")
