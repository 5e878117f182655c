from tripc.core.errors import UnsupportedProviderError
from tripc.services.providers.base import PaymentProvider, IntentResult, ProviderEvent, SUCCESS, PENDING, FAILED
from tripc.services.providers.momo import MomoProvider
from tripc.services.providers.paypal import PaypalProvider
from tripc.services.providers.vnpay import VnpayProvider

PROVIDERS: dict[str, PaymentProvider] = {
    "momo": MomoProvider(),
    "vnpay": VnpayProvider(),
    "paypal": PaypalProvider(),
}


def get_provider(name: str) -> PaymentProvider:
    provider = PROVIDERS.get((name or "").strip().lower())
    if provider is None:
        raise UnsupportedProviderError(f"Provider {name} not supported")
    return provider
