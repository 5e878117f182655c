class DomainError(Exception):
    """Expected failure surfaced to the caller as {"success": false, "error": ...}."""

    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(DomainError):
    status_code = 400

    def __init__(self, message: str, fields: list[str] | None = None):
        self.fields = list(fields or [])
        if self.fields:
            message = f"{message}: {', '.join(self.fields)}"
        super().__init__(message)


class AuthenticationError(DomainError):
    status_code = 401


class ForbiddenError(DomainError):
    status_code = 403


class NotFoundError(DomainError):
    status_code = 404


class AvailabilityError(DomainError):
    status_code = 409


class BookingNotPayableError(DomainError):
    status_code = 409


class BookingNotCancellableError(DomainError):
    status_code = 403


class InsufficientFundsError(DomainError):
    status_code = 409


class NotAvailableError(DomainError):
    status_code = 409


class SignatureVerificationError(DomainError):
    status_code = 400


class TransactionNotFoundError(DomainError):
    status_code = 404


class UnsupportedProviderError(DomainError):
    status_code = 400


class ProviderError(DomainError):
    status_code = 502


class StoreError(DomainError):
    status_code = 500
