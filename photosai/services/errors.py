from __future__ import annotations


class ServiceError(ValueError):
    code = 'service_error'

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)


class ValidationFailed(ServiceError):
    code = 'invalid_input'

    def __init__(self, message: str | None = None, details: list | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class NotFound(ServiceError):
    code = 'not_found'


class ModelNotReady(ServiceError):
    code = 'model_not_ready'


class InsufficientCredits(ServiceError):
    code = 'no_credits'


class InvalidPlan(ServiceError):
    code = 'invalid_plan'


class InvalidPaymentMethod(ServiceError):
    code = 'invalid_payment_method'


class NoPendingTransaction(ServiceError):
    code = 'no_pending_transaction'


class UserExists(ServiceError):
    code = 'user_exists'


class InvalidCredentials(ServiceError):
    code = 'invalid_credentials'
