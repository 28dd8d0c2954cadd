from __future__ import annotations


class PremiumError(RuntimeError):
    error_code = "UNEXPECTED_ERROR"
    http_status = 500

    def __init__(self, message: str, *, error_code: str | None = None) -> None:
        super().__init__(message)
        if error_code:
            self.error_code = error_code


class PremiumValidationError(PremiumError):
    error_code = "INVALID_REQUEST"
    http_status = 400


class PremiumStateError(PremiumError):
    """Store-level invariant violation (duplicate keys, illegal transitions)."""

    error_code = "PAYMENT_STATE_CONFLICT"
    http_status = 409


class PlanNotFoundError(PremiumStateError):
    error_code = "PLAN_NOT_FOUND"
    http_status = 404


class PaymentStateError(PremiumStateError):
    pass


class PaymentNotFoundError(PremiumError):
    error_code = "PAYMENT_NOT_FOUND"
    http_status = 404


class PaymentSignatureError(PremiumError):
    error_code = "INVALID_PAYMENT_SIGNATURE"
    http_status = 400


class WebhookSignatureError(PremiumError):
    error_code = "INVALID_WEBHOOK_SIGNATURE"
    http_status = 400


class WebhookPayloadError(PremiumError):
    error_code = "INVALID_WEBHOOK_PAYLOAD"
    http_status = 400


class GatewayConfigError(PremiumError):
    error_code = "PAYMENT_GATEWAY_NOT_CONFIGURED"
    http_status = 503


class GatewayUnavailableError(PremiumError):
    error_code = "PAYMENT_GATEWAY_UNAVAILABLE"
    http_status = 502
