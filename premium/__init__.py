from .catalog import PlanCatalog, PlanPatch
from .db import (
    SessionFactory,
    build_session_factory,
    init_premium_db,
    session_scope,
)
from .exceptions import (
    GatewayConfigError,
    GatewayUnavailableError,
    PaymentNotFoundError,
    PaymentSignatureError,
    PaymentStateError,
    PlanNotFoundError,
    PremiumError,
    PremiumStateError,
    PremiumValidationError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from .gateway import (
    BasePaymentGateway,
    GatewayOrder,
    MockGateway,
    RazorpayGateway,
    get_payment_gateway,
)
from .ledger import AccessLedger, ActiveAccess, category_for_plan_code, compute_active
from .middleware import MemoryTokenBuckets, PremiumRateLimiter, RateLimitResult, payment_subject
from .models import (
    AccessCategory,
    AccessGrant,
    Base,
    FinalizedBy,
    Notification,
    NotificationStatus,
    PaymentAuditLog,
    PaymentRecord,
    PaymentStatus,
    Plan,
    PlanStatus,
)
from .repository import PremiumRepository
from .service import (
    ClientVerifier,
    EntitlementGranter,
    OrderIssuer,
    OrderResult,
    VerifyResult,
    WebhookReconciler,
    WebhookResult,
    close_stale_payments,
)
from .signatures import sign_client_payment, verify_client_signature, verify_webhook_signature

__all__ = [
    "Base",
    "Plan",
    "PaymentRecord",
    "AccessGrant",
    "Notification",
    "PaymentAuditLog",
    "PlanStatus",
    "PaymentStatus",
    "FinalizedBy",
    "AccessCategory",
    "NotificationStatus",
    "PremiumError",
    "PremiumValidationError",
    "PremiumStateError",
    "PlanNotFoundError",
    "PaymentStateError",
    "PaymentNotFoundError",
    "PaymentSignatureError",
    "WebhookSignatureError",
    "WebhookPayloadError",
    "GatewayConfigError",
    "GatewayUnavailableError",
    "PlanCatalog",
    "PlanPatch",
    "AccessLedger",
    "ActiveAccess",
    "compute_active",
    "category_for_plan_code",
    "EntitlementGranter",
    "OrderIssuer",
    "OrderResult",
    "ClientVerifier",
    "VerifyResult",
    "WebhookReconciler",
    "WebhookResult",
    "close_stale_payments",
    "MemoryTokenBuckets",
    "PremiumRateLimiter",
    "RateLimitResult",
    "payment_subject",
    "BasePaymentGateway",
    "GatewayOrder",
    "MockGateway",
    "RazorpayGateway",
    "get_payment_gateway",
    "PremiumRepository",
    "sign_client_payment",
    "verify_client_signature",
    "verify_webhook_signature",
    "SessionFactory",
    "build_session_factory",
    "init_premium_db",
    "session_scope",
]
