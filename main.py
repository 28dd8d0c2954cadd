from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import text

from auth import AuthConfigError, AuthError, AuthIdentity, decode_access_token, extract_bearer_token
from config import (
    API_HOST,
    API_PORT,
    APP_ENV,
    APP_VERSION,
    AUTH_TOKEN_SECRET,
    CORS_ORIGINS,
    DATABASE_URL,
    PAYMENT_CURRENCY,
    PAYMENT_GATEWAY,
    PAYMENT_RATE_LIMIT_RPM,
    RAZORPAY_API_BASE_URL,
    RAZORPAY_KEY_ID,
    RAZORPAY_KEY_SECRET,
    RAZORPAY_TIMEOUT_SECONDS,
    RAZORPAY_WEBHOOK_SECRET,
    ROOT_PATH,
    SEED_DEFAULT_PLANS,
    STARTUP_BOOTSTRAP_ENABLED,
)
from errors import ERROR_CODE_MAP, explain_error
from observability import configure_json_logging, get_logger, log_event
from premium import (
    AccessLedger,
    BasePaymentGateway,
    ClientVerifier,
    EntitlementGranter,
    OrderIssuer,
    PaymentAuditLog,
    PaymentRecord,
    Plan,
    PlanCatalog,
    PlanPatch,
    PlanStatus,
    PremiumError,
    PremiumRateLimiter,
    PremiumRepository,
    SessionFactory,
    WebhookReconciler,
    build_session_factory,
    get_payment_gateway,
    init_premium_db,
    payment_subject,
    session_scope,
)
from premium.seed import seed_default_plans

configure_json_logging(level=logging.INFO)
APP_LOGGER = get_logger("premium.api")

PLAN_CODE_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_\-]{0,63}$"
WEBHOOK_SIGNATURE_HEADER = "X-Razorpay-Signature"
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

PREMIUM_RATE_LIMITER = PremiumRateLimiter()


class PremiumServices:
    """Components wired against one session factory for the app lifetime."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        gateway: BasePaymentGateway,
        key_secret: str,
        webhook_secret: str,
        currency: str,
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.catalog = PlanCatalog(session_factory, currency=currency)
        self.ledger = AccessLedger(session_factory)
        self.granter = EntitlementGranter(session_factory)
        self.issuer = OrderIssuer(session_factory, gateway, self.granter, currency=currency)
        self.verifier = ClientVerifier(session_factory, self.granter, key_secret=key_secret)
        self.reconciler = WebhookReconciler(
            session_factory,
            self.granter,
            webhook_secret=webhook_secret,
            provider=gateway.name,
        )


def _is_production_env() -> bool:
    return str(APP_ENV or "").strip().lower() in {"prod", "production"}


def _build_gateway() -> BasePaymentGateway:
    return get_payment_gateway(
        PAYMENT_GATEWAY,
        key_id=RAZORPAY_KEY_ID,
        key_secret=RAZORPAY_KEY_SECRET,
        base_url=RAZORPAY_API_BASE_URL,
        timeout=RAZORPAY_TIMEOUT_SECONDS,
    )


@asynccontextmanager
async def lifespan(application: FastAPI):
    if not AUTH_TOKEN_SECRET:
        if _is_production_env():
            raise RuntimeError("AUTH_TOKEN_SECRET is required in production")
        log_event(APP_LOGGER, logging.WARNING, "startup.auth_secret_missing")
    engine, session_factory = build_session_factory(DATABASE_URL)
    if STARTUP_BOOTSTRAP_ENABLED:
        init_premium_db(database_url=DATABASE_URL)
        if SEED_DEFAULT_PLANS:
            seeded = seed_default_plans(session_factory, currency=PAYMENT_CURRENCY)
            log_event(APP_LOGGER, logging.INFO, "startup.plans_seeded", **seeded)
    gateway = _build_gateway()
    application.state.services = PremiumServices(
        session_factory,
        gateway=gateway,
        key_secret=RAZORPAY_KEY_SECRET,
        webhook_secret=RAZORPAY_WEBHOOK_SECRET,
        currency=PAYMENT_CURRENCY,
    )
    log_event(
        APP_LOGGER,
        logging.INFO,
        "startup.ready",
        gateway=gateway.name,
        gateway_configured=gateway.is_configured,
        webhook_configured=bool(RAZORPAY_WEBHOOK_SECRET),
    )
    try:
        yield
    finally:
        engine.dispose()


app = FastAPI(title="Premium Access", version=APP_VERSION, root_path=ROOT_PATH, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", WEBHOOK_SIGNATURE_HEADER],
    expose_headers=["X-Trace-Id", "X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
)


def _normalize_request_path(path: str) -> str:
    normalized = path or "/"
    if ROOT_PATH and normalized.startswith(ROOT_PATH):
        stripped = normalized[len(ROOT_PATH):]
        normalized = stripped if stripped.startswith("/") else f"/{stripped}"
    return normalized or "/"


def _request_user_id(request: Request) -> str:
    identity = getattr(request.state, "auth_identity", None)
    if isinstance(identity, AuthIdentity):
        return str(identity.user_id or "anonymous")
    return "anonymous"


def _request_trace_id(request: Request) -> str:
    raw = str(getattr(request.state, "trace_id", "") or "").strip()
    if raw:
        return raw
    return uuid.uuid4().hex


def _client_ip(request: Request) -> str:
    if request.client is not None and request.client.host:
        return str(request.client.host)
    return "unknown"


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    trace_id = str(request.headers.get("X-Trace-Id") or uuid.uuid4().hex).strip()[:64]
    request.state.trace_id = trace_id
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = int((time.perf_counter() - started) * 1000)
    log_event(
        APP_LOGGER,
        logging.INFO,
        "request.completed",
        trace_id=trace_id,
        method=request.method,
        path=_normalize_request_path(request.url.path),
        status_code=response.status_code,
        duration_ms=duration_ms,
        user_id=_request_user_id(request),
    )
    response.headers["X-Trace-Id"] = trace_id
    return response


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    for key, value in SECURITY_HEADERS.items():
        if key not in response.headers:
            response.headers[key] = value
    return response


@app.exception_handler(PremiumError)
async def premium_error_handler(request: Request, exc: PremiumError) -> JSONResponse:
    trace_id = _request_trace_id(request)
    explained = explain_error(exc.error_code) or {}
    log_event(
        APP_LOGGER,
        logging.WARNING if exc.http_status < 500 else logging.ERROR,
        "request.premium_error",
        trace_id=trace_id,
        user_id=_request_user_id(request),
        path=_normalize_request_path(request.url.path),
        error_code=exc.error_code,
        http_status=exc.http_status,
        detail=str(exc),
    )
    return JSONResponse(
        status_code=exc.http_status,
        content={
            "error_code": exc.error_code,
            "message": explained.get("message") or str(exc),
            "hint": explained.get("hint"),
            "detail": str(exc),
            "trace_id": trace_id,
        },
        headers={"X-Trace-Id": trace_id},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    trace_id = _request_trace_id(request)
    log_event(
        APP_LOGGER,
        logging.ERROR,
        "request.unhandled_exception",
        trace_id=trace_id,
        user_id=_request_user_id(request),
        method=request.method,
        path=_normalize_request_path(request.url.path),
        exception_type=type(exc).__name__,
        exception_message=str(exc),
    )
    return JSONResponse(
        status_code=500,
        content={
            "error_code": "INTERNAL_SERVER_ERROR",
            "message": "internal server error",
            "trace_id": trace_id,
        },
        headers={"X-Trace-Id": trace_id},
    )


def get_services(request: Request) -> PremiumServices:
    services = getattr(request.app.state, "services", None)
    if not isinstance(services, PremiumServices):
        raise HTTPException(status_code=503, detail="service not initialized")
    return services


def get_current_identity(request: Request) -> AuthIdentity:
    try:
        token = extract_bearer_token(request.headers.get("Authorization"))
        identity = decode_access_token(token, AUTH_TOKEN_SECRET)
    except AuthConfigError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    request.state.auth_identity = identity
    return identity


def require_admin(identity: AuthIdentity = Depends(get_current_identity)) -> AuthIdentity:
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="admin role required")
    return identity


def enforce_payment_rate_limit(
    request: Request,
    response: Response,
    identity: AuthIdentity = Depends(get_current_identity),
) -> None:
    verdict = PREMIUM_RATE_LIMITER.allow(
        subject=payment_subject(_client_ip(request), identity.user_id),
        limit_rpm=PAYMENT_RATE_LIMIT_RPM,
    )
    if not verdict.allowed:
        log_event(
            APP_LOGGER,
            logging.WARNING,
            "rate_limit.payment_denied",
            trace_id=_request_trace_id(request),
            user_id=identity.user_id,
            retry_after_seconds=verdict.retry_after_seconds,
        )
        raise HTTPException(
            status_code=429,
            detail={
                "error_code": "RATE_LIMITED",
                "message": ERROR_CODE_MAP["RATE_LIMITED"]["message"],
                "limit_rpm": verdict.limit_rpm,
                "retry_after_seconds": verdict.retry_after_seconds,
            },
            headers={
                "Retry-After": str(verdict.retry_after_seconds),
                "X-RateLimit-Limit": str(verdict.limit_rpm),
                "X-RateLimit-Remaining": str(verdict.remaining),
            },
        )
    response.headers["X-RateLimit-Limit"] = str(verdict.limit_rpm)
    response.headers["X-RateLimit-Remaining"] = str(verdict.remaining)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


class PlanResponse(BaseModel):
    plan_id: str
    code: str
    name: str
    price_minor: int
    currency: str
    validity_days: int
    status: str
    is_free: bool


def _plan_response(plan: Plan) -> PlanResponse:
    return PlanResponse(
        plan_id=str(plan.id),
        code=plan.code,
        name=plan.name,
        price_minor=int(plan.price_minor or 0),
        currency=plan.currency,
        validity_days=int(plan.validity_days or 0),
        status=plan.status.value,
        is_free=plan.is_free_of_charge,
    )


class PlanCreateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64, pattern=PLAN_CODE_PATTERN)
    name: str = Field(..., min_length=1, max_length=120)
    price_minor: int = Field(0, ge=0, le=100_000_000_00)
    validity_days: int = Field(365, gt=0, le=3650)
    status: str = Field("active", pattern=r"^(active|inactive)$")
    is_free: bool = False

    model_config = ConfigDict(extra="ignore")

    @field_validator("code", "name", "status", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> str:
        return str(value or "").strip()


class PlanUpdateRequest(BaseModel):
    code: Optional[str] = Field(default=None, min_length=1, max_length=64, pattern=PLAN_CODE_PATTERN)
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    price_minor: Optional[int] = Field(default=None, ge=0, le=100_000_000_00)
    validity_days: Optional[int] = Field(default=None, gt=0, le=3650)
    status: Optional[str] = Field(default=None, pattern=r"^(active|inactive)$")
    is_free: Optional[bool] = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("code", "name", "status", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value).strip()

    def to_patch(self) -> PlanPatch:
        return PlanPatch(
            code=self.code,
            name=self.name,
            price_minor=self.price_minor,
            validity_days=self.validity_days,
            status=PlanStatus(self.status) if self.status is not None else None,
            is_free=self.is_free,
        )


class OrderCreateRequest(BaseModel):
    plan_code: str = Field(default="", max_length=64, validation_alias=AliasChoices("planCode", "plan_code"))

    model_config = ConfigDict(extra="ignore")

    @field_validator("plan_code", mode="before")
    @classmethod
    def _strip_plan_code(cls, value: Any) -> str:
        return str(value or "").strip()


class OrderResponse(BaseModel):
    order_id: str
    amount: int
    currency: str
    key_id: str = ""
    is_free: bool = False
    expires_at: Optional[str] = None
    plan: Dict[str, Any] = Field(default_factory=dict)


class VerifyRequest(BaseModel):
    order_id: str = Field(default="", max_length=128, validation_alias=AliasChoices("orderId", "order_id", "razorpay_order_id"))
    payment_id: str = Field(
        default="", max_length=128, validation_alias=AliasChoices("paymentId", "payment_id", "razorpay_payment_id")
    )
    signature: str = Field(default="", max_length=256, validation_alias=AliasChoices("signature", "razorpay_signature"))

    model_config = ConfigDict(extra="ignore")

    @field_validator("order_id", "payment_id", "signature", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> str:
        return str(value or "").strip()


class VerifyResponse(BaseModel):
    status: str
    order_id: str
    plan_code: Optional[str] = None
    expires_at: Optional[str] = None


class PaymentWebhookResponse(BaseModel):
    status: str
    event_type: Optional[str] = None
    order_id: Optional[str] = None
    reason: Optional[str] = None


class AccessCategoryState(BaseModel):
    unlocked: bool
    expires_at: Optional[str] = None


class AccessStatusResponse(BaseModel):
    user_id: str
    is_admin: bool
    archive: AccessCategoryState
    materials: AccessCategoryState
    combo: AccessCategoryState


class AccessCheckResponse(BaseModel):
    plan_code: str
    has_access: bool


class NotificationResponse(BaseModel):
    notification_id: str
    title: str
    message: str
    status: str
    created_at: Optional[str] = None


class PaymentResponse(BaseModel):
    payment_id: str
    user_id: str
    plan_id: str
    plan_code: Optional[str] = None
    plan_name: Optional[str] = None
    amount_minor: int
    currency: str
    gateway_order_id: str
    gateway_payment_id: Optional[str] = None
    status: str
    finalized_by: Optional[str] = None
    created_at: Optional[str] = None
    paid_at: Optional[str] = None


def _payment_response(payment: PaymentRecord) -> PaymentResponse:
    plan = payment.plan
    return PaymentResponse(
        payment_id=str(payment.id),
        user_id=str(payment.user_id),
        plan_id=str(payment.plan_id),
        plan_code=plan.code if plan is not None else None,
        plan_name=plan.name if plan is not None else None,
        amount_minor=int(payment.amount_minor or 0),
        currency=payment.currency,
        gateway_order_id=payment.gateway_order_id,
        gateway_payment_id=payment.gateway_payment_id,
        status=payment.status.value,
        finalized_by=payment.finalized_by.value if payment.finalized_by is not None else None,
        created_at=_iso(payment.created_at),
        paid_at=_iso(payment.paid_at),
    )


class AuditLogResponse(BaseModel):
    log_id: str
    occurred_at: Optional[str] = None
    provider: str
    event_type: str
    gateway_order_id: Optional[str] = None
    signature_valid: bool
    outcome: str
    detail: Optional[str] = None


def _audit_response(log: PaymentAuditLog) -> AuditLogResponse:
    return AuditLogResponse(
        log_id=str(log.id),
        occurred_at=_iso(log.occurred_at),
        provider=log.provider,
        event_type=log.event_type,
        gateway_order_id=log.gateway_order_id,
        signature_valid=bool(log.signature_valid),
        outcome=log.outcome,
        detail=log.detail,
    )


@app.get("/health")
def health(services: PremiumServices = Depends(get_services)) -> Dict[str, Any]:
    db_ok = True
    try:
        with session_scope(services.session_factory) as session:
            session.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        db_ok = False
        log_event(APP_LOGGER, logging.ERROR, "health.db_unavailable", error=str(exc))
    return {"status": "ok" if db_ok else "degraded", "version": APP_VERSION, "db": db_ok}


@app.get("/health/premium")
def health_premium(services: PremiumServices = Depends(get_services)) -> Dict[str, Any]:
    gateway = services.gateway
    missing: List[str] = []
    if not gateway.is_configured:
        missing.append("RAZORPAY_KEY_ID/RAZORPAY_KEY_SECRET")
    if not services.key_secret:
        missing.append("RAZORPAY_KEY_SECRET")
    if not services.webhook_secret:
        missing.append("RAZORPAY_WEBHOOK_SECRET")
    return {
        "gateway": gateway.name,
        "checkout_ready": gateway.is_configured,
        "verify_ready": bool(services.key_secret),
        "webhook_ready": bool(services.webhook_secret),
        "ready": not missing,
        "missing": sorted(set(missing)),
    }


@app.get("/plans", response_model=List[PlanResponse])
def list_plans(
    _: AuthIdentity = Depends(get_current_identity),
    services: PremiumServices = Depends(get_services),
) -> List[PlanResponse]:
    return [_plan_response(plan) for plan in services.catalog.list_active()]


@app.get("/access/status", response_model=AccessStatusResponse)
def access_status(
    identity: AuthIdentity = Depends(get_current_identity),
    services: PremiumServices = Depends(get_services),
) -> AccessStatusResponse:
    snapshot = services.ledger.status(identity.user_id, identity.role)
    categories = snapshot["categories"]

    def _state(key: str) -> AccessCategoryState:
        return AccessCategoryState(unlocked=bool(categories[key]["unlocked"]), expires_at=_iso(categories[key]["expires_at"]))

    return AccessStatusResponse(
        user_id=snapshot["user_id"],
        is_admin=bool(snapshot["is_admin"]),
        archive=_state("archive"),
        materials=_state("materials"),
        combo=_state("combo"),
    )


@app.get("/access/check", response_model=AccessCheckResponse)
def access_check(
    plan_code: str = Query(..., alias="planCode", min_length=1, max_length=64),
    identity: AuthIdentity = Depends(get_current_identity),
    services: PremiumServices = Depends(get_services),
) -> AccessCheckResponse:
    allowed = services.ledger.has_access(identity.user_id, identity.role, plan_code)
    return AccessCheckResponse(plan_code=plan_code.strip().lower(), has_access=allowed)


@app.post("/order", response_model=OrderResponse, dependencies=[Depends(enforce_payment_rate_limit)])
def create_order(
    payload: OrderCreateRequest,
    identity: AuthIdentity = Depends(get_current_identity),
    services: PremiumServices = Depends(get_services),
) -> OrderResponse:
    result = services.issuer.create_order(identity.user_id, payload.plan_code)
    return OrderResponse(
        order_id=result.order_id,
        amount=result.amount_minor,
        currency=result.currency,
        key_id=result.key_id,
        is_free=result.is_free,
        expires_at=_iso(result.expires_at),
        plan=result.plan,
    )


@app.post("/verify", response_model=VerifyResponse, dependencies=[Depends(enforce_payment_rate_limit)])
def verify_payment(
    payload: VerifyRequest,
    identity: AuthIdentity = Depends(get_current_identity),
    services: PremiumServices = Depends(get_services),
) -> VerifyResponse:
    result = services.verifier.verify(identity.user_id, payload.order_id, payload.payment_id, payload.signature)
    return VerifyResponse(
        status=result.status,
        order_id=result.order_id,
        plan_code=result.plan_code,
        expires_at=_iso(result.expires_at),
    )


@app.post("/webhooks/payment", response_model=PaymentWebhookResponse)
async def payment_webhook(request: Request, services: PremiumServices = Depends(get_services)) -> PaymentWebhookResponse:
    raw = await request.body()
    signature = request.headers.get(WEBHOOK_SIGNATURE_HEADER) or ""
    result = await run_in_threadpool(services.reconciler.handle, raw, signature)
    return PaymentWebhookResponse(
        status=result.status,
        event_type=result.event_type or None,
        order_id=result.order_id,
        reason=result.reason,
    )


@app.get("/notifications", response_model=List[NotificationResponse])
def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    identity: AuthIdentity = Depends(get_current_identity),
    services: PremiumServices = Depends(get_services),
) -> List[NotificationResponse]:
    with session_scope(services.session_factory) as session:
        items = PremiumRepository(session).list_notifications(identity.user_id, limit=limit)
        return [
            NotificationResponse(
                notification_id=str(item.id),
                title=item.title,
                message=item.message,
                status=item.status.value,
                created_at=_iso(item.created_at),
            )
            for item in items
        ]


@app.get("/admin/plans", response_model=List[PlanResponse])
def admin_list_plans(
    _: AuthIdentity = Depends(require_admin),
    services: PremiumServices = Depends(get_services),
) -> List[PlanResponse]:
    return [_plan_response(plan) for plan in services.catalog.list_all()]


@app.post("/admin/plans", response_model=PlanResponse)
def admin_create_plan(
    payload: PlanCreateRequest,
    identity: AuthIdentity = Depends(require_admin),
    services: PremiumServices = Depends(get_services),
) -> PlanResponse:
    plan = services.catalog.create_plan(
        code=payload.code,
        name=payload.name,
        price_minor=payload.price_minor,
        validity_days=payload.validity_days,
        status=PlanStatus(payload.status),
        is_free=payload.is_free,
    )
    log_event(APP_LOGGER, logging.INFO, "admin.plan.created", admin_id=identity.user_id, plan_code=plan.code)
    return _plan_response(plan)


@app.patch("/admin/plans/{plan_id}", response_model=PlanResponse)
def admin_update_plan(
    plan_id: str,
    payload: PlanUpdateRequest,
    identity: AuthIdentity = Depends(require_admin),
    services: PremiumServices = Depends(get_services),
) -> PlanResponse:
    plan = services.catalog.update_plan(plan_id, payload.to_patch())
    log_event(APP_LOGGER, logging.INFO, "admin.plan.updated", admin_id=identity.user_id, plan_id=plan_id)
    return _plan_response(plan)


@app.delete("/admin/plans/{plan_id}", response_model=PlanResponse)
def admin_deactivate_plan(
    plan_id: str,
    identity: AuthIdentity = Depends(require_admin),
    services: PremiumServices = Depends(get_services),
) -> PlanResponse:
    plan = services.catalog.deactivate_plan(plan_id)
    log_event(APP_LOGGER, logging.INFO, "admin.plan.deactivated", admin_id=identity.user_id, plan_id=plan_id)
    return _plan_response(plan)


@app.get("/admin/payments", response_model=List[PaymentResponse])
def admin_list_payments(
    limit: int = Query(200, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user_id: Optional[str] = Query(None, max_length=64),
    _: AuthIdentity = Depends(require_admin),
    services: PremiumServices = Depends(get_services),
) -> List[PaymentResponse]:
    with session_scope(services.session_factory) as session:
        payments = PremiumRepository(session).list_payments(limit=limit, offset=offset, user_id=user_id)
        return [_payment_response(payment) for payment in payments]


@app.get("/admin/audit", response_model=List[AuditLogResponse])
def admin_list_audit_logs(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    gateway_order_id: Optional[str] = Query(None, max_length=128),
    outcome: Optional[str] = Query(None, max_length=32),
    _: AuthIdentity = Depends(require_admin),
    services: PremiumServices = Depends(get_services),
) -> List[AuditLogResponse]:
    with session_scope(services.session_factory) as session:
        logs = PremiumRepository(session).list_audit_logs(
            limit=limit,
            offset=offset,
            gateway_order_id=gateway_order_id,
            outcome=outcome,
        )
        return [_audit_response(log) for log in logs]


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=API_HOST, port=API_PORT)
