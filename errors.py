from typing import Dict

ERROR_CODE_MAP: Dict[str, Dict[str, str]] = {
    "INVALID_REQUEST": {
        "message": "Invalid request",
        "hint": "Check the required fields and their formats.",
    },
    "PLAN_NOT_AVAILABLE": {
        "message": "Plan is not available",
        "hint": "The plan code is unknown or the plan has been deactivated.",
    },
    "PLAN_CODE_CONFLICT": {
        "message": "Plan code already exists",
        "hint": "Choose a plan code that no other plan uses.",
    },
    "PLAN_IN_USE": {
        "message": "Plan is referenced by payments",
        "hint": "Only name, price and status can change once a plan has orders; create a new plan instead.",
    },
    "PLAN_NOT_FOUND": {
        "message": "Plan not found",
        "hint": "Refresh the plan list and retry.",
    },
    "PAYMENT_NOT_FOUND": {
        "message": "Payment not found",
        "hint": "Create a new order and complete the payment again.",
    },
    "PAYMENT_STATE_CONFLICT": {
        "message": "Payment can no longer be completed",
        "hint": "The order was closed; create a new order.",
    },
    "INVALID_PAYMENT_SIGNATURE": {
        "message": "Invalid payment signature",
        "hint": "The payment proof did not match; contact support if you were charged.",
    },
    "INVALID_WEBHOOK_SIGNATURE": {
        "message": "Invalid webhook signature",
        "hint": "Check RAZORPAY_WEBHOOK_SECRET against the gateway dashboard.",
    },
    "INVALID_WEBHOOK_PAYLOAD": {
        "message": "Invalid webhook body",
        "hint": "The webhook body must be a JSON object.",
    },
    "PAYMENT_GATEWAY_NOT_CONFIGURED": {
        "message": "Payment gateway not configured",
        "hint": "Set RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET and RAZORPAY_WEBHOOK_SECRET.",
    },
    "PAYMENT_GATEWAY_UNAVAILABLE": {
        "message": "Payment gateway unavailable",
        "hint": "Retry in a moment; no order was created.",
    },
    "RATE_LIMITED": {
        "message": "Too many requests",
        "hint": "Wait for the Retry-After interval before retrying.",
    },
    "NOT_ADMIN": {
        "message": "Admin role required",
        "hint": "Only administrators can access this endpoint.",
    },
    "UNEXPECTED_ERROR": {
        "message": "Unexpected error",
        "hint": "Check the service logs or contact an administrator.",
    },
}


def explain_error(code: str | None) -> Dict[str, str] | None:
    if not code:
        return None
    return ERROR_CODE_MAP.get(code)
