from __future__ import annotations

import abc
import json
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional

import httpx

from config import (
    PAYMENT_GATEWAY,
    RAZORPAY_API_BASE_URL,
    RAZORPAY_KEY_ID,
    RAZORPAY_KEY_SECRET,
    RAZORPAY_TIMEOUT_SECONDS,
)

from .exceptions import GatewayConfigError, GatewayUnavailableError

GatewayName = Literal["mock", "razorpay"]


@dataclass(frozen=True)
class GatewayOrder:
    """
    Normalized gateway order payload.

    Only `order_id` is load-bearing; `raw` keeps the response for the audit log.
    """

    gateway: GatewayName
    order_id: str
    amount_minor: int
    currency: str
    receipt: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class BasePaymentGateway(abc.ABC):
    @property
    @abc.abstractmethod
    def name(self) -> GatewayName:
        raise NotImplementedError

    @property
    def public_key_id(self) -> str:
        return ""

    @property
    def is_configured(self) -> bool:
        return True

    @abc.abstractmethod
    def create_order(
        self,
        *,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> GatewayOrder:
        """
        Create a gateway-side order with auto-capture.

        Raises GatewayConfigError when credentials are absent and
        GatewayUnavailableError for transport or response failures.
        """


class MockGateway(BasePaymentGateway):
    @property
    def name(self) -> GatewayName:
        return "mock"

    @property
    def public_key_id(self) -> str:
        return "rzp_mock"

    def create_order(
        self,
        *,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> GatewayOrder:
        _ = notes
        # Development-only order id; never accepted by a real gateway.
        order_id = f"order_mock_{secrets.token_hex(8)}"
        return GatewayOrder(
            gateway="mock",
            order_id=order_id,
            amount_minor=int(amount_minor),
            currency=str(currency).upper(),
            receipt=receipt,
            raw={"id": order_id, "amount": int(amount_minor), "currency": str(currency).upper(), "receipt": receipt},
        )


class RazorpayGateway(BasePaymentGateway):
    def __init__(
        self,
        *,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._key_id = str(RAZORPAY_KEY_ID if key_id is None else key_id).strip()
        self._key_secret = str(RAZORPAY_KEY_SECRET if key_secret is None else key_secret).strip()
        self._base_url = str(base_url or RAZORPAY_API_BASE_URL).rstrip("/")
        self._timeout = float(timeout if timeout is not None else RAZORPAY_TIMEOUT_SECONDS)
        self._client = client

    @property
    def name(self) -> GatewayName:
        return "razorpay"

    @property
    def public_key_id(self) -> str:
        return self._key_id

    @property
    def is_configured(self) -> bool:
        return bool(self._key_id and self._key_secret)

    def create_order(
        self,
        *,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> GatewayOrder:
        if not self.is_configured:
            raise GatewayConfigError("RAZORPAY_KEY_ID/RAZORPAY_KEY_SECRET is missing")

        payload = {
            "amount": int(amount_minor),
            "currency": str(currency or "INR").upper(),
            "receipt": receipt,
            "payment_capture": 1,
            "notes": dict(notes or {}),
        }
        body = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        url = f"{self._base_url}/v1/orders"
        auth = (self._key_id, self._key_secret)

        try:
            if self._client is not None:
                resp = self._client.post(url, content=body.encode("utf-8"), headers=headers, auth=auth, timeout=self._timeout)
            else:
                resp = httpx.post(
                    url,
                    content=body.encode("utf-8"),
                    headers=headers,
                    auth=auth,
                    timeout=self._timeout,
                    trust_env=False,
                )
            resp.raise_for_status()
            data = resp.json() if resp.content else {}
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            text = (exc.response.text or "")[:200]
            raise GatewayUnavailableError(f"razorpay order failed: status={status_code} body={text}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise GatewayUnavailableError(f"razorpay order failed: {exc}") from exc

        order_id = str(data.get("id") or "").strip() if isinstance(data, dict) else ""
        if not order_id:
            raise GatewayUnavailableError(f"razorpay order id missing: status={resp.status_code}")

        return GatewayOrder(
            gateway="razorpay",
            order_id=order_id,
            amount_minor=int(data.get("amount") or amount_minor),
            currency=str(data.get("currency") or payload["currency"]).upper(),
            receipt=str(data.get("receipt") or receipt),
            raw=dict(data),
        )


def get_payment_gateway(name: Optional[str] = None, **razorpay_options: Any) -> BasePaymentGateway:
    """
    Gateway factory.

    If `name` is not provided, reads from config.PAYMENT_GATEWAY. Keyword
    options override the configured Razorpay credentials.
    """

    selected = (name or PAYMENT_GATEWAY or "razorpay").strip().lower()
    if selected == "mock":
        return MockGateway()
    return RazorpayGateway(**razorpay_options)
