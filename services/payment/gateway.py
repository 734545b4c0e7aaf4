"""
services/payment/gateway.py
Thin async client for the Paystack transaction API.

Amounts cross this boundary in the major currency unit and are
converted to kobo here and nowhere else. Every failure (network,
non-2xx, or a body with status=false) surfaces as GatewayError.
No call is retried.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from config.settings import settings

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class GatewayInitResult(BaseModel):
    authorization_url: str
    access_code: str
    reference: str


class GatewayVerifyResult(BaseModel):
    status: str                      # "success", "failed", "abandoned", ...
    reference: Optional[str] = None
    amount: Optional[int] = None     # kobo
    paid_at: Optional[str] = None
    channel: Optional[str] = None
    fees: Optional[int] = None
    authorization: Optional[dict] = None
    gateway_response: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    def settlement_details(self) -> dict:
        return {
            "paidAt": self.paid_at,
            "channel": self.channel,
            "fees": self.fees,
            "authorization": self.authorization,
        }


def to_subunit(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaystackClient:
    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 15.0,
    ):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        if not self.secret_key:
            raise GatewayError("Paystack is not configured")

        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout) as client:
                response = await client.request(method, path, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Paystack {method} {path} failed: {e}")
            raise GatewayError("Payment gateway is unreachable") from e

        try:
            body: dict[str, Any] = response.json()
        except ValueError:
            body = {}

        if response.is_error or not body.get("status"):
            message = body.get("message") or f"Payment gateway returned HTTP {response.status_code}"
            logger.warning(f"Paystack {method} {path} rejected: {message}")
            raise GatewayError(message, response.status_code)

        return body.get("data") or {}

    async def initialize(
        self,
        email: str,
        amount: Decimal,
        reference: str,
        callback_url: Optional[str] = None,
        metadata: Optional[dict] = None,
        currency: Optional[str] = None,
    ) -> GatewayInitResult:
        payload = {
            "email": email,
            "amount": to_subunit(amount),
            "reference": reference,
            "callback_url": callback_url,
            "metadata": metadata or {},
        }
        if currency:
            payload["currency"] = currency
        data = await self._request("POST", "/transaction/initialize", payload)
        return GatewayInitResult(
            authorization_url=data["authorization_url"],
            access_code=data["access_code"],
            reference=data.get("reference", reference),
        )

    async def verify(self, reference: str) -> GatewayVerifyResult:
        data = await self._request("GET", f"/transaction/verify/{reference}")
        return GatewayVerifyResult(
            status=data.get("status", "failed"),
            reference=data.get("reference"),
            amount=data.get("amount"),
            paid_at=data.get("paid_at") or data.get("paidAt"),
            channel=data.get("channel"),
            fees=data.get("fees"),
            authorization=data.get("authorization"),
            gateway_response=data.get("gateway_response"),
        )


def get_gateway() -> PaystackClient:
    """FastAPI dependency for the payment gateway."""
    return PaystackClient(
        secret_key=settings.PAYSTACK_SECRET_KEY,
        base_url=settings.PAYSTACK_BASE_URL,
        timeout=settings.PAYSTACK_TIMEOUT_SECONDS,
    )
