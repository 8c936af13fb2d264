from __future__ import annotations

import hashlib
import hmac
from typing import Any

import httpx


class RazorpayError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RazorpayClient:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 20.0,
    ) -> None:
        self.key_id = key_id.strip()
        self.key_secret = key_secret.strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.key_id, self.key_secret)

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        if not self.key_id or not self.key_secret:
            raise RazorpayError("razorpay_not_configured")
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.request(
                method,
                f"{self.base_url}{path}",
                auth=self._auth(),
                json=payload,
            )
        if resp.status_code >= 400:
            raise RazorpayError(f"{method.lower()}_{path.strip('/').split('/')[0]}_failed:{resp.text}", resp.status_code)
        return resp.json()

    async def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "amount": int(amount),
            "currency": currency.upper(),
            "receipt": receipt[:40],
        }
        if notes:
            body["notes"] = notes
        result = await self._request("POST", "/orders", body)
        if not isinstance(result, dict) or not result.get("id"):
            raise RazorpayError("create_order_invalid_response")
        return result

    async def fetch_order(self, order_id: str) -> dict[str, Any]:
        result = await self._request("GET", f"/orders/{order_id}")
        if not isinstance(result, dict):
            raise RazorpayError("fetch_order_invalid_response")
        return result

    async def fetch_order_payments(self, order_id: str) -> list[dict[str, Any]]:
        result = await self._request("GET", f"/orders/{order_id}/payments")
        items = result.get("items") if isinstance(result, dict) else None
        if not isinstance(items, list):
            raise RazorpayError("fetch_payments_invalid_response")
        return [item for item in items if isinstance(item, dict)]

    @staticmethod
    def compute_signature(key_secret: str, order_id: str, payment_id: str) -> str:
        body = f"{order_id}|{payment_id}"
        return hmac.new(key_secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify_signature(self, *, order_id: str, payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            raise RazorpayError("razorpay_not_configured")
        expected = self.compute_signature(self.key_secret, order_id, payment_id)
        received = (signature or "").strip()
        return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))
