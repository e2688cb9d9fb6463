"""HTTP client for the storefront backend.

Creates gateway orders, submits signed payment confirmations for
verification, places cash-on-delivery orders and reads a user's orders.
Every call runs under an explicit timeout; transport failures are mapped to
the error class the checkout flow expects for that step.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Type

import httpx

from ..errors import GatewayError, OrderNotFoundError, OrderStoreError, StorefrontError, VerificationError
from ..utils.config import Config
from ..utils.logging import get_logger

logger = get_logger(__name__)


class StorefrontApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        config: Optional[Config] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        config = config or Config()
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.Client(
            base_url=base_url or config.get("api_url"),
            timeout=timeout if timeout is not None else config.get("api_timeout", 15.0),
            headers=headers,
            transport=transport,
        )

    def __enter__(self) -> "StorefrontApiClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        path: str,
        error_cls: Type[StorefrontError],
        **kwargs: Any,
    ) -> Any:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"{method} {path} timed out: {e}")
            raise error_cls(f"Request to {path} timed out") from e
        except httpx.RequestError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise error_cls(f"Request to {path} failed: {e}") from e

        if response.status_code == 404 and error_cls is OrderStoreError:
            raise OrderNotFoundError(f"{path} not found")
        if response.status_code >= 400:
            message = response.text
            try:
                body = response.json()
                if isinstance(body, dict):
                    message = body.get("message") or body.get("error") or message
            except ValueError:
                pass
            logger.error(f"{method} {path} returned {response.status_code}: {message}")
            raise error_cls(f"{path} returned {response.status_code}: {message}")

        try:
            return response.json()
        except ValueError as e:
            raise error_cls(f"Malformed response from {path}") from e

    def create_gateway_order(
        self,
        amount: float,
        currency: str,
        breakdown: Mapping[str, Any],
        receipt: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload = {
            "amount": amount,
            "currency": currency,
            "subtotal": breakdown.get("subtotal"),
            "gst": breakdown.get("gst"),
            "shipping": breakdown.get("shipping"),
            "discount": breakdown.get("discount", 0),
        }
        if receipt:
            payload["receipt"] = receipt
        data = self._request("POST", "/orders/razorpay/create", GatewayError, json=payload)
        gateway_order_id = data.get("orderId") if isinstance(data, dict) else None
        if not gateway_order_id:
            raise GatewayError("Gateway response did not include an order id")
        return {"gatewayOrderId": gateway_order_id, "amount": data.get("amount"), "currency": data.get("currency", currency)}

    def verify_payment(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        body = {
            "razorpay_order_id": payload["gatewayOrderId"],
            "razorpay_payment_id": payload["paymentId"],
            "razorpay_signature": payload["signature"],
            "order_details": payload.get("orderDetails", {}),
        }
        data = self._request("POST", "/orders/verify-payment", VerificationError, json=body)
        if not isinstance(data, dict):
            raise VerificationError("Malformed verification response")
        order = data.get("order") or {}
        return {"success": data.get("success") is True, "orderId": data.get("orderId") or order.get("_id")}

    def create_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = self._request("POST", "/orders", OrderStoreError, json=payload)
        order_id = (data.get("_id") or data.get("orderId")) if isinstance(data, dict) else None
        return {"orderId": order_id}

    def get_order(self, order_id: str) -> Dict[str, Any]:
        data = self._request("GET", f"/orders/{order_id}", OrderStoreError)
        order = data.get("order") if isinstance(data, dict) else None
        if not order:
            raise OrderNotFoundError(f"Order with ID {order_id} not found")
        return order

    def list_my_orders(self, user_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        # The backend resolves the user from the bearer token
        params = {"status": status} if status and status.lower() != "all" else None
        data = self._request("GET", "/orders/my-orders", OrderStoreError, params=params)
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            if isinstance(data.get("orders"), list):
                return data["orders"]
            nested = (data.get("data") or {}).get("orders")
            if isinstance(nested, list):
                return nested
        raise OrderStoreError("Invalid orders data format received")
