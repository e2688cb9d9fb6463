"""Collaborators the checkout core consumes, and the payment widget outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Union


class IdentityProvider(Protocol):
    def current_user(self) -> Optional[Dict[str, Any]]:
        """Authenticated user (id, name, email, phone, address) or None."""


class CatalogService(Protocol):
    def get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        """Current price, stock and status (``active``/``inactive``) of a product."""


class PaymentGateway(Protocol):
    def create_gateway_order(
        self,
        amount: float,
        currency: str,
        breakdown: Mapping[str, Any],
        receipt: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Issue a gateway order token: ``{"gatewayOrderId": ...}``."""


class VerificationService(Protocol):
    def verify_payment(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Check the signed confirmation and persist the order: ``{"success": bool}``."""


class OrderStore(Protocol):
    def create_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def get_order(self, order_id: str) -> Dict[str, Any]:
        ...

    def list_my_orders(self, user_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        ...


# The payment widget resolves with exactly one of these.

@dataclass(frozen=True)
class PaymentSucceeded:
    gateway_order_id: str
    payment_id: str
    signature: str


@dataclass(frozen=True)
class PaymentFailed:
    reason: str
    gateway_order_id: Optional[str] = None


@dataclass(frozen=True)
class PaymentDismissed:
    gateway_order_id: Optional[str] = None


WidgetOutcome = Union[PaymentSucceeded, PaymentFailed, PaymentDismissed]
