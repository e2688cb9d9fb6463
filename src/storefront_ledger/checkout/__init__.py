"""
Checkout flow: cart, shipping address, payment hand-off and settlement.
"""

from .address import Address, registered_address, validate_address
from .cart import Cart, CartEntry
from .client import StorefrontApiClient
from .interfaces import (
    CatalogService,
    IdentityProvider,
    OrderStore,
    PaymentDismissed,
    PaymentFailed,
    PaymentGateway,
    PaymentSucceeded,
    VerificationService,
    WidgetOutcome,
)
from .orchestrator import (
    CheckoutOrchestrator,
    CheckoutState,
    Failure,
    FailureKind,
    GatewayHandoff,
    PaymentMethod,
)

__all__ = [
    "Address",
    "registered_address",
    "validate_address",
    "Cart",
    "CartEntry",
    "StorefrontApiClient",
    "CatalogService",
    "IdentityProvider",
    "OrderStore",
    "PaymentDismissed",
    "PaymentFailed",
    "PaymentGateway",
    "PaymentSucceeded",
    "VerificationService",
    "WidgetOutcome",
    "CheckoutOrchestrator",
    "CheckoutState",
    "Failure",
    "FailureKind",
    "GatewayHandoff",
    "PaymentMethod",
]
