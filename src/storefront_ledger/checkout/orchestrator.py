"""Checkout-to-settlement state machine.

One orchestrator drives one shopper's checkout session. Transitions are
triggered by discrete events (address submitted, method chosen, proceed
pressed, widget resolved) and each runs to completion under the session lock
before the next is accepted.

The cart is cleared only after the order is confirmed: by the verification
service for online payments, or by the order store for cash on delivery.
Every other outcome leaves the cart intact.
"""

from __future__ import annotations

import threading
import uuid
from concurrent.futures import CancelledError, Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from ..errors import (
    AuthenticationRequired,
    CheckoutInProgressError,
    CheckoutStateError,
    GatewayError,
    ValidationError,
)
from ..tax_calculation.ledger import CheckoutTax, CheckoutTaxRates
from ..tax_calculation.totals import ShippingPolicy, Totals, checkout_totals, taxable_subtotal
from ..utils.config import Config
from ..utils.logging import get_logger
from .address import Address, registered_address, validate_address
from .cart import Cart
from .interfaces import (
    IdentityProvider,
    OrderStore,
    PaymentDismissed,
    PaymentFailed,
    PaymentGateway,
    PaymentSucceeded,
    VerificationService,
    WidgetOutcome,
)

logger = get_logger(__name__)


class CheckoutState(str, Enum):
    IDLE = "idle"
    EMPTY_CART = "empty_cart"
    ADDRESS_PENDING = "address_pending"
    ADDRESS_CONFIRMED = "address_confirmed"
    PAYMENT_METHOD_SELECTED = "payment_method_selected"
    GATEWAY_INITIATING = "gateway_initiating"
    GATEWAY_AWAITING_USER_ACTION = "gateway_awaiting_user_action"
    VERIFICATION_PENDING = "verification_pending"
    SETTLED = "settled"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    ONLINE = "razorpay"
    COD = "cod"


class FailureKind(str, Enum):
    GATEWAY = "gateway"
    PAYMENT = "payment"
    VERIFICATION = "verification"
    ORDER = "order"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str
    retryable: bool


@dataclass(frozen=True)
class GatewayHandoff:
    """Everything the payment widget needs to open for one attempt."""

    gateway_order_id: str
    attempt_id: str
    key: str
    amount: float
    currency: str
    name: str = ""
    email: str = ""
    contact: str = ""

    @property
    def amount_minor_units(self) -> int:
        return int(round(self.amount * 100))

    def to_widget_options(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "amount": self.amount_minor_units,
            "currency": self.currency,
            "order_id": self.gateway_order_id,
            "prefill": {"name": self.name, "email": self.email, "contact": self.contact},
        }


# States from which a new payment attempt may start
_PROCEEDABLE = {
    CheckoutState.PAYMENT_METHOD_SELECTED,
    CheckoutState.FAILED,
    CheckoutState.CANCELLED,
}
# States in which address and method may still be edited
_EDITABLE = {
    CheckoutState.ADDRESS_PENDING,
    CheckoutState.ADDRESS_CONFIRMED,
    CheckoutState.PAYMENT_METHOD_SELECTED,
    CheckoutState.FAILED,
    CheckoutState.CANCELLED,
}


class CheckoutOrchestrator:
    def __init__(
        self,
        cart: Cart,
        identity: IdentityProvider,
        gateway: PaymentGateway,
        verifier: VerificationService,
        order_store: OrderStore,
        config: Optional[Config] = None,
    ) -> None:
        config = config or Config()
        self.cart = cart
        self._identity = identity
        self._gateway = gateway
        self._verifier = verifier
        self._order_store = order_store
        self._shipping_policy = ShippingPolicy.from_config(config)
        self._rates = CheckoutTaxRates.from_config(config)
        self._currency = config.get("currency", "INR")
        self._gateway_key = config.get("gateway_key", "")
        self._widget_timeout = float(config.get("widget_timeout", 900.0))

        self._lock = threading.RLock()
        self.state = CheckoutState.IDLE
        self.address: Optional[Address] = None
        self.payment_method: Optional[PaymentMethod] = None
        self.discount = 0.0
        self.coupon_code: Optional[str] = None
        self.processing = False
        self.attempt_id: Optional[str] = None
        self.handoff: Optional[GatewayHandoff] = None
        self.failure: Optional[Failure] = None
        self.order_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def preview_totals(self) -> Totals:
        totals, _ = self._totals()
        return totals

    def _totals(self) -> Tuple[Totals, CheckoutTax]:
        return checkout_totals(self.cart.subtotal(), self.discount, self._shipping_policy, self._rates)

    def get_checkout_state(self) -> Dict[str, Any]:
        with self._lock:
            snapshot: Dict[str, Any] = {
                "state": self.state.value,
                "processing": self.processing,
                "address": self.address.to_dict() if self.address else None,
                "paymentMethod": self.payment_method.value if self.payment_method else None,
                "couponCode": self.coupon_code,
                "attemptId": self.attempt_id,
                "orderId": self.order_id,
                "failure": None,
                "handoff": self.handoff.to_widget_options() if self.handoff else None,
                "totals": None,
            }
            if self.failure:
                snapshot["failure"] = {
                    "kind": self.failure.kind.value,
                    "message": self.failure.message,
                    "retryable": self.failure.retryable,
                }
            if not self.cart.is_empty():
                snapshot["totals"] = self.preview_totals().to_dict()
            return snapshot

    # ------------------------------------------------------------------
    # Shopper events
    # ------------------------------------------------------------------

    def begin(self) -> CheckoutState:
        """Enter checkout; an empty cart short-circuits to the empty-cart state."""
        with self._lock:
            if self.state not in (CheckoutState.IDLE, CheckoutState.EMPTY_CART):
                return self.state
            if self.cart.is_empty():
                self._transition(CheckoutState.EMPTY_CART)
            else:
                self._transition(CheckoutState.ADDRESS_PENDING)
            return self.state

    def submit_address(self, address: Optional[Address] = None, use_registered: bool = True) -> Address:
        """
        Confirm the shipping address from the profile or from manual entry.

        Raises:
            ValidationError: Incomplete address or bad pincode; state is unchanged
            AuthenticationRequired: Registered address requested without a user
        """
        with self._lock:
            self._require(_EDITABLE, "submit an address")
            if use_registered:
                user = self._identity.current_user()
                if not user:
                    raise AuthenticationRequired("Please login to continue")
                candidate = registered_address(user)
                if candidate is None:
                    raise ValidationError("Please complete your registered address in profile settings")
                validate_address(candidate, registered=True)
            else:
                if address is None:
                    raise ValidationError("Please fill in all address fields")
                candidate = validate_address(address)

            self.address = candidate
            if self.state in (CheckoutState.ADDRESS_PENDING, CheckoutState.ADDRESS_CONFIRMED):
                self._transition(
                    CheckoutState.PAYMENT_METHOD_SELECTED if self.payment_method else CheckoutState.ADDRESS_CONFIRMED
                )
            return candidate

    def apply_discount(self, amount: float, coupon_code: Optional[str] = None) -> Totals:
        """Apply a coupon discount already validated by the coupon service."""
        with self._lock:
            self._require(_EDITABLE, "apply a discount")
            taxable_subtotal(self.cart.subtotal(), amount)
            self.discount = amount
            self.coupon_code = coupon_code
            return self.preview_totals()

    def select_payment_method(self, method: str) -> CheckoutState:
        with self._lock:
            self._require(_EDITABLE - {CheckoutState.ADDRESS_PENDING}, "select a payment method")
            try:
                self.payment_method = PaymentMethod(method)
            except ValueError as e:
                raise ValidationError(f"Unsupported payment method: {method}") from e
            if self.state is CheckoutState.ADDRESS_CONFIRMED:
                self._transition(CheckoutState.PAYMENT_METHOD_SELECTED)
            return self.state

    def proceed_to_payment(self) -> Dict[str, Any]:
        """
        Start a payment attempt with the selected method.

        Online payments request a gateway order token and stop in
        ``GATEWAY_AWAITING_USER_ACTION`` with a widget hand-off; cash on
        delivery places the order directly. Collaborator failures land in
        ``FAILED`` rather than propagating.

        Returns:
            Checkout state snapshot

        Raises:
            CheckoutInProgressError: A payment attempt is already in flight
            AuthenticationRequired: No authenticated user
            CheckoutStateError: Not ready to pay, or a verification failure or
                widget timeout needs ``restart()`` first
            ValidationError: Empty cart, invalid address or a discount larger
                than the cart; state is unchanged
        """
        with self._lock:
            if self.processing:
                logger.warning(f"Ignoring duplicate payment attempt while {self.state.value}")
                raise CheckoutInProgressError("A payment attempt is already in progress")
            self._require(_PROCEEDABLE, "proceed to payment")
            if self.failure and not self.failure.retryable:
                raise CheckoutStateError(self.failure.message)

            user = self._identity.current_user()
            if not user:
                raise AuthenticationRequired("Please login to continue")
            if self.cart.is_empty():
                raise ValidationError("Your cart is empty")
            if self.address is None or self.payment_method is None:
                raise CheckoutStateError("Address and payment method are required")
            validate_address(self.address)
            totals, tax = self._totals()

            self.processing = True
            self.failure = None
            self.handoff = None
            self.attempt_id = uuid.uuid4().hex

            if self.payment_method is PaymentMethod.COD:
                self._place_cod_order(user, totals, tax)
            else:
                self._initiate_gateway(user, totals, tax)
            return self.get_checkout_state()

    def handle_widget_outcome(self, outcome: WidgetOutcome) -> CheckoutState:
        """Feed the payment widget's resolution into the state machine."""
        with self._lock:
            if self._late_success(outcome):
                logger.warning(f"Verifying payment {outcome.payment_id} completed after the widget timed out")
                self._verify(outcome)
                return self.state
            if self.state is not CheckoutState.GATEWAY_AWAITING_USER_ACTION or self.handoff is None:
                logger.warning(f"Ignoring {type(outcome).__name__} received in state {self.state.value}")
                return self.state
            outcome_order_id = getattr(outcome, "gateway_order_id", None)
            if outcome_order_id and outcome_order_id != self.handoff.gateway_order_id:
                logger.warning(
                    f"Ignoring {type(outcome).__name__} for stale gateway order {outcome_order_id} "
                    f"(in flight: {self.handoff.gateway_order_id})"
                )
                return self.state

            if isinstance(outcome, PaymentDismissed):
                logger.info("Payment cancelled by user")
                self.processing = False
                self._transition(CheckoutState.CANCELLED)
            elif isinstance(outcome, PaymentFailed):
                self._fail(FailureKind.PAYMENT, f"Payment failed: {outcome.reason}", retryable=True)
            elif isinstance(outcome, PaymentSucceeded):
                self._verify(outcome)
            else:
                raise TypeError(f"Unknown widget outcome: {outcome!r}")
            return self.state

    def wait_for_widget(self, future: "Future[WidgetOutcome]", timeout: Optional[float] = None) -> CheckoutState:
        """Block until the widget future resolves, then apply its outcome.

        A timed-out widget fails the attempt. The outcome of the payment is
        unknown at that point, so the failure is not retryable and the gateway
        hand-off is kept: a late success for the same gateway order is still
        verified. A cancelled future counts as a dismissal.
        """
        try:
            outcome = future.result(timeout=timeout if timeout is not None else self._widget_timeout)
        except FutureTimeoutError:
            with self._lock:
                if self.state is CheckoutState.GATEWAY_AWAITING_USER_ACTION:
                    self._fail(
                        FailureKind.TIMEOUT,
                        "Payment window timed out. If you completed the payment, please contact support.",
                        retryable=False,
                    )
                return self.state
        except CancelledError:
            outcome = PaymentDismissed()
        return self.handle_widget_outcome(outcome)

    def restart(self) -> CheckoutState:
        """Return a failed or cancelled session to payment selection."""
        with self._lock:
            self._require({CheckoutState.FAILED, CheckoutState.CANCELLED}, "restart")
            self.failure = None
            self.handoff = None
            self.attempt_id = None
            if self.address and self.payment_method:
                self._transition(CheckoutState.PAYMENT_METHOD_SELECTED)
            elif self.address:
                self._transition(CheckoutState.ADDRESS_CONFIRMED)
            else:
                self._transition(CheckoutState.ADDRESS_PENDING)
            return self.state

    # ------------------------------------------------------------------
    # Internal steps
    # ------------------------------------------------------------------

    def _order_details(self, totals: Totals, tax: CheckoutTax) -> Dict[str, Any]:
        return {
            "items": self.cart.order_items(),
            "shippingAddress": self.address.to_dict() if self.address else None,
            "shipping": totals.shipping_fee,
            "gst": round(tax.total_tax_amount, 2),
            "discount": totals.discount,
            "couponCode": self.coupon_code,
            "totalAmount": totals.grand_total,
        }

    def _place_cod_order(self, user: Mapping[str, Any], totals: Totals, tax: CheckoutTax) -> None:
        payload = self._order_details(totals, tax)
        payload.update({"paymentMethod": PaymentMethod.COD.value, "user": user.get("_id") or user.get("id")})
        self._transition(CheckoutState.VERIFICATION_PENDING)
        try:
            response = self._order_store.create_order(payload)
        except Exception as e:
            logger.error(f"COD order creation failed: {e}")
            self._fail(FailureKind.ORDER, "Failed to place order. Please try again.", retryable=True)
            return
        order_id = response.get("orderId") if isinstance(response, Mapping) else None
        if not order_id:
            self._fail(FailureKind.ORDER, "Failed to place order. Please try again.", retryable=True)
            return
        self._settle(str(order_id))

    def _initiate_gateway(self, user: Mapping[str, Any], totals: Totals, tax: CheckoutTax) -> None:
        self._transition(CheckoutState.GATEWAY_INITIATING)
        if not self._gateway_key:
            self._fail(FailureKind.GATEWAY, "Payment gateway is not configured. Please contact support.", retryable=True)
            return
        breakdown = {
            "subtotal": totals.subtotal,
            "discount": totals.discount,
            "gst": round(tax.total_tax_amount, 2),
            "shipping": totals.shipping_fee,
        }
        logger.info(
            f"Creating gateway order: subtotal={totals.subtotal:.2f} gst={tax.total_tax_amount:.2f} "
            f"shipping={totals.shipping_fee:.2f} total={totals.grand_total:.2f}"
        )
        try:
            response = self._gateway.create_gateway_order(
                totals.grand_total, self._currency, breakdown, receipt=self.attempt_id
            )
            gateway_order_id = None
            if isinstance(response, Mapping):
                gateway_order_id = response.get("gatewayOrderId") or response.get("orderId")
            if not gateway_order_id:
                raise GatewayError("Gateway response did not include an order id")
        except Exception as e:
            logger.error(f"Gateway order creation failed: {e}")
            self._fail(FailureKind.GATEWAY, "Failed to initiate payment. Please try again.", retryable=True)
            return

        self.handoff = GatewayHandoff(
            gateway_order_id=str(gateway_order_id),
            attempt_id=self.attempt_id or "",
            key=self._gateway_key,
            amount=totals.grand_total,
            currency=self._currency,
            name=str(user.get("name") or ""),
            email=str(user.get("email") or ""),
            contact=str(user.get("phone") or ""),
        )
        self._transition(CheckoutState.GATEWAY_AWAITING_USER_ACTION)

    def _verify(self, outcome: PaymentSucceeded) -> None:
        self._transition(CheckoutState.VERIFICATION_PENDING)
        try:
            totals, tax = self._totals()
            payload = {
                "gatewayOrderId": outcome.gateway_order_id,
                "paymentId": outcome.payment_id,
                "signature": outcome.signature,
                "orderDetails": self._order_details(totals, tax),
            }
            response = self._verifier.verify_payment(payload)
        except Exception as e:
            logger.error(f"Payment verification error for {outcome.payment_id}: {e}")
            self._fail(FailureKind.VERIFICATION, "Payment verification failed. Please contact support.", retryable=False)
            return

        if isinstance(response, Mapping) and response.get("success") is True:
            self._settle(str(response.get("orderId") or ""))
        else:
            logger.error(f"Payment {outcome.payment_id} not confirmed: {response!r}")
            self._fail(FailureKind.VERIFICATION, "Payment verification failed. Please contact support.", retryable=False)

    def _late_success(self, outcome: WidgetOutcome) -> bool:
        return (
            isinstance(outcome, PaymentSucceeded)
            and self.state is CheckoutState.FAILED
            and self.failure is not None
            and self.failure.kind is FailureKind.TIMEOUT
            and self.handoff is not None
            and outcome.gateway_order_id == self.handoff.gateway_order_id
        )

    def _settle(self, order_id: str) -> None:
        self.order_id = order_id or None
        self.failure = None
        self.cart.clear()
        self.processing = False
        self._transition(CheckoutState.SETTLED)

    def _fail(self, kind: FailureKind, message: str, retryable: bool) -> None:
        self.failure = Failure(kind=kind, message=message, retryable=retryable)
        self.processing = False
        self._transition(CheckoutState.FAILED)

    def _require(self, allowed: Any, action: str) -> None:
        if self.state not in allowed:
            raise CheckoutStateError(f"Cannot {action} while checkout is {self.state.value}")

    def _transition(self, new_state: CheckoutState) -> None:
        logger.info(f"Checkout {self.state.value} -> {new_state.value}")
        self.state = new_state
