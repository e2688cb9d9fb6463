"""Tests for the checkout state machine."""

import threading
import time
from concurrent.futures import Future

import pytest

from storefront_ledger.checkout import (
    Address,
    Cart,
    CheckoutOrchestrator,
    CheckoutState,
    FailureKind,
    PaymentDismissed,
    PaymentFailed,
    PaymentSucceeded,
)
from storefront_ledger.errors import (
    AuthenticationRequired,
    CheckoutInProgressError,
    CheckoutStateError,
    GatewayError,
    OrderStoreError,
    ValidationError,
)
from storefront_ledger.utils.config import Config


def ready(orchestrator, method="razorpay"):
    orchestrator.begin()
    orchestrator.submit_address()
    orchestrator.select_payment_method(method)
    return orchestrator


def pay_online(orchestrator):
    ready(orchestrator)
    orchestrator.proceed_to_payment()
    return orchestrator


class TestAddressAndMethod:
    def test_begin_with_items(self, orchestrator):
        assert orchestrator.begin() is CheckoutState.ADDRESS_PENDING

    def test_begin_with_empty_cart(self, collaborators, config):
        orchestrator = CheckoutOrchestrator(cart=Cart(), config=config, **collaborators)
        assert orchestrator.begin() is CheckoutState.EMPTY_CART

    def test_registered_address(self, orchestrator):
        orchestrator.begin()
        address = orchestrator.submit_address()
        assert address.address == "12 MG Road, Indiranagar"
        assert address.pincode == "560038"
        assert orchestrator.state is CheckoutState.ADDRESS_CONFIRMED

    def test_manual_address(self, orchestrator, address):
        orchestrator.begin()
        orchestrator.submit_address(address, use_registered=False)
        assert orchestrator.address == address

    @pytest.mark.parametrize("pincode", ["56003", "5600381", "56003A", ""])
    def test_manual_pincode_must_be_six_digits(self, orchestrator, pincode):
        orchestrator.begin()
        bad = Address(address="12 MG Road", city="Bengaluru", state="Karnataka", pincode=pincode)
        with pytest.raises(ValidationError):
            orchestrator.submit_address(bad, use_registered=False)
        assert orchestrator.state is CheckoutState.ADDRESS_PENDING
        assert orchestrator.address is None

    def test_registered_address_gets_the_same_check(self, orchestrator, collaborators, user):
        user["address"]["pincode"] = "5600"
        orchestrator.begin()
        with pytest.raises(ValidationError, match="6-digit"):
            orchestrator.submit_address()

    def test_registered_address_missing(self, orchestrator, user):
        del user["address"]
        orchestrator.begin()
        with pytest.raises(ValidationError, match="profile"):
            orchestrator.submit_address()

    def test_method_requires_address(self, orchestrator):
        orchestrator.begin()
        with pytest.raises(CheckoutStateError):
            orchestrator.select_payment_method("cod")

    def test_unknown_method(self, orchestrator):
        orchestrator.begin()
        orchestrator.submit_address()
        with pytest.raises(ValidationError):
            orchestrator.select_payment_method("upi-later")

    def test_discount_beyond_subtotal(self, orchestrator):
        orchestrator.begin()
        with pytest.raises(ValidationError):
            orchestrator.apply_discount(301.0, "BIGSAVE")

    def test_preview_totals(self, orchestrator):
        totals = orchestrator.preview_totals()
        assert totals.total_tax_amount == 15.0
        assert totals.shipping_fee == 50.0
        assert totals.grand_total == 365.0


class TestOnlinePayment:
    """Gateway hand-off, widget outcomes and verification."""

    def test_gateway_handoff(self, orchestrator, collaborators):
        snapshot = pay_online(orchestrator).get_checkout_state()

        assert orchestrator.state is CheckoutState.GATEWAY_AWAITING_USER_ACTION
        assert orchestrator.processing
        collaborators["gateway"].create_gateway_order.assert_called_once_with(
            365.0,
            "INR",
            {"subtotal": 300.0, "discount": 0.0, "gst": 15.0, "shipping": 50.0},
            receipt=orchestrator.attempt_id,
        )
        options = snapshot["handoff"]
        assert options["amount"] == 36500
        assert options["order_id"] == "order_GW1"
        assert options["key"] == "rzp_test_key"
        assert options["prefill"]["email"] == "asha@example.com"

    def test_success_settles_and_clears_cart(self, orchestrator, collaborators):
        pay_online(orchestrator)
        state = orchestrator.handle_widget_outcome(PaymentSucceeded("order_GW1", "pay_1", "sig_1"))

        assert state is CheckoutState.SETTLED
        assert orchestrator.cart.is_empty()
        assert not orchestrator.processing
        assert orchestrator.order_id == "665f1c2ab4e0d3a1f0c9e812"
        payload = collaborators["verifier"].verify_payment.call_args[0][0]
        assert payload["gatewayOrderId"] == "order_GW1"
        assert payload["paymentId"] == "pay_1"
        assert payload["signature"] == "sig_1"
        assert payload["orderDetails"]["totalAmount"] == 365.0
        assert payload["orderDetails"]["shippingAddress"]["pincode"] == "560038"

    def test_cart_kept_while_verifying(self, orchestrator, collaborators):
        seen = {}

        def verify(payload):
            seen["state"] = orchestrator.state
            seen["cart_size"] = len(orchestrator.cart)
            return {"success": True}

        collaborators["verifier"].verify_payment.side_effect = verify
        pay_online(orchestrator)
        orchestrator.handle_widget_outcome(PaymentSucceeded("order_GW1", "pay_1", "sig_1"))
        assert seen == {"state": CheckoutState.VERIFICATION_PENDING, "cart_size": 1}

    def test_dismissal_always_cancels(self, orchestrator, collaborators):
        ready(orchestrator)
        for _ in range(3):
            orchestrator.proceed_to_payment()
            state = orchestrator.handle_widget_outcome(PaymentDismissed())
            assert state is CheckoutState.CANCELLED
            assert not orchestrator.processing
        assert collaborators["gateway"].create_gateway_order.call_count == 3
        assert not orchestrator.cart.is_empty()

    def test_payment_failure(self, orchestrator):
        pay_online(orchestrator)
        orchestrator.handle_widget_outcome(PaymentFailed("card declined", "order_GW1"))
        assert orchestrator.state is CheckoutState.FAILED
        assert orchestrator.failure.kind is FailureKind.PAYMENT
        assert orchestrator.failure.retryable
        assert not orchestrator.cart.is_empty()

    @pytest.mark.parametrize("response", [
        {"success": False},
        {"success": "true"},
        {},
        None,
    ])
    def test_unconfirmed_verification_keeps_cart(self, orchestrator, collaborators, response):
        collaborators["verifier"].verify_payment.return_value = response
        pay_online(orchestrator)
        orchestrator.handle_widget_outcome(PaymentSucceeded("order_GW1", "pay_1", "sig_1"))

        assert orchestrator.state is CheckoutState.FAILED
        assert orchestrator.failure.kind is FailureKind.VERIFICATION
        assert not orchestrator.failure.retryable
        assert len(orchestrator.cart) == 1

    def test_verification_error_keeps_cart(self, orchestrator, collaborators):
        collaborators["verifier"].verify_payment.side_effect = TimeoutError("read timed out")
        pay_online(orchestrator)
        orchestrator.handle_widget_outcome(PaymentSucceeded("order_GW1", "pay_1", "sig_1"))
        assert orchestrator.state is CheckoutState.FAILED
        assert not orchestrator.cart.is_empty()

    def test_verification_failure_requires_restart(self, orchestrator, collaborators):
        collaborators["verifier"].verify_payment.return_value = {"success": False}
        pay_online(orchestrator)
        orchestrator.handle_widget_outcome(PaymentSucceeded("order_GW1", "pay_1", "sig_1"))

        with pytest.raises(CheckoutStateError):
            orchestrator.proceed_to_payment()

        assert orchestrator.restart() is CheckoutState.PAYMENT_METHOD_SELECTED
        orchestrator.proceed_to_payment()
        assert orchestrator.state is CheckoutState.GATEWAY_AWAITING_USER_ACTION

    def test_stale_outcome_is_ignored(self, orchestrator, collaborators):
        pay_online(orchestrator)
        state = orchestrator.handle_widget_outcome(PaymentSucceeded("order_OLD", "pay_0", "sig_0"))
        assert state is CheckoutState.GATEWAY_AWAITING_USER_ACTION
        collaborators["verifier"].verify_payment.assert_not_called()

    def test_outcome_outside_awaiting_is_ignored(self, orchestrator):
        ready(orchestrator)
        assert orchestrator.handle_widget_outcome(PaymentDismissed()) is CheckoutState.PAYMENT_METHOD_SELECTED


class TestGatewayFailures:
    def test_gateway_error_is_retryable(self, orchestrator, collaborators):
        collaborators["gateway"].create_gateway_order.side_effect = GatewayError("connection refused")
        snapshot = pay_online(orchestrator).get_checkout_state()

        assert orchestrator.state is CheckoutState.FAILED
        assert snapshot["failure"]["kind"] == "gateway"
        assert snapshot["failure"]["retryable"] is True
        assert not orchestrator.processing
        assert not orchestrator.cart.is_empty()

        collaborators["gateway"].create_gateway_order.side_effect = None
        orchestrator.proceed_to_payment()
        assert orchestrator.state is CheckoutState.GATEWAY_AWAITING_USER_ACTION

    def test_missing_gateway_order_id(self, orchestrator, collaborators):
        collaborators["gateway"].create_gateway_order.return_value = {"amount": 36500}
        pay_online(orchestrator)
        assert orchestrator.state is CheckoutState.FAILED
        assert orchestrator.failure.retryable

    def test_gateway_key_not_configured(self, cart, collaborators):
        orchestrator = CheckoutOrchestrator(cart=cart, config=Config(), **collaborators)
        pay_online(orchestrator)
        assert orchestrator.state is CheckoutState.FAILED
        collaborators["gateway"].create_gateway_order.assert_not_called()


class TestCashOnDelivery:
    def test_cod_places_order(self, orchestrator, collaborators):
        ready(orchestrator, "cod")
        orchestrator.proceed_to_payment()

        assert orchestrator.state is CheckoutState.SETTLED
        assert orchestrator.cart.is_empty()
        assert orchestrator.order_id == "665f1c2ab4e0d3a1f0c9e813"
        collaborators["gateway"].create_gateway_order.assert_not_called()
        payload = collaborators["order_store"].create_order.call_args[0][0]
        assert payload["paymentMethod"] == "cod"
        assert payload["totalAmount"] == 365.0
        assert payload["user"] == "665f1b9cb4e0d3a1f0c9e7ff"

    def test_cod_store_failure_keeps_cart(self, orchestrator, collaborators):
        collaborators["order_store"].create_order.side_effect = OrderStoreError("timed out")
        ready(orchestrator, "cod")
        orchestrator.proceed_to_payment()

        assert orchestrator.state is CheckoutState.FAILED
        assert orchestrator.failure.kind is FailureKind.ORDER
        assert orchestrator.failure.retryable
        assert len(orchestrator.cart) == 1


class TestGuards:
    def test_requires_authentication(self, orchestrator, collaborators):
        ready(orchestrator)
        collaborators["identity"].current_user.return_value = None
        with pytest.raises(AuthenticationRequired):
            orchestrator.proceed_to_payment()
        assert not orchestrator.processing

    def test_cart_emptied_after_address(self, orchestrator):
        ready(orchestrator)
        orchestrator.cart.clear()
        with pytest.raises(ValidationError):
            orchestrator.proceed_to_payment()

    @pytest.mark.parametrize("method, settled_state", [
        ("razorpay", CheckoutState.GATEWAY_AWAITING_USER_ACTION),
        ("cod", CheckoutState.SETTLED),
    ])
    def test_discount_larger_than_shrunken_cart_can_be_corrected(
        self, orchestrator, collaborators, method, settled_state
    ):
        ready(orchestrator, method)
        orchestrator.apply_discount(250.0, "BIG250")
        orchestrator.cart.update_quantity("prod-rice", 1)

        with pytest.raises(ValidationError):
            orchestrator.proceed_to_payment()

        assert orchestrator.state is CheckoutState.PAYMENT_METHOD_SELECTED
        assert not orchestrator.processing
        assert orchestrator.attempt_id is None
        collaborators["gateway"].create_gateway_order.assert_not_called()
        collaborators["order_store"].create_order.assert_not_called()

        orchestrator.apply_discount(100.0, "WELCOME100")
        orchestrator.proceed_to_payment()
        assert orchestrator.state is settled_state

    def test_duplicate_proceed_is_rejected(self, orchestrator, collaborators):
        pay_online(orchestrator)
        with pytest.raises(CheckoutInProgressError):
            orchestrator.proceed_to_payment()
        collaborators["gateway"].create_gateway_order.assert_called_once()

    def test_concurrent_proceed_creates_one_gateway_order(self, orchestrator, collaborators):
        def slow_gateway(*args, **kwargs):
            time.sleep(0.05)
            return {"gatewayOrderId": "order_GW1"}

        collaborators["gateway"].create_gateway_order.side_effect = slow_gateway
        ready(orchestrator)

        errors = []
        barrier = threading.Barrier(5)

        def attempt():
            barrier.wait()
            try:
                orchestrator.proceed_to_payment()
            except CheckoutInProgressError as e:
                errors.append(e)

        threads = [threading.Thread(target=attempt) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert collaborators["gateway"].create_gateway_order.call_count == 1
        assert len(errors) == 4
        assert orchestrator.state is CheckoutState.GATEWAY_AWAITING_USER_ACTION


class TestWaitForWidget:
    def test_resolved_future(self, orchestrator):
        pay_online(orchestrator)
        future = Future()
        future.set_result(PaymentSucceeded("order_GW1", "pay_1", "sig_1"))
        assert orchestrator.wait_for_widget(future) is CheckoutState.SETTLED

    def test_timeout_needs_restart(self, orchestrator, collaborators):
        pay_online(orchestrator)
        state = orchestrator.wait_for_widget(Future(), timeout=0.01)

        assert state is CheckoutState.FAILED
        assert orchestrator.failure.kind is FailureKind.TIMEOUT
        assert not orchestrator.failure.retryable
        assert not orchestrator.processing
        assert not orchestrator.cart.is_empty()
        with pytest.raises(CheckoutStateError, match="contact support"):
            orchestrator.proceed_to_payment()
        collaborators["gateway"].create_gateway_order.assert_called_once()

        assert orchestrator.restart() is CheckoutState.PAYMENT_METHOD_SELECTED
        assert orchestrator.handoff is None

    def test_success_after_timeout_is_still_verified(self, orchestrator, collaborators):
        pay_online(orchestrator)
        orchestrator.wait_for_widget(Future(), timeout=0.01)

        state = orchestrator.handle_widget_outcome(PaymentSucceeded("order_GW1", "pay_late", "sig_late"))

        assert state is CheckoutState.SETTLED
        assert orchestrator.failure is None
        assert orchestrator.cart.is_empty()
        assert orchestrator.order_id == "665f1c2ab4e0d3a1f0c9e812"
        payload = collaborators["verifier"].verify_payment.call_args[0][0]
        assert payload["gatewayOrderId"] == "order_GW1"
        assert payload["paymentId"] == "pay_late"

    def test_late_outcomes_for_other_orders_are_ignored(self, orchestrator, collaborators):
        pay_online(orchestrator)
        orchestrator.wait_for_widget(Future(), timeout=0.01)

        assert orchestrator.handle_widget_outcome(PaymentSucceeded("order_OLD", "pay_0", "sig_0")) is CheckoutState.FAILED
        assert orchestrator.handle_widget_outcome(PaymentDismissed("order_GW1")) is CheckoutState.FAILED
        collaborators["verifier"].verify_payment.assert_not_called()

    def test_restart_drops_the_timed_out_hand_off(self, orchestrator, collaborators):
        pay_online(orchestrator)
        orchestrator.wait_for_widget(Future(), timeout=0.01)
        orchestrator.restart()

        assert orchestrator.handle_widget_outcome(PaymentSucceeded("order_GW1", "pay_late", "sig_late")) is (
            CheckoutState.PAYMENT_METHOD_SELECTED
        )
        collaborators["verifier"].verify_payment.assert_not_called()

    def test_cancelled_future_is_a_dismissal(self, orchestrator):
        pay_online(orchestrator)
        future = Future()
        future.cancel()
        assert orchestrator.wait_for_widget(future) is CheckoutState.CANCELLED


def test_checkout_state_snapshot(orchestrator):
    ready(orchestrator)
    orchestrator.apply_discount(100.0, "WELCOME100")
    snapshot = orchestrator.get_checkout_state()
    assert snapshot["state"] == "payment_method_selected"
    assert snapshot["paymentMethod"] == "razorpay"
    assert snapshot["couponCode"] == "WELCOME100"
    assert snapshot["totals"]["taxableSubtotal"] == 200.0
    assert snapshot["totals"]["total"] == 260.0
