"""Error taxonomy shared by the ledger, checkout and order query layers."""


class StorefrontError(Exception):
    """Base class for all storefront ledger errors."""

    retryable = False


class ValidationError(StorefrontError, ValueError):
    """Input that the shopper (or the caller) must correct.

    Raised for incomplete addresses, malformed pincodes, empty carts, quantities
    over stock and impossible currency states such as a discount larger than the
    subtotal. Checkout stays where it is so the input can be fixed.
    """

    retryable = True


class AuthenticationRequired(StorefrontError):
    """Checkout was attempted without an authenticated identity."""


class CheckoutStateError(StorefrontError):
    """An operation was invoked in a checkout state that does not accept it."""


class CheckoutInProgressError(StorefrontError):
    """A second payment attempt was started while one is already in flight."""


class GatewayError(StorefrontError):
    """The payment gateway could not issue an order token or open the widget."""

    retryable = True


class VerificationError(StorefrontError):
    """Payment confirmation was rejected or ambiguous.

    Not retried automatically: the shopper may already have been charged.
    """


class OrderStoreError(StorefrontError):
    """The order persistence collaborator could not be reached."""

    retryable = True


class OrderNotFoundError(StorefrontError, LookupError):
    """No order exists for the requested id."""


class DataIntegrityDegraded(StorefrontError):
    """Computed financial output rests on a last-resort fallback.

    Only raised when a caller asks for strict output; otherwise the degradation
    is carried as a flag on the computed result.
    """
