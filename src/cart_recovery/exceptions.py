"""Error taxonomy for the cart recovery engine."""


class CartRecoveryError(Exception):
    """Base class for all engine errors."""

    code = "cart_recovery_error"


class ConfigurationError(CartRecoveryError):
    """Invalid thresholds or reminder schedule. Fatal at startup."""

    code = "configuration_error"


class CartNotFoundError(CartRecoveryError):
    code = "cart_not_found"


class CartConvertedError(CartRecoveryError):
    """The cart completed checkout or was merged away and is read-only."""

    code = "cart_converted"


class CurrencyMismatchError(CartRecoveryError):
    code = "currency_mismatch"


class OwnershipError(CartRecoveryError):
    """Caller identity does not match the cart's owner."""

    code = "cart_ownership_mismatch"


class MalformedCartError(CartRecoveryError):
    """A stored cart row could not be turned into a valid cart."""

    code = "malformed_cart"

    def __init__(self, cart_id: str, reason: str):
        super().__init__(f"Cart {cart_id} is malformed: {reason}")
        self.cart_id = cart_id
        self.reason = reason


class PricingUnavailableError(CartRecoveryError):
    code = "pricing_unavailable"


class TransportError(CartRecoveryError):
    """The notification transport did not confirm the send."""

    code = "transport_error"


class DispatchTimeoutError(TransportError):
    code = "dispatch_timeout"


class RecoveryTokenError(CartRecoveryError):
    code = "recovery_token_error"


class RecoveryTokenInvalidError(RecoveryTokenError):
    code = "recovery_token_invalid"


class RecoveryTokenExpiredError(RecoveryTokenError):
    code = "recovery_token_expired"
