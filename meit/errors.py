"""Error taxonomy for the ledger.

Every error carries the HTTP status it maps to and a stable machine-readable
code. Messages of 4xx errors are safe to show to end users; 5xx errors are
rendered with a generic message by the exception handler in ``meit.main``,
except TransactionFailed whose service-written message and outcome fields
are returned as is.
"""


class MeitError(Exception):
    status_code = 400
    code = "MEIT_ERROR"
    default_message = "Request could not be processed"

    def __init__(self, message: str | None = None, **context):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.context = context


# ------------------------------------------------------------
# Points engine / validation
# ------------------------------------------------------------
class InvalidAmount(MeitError):
    code = "INVALID_AMOUNT"
    default_message = "Amount must be greater than zero"


class InvalidChallengeTarget(MeitError):
    code = "INVALID_CHALLENGE_TARGET"
    default_message = "Challenge target is out of range"


class MerchantConfigMissing(MeitError):
    status_code = 422
    code = "MERCHANT_CONFIG_MISSING"
    default_message = "Merchant loyalty configuration is missing or invalid"


class PermissionDenied(MeitError):
    status_code = 403
    code = "PERMISSION_DENIED"
    default_message = "Insufficient permissions"


# ------------------------------------------------------------
# Lookups
# ------------------------------------------------------------
class MerchantNotFound(MeitError):
    status_code = 404
    code = "MERCHANT_NOT_FOUND"
    default_message = "Merchant not found"


class CustomerNotFound(MeitError):
    status_code = 404
    code = "CUSTOMER_NOT_FOUND"
    default_message = "Customer not found"


class DuplicateCustomer(MeitError):
    status_code = 409
    code = "DUPLICATE_CUSTOMER"
    default_message = "Customer already registered with this merchant"


class InvalidPhone(MeitError):
    code = "INVALID_PHONE"
    default_message = "Phone must contain 7 to 15 digits including country code"


class BranchNotFound(MeitError):
    status_code = 404
    code = "BRANCH_NOT_FOUND"
    default_message = "Branch not found"


class ChallengeNotFound(MeitError):
    status_code = 404
    code = "CHALLENGE_NOT_FOUND"
    default_message = "Challenge not found"


# ------------------------------------------------------------
# Ledger mutations
# ------------------------------------------------------------
class NegativeBalanceRejected(MeitError):
    code = "NEGATIVE_BALANCE_REJECTED"
    default_message = "Adjustment would result in negative balance"


class ConcurrencyConflict(MeitError):
    status_code = 409
    code = "CONCURRENCY_CONFLICT"
    default_message = "Balance changed concurrently, retry the operation"


class PersistenceFailure(MeitError):
    status_code = 503
    code = "PERSISTENCE_FAILURE"
    default_message = "Storage backend error"


class TransactionFailed(MeitError):
    """Raised when a multi-step ledger write could not complete.

    ``durable_write`` tells the caller whether anything was committed. When it
    is False the whole operation was rolled back and resubmitting is safe.
    It is None when the failure happened during COMMIT and the outcome is
    unknown.
    """

    status_code = 503
    code = "TRANSACTION_FAILED"
    default_message = "Points operation failed, no changes were applied"
    unknown_outcome_message = "Operation outcome is unknown, retry with the same Idempotency-Key"

    def __init__(self, message: str | None = None, *, step: str, durable_write: bool | None = False, **context):
        if message is None and durable_write is None:
            message = self.unknown_outcome_message
        super().__init__(message, step=step, durable_write=durable_write, **context)
        self.step = step
        self.durable_write = durable_write

    def to_response(self) -> dict:
        # messages here are written by the service layer, never storage text
        return {
            "detail": self.message,
            "code": self.code,
            "step": self.step,
            "durable_write": self.durable_write,
        }


# ------------------------------------------------------------
# Gift cards
# ------------------------------------------------------------
class GiftCardCodeCollision(MeitError):
    status_code = 500
    code = "GIFT_CARD_CODE_COLLISION"
    default_message = "Could not generate a unique gift card code"


class GiftCardNotFound(MeitError):
    status_code = 404
    code = "GIFT_CARD_NOT_FOUND"
    default_message = "Gift card not found"


class GiftCardMerchantMismatch(GiftCardNotFound):
    # Reported exactly like a missing card so other tenants' codes never leak
    code = "GIFT_CARD_NOT_FOUND"


class GiftCardAlreadyRedeemed(MeitError):
    code = "GIFT_CARD_ALREADY_REDEEMED"
    default_message = "Gift card is redeemed"


class GiftCardCancelled(MeitError):
    code = "GIFT_CARD_CANCELLED"
    default_message = "Gift card is cancelled"


class GiftCardExpired(MeitError):
    code = "GIFT_CARD_EXPIRED"
    default_message = "Gift card expired"
