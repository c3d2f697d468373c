from __future__ import annotations


class MarketError(Exception):
    """Base for every user-visible failure.

    ``code`` is the machine-checkable reason string returned in API payloads;
    ``status`` is the HTTP status the error maps to.
    """

    code = "MarketError"
    status = 400

    def __init__(self, message: str = "", *, code: str | None = None, extra: dict | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        if code:
            self.code = code
        self.extra = dict(extra or {})

    def to_dict(self) -> dict:
        payload = {
            "ok": False,
            "error": self.code,
            "message": self.message,
            "status": int(self.status),
        }
        if self.extra:
            payload.update(self.extra)
        return payload


# validation
class ValidationError(MarketError):
    code = "ValidationError"
    status = 400


class WrongCurrency(MarketError):
    code = "WrongCurrency"
    status = 400


class ChainMismatch(MarketError):
    code = "ChainMismatch"
    status = 400


class ListingInactive(MarketError):
    code = "ListingInactive"
    status = 400


class OwnListing(MarketError):
    code = "OwnListing"
    status = 400


class InsufficientStock(MarketError):
    code = "InsufficientStock"
    status = 400


class UnsupportedDelivery(MarketError):
    code = "UnsupportedDelivery"
    status = 400


# authorization
class Unauthorized(MarketError):
    code = "Unauthorized"
    status = 401


class AdminUnauthorized(MarketError):
    code = "AdminUnauthorized"
    status = 401


class Forbidden(MarketError):
    code = "Forbidden"
    status = 403


class NotBuyer(Forbidden):
    code = "NotBuyer"


class NotSeller(Forbidden):
    code = "NotSeller"


class NotParty(Forbidden):
    code = "NotParty"


# lookups
class NotFound(MarketError):
    code = "NotFound"
    status = 404


class OrderNotFound(NotFound):
    code = "OrderNotFound"


class ListingNotFound(NotFound):
    code = "ListingNotFound"


class MappingMissing(NotFound):
    code = "MappingMissing"


class ChainConfigMissing(NotFound):
    code = "ChainConfigMissing"


class NoDispute(NotFound):
    code = "NoDispute"


class OtpNotFound(NotFound):
    code = "OtpNotFound"


class IntentNotFound(NotFound):
    code = "IntentNotFound"


class DeliverableMissing(NotFound):
    code = "DeliverableMissing"


# state
class StateError(MarketError):
    code = "StateError"
    status = 409


class InvalidTransition(StateError):
    code = "InvalidTransition"


class WrongStatus(StateError):
    code = "WrongStatus"


class VersionConflict(StateError):
    code = "VersionConflict"


class AlreadyDisputed(StateError):
    code = "AlreadyDisputed"


class OtpAlreadyVerified(StateError):
    code = "OtpAlreadyVerified"


class IntentTransitionInvalid(StateError):
    code = "IntentTransitionInvalid"


# funds / otp
class InsufficientFunds(MarketError):
    code = "InsufficientFunds"
    status = 402


class InvalidOtp(MarketError):
    code = "InvalidOtp"
    status = 400


class Expired(MarketError):
    code = "Expired"
    status = 410


class TooManyAttempts(MarketError):
    code = "TooManyAttempts"
    status = 429


# external dependencies
class ExternalDependencyFailed(MarketError):
    code = "ExternalDependencyFailed"
    status = 502
