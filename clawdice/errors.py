class DiceError(Exception):
    """Base error rendered to clients as ``{"error": code, "message": ...}``."""

    status_code = 500
    code = "internal"

    def __init__(self, message: str, code: str | None = None, hint: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.hint = hint


class InvalidWager(DiceError):
    status_code = 400
    code = "invalid_request"


class PaymentRequired(DiceError):
    status_code = 402
    code = "payment_required"


class AdmissionRejected(DiceError):
    status_code = 400
    code = "exposure_limit"

    def __init__(self, message: str, code: str | None = None, hint: str | None = None):
        super().__init__(message, code=code, hint=hint)
        if self.code == "bankroll_paused":
            self.status_code = 503


class PersistenceFailure(DiceError):
    status_code = 500
    code = "internal"


class GameNotFound(DiceError):
    status_code = 404
    code = "not_found"


class InvalidStatusTransition(DiceError):
    status_code = 409
    code = "invalid_status_transition"


class PayoutDeliveryFailure(Exception):
    """Raised by payout senders; recorded as a status, never shown as an error."""
