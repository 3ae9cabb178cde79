from __future__ import annotations


class CodedError(ValueError):
    """Rejected input. The message is a stable code so callers can map it to user-facing text."""

    def __init__(self, code: str, **details) -> None:
        super().__init__(code)
        self.code = code
        self.details = details


class PaymentRequestError(CodedError):
    """Rejected payout request input (``amount_exceeds_balance``, ``unknown_status``...)."""


class AgentPaymentError(CodedError):
    """Rejected direct agent payment (``bonus_not_available``, ``payment_not_found``...)."""


class BonusSourceError(ValueError):
    """A bonus must reference exactly one contract or one order."""


class SettlementError(RuntimeError):
    """Linked bonuses no longer match the request; the unit of work must roll back."""

    def __init__(self, code: str, **details) -> None:
        super().__init__(code)
        self.code = code
        self.details = details
