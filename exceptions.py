"""
exceptions.py
=============
Domain errors raised by the service layer and translated to HTTP responses
in main.py. Pure engine functions never raise these: malformed numbers are
coerced to zero and a missing commission rule is a zero-commission value.
"""


class CommissionError(Exception):
    """Base class for every error raised by the commission workflows."""

    def __init__(self, message="The commission operation could not be completed."):
        self.message = message
        super().__init__(self.message)


class NotFoundError(CommissionError):
    """A record requested by id does not exist."""


class MissingReferenceError(CommissionError):
    """
    The order or affiliate behind an earning vanished between steps.
    Aggregation for that order is aborted and nothing is written.
    """


class CouponInapplicableError(CommissionError):
    """The coupon cannot be used on this order. Carries the allocation result."""

    def __init__(self, allocation, message=None):
        self.allocation = allocation
        super().__init__(message or allocation.message or "Coupon cannot be applied")


class WithdrawalConflictError(CommissionError):
    def __init__(self, message="A pending withdrawal request already exists for this store"):
        super().__init__(message)


class NoAvailableBalanceError(CommissionError):
    def __init__(self, message="There is no matured commission available for withdrawal"):
        super().__init__(message)


class InvalidTransitionError(CommissionError):
    """A status change that the earning or withdrawal state machine does not allow."""

    def __init__(self, current: str, target: str, entity: str = "record"):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {entity} from '{current}' to '{target}'")


class WithdrawalMismatchError(CommissionError):
    """The earnings a withdrawal request claimed no longer add up to its amount."""

    def __init__(self, requested: float, settled: float):
        self.requested = requested
        self.settled = settled
        super().__init__(
            f"Withdrawal amount {requested:.2f} does not match its claimed earnings ({settled:.2f})"
        )
