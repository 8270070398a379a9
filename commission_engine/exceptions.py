"""Exception types raised by the commission engine.

Expected outcomes such as a declined payout are returned as values, not
raised. These exceptions cover configuration errors, missing records,
invalid status changes and lost compare-and-set races.
"""
from typing import Dict, Optional


class CommissionEngineError(Exception):
    """Base exception for commission engine errors."""
    def __init__(self, message: str, error_code: str = None, details: Optional[Dict] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class RuleConfigurationError(CommissionEngineError):
    """A stored rule violates the rule invariants (e.g. missing target)."""
    def __init__(self, message: str, rule_id: int = None):
        super().__init__(message, error_code="RULE_CONFIGURATION", details={"rule_id": rule_id})
        self.rule_id = rule_id


class RuleNotFoundError(CommissionEngineError):
    def __init__(self, rule_id: int):
        super().__init__(f"Rule {rule_id} not found", error_code="RULE_NOT_FOUND", details={"rule_id": rule_id})
        self.rule_id = rule_id


class CommissionNotFoundError(CommissionEngineError):
    def __init__(self, commission_id: int):
        super().__init__(
            f"Commission {commission_id} not found",
            error_code="COMMISSION_NOT_FOUND",
            details={"commission_id": commission_id},
        )
        self.commission_id = commission_id


class InvalidStatusTransitionError(CommissionEngineError):
    """Raised when a commission status change is not allowed."""
    def __init__(self, current_status: str, new_status: str, allowed: list):
        super().__init__(
            f"Cannot change commission status from '{current_status}' to '{new_status}'",
            error_code="INVALID_TRANSITION",
            details={"current_status": current_status, "new_status": new_status, "allowed": allowed},
        )
        self.current_status = current_status
        self.new_status = new_status


class StaleCommissionError(CommissionEngineError):
    """The commission changed status between read and update."""
    def __init__(self, commission_id: int, expected_status: str):
        super().__init__(
            f"Commission {commission_id} is no longer '{expected_status}'",
            error_code="STALE_COMMISSION",
            details={"commission_id": commission_id, "expected_status": expected_status},
        )
        self.commission_id = commission_id


class TransferError(CommissionEngineError):
    """Raised by transfer providers for errors outside a transfer attempt."""
    def __init__(self, message: str, status_code: int = None, details: Optional[Dict] = None):
        super().__init__(message, error_code="TRANSFER_ERROR", details=details)
        self.status_code = status_code
