"""
Ledger error types.

Services raise these; routes translate them into HTTP responses via
``to_detail()`` and ``status_code`` so the caller always sees the structured
shortfall or rule reason rather than a generic denial.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import status


class LedgerError(Exception):
    """Base exception for entitlement and credit-ledger operations."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "ledger_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class InvalidRequest(LedgerError):
    """Raised for malformed inputs such as an unknown credit type."""

    code = "invalid_request"


class InsufficientBalance(LedgerError):
    """Neither subscription quota nor purchased credits can cover the request."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "insufficient_balance"

    def __init__(
        self,
        credit_type: str,
        requested: int,
        subscription_remaining: Optional[int],
        purchased_balance: int,
        upgrade_options: Optional[List[str]] = None,
    ):
        available = (subscription_remaining or 0) + purchased_balance
        super().__init__(
            f"Insufficient {credit_type} balance: requested {requested}, available {available}"
        )
        self.credit_type = credit_type
        self.requested = requested
        self.subscription_remaining = subscription_remaining
        self.purchased_balance = purchased_balance
        self.shortfall = max(0, requested - available)
        self.upgrade_options = upgrade_options or []

    def to_detail(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "credit_type": self.credit_type,
            "requested": self.requested,
            "shortfall": self.shortfall,
            "available": {
                "subscription_remaining": self.subscription_remaining,
                "purchased_balance": self.purchased_balance,
            },
            "upgrade_options": self.upgrade_options,
        }


class PolicyDenied(LedgerError):
    """An account-level policy rule blocked the action."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "policy_denied"

    def __init__(self, rule: str, reason: str, retry_after: Optional[datetime] = None):
        super().__init__(reason)
        self.rule = rule
        self.reason = reason
        self.retry_after = retry_after

    def to_detail(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "rule": self.rule,
            "message": self.reason,
            "retry_after": self.retry_after.isoformat() if self.retry_after else None,
        }


class NotFound(LedgerError):
    """Target resource or account is missing."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"

    def __init__(self, resource: str, identifier: Any):
        super().__init__(f"{resource} not found: {identifier}")
        self.resource = resource
        self.identifier = identifier

    def to_detail(self) -> Dict[str, Any]:
        return {"error": self.code, "resource": self.resource, "message": self.message}


class SettlementConflict(LedgerError):
    """A payment identifier was already processed with a different outcome."""

    status_code = status.HTTP_409_CONFLICT
    code = "settlement_conflict"

    def __init__(self, payment_id: str, reason: str):
        super().__init__(f"Settlement conflict for payment {payment_id}: {reason}")
        self.payment_id = payment_id
        self.reason = reason

    def to_detail(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "payment_id": self.payment_id,
            "message": self.reason,
        }
