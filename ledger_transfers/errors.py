"""
Ledger Error Taxonomy

Every failure raised by the transfer pipeline maps to exactly one reason code
and one HTTP status, so callers can tell "does not exist" apart from
"store unreachable" without parsing messages.
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for all ledger errors"""

    code = "ledger_error"
    status_code = 500

    def __init__(self, message: str, account_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.account_id = account_id

    def to_dict(self) -> Dict[str, Any]:
        """Error payload returned to API clients"""
        payload: Dict[str, Any] = {"code": self.code, "detail": self.message}
        if self.account_id is not None:
            payload["account_id"] = self.account_id
        return payload


# Input errors: rejected before any store access

class ValidationError(LedgerError):
    """Client-side fault in the request itself"""

    code = "invalid_request"
    status_code = 400


class InvalidAmount(ValidationError):
    """Amount is not a number, not finite, too precise or not positive"""

    code = "invalid_amount"


class InvalidAccountId(ValidationError):
    """Account identifier is not an integer"""

    code = "invalid_account_id"


# Not-found errors

class NotFoundError(LedgerError):
    """Base class for missing accounts"""

    code = "not_found"
    status_code = 404


class AccountNotFound(NotFoundError):
    """Lookup against a missing account row"""

    code = "account_not_found"


class SourceNotFound(NotFoundError):
    """Source account did not exist at validation time"""

    code = "source_not_found"


class DestinationNotFound(NotFoundError):
    """Destination account did not exist at validation time"""

    code = "destination_not_found"


class SourceAccountNotFound(NotFoundError):
    """Source row vanished between validation and mutation"""

    code = "source_account_not_found"
    status_code = 409


class DestinationAccountNotFound(NotFoundError):
    """Destination row vanished between validation and mutation"""

    code = "destination_account_not_found"
    status_code = 409


# Business rule violations

class InsufficientFunds(LedgerError):
    """Source balance is below the requested amount"""

    code = "insufficient_funds"
    status_code = 422


class BalanceOverflow(LedgerError):
    """Resulting balance has more digits than the ledger can persist"""

    code = "balance_out_of_range"
    status_code = 422


# Store and transport errors

class StoreError(LedgerError):
    """
    Failure reported by the ledger store (connection lost, begin/commit
    failure, constraint violation). The driver's message is kept verbatim
    and the driver exception is chained as ``__cause__``.
    """

    code = "store_error"
    status_code = 500
