"""
Response Assembly Module

Formats the post-transfer state of both accounts. Balances are re-read from
the store after commit rather than taken from the engine's computed values,
so any store-level coercion on write is what the caller sees.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict

from .money import DEFAULT_SCALE, format_balance
from .repository import AccountRepository


@dataclass(frozen=True)
class TransferReceipt:
    """Committed balances of both sides of a transfer"""
    source_account_id: int
    source_balance: Decimal
    destination_account_id: int
    destination_balance: Decimal

    def to_dict(self, scale: int = DEFAULT_SCALE) -> Dict[str, Any]:
        return {
            "source_account_id": self.source_account_id,
            "source_balance": format_balance(self.source_balance, scale),
            "destination_account_id": self.destination_account_id,
            "destination_balance": format_balance(self.destination_balance, scale),
        }


class ResponseAssembler:
    """Builds transfer receipts from fresh repository reads"""

    def __init__(self, repository: AccountRepository):
        self.repository = repository

    def assemble(self, source_id: int, destination_id: int) -> TransferReceipt:
        # An account missing here was removed after commit; AccountNotFound propagates
        source = self.repository.get(source_id)
        destination = self.repository.get(destination_id)
        return TransferReceipt(
            source_account_id=source.account_id,
            source_balance=source.balance,
            destination_account_id=destination.account_id,
            destination_balance=destination.balance,
        )
