"""
Account Repository Module

Read path for account balances plus account creation. A missing row is
reported as AccountNotFound, never as a generic store failure, so callers can
tell "does not exist" apart from "store unreachable".
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict

from .errors import AccountNotFound
from .money import DEFAULT_SCALE, format_balance, quantize
from .storage import LedgerStore
from .logging_config import get_logger, log_action


@dataclass(frozen=True)
class Account:
    """A single ledger row"""
    account_id: int
    balance: Decimal

    def to_dict(self, scale: int = DEFAULT_SCALE) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "current_balance": format_balance(self.balance, scale),
        }


class AccountRepository:
    """
    Fetches and creates accounts against an injected ledger store
    """

    def __init__(self, store: LedgerStore, scale: int = DEFAULT_SCALE):
        self.store = store
        self.scale = scale
        self.logger = get_logger("ledger.accounts")

    def get(self, account_id: int) -> Account:
        """
        Fetch an account's current committed balance

        Raises:
            AccountNotFound: If no row exists for the id
            StoreError: If the store cannot be queried
        """
        balance = self.store.query_balance(account_id)
        if balance is None:
            raise AccountNotFound(f"account {account_id} not found", account_id=account_id)
        return Account(account_id=account_id, balance=quantize(balance, self.scale))

    def exists(self, account_id: int) -> bool:
        return self.store.query_balance(account_id) is not None

    def create(self, account_id: int, initial_balance: Decimal) -> Account:
        """
        Insert a new account row

        An existing id is a store-level uniqueness violation and surfaces as
        StoreError.
        """
        balance = quantize(initial_balance, self.scale)
        self.store.create_account(account_id, balance)

        log_action(
            self.logger, "info", f"Account created: {account_id}",
            action="create_account", account_id=account_id, balance=balance
        )
        return Account(account_id=account_id, balance=balance)
