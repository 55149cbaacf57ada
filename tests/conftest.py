"""
Shared fixtures: stores, services and a fault-injecting store
"""

import pytest
from decimal import Decimal
from typing import Dict, Optional, Set

from ledger_transfers.errors import StoreError
from ledger_transfers.storage import InMemoryLedgerStore, InMemoryLedgerTransaction
from ledger_transfers.service import TransferService


class FaultInjectingStore(InMemoryLedgerStore):
    """
    In-memory store that can fail or misbehave at each step of a transaction

    fail_on_begin:       exception raised by begin_transaction()
    fail_on_update:      account_id -> exception raised by update_balance()
    fail_on_commit:      exception raised by commit() before anything is applied
    vanish_on_begin:     account rows deleted as a transaction begins
    zero_rows_on_update: account ids whose update reports 0 rows affected
    """

    def __init__(self):
        super().__init__(lock_timeout=5.0)
        self.fail_on_begin: Optional[Exception] = None
        self.fail_on_update: Dict[int, Exception] = {}
        self.fail_on_commit: Optional[Exception] = None
        self.vanish_on_begin: Set[int] = set()
        self.zero_rows_on_update: Set[int] = set()

        self.transactions_opened = 0
        self.commits = 0
        self.rollbacks = 0
        self.updates = []

    def begin_transaction(self):
        if self.fail_on_begin is not None:
            raise self.fail_on_begin
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise StoreError("timed out waiting for ledger lock")
        self.transactions_opened += 1
        for account_id in self.vanish_on_begin:
            self._balances.pop(account_id, None)
        return FaultInjectingTransaction(self)


class FaultInjectingTransaction(InMemoryLedgerTransaction):

    def update_balance(self, account_id: int, new_balance: Decimal) -> int:
        store = self._store
        if account_id in store.fail_on_update:
            raise store.fail_on_update[account_id]
        store.updates.append((account_id, new_balance))
        if account_id in store.zero_rows_on_update:
            return 0
        return super().update_balance(account_id, new_balance)

    def _commit(self) -> None:
        if self._store.fail_on_commit is not None:
            raise self._store.fail_on_commit
        super()._commit()
        self._store.commits += 1

    def _rollback(self) -> None:
        super()._rollback()
        self._store.rollbacks += 1


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def fault_store():
    return FaultInjectingStore()


@pytest.fixture
def service(store):
    return TransferService(store)


@pytest.fixture
def fault_service(fault_store):
    return TransferService(fault_store)
