"""
Transfer Engine Module

Applies a balance transfer between two accounts as a single all-or-nothing
unit of work. Either the source decrease and destination increase both become
visible, or neither does; atomicity comes from the store transaction, not from
application-level locking.

New balances are recomputed inside the transaction from the locked, current
row values rather than from balances read during validation, so concurrent
transfers touching the same account cannot lose updates.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Type

from .errors import (
    DestinationAccountNotFound, InsufficientFunds, InvalidAmount, LedgerError,
    NotFoundError, SourceAccountNotFound
)
from .money import DEFAULT_SCALE, credit, debit, format_balance, quantize
from .storage import LedgerStore, LedgerTransaction
from .logging_config import get_logger, log_action


@dataclass(frozen=True)
class TransferResult:
    """Balances computed and committed by the engine"""
    source_id: int
    destination_id: int
    amount: Decimal
    source_balance: Decimal
    destination_balance: Decimal


class TransferEngine:
    """
    Atomic two-row balance mutation

    Stateless between calls; each apply() opens its own transaction on the
    injected store. No retries are attempted here: resubmission is a caller
    decision.
    """

    def __init__(self, store: LedgerStore, scale: int = DEFAULT_SCALE):
        self.store = store
        self.scale = scale
        self.logger = get_logger("ledger.engine")

    def apply(self, source_id: int, destination_id: int, amount: Decimal) -> TransferResult:
        """
        Move ``amount`` from source to destination

        A self-transfer (source_id == destination_id) locks and re-checks the
        row, writes nothing and commits, reporting the unchanged balance on
        both sides.

        Raises:
            InvalidAmount: If amount is not strictly positive
            InsufficientFunds: If the locked source balance no longer covers amount
            BalanceOverflow: If the destination balance would exceed the persisted range
            SourceAccountNotFound: If the source row vanished before mutation
            DestinationAccountNotFound: If the destination row vanished before mutation
            StoreError: If begin, an update or commit fails (rolled back, not retried)
        """
        amount = quantize(amount, self.scale)
        if amount <= 0:
            raise InvalidAmount(f"amount must be a positive number: {amount}")

        # stays None when begin_transaction itself fails
        txn = None
        try:
            with self.store.transaction() as txn:
                balances = self._lock_accounts(txn, source_id, destination_id)
                source_balance = balances[source_id]

                if source_balance < amount:
                    raise InsufficientFunds(
                        f"insufficient balance in source account: available "
                        f"{format_balance(source_balance, self.scale)}, requested "
                        f"{format_balance(amount, self.scale)}",
                        account_id=source_id,
                    )

                if source_id == destination_id:
                    txn.commit()
                    result = TransferResult(
                        source_id, destination_id, amount, source_balance, source_balance
                    )
                else:
                    new_source_balance = debit(source_balance, amount, self.scale)
                    new_destination_balance = credit(balances[destination_id], amount, self.scale)

                    self._write(txn, source_id, new_source_balance, SourceAccountNotFound, "source")
                    self._write(
                        txn, destination_id, new_destination_balance,
                        DestinationAccountNotFound, "destination"
                    )
                    txn.commit()
                    result = TransferResult(
                        source_id, destination_id, amount,
                        new_source_balance, new_destination_balance
                    )
        except LedgerError as e:
            log_action(
                self.logger, "error" if e.status_code >= 500 else "warning",
                f"{self._outcome(txn)}: {e.code}", action="apply_transfer",
                code=e.code, account_id=e.account_id, source_id=source_id,
                destination_id=destination_id, amount=amount,
                exc_info=e.status_code >= 500
            )
            raise
        except Exception:
            log_action(
                self.logger, "error", f"{self._outcome(txn)} on unexpected error",
                action="apply_transfer", source_id=source_id,
                destination_id=destination_id, amount=amount, exc_info=True
            )
            raise

        log_action(
            self.logger, "info", "Transfer committed", action="apply_transfer",
            source_id=source_id, destination_id=destination_id, amount=amount,
            source_balance=result.source_balance,
            destination_balance=result.destination_balance
        )
        return result

    @staticmethod
    def _outcome(txn: Optional[LedgerTransaction]) -> str:
        return "Transfer failed" if txn is None else "Transfer rolled back"

    def _lock_accounts(self, txn: LedgerTransaction, source_id: int,
                       destination_id: int) -> Dict[int, Decimal]:
        """
        Read and lock both rows in ascending id order

        Opposing transfers (A->B, B->A) therefore always lock in the same order.
        A missing source is reported before a missing destination.
        """
        balances: Dict[int, Optional[Decimal]] = {}
        for account_id in sorted({source_id, destination_id}):
            balances[account_id] = txn.read_balance(account_id)

        if balances[source_id] is None:
            raise SourceAccountNotFound("source account not found", account_id=source_id)
        if balances[destination_id] is None:
            raise DestinationAccountNotFound("destination account not found", account_id=destination_id)

        return balances

    def _write(self, txn: LedgerTransaction, account_id: int, new_balance: Decimal,
               missing: Type[NotFoundError], side: str) -> None:
        rows = txn.update_balance(account_id, new_balance)
        if rows == 0:
            raise missing(f"{side} account not found", account_id=account_id)
