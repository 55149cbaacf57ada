"""
Transfer Service Module

Wires the money-movement pipeline together:

    validator -> repository (read both) -> engine (atomic write)
              -> repository (re-read) -> response assembler

The store handle is injected at construction; nothing here is process-wide.
"""

from typing import Union

from .engine import TransferEngine, TransferResult
from .errors import LedgerError
from .money import DEFAULT_SCALE, parse_initial_balance
from .repository import Account, AccountRepository
from .responses import ResponseAssembler, TransferReceipt
from .storage import LedgerStore
from .validation import TransferValidator, parse_account_id
from .logging_config import get_logger, log_action


class TransferService:
    """
    Account creation, balance lookup and point-to-point transfers
    """

    def __init__(self, store: LedgerStore, scale: int = DEFAULT_SCALE):
        self.store = store
        self.scale = scale
        self.repository = AccountRepository(store, scale)
        self.validator = TransferValidator(self.repository, scale)
        self.engine = TransferEngine(store, scale)
        self.assembler = ResponseAssembler(self.repository)
        self.logger = get_logger("ledger.transfers")

    def create_account(self, account_id: Union[int, str], initial_balance: str) -> Account:
        """
        Create an account with an opening balance given as a decimal string

        Raises:
            InvalidAccountId: If the id is not an integer
            InvalidAmount: If the balance is not a finite, non-negative number
            StoreError: If the insert fails, including a duplicate id
        """
        account_id = parse_account_id(account_id)
        balance = parse_initial_balance(initial_balance, self.scale)
        return self.repository.create(account_id, balance)

    def get_account(self, account_id: Union[int, str]) -> Account:
        """
        Look up an account's current balance

        Raises:
            InvalidAccountId: If the id is not an integer
            AccountNotFound: If the account does not exist
        """
        return self.repository.get(parse_account_id(account_id))

    def transfer(self, source_id: Union[int, str], destination_id: Union[int, str],
                 amount: str) -> TransferReceipt:
        """
        Validate and apply a transfer, then report both committed balances

        Validation failures stop before any transaction is opened. Engine
        failures have already been rolled back when they reach the caller.
        """
        try:
            request = self.validator.validate(source_id, destination_id, amount)
        except LedgerError as e:
            log_action(
                self.logger, "warning", f"Transfer rejected: {e.code}",
                action="validate_transfer", code=e.code, account_id=e.account_id,
                source_id=source_id, destination_id=destination_id, amount=amount
            )
            raise

        result: TransferResult = self.engine.apply(
            request.source_id, request.destination_id, request.amount
        )

        receipt = self.assembler.assemble(result.source_id, result.destination_id)
        log_action(
            self.logger, "info", "Transfer completed", action="transfer",
            source_id=receipt.source_account_id,
            destination_id=receipt.destination_account_id,
            amount=request.amount, source_balance=receipt.source_balance,
            destination_balance=receipt.destination_balance
        )
        return receipt

    def close(self) -> None:
        self.store.close()
