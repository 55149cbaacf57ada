"""
Test suite for the transfer engine

Covers conservation, atomicity under injected faults, fixed-point precision,
in-transaction recomputation and the self-transfer policy.
"""

import logging
import pytest
from decimal import Decimal
from unittest.mock import Mock

from ledger_transfers.engine import TransferEngine
from ledger_transfers.errors import (
    BalanceOverflow, DestinationAccountNotFound, InsufficientFunds, InvalidAmount,
    SourceAccountNotFound, StoreError
)
from ledger_transfers.storage import InMemoryLedgerStore, SQLiteLedgerStore


class TestTransferEngine:
    """Test successful transfers"""

    def setup_method(self):
        self.store = InMemoryLedgerStore()
        self.store.create_account(1, Decimal("100.00000"))
        self.store.create_account(2, Decimal("50.00000"))
        self.engine = TransferEngine(self.store)

    def test_transfer_moves_funds(self):
        result = self.engine.apply(1, 2, Decimal("20.00"))

        assert result.source_balance == Decimal("80")
        assert result.destination_balance == Decimal("70")
        assert self.store.query_balance(1) == Decimal("80")
        assert self.store.query_balance(2) == Decimal("70")

    def test_conservation(self):
        total_before = self.store.query_balance(1) + self.store.query_balance(2)
        for amount in ["0.1", "0.2", "33.33333", "7", "0.00001"]:
            self.engine.apply(1, 2, Decimal(amount))
            self.engine.apply(2, 1, Decimal(amount) / 2)
        total_after = self.store.query_balance(1) + self.store.query_balance(2)

        assert total_after == total_before

    def test_precision_at_smallest_unit(self):
        result = self.engine.apply(1, 2, Decimal("0.00001"))

        assert result.source_balance == Decimal("99.99999")
        assert result.destination_balance == Decimal("50.00001")
        assert str(self.store.query_balance(1)) == "99.99999"
        assert str(self.store.query_balance(2)) == "50.00001"

    def test_repeated_small_transfers_do_not_drift(self):
        for _ in range(1000):
            self.engine.apply(1, 2, Decimal("0.01"))

        assert self.store.query_balance(1) == Decimal("90.00000")
        assert self.store.query_balance(2) == Decimal("60.00000")

    def test_full_balance_transfer_leaves_zero(self):
        result = self.engine.apply(1, 2, Decimal("100"))
        assert result.source_balance == Decimal("0")
        assert result.destination_balance == Decimal("150")

    def test_new_balances_use_current_row_values(self):
        # A transfer committed after validation read 100.00 must not be lost
        self.engine.apply(1, 2, Decimal("30"))
        result = self.engine.apply(1, 2, Decimal("20"))

        assert result.source_balance == Decimal("50")
        assert result.destination_balance == Decimal("100")

    def test_insufficient_funds_rechecked_in_transaction(self):
        self.engine.apply(1, 2, Decimal("90"))

        with pytest.raises(InsufficientFunds):
            self.engine.apply(1, 2, Decimal("20"))

        assert self.store.query_balance(1) == Decimal("10")
        assert self.store.query_balance(2) == Decimal("140")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1"), Decimal("0.000001")])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(InvalidAmount):
            self.engine.apply(1, 2, amount)
        assert self.store.snapshot() == {1: Decimal("100"), 2: Decimal("50")}

    def test_self_transfer_is_a_no_op(self):
        result = self.engine.apply(1, 1, Decimal("25"))

        assert result.source_balance == Decimal("100")
        assert result.destination_balance == Decimal("100")
        assert self.store.query_balance(1) == Decimal("100")

    def test_self_transfer_still_requires_funds(self):
        with pytest.raises(InsufficientFunds):
            self.engine.apply(2, 2, Decimal("60"))


class TestTransferEngineFaults:
    """Test rollback on every failure path using the fault-injecting store"""

    @pytest.fixture(autouse=True)
    def _setup(self, fault_store):
        self.store = fault_store
        self.store.create_account(1, Decimal("100.00000"))
        self.store.create_account(2, Decimal("50.00000"))
        self.engine = TransferEngine(self.store)

    def assert_unchanged(self):
        assert self.store.query_balance(1) == Decimal("100")
        assert self.store.query_balance(2) == Decimal("50")

    def test_success_commits_once_without_rollback(self):
        self.engine.apply(1, 2, Decimal("20"))
        assert self.store.commits == 1
        assert self.store.rollbacks == 0
        assert self.store.updates == [(1, Decimal("80.00000")), (2, Decimal("70.00000"))]

    def test_begin_failure_reported_verbatim(self):
        self.store.fail_on_begin = StoreError("db begin error")

        with pytest.raises(StoreError) as exc_info:
            self.engine.apply(1, 2, Decimal("20"))

        assert exc_info.value.message == "db begin error"
        assert self.store.updates == []
        self.assert_unchanged()

    def test_source_zero_rows_rolls_back(self):
        self.store.zero_rows_on_update = {1}

        with pytest.raises(SourceAccountNotFound) as exc_info:
            self.engine.apply(1, 2, Decimal("20"))

        assert exc_info.value.message == "source account not found"
        assert exc_info.value.status_code == 409
        assert self.store.rollbacks == 1
        assert [account_id for account_id, _ in self.store.updates] == [1]
        self.assert_unchanged()

    def test_destination_zero_rows_rolls_back_source(self):
        self.store.zero_rows_on_update = {2}

        with pytest.raises(DestinationAccountNotFound) as exc_info:
            self.engine.apply(1, 2, Decimal("20"))

        assert exc_info.value.message == "destination account not found"
        assert self.store.rollbacks == 1
        assert self.store.commits == 0
        self.assert_unchanged()

    def test_destination_update_error_rolls_back_source(self):
        self.store.fail_on_update = {2: StoreError("connection lost")}

        with pytest.raises(StoreError) as exc_info:
            self.engine.apply(1, 2, Decimal("20"))

        assert exc_info.value.message == "connection lost"
        assert self.store.rollbacks == 1
        self.assert_unchanged()

    def test_commit_failure_rolls_back_both(self):
        self.store.fail_on_commit = StoreError("commit error")

        with pytest.raises(StoreError) as exc_info:
            self.engine.apply(1, 2, Decimal("20"))

        assert exc_info.value.message == "commit error"
        assert len(self.store.updates) == 2
        assert self.store.rollbacks == 1
        self.assert_unchanged()

    def test_unexpected_failure_still_rolls_back(self):
        self.store.fail_on_update = {2: RuntimeError("driver crashed")}

        with pytest.raises(RuntimeError):
            self.engine.apply(1, 2, Decimal("20"))

        assert self.store.rollbacks == 1
        self.assert_unchanged()

    def test_source_vanished_before_mutation(self):
        self.store.vanish_on_begin = {1}

        with pytest.raises(SourceAccountNotFound):
            self.engine.apply(1, 2, Decimal("20"))

        assert self.store.updates == []
        assert self.store.query_balance(2) == Decimal("50")

    def test_destination_vanished_before_mutation(self):
        self.store.vanish_on_begin = {2}

        with pytest.raises(DestinationAccountNotFound):
            self.engine.apply(1, 2, Decimal("20"))

        assert self.store.updates == []
        assert self.store.query_balance(1) == Decimal("100")

    def test_missing_source_reported_first_when_both_vanish(self):
        # Rows are locked in id order (1 then 2) but the source, 2, is reported
        self.store.vanish_on_begin = {1, 2}
        with pytest.raises(SourceAccountNotFound):
            self.engine.apply(2, 1, Decimal("20"))

    def test_store_usable_after_failure(self):
        self.store.fail_on_commit = StoreError("commit error")
        with pytest.raises(StoreError):
            self.engine.apply(1, 2, Decimal("20"))

        self.store.fail_on_commit = None
        result = self.engine.apply(1, 2, Decimal("20"))
        assert result.source_balance == Decimal("80")

    def test_self_transfer_writes_nothing(self):
        self.engine.apply(1, 1, Decimal("20"))
        assert self.store.updates == []
        assert self.store.commits == 1

    def test_destination_overflow_rolls_back(self):
        huge = Decimal("9" * 33)
        self.store.create_account(3, huge)
        self.store.create_account(4, huge)

        with pytest.raises(BalanceOverflow):
            self.engine.apply(3, 4, huge)

        assert self.store.updates == []
        assert self.store.rollbacks == 1
        assert self.store.query_balance(3) == huge
        assert self.store.query_balance(4) == huge


class TestTransferEngineLogging:
    """Test outcome messages and the transfer context attached to them"""

    @pytest.fixture(autouse=True)
    def _setup(self, fault_store):
        self.store = fault_store
        self.store.create_account(1, Decimal("100.00000"))
        self.store.create_account(2, Decimal("50.00000"))
        self.engine = TransferEngine(self.store)
        self.engine.logger = Mock(spec=logging.Logger)

    def last_entry(self):
        (level, message), kwargs = self.engine.logger.log.call_args
        return level, message, kwargs["extra"]

    def test_begin_failure_logged_as_failed(self):
        self.store.fail_on_begin = StoreError("connection refused")
        with pytest.raises(StoreError):
            self.engine.apply(1, 2, Decimal("20"))

        level, message, extra = self.last_entry()
        assert level == logging.ERROR
        assert message == "Transfer failed: store_error"
        assert extra["source_id"] == 1
        assert extra["destination_id"] == 2

    def test_unexpected_begin_failure_logged_as_failed(self):
        self.store.fail_on_begin = RuntimeError("driver crashed")
        with pytest.raises(RuntimeError):
            self.engine.apply(1, 2, Decimal("20"))

        _, message, _ = self.last_entry()
        assert message == "Transfer failed on unexpected error"

    def test_commit_failure_logged_as_rolled_back(self):
        self.store.fail_on_commit = StoreError("commit error")
        with pytest.raises(StoreError):
            self.engine.apply(1, 2, Decimal("20"))

        level, message, extra = self.last_entry()
        assert level == logging.ERROR
        assert message == "Transfer rolled back: store_error"
        assert extra["code"] == "store_error"

    def test_vanished_account_logged_with_account_id(self):
        self.store.vanish_on_begin = {2}
        with pytest.raises(DestinationAccountNotFound):
            self.engine.apply(1, 2, Decimal("20"))

        level, message, extra = self.last_entry()
        assert level == logging.WARNING
        assert message == "Transfer rolled back: destination_account_not_found"
        assert extra["account_id"] == 2

    def test_commit_logged_with_balances(self):
        self.engine.apply(1, 2, Decimal("20"))

        level, message, extra = self.last_entry()
        assert level == logging.INFO
        assert message == "Transfer committed"
        assert extra["amount"] == Decimal("20.00000")
        assert extra["source_balance"] == Decimal("80.00000")
        assert extra["destination_balance"] == Decimal("70.00000")


class TestTransferEngineSQLite:
    """Test rollback against a real SQLite transaction"""

    def setup_method(self):
        self.store = SQLiteLedgerStore()
        self.store.ensure_schema()
        self.store.create_account(1, Decimal("100.00000"))
        self.store.create_account(2, Decimal("50.00000"))
        self.engine = TransferEngine(self.store)

    def teardown_method(self):
        self.store.close()

    def test_transfer(self):
        result = self.engine.apply(1, 2, Decimal("0.00001"))
        assert result.source_balance == Decimal("99.99999")
        assert self.store.query_balance(2) == Decimal("50.00001")

    def test_deleted_destination_rolls_back_source(self):
        self.store._connection.execute("DELETE FROM accounts WHERE account_id = 2")

        with pytest.raises(DestinationAccountNotFound):
            self.engine.apply(1, 2, Decimal("20"))

        assert self.store.query_balance(1) == Decimal("100")
        assert not self.store._connection.in_transaction
