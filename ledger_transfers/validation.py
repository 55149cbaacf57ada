"""
Request Validation Module

Parses and constrains external transfer input before the transfer engine is
invoked, so doomed transfers never reach the transactional boundary.

Checks run in a fixed order and stop at the first failure:

1. amount parses as a number          -> InvalidAmount
2. amount is strictly positive        -> InvalidAmount
3. source account exists              -> SourceNotFound
4. destination account exists         -> DestinationNotFound
5. source balance covers the amount   -> InsufficientFunds

The amount is checked before any store access.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Union

from .errors import (
    AccountNotFound, DestinationNotFound, InsufficientFunds, InvalidAccountId,
    SourceNotFound
)
from .money import DEFAULT_SCALE, format_balance, parse_amount
from .repository import Account, AccountRepository


# Account ids are persisted as signed 64-bit integers
MAX_ACCOUNT_ID = 2 ** 63 - 1
MIN_ACCOUNT_ID = -(2 ** 63)


@dataclass(frozen=True)
class TransferRequest:
    """A validated transfer; ephemeral, never persisted"""
    source: Account
    destination: Account
    amount: Decimal

    @property
    def source_id(self) -> int:
        return self.source.account_id

    @property
    def destination_id(self) -> int:
        return self.destination.account_id

    @property
    def is_self_transfer(self) -> bool:
        return self.source.account_id == self.destination.account_id


def parse_account_id(raw: Union[int, str]) -> int:
    """
    Parse an account identifier from a path segment or JSON value

    Raises:
        InvalidAccountId: If the value is not an integer in the persisted range
    """
    if isinstance(raw, bool):
        raise InvalidAccountId(f"invalid account ID: {raw!r}")

    if isinstance(raw, int):
        account_id = raw
    else:
        try:
            account_id = int(str(raw).strip())
        except ValueError:
            raise InvalidAccountId(f"invalid account ID: {raw!r}")

    if not MIN_ACCOUNT_ID <= account_id <= MAX_ACCOUNT_ID:
        raise InvalidAccountId(f"account ID out of range: {raw!r}")
    return account_id


class TransferValidator:
    """Validates raw transfer input against the account repository"""

    def __init__(self, repository: AccountRepository, scale: int = DEFAULT_SCALE):
        self.repository = repository
        self.scale = scale

    def validate(self, source_id: Union[int, str], destination_id: Union[int, str],
                 amount_text: str) -> TransferRequest:
        """
        Produce a validated TransferRequest or raise the first rejection reason

        Raises:
            InvalidAmount, InvalidAccountId, SourceNotFound,
            DestinationNotFound, InsufficientFunds, StoreError
        """
        amount = parse_amount(amount_text, self.scale)
        source_id = parse_account_id(source_id)
        destination_id = parse_account_id(destination_id)

        try:
            source = self.repository.get(source_id)
        except AccountNotFound:
            raise SourceNotFound(f"source account {source_id} not found", account_id=source_id)

        try:
            destination = self.repository.get(destination_id)
        except AccountNotFound:
            raise DestinationNotFound(
                f"destination account {destination_id} not found", account_id=destination_id
            )

        if source.balance < amount:
            raise InsufficientFunds(
                f"insufficient balance in source account: available "
                f"{format_balance(source.balance, self.scale)}, requested "
                f"{format_balance(amount, self.scale)}",
                account_id=source_id,
            )

        return TransferRequest(source=source, destination=destination, amount=amount)
