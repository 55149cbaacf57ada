"""
Pydantic schemas for API requests and responses
"""

from typing import Optional

from pydantic import BaseModel, Field


class CreateAccountRequest(BaseModel):
    account_id: int
    initial_balance: str = Field(..., description="Decimal amount as string")


class AccountResponse(BaseModel):
    account_id: int
    current_balance: str = Field(..., description="Decimal amount as string")


class TransferRequest(BaseModel):
    source_account_id: int
    destination_account_id: int
    amount: str = Field(..., description="Decimal amount as string")


class TransferResponse(BaseModel):
    source_account_id: int
    source_balance: str
    destination_account_id: int
    destination_balance: str


class ErrorResponse(BaseModel):
    code: str = Field(..., description="Machine-readable reason code")
    detail: str
    account_id: Optional[int] = Field(None, description="Account the failure refers to, when there is one")
