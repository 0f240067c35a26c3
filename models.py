from pydantic import BaseModel, Field, field_validator
from enum import Enum
from typing import Any, Dict, Optional
from datetime import datetime


class OperationType(str, Enum):
    deposit = "deposit"
    withdraw = "withdraw"
    transfer = "transfer"


class FailureKind(str, Enum):
    invalid_operation_type = "invalid_operation_type"
    malformed_amount = "malformed_amount"
    account_not_found = "account_not_found"
    missing_account_id = "missing_account_id"
    non_positive_amount = "non_positive_amount"
    insufficient_funds = "insufficient_funds"
    balance_out_of_range = "balance_out_of_range"


class Account(BaseModel):
    id: str = Field(..., description="Account identifier")
    balance: int = Field(..., description="Balance in the smallest currency unit")


class OperationRequest(BaseModel):
    """Inbound ledger event.

    Every field is optional here so that semantic errors (unknown type, bad
    amount, missing account) surface as ledger failures rather than as
    request validation errors.
    """

    type: Optional[str] = Field(None, description="deposit, withdraw or transfer (case-insensitive)")
    amount: Optional[str] = Field(None, description="Integer amount as a string")
    origin: Optional[str] = Field(None, description="Source account for withdraw and transfer")
    destination: Optional[str] = Field(None, description="Target account for deposit and transfer")

    @field_validator('type', 'origin', 'destination', mode='before')
    @classmethod
    def coerce_scalar_to_str(cls, v):
        if isinstance(v, bool):
            return str(v).lower()
        if isinstance(v, (int, float)):
            return str(v)
        return v

    @field_validator('amount', mode='before')
    @classmethod
    def coerce_amount_to_str(cls, v):
        if v is None or isinstance(v, str):
            return v
        # bool is an int subclass
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        # floats, bools and containers become text that is never a valid integer
        return repr(v)


class OperationResult(BaseModel):
    origin: Optional[Account] = None
    destination: Optional[Account] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class OperationFailure(BaseModel):
    kind: FailureKind
    detail: str = ""


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error description")
    error_code: str = Field(..., description="Machine-readable error code")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(default_factory=datetime.now)
    accounts_count: int = Field(..., description="Number of accounts in the ledger")
