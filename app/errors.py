# app/errors.py

from __future__ import annotations

from decimal import Decimal
from typing import Optional


class BackOfficeError(Exception):
    """Base class for domain errors raised by the services in app/."""

    retryable = False


class InvalidPayloadError(BackOfficeError):
    """Incoming payload is missing a required field or cannot be parsed."""


class NotFoundError(BackOfficeError):
    pass


class OperationInProgressError(BackOfficeError):
    """
    The idempotency key is held by another in-flight attempt.
    The caller should back off and retry later.
    """

    retryable = True

    def __init__(self, key: str):
        super().__init__(f"Operation {key} is already in progress")
        self.key = key


class StateTransitionError(BackOfficeError):
    def __init__(self, message: str, current_state: Optional[str] = None, target_state: Optional[str] = None):
        super().__init__(message)
        self.current_state = current_state
        self.target_state = target_state


class BatchValidationError(BackOfficeError):
    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


class InsufficientBalanceError(BatchValidationError):
    def __init__(self, creator_id: int, current_balance: Decimal, requested_amount: Decimal):
        super().__init__(
            [
                f"Insufficient balance for creator {creator_id}: "
                f"requested {requested_amount} EUR, balance {current_balance} EUR"
            ]
        )
        self.creator_id = creator_id
        self.current_balance = current_balance
        self.requested_amount = requested_amount


class LedgerFrozenError(BackOfficeError):
    """Writes are halted for a creator whose ledger failed an integrity check."""

    def __init__(self, creator_id: int):
        super().__init__(f"Ledger for creator {creator_id} is frozen pending reconciliation")
        self.creator_id = creator_id


class LedgerIntegrityError(BackOfficeError):
    def __init__(self, creator_id: int, entry_number: int, expected: Decimal, found: Decimal):
        super().__init__(
            f"Ledger mismatch for creator {creator_id} at entry {entry_number}: "
            f"expected balance_after={expected}, found {found}"
        )
        self.creator_id = creator_id
        self.entry_number = entry_number
        self.expected = expected
        self.found = found
