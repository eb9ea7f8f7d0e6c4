"""Typed errors raised by the credit, generation and reconciliation services."""

from __future__ import annotations

from typing import Optional


class CreditLedgerError(Exception):
    """Base class for ledger refusals."""


class AccountNotFound(CreditLedgerError):
    def __init__(self, account_id: str):
        super().__init__(f"Account not found: {account_id}")
        self.account_id = account_id


class InsufficientBalance(CreditLedgerError):
    def __init__(self, account_id: str, balance: int, required: int):
        super().__init__(f"Insufficient credits. You have {balance} but need {required}")
        self.account_id = account_id
        self.balance = balance
        self.required = required


class InvalidCreditAmount(CreditLedgerError):
    def __init__(self, amount: int):
        super().__init__(f"Credit amount must be at least 1 (got {amount})")
        self.amount = amount


class GenerationFailure(Exception):
    """The model call failed, timed out or produced no content."""


class GenerationTimeout(GenerationFailure):
    def __init__(self, timeout_seconds: float):
        super().__init__(f"Model request timed out after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class PersistenceFailure(Exception):
    """The generated post could not be stored."""


class ReconciliationError(Exception):
    """A payment processor event could not be applied."""

    def __init__(self, message: str, event_id: Optional[str] = None):
        super().__init__(message)
        self.event_id = event_id


class InvalidEventPayload(ReconciliationError):
    """Event metadata is missing or malformed."""


class InvalidSessionToken(ValueError):
    """A bearer token failed signature, expiry or claim checks."""
