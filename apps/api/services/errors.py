"""Typed failures raised by the credit ledger and campaign lifecycle."""

from __future__ import annotations

from typing import Optional


class LedgerError(Exception):
    """Base class; `status_code` is the HTTP status the API reports."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(LedgerError):
    status_code = 404


class InsufficientCreditsError(LedgerError):
    status_code = 402

    def __init__(self, required: int, available: int, message: Optional[str] = None):
        self.required = int(required)
        self.available = int(available)
        super().__init__(
            message
            or (
                f"Insufficient credits. Required: {self.required}, available: {self.available}. "
                "Top up credits to continue."
            )
        )


class InvalidActionError(LedgerError):
    status_code = 400

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Unknown credit action: {action!r}.")


class InvalidStateTransitionError(LedgerError):
    status_code = 409

    def __init__(self, campaign_id: str, current_status: Optional[str], target_status: str):
        self.campaign_id = campaign_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Campaign {campaign_id} cannot move from {current_status or 'unknown'} to {target_status}."
        )


class PersistenceConflictError(LedgerError):
    """Concurrent write detected; safe for the caller to retry."""

    status_code = 409
