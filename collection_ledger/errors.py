"""Exceptions raised by the collection ledger."""

from __future__ import annotations

from typing import List


class LedgerError(Exception):
    """Base class for errors raised by the engine."""


class ValidationError(LedgerError, ValueError):
    """Malformed input rejected before it reaches the allocation engine."""


class NotFoundError(LedgerError, LookupError):
    """A referenced credit, client, installment or fine does not exist."""


class PartialBatchFailure(LedgerError):
    """Some items of a bulk deferral failed.

    The batch itself completed; ``succeeded`` holds the number of items that
    went through and ``errors`` the per-item failures.
    """

    def __init__(self, succeeded: int, errors: List[Exception]) -> None:
        self.succeeded = succeeded
        self.errors = list(errors)
        super().__init__(
            f"{len(self.errors)} item(s) failed, {succeeded} succeeded"
        )
