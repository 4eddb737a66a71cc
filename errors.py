"""Error taxonomy for the progress ledger.

Every public operation either returns an explicit result object or raises one
of these. Nothing is logged-and-swallowed into a ``None`` result.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger errors."""


class ValidationError(LedgerError):
    """Input rejected before any storage I/O happened."""


class NotFoundError(LedgerError):
    """A referenced perk, request or course document does not exist."""


class ConflictError(LedgerError):
    """The operation conflicts with the stored state (e.g. request already resolved)."""


class WriteConflict(ConflictError):
    """Optimistic version check failed; the write can be retried from a fresh read."""


class TransientIOError(LedgerError):
    """The store failed to read or write. Nothing was committed; safe for the caller to retry."""
