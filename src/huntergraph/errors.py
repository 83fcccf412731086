"""Error taxonomy shared by the graph store, mention linker, ledger and queue.

Every error carries a ``context`` dict with the offending ids and values so a
caller can diagnose it without another round trip to the store.
"""

from __future__ import annotations

from typing import Any


class HunterGraphError(Exception):
    code = "error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.context}


class ValidationError(HunterGraphError, ValueError):
    code = "validation_error"


class NotFoundError(HunterGraphError):
    code = "not_found"


class ConflictError(HunterGraphError):
    code = "conflict"


class InvalidTransitionError(HunterGraphError):
    code = "invalid_transition"


class InsufficientCreditsError(HunterGraphError):
    code = "insufficient_credits"


class PartialFailure(HunterGraphError):
    """A ledger write ran but its commit could not be confirmed; reconcile before retrying."""

    code = "partial_failure"


class PrivilegeError(HunterGraphError):
    code = "privilege_required"


class StoreUnavailable(HunterGraphError):
    code = "store_unavailable"


class StoreIntegrityError(HunterGraphError):
    code = "integrity_violation"
