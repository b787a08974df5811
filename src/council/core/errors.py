"""Error kinds raised by the council core.

Every error carries the HTTP status the API layer answers with, and whether
the caller may retry the same request unchanged.
"""

from __future__ import annotations


class CouncilError(Exception):
    """Base class for all council domain errors."""

    status_code: int = 400
    retryable: bool = False

    @property
    def kind(self) -> str:
        return type(self).__name__


class ValidationError(CouncilError):
    """Malformed input: a required field is missing, a number is not positive, text too long."""

    status_code = 422


class NotFound(CouncilError):
    """A referenced proposal, amendment or province does not exist."""

    status_code = 404


class VotingClosed(CouncilError):
    """An action was attempted against a proposal that is no longer active."""

    status_code = 409

    def __init__(self, status: str, message: str = "") -> None:
        self.status = status
        super().__init__(message or f"Voting is already closed. Status: {status}")


class PermissionDenied(CouncilError):
    """A role-gated action was attempted by the wrong province."""

    status_code = 403


class AmendmentDepthExceeded(CouncilError):
    """An amendment was submitted against an amendment already at the depth cap."""

    status_code = 409


class ConcurrentUpdate(CouncilError):
    """The proposal kept changing underneath us; re-read and try again."""

    status_code = 409
    retryable = True


class StoreUnavailable(CouncilError):
    """Transient storage failure (locked database, I/O error)."""

    status_code = 503
    retryable = True
