from __future__ import annotations

from typing import Any


class HackvoteError(Exception):
    """Base class for errors that map onto an HTTP status code."""

    status_code = 500

    def __init__(self, message: str, payload: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.payload = payload or {}

    @property
    def kind(self) -> str:
        return type(self).__name__


class AuthenticationError(HackvoteError):
    status_code = 401


class EligibilityError(HackvoteError):
    status_code = 403


class PhaseClosedError(EligibilityError):
    pass


class RoleMismatchError(EligibilityError):
    pass


class AdminRequiredError(EligibilityError):
    pass


class VoteValidationError(HackvoteError):
    status_code = 400


class EmptySelectionError(VoteValidationError):
    pass


class TooManyTeamsError(VoteValidationError):
    pass


class IneligibleTeamError(VoteValidationError):
    pass


class SelfVoteError(VoteValidationError):
    pass


class TeamNotFoundError(VoteValidationError):
    pass


class HiddenTeamError(VoteValidationError):
    pass


class InvalidTransitionError(HackvoteError):
    status_code = 400


class ConfigError(HackvoteError):
    status_code = 400


class TieResolutionError(HackvoteError):
    status_code = 400


class UnresolvedTieError(HackvoteError):
    status_code = 400


class NotFoundError(HackvoteError):
    status_code = 404


class AlreadyVotedError(HackvoteError):
    status_code = 409


class DuplicateUserError(HackvoteError):
    status_code = 409


class TransactionContentionError(HackvoteError):
    """The store gave up retrying a conflicting transaction; nothing was committed."""

    status_code = 500


class DuplicateRecordError(Exception):
    """A create-only write hit an existing key."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} already exists: {key}")
        self.record_kind = kind
        self.key = key
