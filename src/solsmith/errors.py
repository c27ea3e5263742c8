"""Exception hierarchy shared by all components."""

from __future__ import annotations

from enum import StrEnum


class SolSmithError(Exception):
    """Base class for every error raised by sol-smith components."""


class TransportError(SolSmithError):
    """A send/edit/delete/answer call against the chat platform failed."""


class SendError(TransportError):
    """The platform refused to deliver a new message."""


class MessageNotFoundError(TransportError):
    """The referenced message no longer exists on the platform."""


class StorageError(SolSmithError):
    """Reading or writing a user record failed."""

    def __init__(self, user_id: str, detail: str):
        super().__init__(f"storage failure for user {user_id}: {detail}")
        self.user_id = user_id
        self.detail = detail


class GenerationFailure(StrEnum):
    EXTERNAL_FAILURE = "external_failure"
    NO_ARTIFACT = "no_artifact"
    TIMEOUT = "timeout"


class GenerationError(SolSmithError):
    """The external keypair generator did not produce a usable result."""

    def __init__(self, failure: GenerationFailure, detail: str = ""):
        message = failure.value if not detail else f"{failure.value}: {detail}"
        super().__init__(message)
        self.failure = failure
        self.detail = detail


class ValidationError(SolSmithError):
    """User input was rejected; the user is asked again in the same phase."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
