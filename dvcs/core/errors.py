"""
dvcs.core.errors — Failure taxonomy for the repository engine.

Store-level code raises these; the operations layer catches them and turns
them into a negative ``DVCSOperationResponse``.
"""

from __future__ import annotations


class DVCSError(Exception):
    """Base class for every failure the engine reports."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__


# ---------------------------------------------------------------------------
# Precondition violations — detected before any write
# ---------------------------------------------------------------------------

class PreconditionViolation(DVCSError):
    pass


class NotAFile(PreconditionViolation):
    pass


class OutsideRepository(PreconditionViolation):
    pass


class MissingInformation(PreconditionViolation):
    pass


class BranchExists(PreconditionViolation):
    pass


class BranchNotFound(PreconditionViolation):
    pass


class EmptyRepository(PreconditionViolation):
    pass


class UncommittedChanges(PreconditionViolation):
    pass


class NoRemoteConfigured(PreconditionViolation):
    pass


class InvalidRemote(PreconditionViolation):
    pass


class AlreadyInitialized(PreconditionViolation):
    pass


class NotInitialized(PreconditionViolation):
    pass


class ObjectNotFound(PreconditionViolation):
    pass


class UnencodableText(PreconditionViolation):
    """A path or commit field that cannot be stored as UTF-8 text."""


# ---------------------------------------------------------------------------
# Storage and environment failures
# ---------------------------------------------------------------------------

class StorageFailure(DVCSError):
    """A store could not be opened or a transaction failed to apply."""


class EnvironmentFailure(DVCSError):
    """Filesystem permission or I/O error."""


class HashingFailed(EnvironmentFailure):
    pass
