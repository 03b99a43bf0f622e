# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

"""Errors raised while reconciling machines."""

import enum


class MachineErrorReason(str, enum.Enum):
    """Reasons recorded onto a machine's status.

    Attributes:
        INVALID_CONFIGURATION: the machine spec can never be satisfied as written
        CREATE: the instance could not be created
        UPDATE: the instance could not be updated
        DELETE: the instance could not be deleted
    """

    INVALID_CONFIGURATION = "InvalidConfiguration"
    CREATE = "CreateError"
    UPDATE = "UpdateError"
    DELETE = "DeleteError"


class ReconcileError(Exception):
    """Base exception for recoverable reconciliation errors."""


class MachineError(ReconcileError):
    """An error that is recorded onto the machine status.

    Attributes:
        reason (MachineErrorReason): machine-readable failure category
        message (str): human-readable description
    """

    def __init__(self, reason: MachineErrorReason, message: str):
        """Initialise the MachineError.

        Args:
            reason (MachineErrorReason): failure category
            message (str): description of the failure
        """
        super().__init__(message)
        self.reason = reason
        self.message = message

    @classmethod
    def invalid_configuration(cls, fmt: str, *args) -> "MachineError":
        """Build an invalid configuration error."""
        return cls(MachineErrorReason.INVALID_CONFIGURATION, fmt % args)

    @classmethod
    def create_machine(cls, fmt: str, *args) -> "MachineError":
        """Build a create error."""
        return cls(MachineErrorReason.CREATE, fmt % args)

    @classmethod
    def update_machine(cls, fmt: str, *args) -> "MachineError":
        """Build an update error."""
        return cls(MachineErrorReason.UPDATE, fmt % args)

    @classmethod
    def delete_machine(cls, fmt: str, *args) -> "MachineError":
        """Build a delete error."""
        return cls(MachineErrorReason.DELETE, fmt % args)


class ProviderError(ReconcileError):
    """Raised by cloud collaborators when a cloud API call fails."""


class StoreError(ReconcileError):
    """Raised when the Kubernetes API cannot read or write a resource."""


class UserDataError(ReconcileError):
    """Raised when the machine's user data cannot be produced."""


class PostprocessorError(UserDataError):
    """Raised when a postprocessor rejects the rendered user data."""


class UnknownPostprocessorError(PostprocessorError):
    """Raised when the user data names a postprocessor which doesn't exist."""


class AddressError(ReconcileError):
    """Raised when the machine's primary address cannot be determined."""


class PollTimeout(ReconcileError):
    """Raised when a condition isn't met before the poll timeout."""


class Cancelled(ReconcileError):
    """Raised when the caller cancelled the operation or its deadline passed."""


class InvariantViolation(BaseException):
    """A programming error that must abort the process.

    Derives from BaseException so that it isn't caught by handlers
    of recoverable errors.
    """
