from __future__ import annotations


class StateStoreError(RuntimeError):
    """Base error for raffle state store issues."""


class UserInputError(StateStoreError):
    """Raised when a request is rejected because of the caller's input.

    The message is safe to show to clients verbatim.
    """

    status_code = 400
    expose = True


class SnapshotNotFoundError(UserInputError):
    """Raised when a snapshot id does not resolve to a stored snapshot."""

    def __init__(self, message: str = "Snapshot not found.") -> None:
        super().__init__(message)


class StorageTimeoutError(StateStoreError):
    """Raised when a storage query does not finish within its timeout."""


def is_user_input_error(error: object) -> bool:
    if isinstance(error, UserInputError):
        return True
    if not isinstance(error, BaseException):
        return False
    return getattr(error, "status_code", None) == 400 and bool(error.args) and isinstance(error.args[0], str)
