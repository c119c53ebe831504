"""Errors raised by the block assignment engine."""

from typing import Optional


class SessionBlockError(Exception):
    """Base class for all engine errors."""


class PreconditionViolation(SessionBlockError):
    """A mutation was rejected before any write was attempted."""


class InvariantViolation(PreconditionViolation):
    """An assignment list breaks contiguity, slot capacity or duration sync."""


class NotFound(SessionBlockError):
    """The targeted record no longer exists."""


class AssignmentNotFound(NotFound):
    def __init__(self, assignment_id: str):
        super().__init__(f"Assignment not found: {assignment_id}")
        self.assignment_id = assignment_id


class BlockNotFound(NotFound):
    def __init__(self, block_id: str):
        super().__init__(f"Block not found: {block_id}")
        self.block_id = block_id


class GroupNotFound(NotFound):
    def __init__(self, position: int):
        super().__init__(f"No block group at position {position}")
        self.position = position


class PersistenceFailure(SessionBlockError):
    """A write to the store failed; local state has been rolled back."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class OwnershipViolation(PersistenceFailure):
    """The store refused a write on permission grounds."""


class StaleSessionError(SessionBlockError):
    """The session's assignments changed underneath the editor."""

    def __init__(self, session_id: str, expected: str, actual: str):
        super().__init__(f"Session {session_id} was modified elsewhere; reload and retry")
        self.session_id = session_id
        self.expected = expected
        self.actual = actual
