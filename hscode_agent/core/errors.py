"""Error taxonomy shared by the workflow, the result cache and the ledger."""

from __future__ import annotations


class AnalysisCoreError(Exception):
    """Base class for failures raised by the analysis core."""


class IntakeError(AnalysisCoreError):
    """The intake collaborator was unreachable or returned malformed data.

    The session that failed is attached so callers can render its terminal
    error state.
    """

    def __init__(self, message: str, *, session: object | None = None) -> None:
        super().__init__(message)
        self.session = session


class InvalidQuestionError(AnalysisCoreError):
    """An answer referenced a question that was never issued to the session."""

    def __init__(self, session_id: str, question_id: str) -> None:
        super().__init__(
            f"Question '{question_id}' was not issued to session '{session_id}'."
        )
        self.session_id = session_id
        self.question_id = question_id


class SessionTerminalError(AnalysisCoreError):
    """An operation was attempted on a session that already finished."""

    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(f"Session '{session_id}' is already {status}.")
        self.session_id = session_id
        self.status = status


class InvalidTransitionError(AnalysisCoreError):
    """An operation is not valid for the session's current (active) state."""

    def __init__(self, session_id: str, status: str, operation: str) -> None:
        super().__init__(
            f"Cannot {operation} session '{session_id}' while it is {status}."
        )
        self.session_id = session_id
        self.status = status
        self.operation = operation


class NotFoundError(AnalysisCoreError):
    """A cache, ledger or session lookup referenced an absent key."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} '{key}' not found.")
        self.kind = kind
        self.key = key


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str) -> None:
        super().__init__("Session", session_id)


class PersistenceError(AnalysisCoreError):
    """The durable store could not be read or written."""


__all__ = [
    "AnalysisCoreError",
    "IntakeError",
    "InvalidQuestionError",
    "InvalidTransitionError",
    "NotFoundError",
    "PersistenceError",
    "SessionNotFoundError",
    "SessionTerminalError",
]
