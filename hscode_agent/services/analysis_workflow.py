"""State machine driving multi-turn HS code analysis sessions.

A session moves ``initializing -> awaiting_questions -> processing ->
completed``; ``error`` and ``cancelled`` are reachable from every active
state. Terminal sessions never change again.

Calls into the classification service are the only suspension points. Session
state is mutated only after the matching response arrives, and a response that
arrives for a session which was cancelled, failed or forgotten in the
meantime is dropped. Calls for the same session are serialized through a
per-session lock; different sessions interleave freely.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Iterable
from uuid import uuid4

from pydantic import ValidationError

from hscode_agent.clients.classification import (
    ClassificationService,
    ClassificationServiceError,
)
from hscode_agent.core.errors import (
    IntakeError,
    InvalidQuestionError,
    InvalidTransitionError,
    PersistenceError,
    SessionNotFoundError,
    SessionTerminalError,
)
from hscode_agent.core.scheduling import Clock, SystemClock
from hscode_agent.schemas import (
    AnalysisQuestion,
    AnalysisResult,
    AnalysisSession,
    AnalysisStartResult,
    AnswerSubmissionResult,
    SessionPollResult,
    SessionStatus,
    StartOptions,
)
from hscode_agent.services.result_cache import ResultCache

logger = logging.getLogger(__name__)

_FAILED_POLL_STATUSES = frozenset({"error", "failed", "cancelled", "canceled"})
DEFAULT_SESSION_RETENTION = 200


class AnalysisWorkflow:
    """Own every active analysis session and advance it against the collaborator."""

    def __init__(
        self,
        classifier: ClassificationService,
        results: ResultCache,
        *,
        clock: Clock | None = None,
        call_timeout: float = 30.0,
        poll_interval: float = 2.0,
        poll_deadline: float = 120.0,
        session_retention: int = DEFAULT_SESSION_RETENTION,
    ) -> None:
        self._classifier = classifier
        self._results = results
        self._clock = clock or SystemClock()
        self._call_timeout = call_timeout
        self._poll_interval = poll_interval
        self._poll_deadline = poll_deadline
        self._session_retention = max(1, session_retention)
        self._sessions: dict[str, AnalysisSession] = {}
        self._remote_ids: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        # Completion signals that arrived while required questions were still open.
        self._deferred: dict[str, AnalysisResult | None] = {}
        # Terminal session ids in the order they settled, oldest first.
        self._settled: dict[str, None] = {}

    async def start(
        self, query: str, options: StartOptions | None = None
    ) -> AnalysisSession:
        """Create a session and run intake.

        Raises ``IntakeError`` (carrying the failed session) when the
        collaborator is unreachable, times out or answers with malformed data.
        """
        options = options or StartOptions()
        session = AnalysisSession(
            id=f"session_{uuid4().hex}",
            query=query,
            created_at=self._clock.now(),
        )
        self._sessions[session.id] = session
        logger.info("Session %s created for query %r", session.id, query)

        async with self._lock_for(session.id):
            try:
                raw = await self._call(
                    self._classifier.start_session(
                        session_id=session.id,
                        query=query,
                        options=options.model_dump(by_alias=True, exclude_none=True),
                    )
                )
                intake = AnalysisStartResult.model_validate(raw)
                _ensure_unique_ids(intake.questions)
                if intake.needs_questions and not intake.questions:
                    raise ValueError("intake requested questions but sent none")
            except (ValidationError, ValueError) as exc:
                return self._intake_failed(session, f"Malformed intake response: {exc}")
            except asyncio.TimeoutError:
                return self._intake_failed(
                    session,
                    f"Classification service did not respond within {self._call_timeout:g}s",
                )
            except ClassificationServiceError as exc:
                return self._intake_failed(session, f"Classification service unavailable: {exc}")

            if self._is_settled(session):
                logger.warning("Dropping intake response for settled session %s", session.id)
                if self._sessions.get(session.id) is session:
                    self._remote_ids[session.id] = intake.session_id
                # The remote session was opened after the local one settled.
                await self._cancel_remote(session.id, intake.session_id)
                return self._snapshot(session)

            self._remote_ids[session.id] = intake.session_id
            if intake.needs_questions:
                session.questions = list(intake.questions)
                self._transition(session, SessionStatus.AWAITING_QUESTIONS)
            else:
                self._transition(session, SessionStatus.PROCESSING)
        return self._snapshot(session)

    async def submit_answer(
        self, session_id: str, question_id: str, answer: str
    ) -> AnalysisSession:
        """Record an answer and advance the session with the collaborator's reply."""
        session = self._require(session_id)
        self._ensure_active(session)
        async with self._lock_for(session_id):
            session = self._require(session_id)
            self._ensure_status(session, SessionStatus.AWAITING_QUESTIONS, "answer")
            if session.question(question_id) is None:
                raise InvalidQuestionError(session_id, question_id)

            try:
                raw = await self._call(
                    self._classifier.submit_answer(
                        session_id=self._remote_id(session_id),
                        question_id=question_id,
                        answer=answer,
                    )
                )
                reply = AnswerSubmissionResult.model_validate(raw)
            except (ClassificationServiceError, asyncio.TimeoutError, ValidationError) as exc:
                return self._progression_failed(session, "answer submission", exc)

            if self._is_settled(session):
                logger.warning("Dropping answer response for settled session %s", session_id)
                return self._snapshot(session)

            session.answers[question_id] = answer
            self._apply_answer_reply(session, reply)
        return self._snapshot(session)

    async def poll(self, session_id: str) -> AnalysisSession:
        """Ask the collaborator how a ``processing`` session is doing."""
        session = self._require(session_id)
        self._ensure_active(session)
        async with self._lock_for(session_id):
            session = self._require(session_id)
            self._ensure_status(session, SessionStatus.PROCESSING, "poll")
            try:
                raw = await self._call(
                    self._classifier.poll_session(session_id=self._remote_id(session_id))
                )
                reply = SessionPollResult.model_validate(raw)
            except (ClassificationServiceError, asyncio.TimeoutError, ValidationError) as exc:
                return self._progression_failed(session, "polling", exc)

            if self._is_settled(session):
                logger.warning("Dropping poll response for settled session %s", session_id)
                return self._snapshot(session)

            self._apply_poll_reply(session, reply)
        return self._snapshot(session)

    async def wait_for_result(
        self,
        session_id: str,
        *,
        interval: float | None = None,
        deadline: float | None = None,
    ) -> AnalysisSession:
        """Poll a ``processing`` session until it leaves that state.

        Fails the session when ``deadline`` seconds pass without a terminal
        answer. Cancelling the awaiting task stops the loop without touching
        the session.
        """
        interval = self._poll_interval if interval is None else interval
        deadline = self._poll_deadline if deadline is None else deadline
        loop = asyncio.get_running_loop()
        give_up_at = loop.time() + deadline

        while True:
            session = self._require(session_id)
            if session.status is not SessionStatus.PROCESSING:
                return self._snapshot(session)
            try:
                await self.poll(session_id)
            except (SessionTerminalError, InvalidTransitionError):
                return self.get(session_id)

            session = self._require(session_id)
            if session.status is not SessionStatus.PROCESSING:
                return self._snapshot(session)
            remaining = give_up_at - loop.time()
            if remaining <= 0:
                self._fail(
                    session,
                    f"Classification did not finish within {deadline:g}s",
                )
                return self._snapshot(session)
            await asyncio.sleep(min(interval, remaining))

    def cancel(self, session_id: str) -> AnalysisSession:
        """Cancel an active session immediately; in-flight replies are dropped."""
        session = self._require(session_id)
        self._ensure_active(session)
        self._deferred.pop(session_id, None)
        self._transition(session, SessionStatus.CANCELLED)
        return self._snapshot(session)

    async def notify_cancelled(self, session_id: str) -> bool:
        """Tell the collaborator a session was cancelled locally (best effort)."""
        remote_id = self._remote_ids.get(session_id)
        if remote_id is None:
            return False
        return await self._cancel_remote(session_id, remote_id)

    def get(self, session_id: str) -> AnalysisSession:
        return self._snapshot(self._require(session_id))

    def list_sessions(self) -> list[AnalysisSession]:
        ordered = sorted(
            self._sessions.values(), key=lambda item: item.created_at, reverse=True
        )
        return [self._snapshot(item) for item in ordered]

    def mark_viewed(self, session_id: str) -> AnalysisSession:
        session = self._require(session_id)
        session.last_viewed_at = self._clock.now()
        return self._snapshot(session)

    def discard(self, session_id: str) -> None:
        """Forget a terminal session."""
        session = self._require(session_id)
        if not session.status.is_terminal:
            raise InvalidTransitionError(session_id, session.status.value, "discard")
        self._forget(session_id)

    def reset(self) -> None:
        """Cancel every active session and forget all of them."""
        for session in list(self._sessions.values()):
            if not session.status.is_terminal:
                self._transition(session, SessionStatus.CANCELLED)
        for session_id in list(self._sessions):
            self._forget(session_id)

    def _apply_answer_reply(
        self, session: AnalysisSession, reply: AnswerSubmissionResult
    ) -> None:
        self._append_questions(session, reply.additional_questions)
        self._raise_progress(session, reply.progress)
        outstanding = session.unanswered_required()

        if reply.completed or reply.result is not None:
            if outstanding:
                self._deferred[session.id] = reply.result
                logger.info(
                    "Session %s completion held until required questions %s are answered",
                    session.id,
                    outstanding,
                )
                return
            self._finish_answering(session, reply.result)
        elif not outstanding and session.id in self._deferred:
            self._finish_answering(session, self._deferred.pop(session.id))

    def _finish_answering(
        self, session: AnalysisSession, result: AnalysisResult | None
    ) -> None:
        self._deferred.pop(session.id, None)
        if result is not None:
            self._complete(session, result)
        else:
            self._transition(session, SessionStatus.PROCESSING)

    def _apply_poll_reply(self, session: AnalysisSession, reply: SessionPollResult) -> None:
        status = reply.status.strip().lower()
        if reply.additional_questions:
            # Late questions send the session back to the clarification phase.
            self._append_questions(session, reply.additional_questions)
            self._raise_progress(session, reply.progress)
            self._transition(session, SessionStatus.AWAITING_QUESTIONS)
            return
        if status == SessionStatus.COMPLETED.value or reply.result is not None:
            if reply.result is None:
                self._fail(session, "Classification finished without a result")
                return
            self._complete(session, reply.result)
            return
        if status in _FAILED_POLL_STATUSES:
            self._fail(session, reply.error or f"Classification service reported '{status}'")
            return
        self._raise_progress(session, reply.progress)

    def _complete(self, session: AnalysisSession, result: AnalysisResult) -> None:
        if result.session_id != session.id:
            result = result.model_copy(update={"session_id": session.id})
        try:
            self._results.save(result.id, result)
        except PersistenceError as exc:
            logger.error("Could not store result %s for session %s: %s", result.id, session.id, exc)
            self._fail(session, f"Failed to store classification result: {exc}")
            return
        session.result_id = result.id
        session.progress = 100
        session.completed_at = self._clock.now()
        self._transition(session, SessionStatus.COMPLETED)

    def _fail(self, session: AnalysisSession, message: str) -> None:
        self._deferred.pop(session.id, None)
        session.error = message
        self._transition(session, SessionStatus.ERROR)
        logger.warning("Session %s failed: %s", session.id, message)

    def _intake_failed(self, session: AnalysisSession, message: str) -> AnalysisSession:
        if self._is_settled(session):
            logger.warning("Dropping intake failure for settled session %s", session.id)
            return self._snapshot(session)
        self._fail(session, message)
        raise IntakeError(message, session=self._snapshot(session))

    def _progression_failed(
        self, session: AnalysisSession, stage: str, exc: Exception
    ) -> AnalysisSession:
        if self._is_settled(session):
            logger.warning(
                "Dropping %s failure for settled session %s: %s", stage, session.id, exc
            )
            return self._snapshot(session)
        if isinstance(exc, asyncio.TimeoutError):
            message = (
                f"Classification service did not respond within {self._call_timeout:g}s"
            )
        elif isinstance(exc, ValidationError):
            message = f"Malformed {stage} response: {exc.error_count()} invalid field(s)"
        else:
            message = f"{stage.capitalize()} failed: {exc}"
        self._fail(session, message)
        return self._snapshot(session)

    def _transition(self, session: AnalysisSession, status: SessionStatus) -> None:
        if session.status.is_terminal:
            raise SessionTerminalError(session.id, session.status.value)
        previous = session.status
        session.status = status
        if status is not previous:
            logger.info("Session %s: %s -> %s", session.id, previous.value, status.value)
        if status.is_terminal:
            self._settled[session.id] = None
            self._prune_settled()

    def _prune_settled(self) -> None:
        """Forget the oldest terminal sessions beyond the retention limit."""
        while len(self._settled) > self._session_retention:
            oldest = next(iter(self._settled))
            logger.debug("Evicting settled session %s", oldest)
            self._forget(oldest)

    def _raise_progress(self, session: AnalysisSession, reported: float | None) -> None:
        if reported is None:
            return
        value = max(0, min(100, int(reported)))
        if value < session.progress:
            logger.warning(
                "Session %s progress went backwards (%d -> %d); keeping %d",
                session.id,
                session.progress,
                value,
                session.progress,
            )
            return
        session.progress = value

    @staticmethod
    def _append_questions(
        session: AnalysisSession, questions: Iterable[AnalysisQuestion]
    ) -> None:
        known = {item.id for item in session.questions}
        for question in questions:
            if question.id in known:
                logger.warning(
                    "Session %s: ignoring re-issued question %s", session.id, question.id
                )
                continue
            session.questions.append(question)
            known.add(question.id)

    async def _call(self, awaitable: Awaitable[Any]) -> Any:
        return await asyncio.wait_for(awaitable, timeout=self._call_timeout)

    async def _cancel_remote(self, session_id: str, remote_id: str) -> bool:
        try:
            await self._call(self._classifier.cancel_session(session_id=remote_id))
        except (ClassificationServiceError, asyncio.TimeoutError) as exc:
            logger.warning("Remote cancellation of session %s failed: %s", session_id, exc)
            return False
        return True

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def _remote_id(self, session_id: str) -> str:
        return self._remote_ids.get(session_id, session_id)

    def _require(self, session_id: str) -> AnalysisSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _is_settled(self, session: AnalysisSession) -> bool:
        return session.status.is_terminal or self._sessions.get(session.id) is not session

    @staticmethod
    def _ensure_active(session: AnalysisSession) -> None:
        if session.status.is_terminal:
            raise SessionTerminalError(session.id, session.status.value)

    def _ensure_status(
        self, session: AnalysisSession, expected: SessionStatus, operation: str
    ) -> None:
        self._ensure_active(session)
        if session.status is not expected:
            raise InvalidTransitionError(session.id, session.status.value, operation)

    def _forget(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._remote_ids.pop(session_id, None)
        self._locks.pop(session_id, None)
        self._deferred.pop(session_id, None)
        self._settled.pop(session_id, None)

    @staticmethod
    def _snapshot(session: AnalysisSession) -> AnalysisSession:
        return session.model_copy(deep=True)


def _ensure_unique_ids(questions: Iterable[AnalysisQuestion]) -> None:
    seen: set[str] = set()
    for question in questions:
        if question.id in seen:
            raise ValueError(f"duplicate question id '{question.id}'")
        seen.add(question.id)


__all__ = ["AnalysisWorkflow", "DEFAULT_SESSION_RETENTION"]
