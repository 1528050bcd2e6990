try:
    from . import _bootstrap  # noqa: F401
    from .stubs import StubClassifier, build_result
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401
    from stubs import StubClassifier, build_result  # type: ignore

import asyncio

import pytest

from hscode_agent.clients.classification import ClassificationServiceError
from hscode_agent.core.errors import (
    IntakeError,
    InvalidQuestionError,
    InvalidTransitionError,
    SessionNotFoundError,
    SessionTerminalError,
)
from hscode_agent.core.scheduling import ManualClock
from hscode_agent.schemas import SessionStatus, StartOptions
from hscode_agent.services.analysis_workflow import AnalysisWorkflow
from hscode_agent.services.result_cache import ResultCache

SMARTPHONE_INTAKE = {
    "sessionId": "remote-1",
    "needsQuestions": True,
    "questions": [
        {
            "id": "q1",
            "text": "주요 용도는 무엇인가요?",
            "type": "multiple_choice",
            "options": ["개인용", "업무용"],
            "required": True,
        },
        {
            "id": "q2",
            "text": "셀룰러 통신을 지원하나요?",
            "type": "boolean",
            "required": True,
        },
    ],
    "estimatedTime": 30,
}

DIRECT_INTAKE = {"sessionId": "remote-2", "needsQuestions": False}


def _workflow(classifier: StubClassifier, **kwargs) -> tuple[AnalysisWorkflow, ResultCache]:
    cache = ResultCache()
    kwargs.setdefault("call_timeout", 1.0)
    workflow = AnalysisWorkflow(classifier, cache, clock=ManualClock(), **kwargs)
    return workflow, cache


@pytest.mark.asyncio
async def test_smartphone_session_completes_after_two_answers(classifier):
    workflow, cache = _workflow(classifier)
    classifier.start_replies.append(SMARTPHONE_INTAKE)
    classifier.answer_replies.extend(
        [
            {"completed": False, "progress": 50},
            {"completed": True, "progress": 100, "result": build_result("result-1")},
        ]
    )

    session = await workflow.start("스마트폰 HS 코드 분석")
    assert session.status is SessionStatus.AWAITING_QUESTIONS
    assert session.progress == 0
    assert [question.id for question in session.questions] == ["q1", "q2"]
    assert session.questions[0].options == ("개인용", "업무용")

    session = await workflow.submit_answer(session.id, "q1", "개인용")
    assert session.status is SessionStatus.AWAITING_QUESTIONS
    assert session.progress == 50
    assert session.result_id is None

    session = await workflow.submit_answer(session.id, "q2", "true")
    assert session.status is SessionStatus.COMPLETED
    assert session.result_id == "result-1"
    assert session.progress == 100
    assert session.completed_at is not None
    assert session.answers == {"q1": "개인용", "q2": "true"}

    assert cache.recent_ids()[0] == "result-1"
    stored = cache.get("result-1")
    assert stored is not None
    assert stored.session_id == session.id
    assert stored.recommended_code == "8517.13"

    answer_calls = [kwargs for name, kwargs in classifier.calls if name == "answer"]
    assert {call["session_id"] for call in answer_calls} == {"remote-1"}


@pytest.mark.asyncio
async def test_start_passes_options_to_intake(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append(DIRECT_INTAKE)

    session = await workflow.start(
        "Stainless steel kitchen knife",
        StartOptions(intended_use="export", target_country="US"),
    )

    assert session.status is SessionStatus.PROCESSING
    name, kwargs = classifier.calls[0]
    assert name == "start"
    assert kwargs["session_id"] == session.id
    assert kwargs["options"] == {
        "intendedUse": "export",
        "targetCountry": "US",
        "urgency": "normal",
    }


@pytest.mark.asyncio
async def test_unknown_question_leaves_session_untouched(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append(SMARTPHONE_INTAKE)
    session = await workflow.start("스마트폰")

    with pytest.raises(InvalidQuestionError):
        await workflow.submit_answer(session.id, "q-unknown", "yes")

    assert workflow.get(session.id) == session
    assert [name for name, _ in classifier.calls] == ["start"]


@pytest.mark.asyncio
async def test_cancel_during_inflight_answer_drops_the_reply(classifier):
    workflow, cache = _workflow(classifier)
    classifier.start_replies.append(SMARTPHONE_INTAKE)
    session = await workflow.start("스마트폰")

    classifier.answer_replies.append(
        {"completed": True, "result": build_result("result-late")}
    )
    classifier.gate = asyncio.Event()
    classifier.entered.clear()
    pending = asyncio.create_task(workflow.submit_answer(session.id, "q1", "개인용"))
    await classifier.entered.wait()

    cancelled = workflow.cancel(session.id)
    classifier.gate.set()
    returned = await pending

    assert cancelled.status is SessionStatus.CANCELLED
    assert returned == cancelled
    assert workflow.get(session.id) == cancelled
    assert workflow.get(session.id).answers == {}
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_call_timeout_moves_session_to_error(classifier):
    workflow, _ = _workflow(classifier, call_timeout=0.05)
    classifier.start_replies.append(SMARTPHONE_INTAKE)
    session = await workflow.start("스마트폰")

    classifier.gate = asyncio.Event()
    classifier.answer_replies.append({"completed": False})
    session = await workflow.submit_answer(session.id, "q1", "개인용")

    assert session.status is SessionStatus.ERROR
    assert "did not respond" in session.error
    assert session.answers == {}


@pytest.mark.asyncio
async def test_collaborator_failure_during_answer_is_recorded(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append(SMARTPHONE_INTAKE)
    session = await workflow.start("스마트폰")
    classifier.answer_replies.append(ClassificationServiceError("503 upstream"))

    session = await workflow.submit_answer(session.id, "q1", "개인용")

    assert session.status is SessionStatus.ERROR
    assert "503 upstream" in session.error


@pytest.mark.asyncio
async def test_intake_failure_raises_with_failed_session(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append(ClassificationServiceError("connection refused"))

    with pytest.raises(IntakeError) as excinfo:
        await workflow.start("Cotton T-shirt")

    failed = excinfo.value.session
    assert failed.status is SessionStatus.ERROR
    assert "connection refused" in failed.error
    assert workflow.get(failed.id).status is SessionStatus.ERROR


@pytest.mark.asyncio
async def test_malformed_intake_is_an_intake_error(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append({"needsQuestions": True, "questions": []})

    with pytest.raises(IntakeError, match="Malformed intake response"):
        await workflow.start("Cotton T-shirt")


@pytest.mark.asyncio
async def test_wait_for_result_polls_until_completed(classifier):
    workflow, cache = _workflow(classifier)
    classifier.start_replies.append(DIRECT_INTAKE)
    classifier.poll_replies.extend(
        [
            {"status": "processing", "progress": 40},
            {"status": "processing", "progress": 80},
            {"status": "completed", "result": build_result("result-9", confidence=87)},
        ]
    )
    session = await workflow.start("Lithium-ion battery pack")

    session = await workflow.wait_for_result(session.id, interval=0, deadline=5)

    assert session.status is SessionStatus.COMPLETED
    assert session.result_id == "result-9"
    assert cache.get("result-9").confidence == pytest.approx(0.87)
    assert [name for name, _ in classifier.calls].count("poll") == 3


@pytest.mark.asyncio
async def test_wait_for_result_fails_after_deadline(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append(DIRECT_INTAKE)
    classifier.poll_replies.extend({"status": "processing"} for _ in range(200))
    session = await workflow.start("Lithium-ion battery pack")

    session = await workflow.wait_for_result(session.id, interval=0.01, deadline=0.05)

    assert session.status is SessionStatus.ERROR
    assert "did not finish" in session.error


@pytest.mark.asyncio
async def test_poll_reporting_failure_moves_session_to_error(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append(DIRECT_INTAKE)
    classifier.poll_replies.append({"status": "failed", "error": "model crashed"})
    session = await workflow.start("Lithium-ion battery pack")

    session = await workflow.poll(session.id)

    assert session.status is SessionStatus.ERROR
    assert session.error == "model crashed"


@pytest.mark.asyncio
async def test_completion_without_result_is_an_error(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append(DIRECT_INTAKE)
    classifier.poll_replies.append({"status": "completed"})
    session = await workflow.start("Lithium-ion battery pack")

    session = await workflow.poll(session.id)

    assert session.status is SessionStatus.ERROR
    assert session.result_id is None


@pytest.mark.asyncio
async def test_progress_never_goes_backwards(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append(DIRECT_INTAKE)
    classifier.poll_replies.extend(
        [
            {"status": "processing", "progress": 60},
            {"status": "processing", "progress": 30},
            {"status": "processing", "progress": 250},
        ]
    )
    session = await workflow.start("Lithium-ion battery pack")

    assert (await workflow.poll(session.id)).progress == 60
    assert (await workflow.poll(session.id)).progress == 60
    assert (await workflow.poll(session.id)).progress == 100


@pytest.mark.asyncio
async def test_questions_after_processing_reopen_clarification(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append(DIRECT_INTAKE)
    classifier.poll_replies.append(
        {
            "status": "processing",
            "additionalQuestions": [
                {"id": "q9", "text": "Battery capacity (Wh)?", "type": "number", "required": True}
            ],
        }
    )
    classifier.answer_replies.append(
        {"completed": True, "result": build_result("result-q9")}
    )
    session = await workflow.start("Lithium-ion battery pack")

    session = await workflow.poll(session.id)
    assert session.status is SessionStatus.AWAITING_QUESTIONS
    assert [question.id for question in session.questions] == ["q9"]

    session = await workflow.submit_answer(session.id, "q9", "98")
    assert session.status is SessionStatus.COMPLETED
    assert session.result_id == "result-q9"


@pytest.mark.asyncio
async def test_early_completion_waits_for_required_answers(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append(SMARTPHONE_INTAKE)
    classifier.answer_replies.extend(
        [
            {"completed": True, "result": build_result("result-early")},
            {"completed": False},
        ]
    )
    session = await workflow.start("스마트폰")

    session = await workflow.submit_answer(session.id, "q1", "개인용")
    assert session.status is SessionStatus.AWAITING_QUESTIONS
    assert session.result_id is None

    session = await workflow.submit_answer(session.id, "q2", "true")
    assert session.status is SessionStatus.COMPLETED
    assert session.result_id == "result-early"


@pytest.mark.asyncio
async def test_reissued_question_ids_are_not_duplicated(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append(SMARTPHONE_INTAKE)
    classifier.answer_replies.append(
        {
            "completed": False,
            "additionalQuestions": [
                {"id": "q2", "text": "duplicate"},
                {"id": "q3", "text": "Screen size?", "type": "number"},
            ],
        }
    )
    session = await workflow.start("스마트폰")

    session = await workflow.submit_answer(session.id, "q1", "개인용")

    assert [question.id for question in session.questions] == ["q1", "q2", "q3"]
    assert session.question("q2").text == "셀룰러 통신을 지원하나요?"


@pytest.mark.asyncio
async def test_calls_for_one_session_are_serialized(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append(SMARTPHONE_INTAKE)
    classifier.answer_replies.extend([{"completed": False}, {"completed": False}])
    session = await workflow.start("스마트폰")

    classifier.gate = asyncio.Event()
    classifier.entered.clear()
    first = asyncio.create_task(workflow.submit_answer(session.id, "q1", "개인용"))
    second = asyncio.create_task(workflow.submit_answer(session.id, "q2", "true"))
    await classifier.entered.wait()
    await asyncio.sleep(0.01)
    assert classifier.active == 1

    classifier.gate.set()
    await asyncio.gather(first, second)

    assert classifier.max_active == 1
    assert workflow.get(session.id).answers == {"q1": "개인용", "q2": "true"}


@pytest.mark.asyncio
async def test_concurrent_sessions_do_not_interfere(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.extend([SMARTPHONE_INTAKE, SMARTPHONE_INTAKE])
    classifier.answer_replies.extend([{"completed": False}, {"completed": False}])
    phone = await workflow.start("스마트폰")
    tablet = await workflow.start("태블릿")

    classifier.gate = asyncio.Event()
    first = asyncio.create_task(workflow.submit_answer(phone.id, "q1", "개인용"))
    second = asyncio.create_task(workflow.submit_answer(tablet.id, "q2", "false"))
    await asyncio.sleep(0.01)
    assert classifier.active == 2

    classifier.gate.set()
    await asyncio.gather(first, second)

    assert workflow.get(phone.id).answers == {"q1": "개인용"}
    assert workflow.get(tablet.id).answers == {"q2": "false"}
    assert phone.id != tablet.id


@pytest.mark.asyncio
async def test_terminal_sessions_reject_further_operations(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append(SMARTPHONE_INTAKE)
    session = await workflow.start("스마트폰")
    workflow.cancel(session.id)

    with pytest.raises(SessionTerminalError):
        await workflow.submit_answer(session.id, "q1", "개인용")
    with pytest.raises(SessionTerminalError):
        workflow.cancel(session.id)
    with pytest.raises(SessionTerminalError):
        await workflow.poll(session.id)


@pytest.mark.asyncio
async def test_operations_outside_their_phase_are_rejected(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.extend([SMARTPHONE_INTAKE, DIRECT_INTAKE])
    awaiting = await workflow.start("스마트폰")
    processing = await workflow.start("Lithium-ion battery pack")

    with pytest.raises(InvalidTransitionError):
        await workflow.poll(awaiting.id)
    with pytest.raises(InvalidTransitionError):
        await workflow.submit_answer(processing.id, "q1", "x")
    with pytest.raises(InvalidTransitionError):
        workflow.discard(processing.id)
    with pytest.raises(SessionNotFoundError):
        workflow.get("session_missing")


@pytest.mark.asyncio
async def test_notify_cancelled_reaches_the_remote_session(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append(SMARTPHONE_INTAKE)
    session = await workflow.start("스마트폰")

    workflow.cancel(session.id)
    assert await workflow.notify_cancelled(session.id) is True
    assert classifier.cancelled == ["remote-1"]


@pytest.mark.asyncio
async def test_cancel_during_intake_still_closes_the_remote_session(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append(SMARTPHONE_INTAKE)
    classifier.gate = asyncio.Event()
    pending = asyncio.create_task(workflow.start("스마트폰"))
    await classifier.entered.wait()

    session_id = workflow.list_sessions()[0].id
    workflow.cancel(session_id)
    assert await workflow.notify_cancelled(session_id) is False
    assert classifier.cancelled == []

    classifier.gate.set()
    returned = await pending

    assert returned.status is SessionStatus.CANCELLED
    assert returned.questions == []
    assert classifier.cancelled == ["remote-1"]


@pytest.mark.asyncio
async def test_oldest_settled_sessions_are_evicted(classifier):
    workflow, _ = _workflow(classifier, session_retention=2)
    classifier.start_replies.extend([dict(SMARTPHONE_INTAKE) for _ in range(4)])
    sessions = [await workflow.start(f"item {index}") for index in range(4)]

    for session in sessions[:3]:
        workflow.cancel(session.id)

    with pytest.raises(SessionNotFoundError):
        workflow.get(sessions[0].id)
    assert workflow.get(sessions[1].id).status is SessionStatus.CANCELLED
    assert workflow.get(sessions[2].id).status is SessionStatus.CANCELLED
    assert workflow.get(sessions[3].id).status is SessionStatus.AWAITING_QUESTIONS
    assert sessions[0].id not in workflow._locks
    assert sessions[0].id not in workflow._remote_ids


@pytest.mark.asyncio
async def test_reset_cancels_and_forgets_sessions(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.extend([SMARTPHONE_INTAKE, DIRECT_INTAKE])
    await workflow.start("스마트폰")
    await workflow.start("Lithium-ion battery pack")
    assert len(workflow.list_sessions()) == 2

    workflow.reset()

    assert workflow.list_sessions() == []


@pytest.mark.asyncio
async def test_discard_and_mark_viewed(classifier):
    workflow, _ = _workflow(classifier)
    classifier.start_replies.append(SMARTPHONE_INTAKE)
    session = await workflow.start("스마트폰")

    viewed = workflow.mark_viewed(session.id)
    assert viewed.last_viewed_at is not None

    workflow.cancel(session.id)
    workflow.discard(session.id)
    with pytest.raises(SessionNotFoundError):
        workflow.get(session.id)
