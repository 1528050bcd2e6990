"""
FastAPI routes for the HS code analysis agent.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import JSONResponse

from hscode_agent.core.errors import (
    AnalysisCoreError,
    IntakeError,
    InvalidQuestionError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    SessionTerminalError,
)
from hscode_agent.dependencies import (
    get_analysis_workflow,
    get_dashboard_service,
    get_notification_ledger,
    get_notification_settings_service,
    get_result_cache,
)
from hscode_agent.schemas import (
    AnalysisResult,
    AnalysisSession,
    BookmarkToggleResponse,
    CombinedQueryView,
    Notification,
    NotificationCreate,
    NotificationLedgerView,
    NotificationSettings,
    NotificationSettingsUpdate,
    StartAnalysisRequest,
    SubmitAnswerRequest,
)
from hscode_agent.schemas.notification import NotificationCategory

router = APIRouter()
logger = logging.getLogger(__name__)


_STATUS_FOR_ERROR: tuple[tuple[type[AnalysisCoreError], HTTPStatus], ...] = (
    (NotFoundError, HTTPStatus.NOT_FOUND),
    (InvalidQuestionError, HTTPStatus.UNPROCESSABLE_ENTITY),
    (SessionTerminalError, HTTPStatus.CONFLICT),
    (InvalidTransitionError, HTTPStatus.CONFLICT),
    (IntakeError, HTTPStatus.BAD_GATEWAY),
    (PersistenceError, HTTPStatus.SERVICE_UNAVAILABLE),
)


def _http_error(exc: AnalysisCoreError) -> HTTPException:
    for error_type, status in _STATUS_FOR_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status, detail=str(exc))
    return HTTPException(status_code=HTTPStatus.INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.post(
    "/analysis/sessions",
    response_model=AnalysisSession,
    status_code=HTTPStatus.CREATED,
)
async def start_analysis(
    payload: StartAnalysisRequest,
    workflow: Annotated[Any, Depends(get_analysis_workflow)],
    dashboard: Annotated[Any, Depends(get_dashboard_service)],
) -> Any:
    """Open a classification session for a product description."""
    try:
        session = await workflow.start(payload.query, payload.options)
    except IntakeError as exc:
        body: dict[str, Any] = {"detail": str(exc)}
        if exc.session is not None:
            body["session"] = exc.session.model_dump(mode="json", by_alias=True)
        return JSONResponse(status_code=HTTPStatus.BAD_GATEWAY, content=body)
    dashboard.invalidate()
    return session


@router.get("/analysis/sessions", response_model=list[AnalysisSession])
async def list_sessions(
    workflow: Annotated[Any, Depends(get_analysis_workflow)],
) -> Any:
    return workflow.list_sessions()


@router.get("/analysis/sessions/{session_id}", response_model=AnalysisSession)
async def get_session(
    session_id: str,
    workflow: Annotated[Any, Depends(get_analysis_workflow)],
) -> Any:
    try:
        return workflow.get(session_id)
    except AnalysisCoreError as exc:
        raise _http_error(exc) from exc


@router.post(
    "/analysis/sessions/{session_id}/answers", response_model=AnalysisSession
)
async def submit_answer(
    session_id: str,
    payload: SubmitAnswerRequest,
    workflow: Annotated[Any, Depends(get_analysis_workflow)],
    dashboard: Annotated[Any, Depends(get_dashboard_service)],
) -> Any:
    """Answer one clarifying question.

    Collaborator failures come back as a session in the ``error`` state rather
    than an HTTP error so the client can show the terminal message in place.
    """
    try:
        session = await workflow.submit_answer(
            session_id, payload.question_id, payload.answer
        )
    except AnalysisCoreError as exc:
        raise _http_error(exc) from exc
    dashboard.invalidate()
    return session


@router.post("/analysis/sessions/{session_id}/poll", response_model=AnalysisSession)
async def poll_session(
    session_id: str,
    workflow: Annotated[Any, Depends(get_analysis_workflow)],
    dashboard: Annotated[Any, Depends(get_dashboard_service)],
    wait: bool = Query(
        default=False,
        description="Keep polling until the session leaves the processing state.",
    ),
) -> Any:
    try:
        if wait:
            session = await workflow.wait_for_result(session_id)
        else:
            session = await workflow.poll(session_id)
    except AnalysisCoreError as exc:
        raise _http_error(exc) from exc
    dashboard.invalidate()
    return session


@router.post("/analysis/sessions/{session_id}/view", response_model=AnalysisSession)
async def mark_session_viewed(
    session_id: str,
    workflow: Annotated[Any, Depends(get_analysis_workflow)],
) -> Any:
    try:
        return workflow.mark_viewed(session_id)
    except AnalysisCoreError as exc:
        raise _http_error(exc) from exc


@router.delete("/analysis/sessions/{session_id}", response_model=AnalysisSession)
async def cancel_session(
    session_id: str,
    workflow: Annotated[Any, Depends(get_analysis_workflow)],
    dashboard: Annotated[Any, Depends(get_dashboard_service)],
) -> Any:
    """Cancel locally first, then let the classification service know."""
    try:
        session = workflow.cancel(session_id)
    except AnalysisCoreError as exc:
        raise _http_error(exc) from exc
    await workflow.notify_cancelled(session_id)
    dashboard.invalidate()
    return session


@router.get("/results/recent", response_model=list[AnalysisResult])
async def recent_results(
    cache: Annotated[Any, Depends(get_result_cache)],
    limit: int = Query(default=10, ge=1, le=10),
) -> Any:
    return cache.get_recent(limit)


@router.get("/results/bookmarks", response_model=list[AnalysisResult])
async def bookmarked_results(
    cache: Annotated[Any, Depends(get_result_cache)],
) -> Any:
    return cache.get_bookmarked()


@router.get("/results/{result_id}", response_model=AnalysisResult)
async def get_result(
    result_id: str,
    cache: Annotated[Any, Depends(get_result_cache)],
) -> Any:
    """Return a cached result; a miss is a 404, distinct from a loading state."""
    result = cache.get(result_id)
    if result is not None:
        return result
    if cache.is_loading(result_id):
        return JSONResponse(
            status_code=HTTPStatus.ACCEPTED, content={"detail": "Result is loading."}
        )
    detail: dict[str, Any] = {"message": "Result not found."}
    error = cache.get_error(result_id)
    if error:
        detail["error"] = error
    raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=detail)


@router.delete("/results/{result_id}", status_code=HTTPStatus.NO_CONTENT)
async def delete_result(
    result_id: str,
    cache: Annotated[Any, Depends(get_result_cache)],
    dashboard: Annotated[Any, Depends(get_dashboard_service)],
) -> Response:
    try:
        cache.delete(result_id)
    except AnalysisCoreError as exc:
        raise _http_error(exc) from exc
    dashboard.invalidate()
    return Response(status_code=HTTPStatus.NO_CONTENT)


@router.post("/results/{result_id}/bookmark", response_model=BookmarkToggleResponse)
async def toggle_bookmark(
    result_id: str,
    cache: Annotated[Any, Depends(get_result_cache)],
    dashboard: Annotated[Any, Depends(get_dashboard_service)],
) -> Any:
    try:
        bookmarked = cache.toggle_bookmark(result_id)
    except AnalysisCoreError as exc:
        raise _http_error(exc) from exc
    dashboard.invalidate()
    return BookmarkToggleResponse(result_id=result_id, bookmarked=bookmarked)


@router.get("/notifications", response_model=NotificationLedgerView)
async def list_notifications(
    ledger: Annotated[Any, Depends(get_notification_ledger)],
    category: NotificationCategory | None = Query(default=None),
    unread: bool = Query(default=False, description="Only return unread entries."),
) -> Any:
    if category is not None:
        entries = ledger.by_category(category)
    else:
        entries = ledger.list()
    if unread:
        entries = [entry for entry in entries if not entry.read]
    return NotificationLedgerView(notifications=entries, unread_count=ledger.unread_count)


@router.post(
    "/notifications",
    response_model=Notification,
    status_code=HTTPStatus.CREATED,
)
async def add_notification(
    payload: NotificationCreate,
    ledger: Annotated[Any, Depends(get_notification_ledger)],
) -> Any:
    try:
        return ledger.add(payload)
    except AnalysisCoreError as exc:
        raise _http_error(exc) from exc


@router.post("/notifications/read-all", response_model=NotificationLedgerView)
async def mark_all_notifications_read(
    ledger: Annotated[Any, Depends(get_notification_ledger)],
) -> Any:
    try:
        ledger.mark_all_read()
    except AnalysisCoreError as exc:
        raise _http_error(exc) from exc
    return ledger.view()


@router.post("/notifications/clear-expired", status_code=HTTPStatus.OK)
async def clear_expired_notifications(
    ledger: Annotated[Any, Depends(get_notification_ledger)],
) -> dict:
    try:
        removed = ledger.clear_expired()
    except AnalysisCoreError as exc:
        raise _http_error(exc) from exc
    return {"removed": removed, "unreadCount": ledger.unread_count}


@router.post("/notifications/{notification_id}/read", response_model=Notification)
async def mark_notification_read(
    notification_id: str,
    ledger: Annotated[Any, Depends(get_notification_ledger)],
) -> Any:
    try:
        return ledger.mark_read(notification_id)
    except AnalysisCoreError as exc:
        raise _http_error(exc) from exc


@router.delete(
    "/notifications/{notification_id}", status_code=HTTPStatus.NO_CONTENT
)
async def remove_notification(
    notification_id: str,
    ledger: Annotated[Any, Depends(get_notification_ledger)],
) -> Response:
    try:
        ledger.remove(notification_id)
    except AnalysisCoreError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=HTTPStatus.NO_CONTENT)


@router.get(
    "/notification-settings/{user_id}", response_model=NotificationSettings
)
async def get_notification_settings(
    user_id: str,
    settings_service: Annotated[Any, Depends(get_notification_settings_service)],
) -> Any:
    try:
        return await settings_service.get(user_id)
    except AnalysisCoreError as exc:
        raise _http_error(exc) from exc


@router.put(
    "/notification-settings/{user_id}", response_model=NotificationSettings
)
async def update_notification_settings(
    user_id: str,
    payload: NotificationSettingsUpdate,
    settings_service: Annotated[Any, Depends(get_notification_settings_service)],
    dashboard: Annotated[Any, Depends(get_dashboard_service)],
) -> Any:
    try:
        settings = await settings_service.update(user_id, payload)
    except AnalysisCoreError as exc:
        raise _http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=HTTPStatus.UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    dashboard.invalidate()
    return settings


@router.get("/dashboard", response_model=CombinedQueryView)
async def dashboard_view(
    dashboard: Annotated[Any, Depends(get_dashboard_service)],
    user_id: str | None = Query(
        default=None, description="Signed-in user; enables per-user sources."
    ),
    refresh: bool = Query(default=False, description="Ignore cached data."),
) -> Any:
    return await dashboard.view(user_id, force=refresh)


@router.post("/auth/sign-out", status_code=HTTPStatus.OK)
async def sign_out(
    workflow: Annotated[Any, Depends(get_analysis_workflow)],
    cache: Annotated[Any, Depends(get_result_cache)],
    ledger: Annotated[Any, Depends(get_notification_ledger)],
    dashboard: Annotated[Any, Depends(get_dashboard_service)],
) -> dict:
    """Drop every piece of per-user state held by the process."""
    workflow.reset()
    try:
        cache.reset()
        ledger.clear_all()
    except AnalysisCoreError as exc:
        raise _http_error(exc) from exc
    dashboard.reset()
    logger.info("Signed out; cleared sessions, cached results and notifications")
    return {"status": "signed_out"}
