from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import logging

from ....core.database import get_async_db
from ....models.user import User
from ....api.deps import get_current_admin, get_supervisor
from ....proctoring.actor import ActionResult
from ....schemas.exam_session import (
    ExamSessionCreate, ExamSessionResponse, ExamSessionStarted, SessionActionResponse,
    AnswerSubmit, NavigateRequest, SessionQuestions, QuestionPublic,
)
from ....schemas.incident import SecurityIncidentResponse, IncidentStatistics
from ....schemas.realtime import FaceSampleData, BrowserEventData
from ....services.exam_session_service import ExamSessionService
from ....services.incident_service import IncidentService

logger = logging.getLogger(__name__)

router = APIRouter()


def action_response(result: ActionResult) -> SessionActionResponse:
    return SessionActionResponse(
        session=ExamSessionResponse(**result.session),
        warning=result.warning,
        block_default=result.block_default,
        require_fullscreen=result.require_fullscreen,
    )


@router.post("", response_model=ExamSessionStarted)
async def create_exam_session(
    payload: ExamSessionCreate,
    db: AsyncSession = Depends(get_async_db)
):
    """Start (or resume) the exam bound to a hall ticket"""
    service = ExamSessionService(db)
    db_session, created = await service.create_session(payload.hall_ticket_id)
    response = ExamSessionStarted.model_validate(db_session)
    response.require_fullscreen = response.status == "in_progress"
    return response


@router.get("", response_model=List[ExamSessionResponse])
async def list_exam_sessions(
    current_admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_async_db)
):
    return await ExamSessionService(db).list_sessions()


@router.get("/{session_id}", response_model=ExamSessionResponse)
async def get_exam_session(
    session_id: str,
    db: AsyncSession = Depends(get_async_db),
    supervisor=Depends(get_supervisor)
):
    db_session = await ExamSessionService(db).get_session(session_id)
    actor = supervisor.get_live_actor(session_id)
    if actor is not None:
        # the countdown is only written to the database every few ticks
        return ExamSessionResponse(**actor.machine.snapshot(), is_verified=bool(db_session.is_verified))
    return db_session


@router.get("/{session_id}/questions", response_model=SessionQuestions)
async def get_session_questions(
    session_id: str,
    db: AsyncSession = Depends(get_async_db),
    supervisor=Depends(get_supervisor)
):
    """Questions in presentation order; fetching them starts the countdown"""
    questions = await ExamSessionService(db).get_session_questions(session_id)
    await supervisor.questions_loaded(session_id)
    return SessionQuestions(
        session_id=session_id,
        questions=[QuestionPublic.model_validate(q) for q in questions],
    )


@router.post("/{session_id}/answers", response_model=SessionActionResponse)
async def submit_answer(session_id: str, payload: AnswerSubmit, supervisor=Depends(get_supervisor)):
    result = await supervisor.answer(session_id, payload.option, payload.question_index)
    return action_response(result)


@router.post("/{session_id}/navigate", response_model=SessionActionResponse)
async def navigate(session_id: str, payload: NavigateRequest, supervisor=Depends(get_supervisor)):
    result = await supervisor.navigate(session_id, payload.question_index)
    return action_response(result)


@router.post("/{session_id}/resume", response_model=SessionActionResponse)
async def resume_exam(session_id: str, supervisor=Depends(get_supervisor)):
    result = await supervisor.resume(session_id)
    return action_response(result)


@router.post("/{session_id}/submit", response_model=SessionActionResponse)
async def submit_exam(session_id: str, supervisor=Depends(get_supervisor)):
    result = await supervisor.submit(session_id)
    return action_response(result)


@router.post("/{session_id}/face-samples", response_model=SessionActionResponse)
async def report_face_sample(session_id: str, payload: FaceSampleData, supervisor=Depends(get_supervisor)):
    result = await supervisor.face_sample(session_id, payload.to_sample())
    return action_response(result)


@router.post("/{session_id}/browser-events", response_model=SessionActionResponse)
async def report_browser_event(session_id: str, payload: BrowserEventData, supervisor=Depends(get_supervisor)):
    result = await supervisor.browser_event(session_id, payload.to_event())
    return action_response(result)


@router.get("/{session_id}/incidents", response_model=List[SecurityIncidentResponse])
async def get_session_incidents(
    session_id: str,
    current_admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_async_db)
):
    await ExamSessionService(db).get_session(session_id)
    return await IncidentService(db).list_incidents(session_id)


@router.get("/{session_id}/incident-stats", response_model=IncidentStatistics)
async def get_incident_statistics(
    session_id: str,
    current_admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_async_db)
):
    """Incident totals by type and severity plus a timeline for one session"""
    await ExamSessionService(db).get_session(session_id)
    return await IncidentService(db).get_statistics(session_id)
