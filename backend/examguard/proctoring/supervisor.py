import asyncio
import logging
from collections import defaultdict
from typing import Dict, Optional

from ..core.config import settings
from ..core.exceptions import SessionNotFound
from .actor import (
    SessionActor, DatabaseSessionStore, ActorOptions, ActorClosed, ActionResult,
    FaceSampleReceived, BrowserEventReceived, AnswerQuestion, Navigate, Resume,
    Submit, QuestionsLoaded, ConnectionLost, StudentReconnected,
)
from .classifier import ViolationClassifier, FaceSample, BrowserEvent
from .incident_sink import IncidentSink
from .policy import EscalationPolicy, policy_from_settings
from .state_machine import SubmitReason

logger = logging.getLogger(__name__)


class SessionSupervisor:
    """Creates, looks up and disposes the per-session actors"""

    def __init__(
        self,
        session_factory,
        fanout,
        sink: Optional[IncidentSink] = None,
        classifier: Optional[ViolationClassifier] = None,
        policy: Optional[EscalationPolicy] = None,
        options: Optional[ActorOptions] = None,
    ):
        self.store = DatabaseSessionStore(session_factory)
        self.fanout = fanout
        self.sink = sink or IncidentSink(session_factory, fanout)
        self.classifier = classifier or ViolationClassifier(
            look_away_alert_threshold=settings.look_away_alert_threshold,
            status_broadcast_interval=settings.status_broadcast_interval_seconds,
        )
        self.policy = policy or policy_from_settings()
        self.options = options or ActorOptions(
            timer_interval=settings.timer_tick_seconds,
            persist_every_ticks=settings.timer_persist_every_ticks,
            auto_submit_grace_seconds=settings.auto_submit_grace_seconds,
        )
        self._actors: Dict[str, SessionActor] = {}
        self._load_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def active_session_ids(self):
        return list(self._actors.keys())

    def get_live_actor(self, session_id: str) -> Optional[SessionActor]:
        actor = self._actors.get(session_id)
        if actor is None or actor.closed:
            return None
        return actor

    async def get_actor(self, session_id: str) -> SessionActor:
        actor = self.get_live_actor(session_id)
        if actor is not None:
            return actor

        async with self._load_locks[session_id]:
            actor = self.get_live_actor(session_id)
            if actor is not None:
                return actor

            state, display = await self.store.load(session_id)
            if state is None:
                raise SessionNotFound(f"Exam session {session_id} not found")

            actor = SessionActor(
                state=state,
                store=self.store,
                sink=self.sink,
                fanout=self.fanout,
                classifier=self.classifier,
                policy=self.policy,
                display=display,
                options=self.options,
                on_closed=self._on_actor_closed,
            )
            actor.start()
            self._actors[session_id] = actor
            logger.debug(f"Session actor started for {session_id} ({state.status.value})")
            return actor

    def _on_actor_closed(self, actor: SessionActor):
        if self._actors.get(actor.session_id) is actor:
            del self._actors[actor.session_id]
        self._load_locks.pop(actor.session_id, None)
        self.sink.forget_session(actor.session_id)

    async def ask(self, session_id: str, command) -> ActionResult:
        # an actor can close between lookup and ask; the reloaded one sees the stored final state
        for _ in range(3):
            actor = await self.get_actor(session_id)
            try:
                return await actor.ask(command)
            except ActorClosed:
                continue
        raise ActorClosed(session_id)

    async def face_sample(self, session_id: str, sample: FaceSample) -> ActionResult:
        return await self.ask(session_id, FaceSampleReceived(sample))

    async def browser_event(self, session_id: str, event: BrowserEvent) -> ActionResult:
        return await self.ask(session_id, BrowserEventReceived(event))

    async def answer(self, session_id: str, option: str, question_index: Optional[int] = None) -> ActionResult:
        return await self.ask(session_id, AnswerQuestion(option, question_index))

    async def navigate(self, session_id: str, question_index: int) -> ActionResult:
        return await self.ask(session_id, Navigate(question_index))

    async def resume(self, session_id: str) -> ActionResult:
        return await self.ask(session_id, Resume())

    async def submit(self, session_id: str) -> ActionResult:
        """Student-initiated submit; auto-submits only come from the actor itself"""
        return await self.ask(session_id, Submit(SubmitReason.MANUAL))

    async def questions_loaded(self, session_id: str) -> ActionResult:
        return await self.ask(session_id, QuestionsLoaded())

    async def connection_lost(self, session_id: str) -> Optional[ActionResult]:
        try:
            return await self.ask(session_id, ConnectionLost())
        except SessionNotFound:
            logger.info(f"Connection closed for unknown session {session_id}")
            return None

    async def student_reconnected(self, session_id: str) -> Optional[ActionResult]:
        try:
            return await self.ask(session_id, StudentReconnected())
        except SessionNotFound:
            logger.info(f"Student connected to unknown session {session_id}")
            return None

    async def dispose(self, session_id: str):
        actor = self._actors.pop(session_id, None)
        if actor is not None:
            await actor.stop()

    async def shutdown(self):
        for session_id in list(self._actors.keys()):
            await self.dispose(session_id)
        logger.info("Session supervisor stopped")
