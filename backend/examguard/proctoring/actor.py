"""
One actor per live exam session.

Every input for a session (face samples, browser events, student actions,
timer ticks) becomes a command in the actor's inbox and is handled by a
single task, so the rolling counters and the state machine are only ever
touched by one coroutine at a time. The actor closes itself once the session
is finalized and nothing is left in its inbox.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field, fields
from typing import Optional, Dict, Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import joinedload

from ..core.exceptions import ProctoringError, SessionPersistenceError, InvalidSessionState
from ..models.exam_session import ExamSession
from .classifier import (
    ViolationClassifier, ClassifierCounters, FaceSample, BrowserEvent,
    ViolationEvent, ViolationKind, Severity,
)
from .policy import EscalationPolicy, PolicyAction
from .state_machine import ExamSessionMachine, SessionState, SessionStatus, SubmitReason, is_terminal
from .timer import SessionTimer

logger = logging.getLogger(__name__)

PAUSE_MESSAGE = "Exam paused due to a security violation. Re-enter fullscreen and resume to continue."
AUTO_SUBMIT_MESSAGE = "Too many security violations. Your exam will be submitted automatically."


class ActorClosed(RuntimeError):
    pass


@dataclass
class FaceSampleReceived:
    sample: FaceSample


@dataclass
class BrowserEventReceived:
    event: BrowserEvent


@dataclass
class AnswerQuestion:
    option: str
    question_index: Optional[int] = None


@dataclass
class Navigate:
    question_index: int


@dataclass
class Resume:
    pass


@dataclass
class Submit:
    reason: SubmitReason = SubmitReason.MANUAL


@dataclass
class Tick:
    pass


@dataclass
class QuestionsLoaded:
    pass


@dataclass
class ConnectionLost:
    pass


@dataclass
class StudentReconnected:
    pass


@dataclass
class ActionResult:
    session: Dict[str, Any]
    warning: Optional[str] = None
    block_default: bool = False
    require_fullscreen: bool = False
    status: Optional[Dict[str, Any]] = None
    incident: Optional[Dict[str, Any]] = None
    policy_action: Optional[str] = None


@dataclass
class StudentDisplay:
    student_name: Optional[str] = None
    roll_number: Optional[str] = None


@dataclass
class ActorOptions:
    timer_interval: float = 1.0
    persist_every_ticks: int = 10
    auto_submit_grace_seconds: float = 2.0
    clock: Callable[[], float] = field(default=time.monotonic)


class DatabaseSessionStore:
    """Loads and saves session state through short-lived database sessions"""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def load(self, session_id: str):
        async with self.session_factory() as db:
            result = await db.execute(
                select(ExamSession)
                .options(joinedload(ExamSession.hall_ticket))
                .filter(ExamSession.id == session_id)
            )
            db_session = result.scalars().first()
            if db_session is None:
                return None, None

            display = StudentDisplay()
            if db_session.hall_ticket is not None:
                display = StudentDisplay(
                    student_name=db_session.hall_ticket.student_name,
                    roll_number=db_session.hall_ticket.roll_number,
                )
            return SessionState.from_model(db_session), display

    async def save(self, state: SessionState):
        async with self.session_factory() as db:
            result = await db.execute(select(ExamSession).filter(ExamSession.id == state.id))
            db_session = result.scalars().first()
            if db_session is None:
                raise SessionPersistenceError(f"Session {state.id} disappeared from the database")
            if is_terminal(db_session.status):
                # finalized rows are never rewritten; adopt what is stored (e.g. by the overdue-session task)
                was_terminal = state.is_terminal
                final = SessionState.from_model(db_session)
                for f in fields(state):
                    setattr(state, f.name, getattr(final, f.name))
                if was_terminal:
                    return
                raise InvalidSessionState(f"Session {state.id} was already finalized")
            state.apply_to(db_session)
            await db.commit()


class SessionActor:
    def __init__(
        self,
        state: SessionState,
        store: DatabaseSessionStore,
        sink,
        fanout,
        classifier: ViolationClassifier,
        policy: EscalationPolicy,
        display: Optional[StudentDisplay] = None,
        options: Optional[ActorOptions] = None,
        on_closed: Optional[Callable[["SessionActor"], None]] = None,
    ):
        self.machine = ExamSessionMachine(state)
        self.store = store
        self.sink = sink
        self.fanout = fanout
        self.classifier = classifier
        self.policy = policy
        self.display = display or StudentDisplay()
        self.options = options or ActorOptions()
        self.on_closed = on_closed

        self.counters = ClassifierCounters(violation_count=state.violation_count)
        self.timer = SessionTimer(state.id, self._post_tick, self.options.timer_interval)
        self.questions_loaded = False
        self.closed = False

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._ticks_since_save = 0
        self._terminal_unsaved = False
        self._pending_submit: Optional[asyncio.TimerHandle] = None
        self._closed_event = asyncio.Event()

    @property
    def session_id(self) -> str:
        return self.machine.state.id

    @property
    def state(self) -> SessionState:
        return self.machine.state

    def start(self):
        self._task = asyncio.create_task(self._run(), name=f"exam-session-{self.session_id}")

    async def ask(self, command) -> ActionResult:
        if self.closed:
            raise ActorClosed(self.session_id)
        future = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait((command, future))
        return await future

    def post(self, command) -> bool:
        if self.closed:
            return False
        self._inbox.put_nowait((command, None))
        return True

    async def _post_tick(self):
        self.post(Tick())

    async def _run(self):
        while True:
            command, future = await self._inbox.get()
            try:
                result = await self._handle(command)
            except Exception as e:
                if future is not None and not future.done():
                    future.set_exception(e)
                else:
                    logger.error(f"Session {self.session_id} failed to handle {type(command).__name__}: {e}",
                                 exc_info=True)
            else:
                if future is not None and not future.done():
                    future.set_result(result)

            if self.state.is_terminal and not self._terminal_unsaved and self._inbox.empty():
                self._close()
                return

    def _close(self):
        self.closed = True
        self._closed_event.set()
        self.timer.cancel()
        if self._pending_submit is not None:
            self._pending_submit.cancel()
            self._pending_submit = None
        logger.info(f"Session actor for {self.session_id} closed ({self.state.status.value})")
        if self.on_closed is not None:
            self.on_closed(self)

    async def wait_closed(self):
        await self._closed_event.wait()

    async def stop(self):
        """Tear the actor down without finalizing the session"""
        if self.closed:
            return
        self._close()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        while not self._inbox.empty():
            _, future = self._inbox.get_nowait()
            if future is not None and not future.done():
                future.set_exception(ActorClosed(self.session_id))

    async def _handle(self, command) -> ActionResult:
        if isinstance(command, FaceSampleReceived):
            return await self._on_face_sample(command.sample)
        if isinstance(command, BrowserEventReceived):
            return await self._on_browser_event(command.event)
        if isinstance(command, AnswerQuestion):
            self.machine.record_answer(command.option, command.question_index)
            await self._save()
            return self._result()
        if isinstance(command, Navigate):
            self.machine.navigate(command.question_index)
            await self._save()
            return self._result()
        if isinstance(command, Resume):
            return await self._on_resume()
        if isinstance(command, Submit):
            return await self._on_submit(command.reason)
        if isinstance(command, Tick):
            return await self._on_tick()
        if isinstance(command, QuestionsLoaded):
            self.questions_loaded = True
            if self.state.status == SessionStatus.IN_PROGRESS:
                self.timer.start()
            return self._result()
        if isinstance(command, ConnectionLost):
            return await self._on_connection_lost()
        if isinstance(command, StudentReconnected):
            if self.questions_loaded and self.state.status == SessionStatus.IN_PROGRESS:
                self.timer.start()
            return self._result()
        raise TypeError(f"Unknown session command {command!r}")

    def _result(self, **kwargs) -> ActionResult:
        return ActionResult(session=self.machine.snapshot(), **kwargs)

    def _display_fields(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "studentId": self.state.student_id,
            "studentName": self.display.student_name,
            "rollNumber": self.display.roll_number,
        }

    async def _record_incident(self, violation: ViolationEvent) -> Optional[Dict[str, Any]]:
        try:
            return await self.sink.record(violation, self.display.student_name, self.display.roll_number)
        except Exception as e:
            logger.error(f"Incident sink failed for session {self.session_id}: {e}", exc_info=True)
            return None

    def _warn_student(self, message: str, **extra):
        self.fanout.send_to_session(self.session_id, "warning", {"message": message, **extra})

    def _publish_state(self):
        self.fanout.send_to_session(self.session_id, "session_state", self.machine.snapshot())

    def _publish_policy(self, action: PolicyAction, **extra):
        data = {**self._display_fields(), "action": action.value,
                "violationCount": self.counters.violation_count, **extra}
        self.fanout.broadcast_to_admins("policy_update", data)
        logger.info(f"Policy update: {action.value} for session {self.session_id}")

    async def _on_face_sample(self, sample: FaceSample) -> ActionResult:
        if self.state.status not in (SessionStatus.IN_PROGRESS, SessionStatus.PAUSED):
            return self._result()

        outcome = self.classifier.classify_face(self.session_id, sample, self.counters, now=self.options.clock())

        if outcome.warning:
            self._warn_student(outcome.warning, lookAwayCount=self.counters.look_away_count)

        incident = None
        if outcome.violation is not None:
            incident = await self._record_incident(outcome.violation)

        if outcome.status is not None:
            self.fanout.broadcast_to_admins("student_status", {**self._display_fields(), **outcome.status})

        return self._result(warning=outcome.warning, status=outcome.status, incident=incident)

    async def _on_browser_event(self, event: BrowserEvent) -> ActionResult:
        if self.state.status != SessionStatus.IN_PROGRESS:
            return self._result(block_default=self.classifier.blocks_default(event))

        outcome = self.classifier.classify_browser(self.session_id, event, self.counters, session_active=True)
        if outcome.violation is None:
            return self._result(block_default=outcome.block_default)

        count = self.counters.violation_count
        self.machine.record_browser_violation(count)
        action = self.policy.decide(count)
        warning = outcome.warning
        require_fullscreen = False

        if action == PolicyAction.PAUSE:
            self.machine.pause()
            self.timer.cancel()
            warning = PAUSE_MESSAGE
            require_fullscreen = True

        await self._save()

        incident = await self._record_incident(outcome.violation)

        if action == PolicyAction.PAUSE:
            self._publish_policy(action, reason=outcome.violation.kind.value)
            self._publish_state()
        elif action == PolicyAction.WARN:
            self.fanout.broadcast_to_admins("student_status", {
                **self._display_fields(),
                "status": "warning",
                "violationCount": count,
                "lastViolation": outcome.violation.kind.value,
            })
        elif action == PolicyAction.AUTO_SUBMIT:
            warning = AUTO_SUBMIT_MESSAGE
            self._schedule_auto_submit()

        self._warn_student(warning, violationCount=count, action=action.value)

        return self._result(
            warning=warning,
            block_default=outcome.block_default,
            require_fullscreen=require_fullscreen,
            incident=incident,
            policy_action=action.value,
        )

    def _schedule_auto_submit(self):
        grace = self.options.auto_submit_grace_seconds
        if self._pending_submit is not None:
            return
        loop = asyncio.get_running_loop()
        self._pending_submit = loop.call_later(grace, self.post, Submit(SubmitReason.VIOLATIONS))
        logger.warning(f"Session {self.session_id} reached the violation limit, auto-submitting in {grace}s")

    async def _on_resume(self) -> ActionResult:
        self.machine.resume()
        if self.questions_loaded:
            self.timer.start()
        await self._save()
        self._publish_state()
        return self._result(require_fullscreen=True)

    async def _on_submit(self, reason: SubmitReason) -> ActionResult:
        changed = self.machine.submit(reason)
        if not changed and not self._terminal_unsaved:
            return self._result()

        self.timer.cancel()
        if self._pending_submit is not None:
            self._pending_submit.cancel()
            self._pending_submit = None

        await self._save_terminal()

        # a retried save publishes the reason recorded by the first submit
        final_reason = self.state.submit_reason or SubmitReason(reason)
        if final_reason != SubmitReason.MANUAL:
            self._publish_policy(PolicyAction.AUTO_SUBMIT, reason=final_reason.value)
        self._publish_state()
        logger.info(f"Session {self.session_id} submitted ({final_reason.value})")
        return self._result()

    async def _on_tick(self) -> ActionResult:
        # ticks queued before a cancel are stale
        if self.state.status != SessionStatus.IN_PROGRESS or not self.timer.running:
            return self._result()

        if self.machine.tick():
            return await self._on_submit(SubmitReason.TIME_EXPIRED)

        self._ticks_since_save += 1
        if self._ticks_since_save >= self.options.persist_every_ticks:
            self._ticks_since_save = 0
            try:
                await self.store.save(self.state)
            except Exception as e:
                logger.warning(f"Could not persist countdown for session {self.session_id}: {e}")
        return self._result()

    async def _on_connection_lost(self) -> ActionResult:
        if self.state.status != SessionStatus.IN_PROGRESS:
            return self._result()

        # the student is not looking at the exam; the countdown waits for a reconnect
        self.timer.cancel()
        self._ticks_since_save = 0
        try:
            await self.store.save(self.state)
        except Exception as e:
            logger.warning(f"Could not persist countdown for session {self.session_id} on disconnect: {e}")

        incident = await self._record_incident(ViolationEvent(
            session_id=self.session_id,
            kind=ViolationKind.NETWORK_DISCONNECT,
            severity=Severity.LOW,
            description="Student connection closed during the exam",
            metadata={"violationCount": self.counters.violation_count},
        ))
        return self._result(incident=incident)

    async def _save(self):
        self._ticks_since_save = 0
        try:
            await self.store.save(self.state)
        except ProctoringError:
            raise
        except Exception as e:
            logger.error(f"Failed to persist session {self.session_id}: {e}", exc_info=True)
            raise SessionPersistenceError(f"Session {self.session_id} could not be saved") from e

    async def _save_terminal(self):
        try:
            await self._save()
        except SessionPersistenceError:
            self._terminal_unsaved = True
            logger.critical(
                f"Submission of session {self.session_id} was NOT persisted; retry the submit to save it"
            )
            raise
        self._terminal_unsaved = False
