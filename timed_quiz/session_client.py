"""
Session client for the timed quiz.
Keeps a locally ticking countdown consistent with the session authority.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from .authority_client import AuthorityClient
from .countdown import SessionLifecycleLogger, SessionTimers
from .errors import AuthorityError, SessionStoreError
from .models import (
    ClientSettings,
    Quiz,
    Result,
    Session,
    SessionEvent,
    SessionEventType,
    SessionState,
    SessionStatus,
)
from .session_store import SessionStore


# Actions accepted by SessionClient._dispatch
STARTED = "started"
TICK = "tick"
SNAPSHOT = "snapshot"
FINISH = "finish"
RESULT = "result"
RESET = "reset"


class SessionClient:
    """
    Owns one quiz session: its identifier, the local countdown, the periodic
    resync against the authority, and answer submission.

    The authority is the source of truth. The local countdown only keeps the
    display moving between resyncs, and every resync overwrites it. All
    changes to the shared state go through _dispatch, which never awaits and
    therefore runs atomically on the event loop.
    """

    def __init__(
        self,
        authority: Optional[AuthorityClient] = None,
        store: Optional[SessionStore] = None,
        settings: Optional[ClientSettings] = None,
    ):
        """
        Initialize the session client.

        Args:
            authority: Client for the session authority; built from settings if None
            store: Persisted session id storage; built from settings if None
            settings: Client settings, defaults used if None
        """
        self.logger = logging.getLogger(__name__)
        self.settings = settings or ClientSettings()

        self._owns_authority = authority is None
        self.authority = authority or AuthorityClient(self.settings.authority_url)
        self.store = store or SessionStore(self.settings.session_file, self.settings.session_key)

        self.quiz: Optional[Quiz] = None
        self.state = SessionState()
        self._initialized = False

        self._timers = SessionTimers(
            self.settings.tick_interval,
            self.settings.resync_interval,
            on_tick=self.tick,
            on_resync=self.resync,
        )
        self._listeners: List[Callable[[SessionEvent], Any]] = []
        self._background: Set[asyncio.Task] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Read-only views

    @property
    def status(self) -> SessionStatus:
        return self.state.status

    @property
    def remaining(self) -> Optional[int]:
        return self.state.remaining

    @property
    def session_id(self) -> Optional[str]:
        return self.state.session_id

    @property
    def answers(self) -> Dict[Any, int]:
        return dict(self.state.answers)

    @property
    def result(self) -> Optional[Result]:
        return self.state.result

    @property
    def timers(self) -> SessionTimers:
        return self._timers

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # Event publication

    def add_listener(self, listener: Callable[[SessionEvent], Any]) -> None:
        """Subscribe to lifecycle events. Coroutine listeners run as tasks."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[SessionEvent], Any]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event_type: SessionEventType, **data) -> None:
        event = SessionEvent(
            type=event_type,
            status=self.state.status,
            remaining=self.state.remaining,
            session_id=self.state.session_id,
            data=data,
        )
        for listener in list(self._listeners):
            try:
                outcome = listener(event)
                if asyncio.iscoroutine(outcome):
                    self._track(asyncio.ensure_future(outcome))
            except Exception as e:
                self.logger.error(f"Session listener failed on {event_type.value}: {e}")

    def _track(self, task: asyncio.Future) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # State machine

    def _dispatch(self, action: str, session: Session = None, result: Result = None,
                  auto: bool = False) -> bool:
        """
        Apply one change to the shared session state.

        Returns:
            For TICK, True when the countdown just reached zero.
            For SNAPSHOT, True when the authority reports the session finished.
            For FINISH, True when this call moved the session into finished.
            False otherwise.
        """
        state = self.state
        previous = state.status

        if action == STARTED:
            state.session_id = session.session_id
            state.remaining = max(0, session.remaining)
            state.finished = session.finished
            state.status = SessionStatus.FINISHED if session.finished else SessionStatus.RUNNING
            self._log_transition(previous, state.status, "authority start response")
            self._emit(SessionEventType.STATUS_CHANGED, previous=previous.value)
            return False

        if action == TICK:
            if state.status is not SessionStatus.RUNNING or state.remaining is None:
                return False
            if state.remaining == 0:
                # Already expired, e.g. after a zero snapshot the authority has not closed yet
                return True
            state.remaining = max(0, state.remaining - 1)
            SessionLifecycleLogger.log_countdown_update(state.session_id, state.remaining)
            self._emit(SessionEventType.REMAINING_CHANGED)
            return state.remaining == 0

        if action == SNAPSHOT:
            if state.status is SessionStatus.FINISHED:
                SessionLifecycleLogger.log_race_condition_detected(
                    state.session_id, "status snapshot arrived after local finish; discarded"
                )
                return False
            if session.session_id != state.session_id:
                SessionLifecycleLogger.log_race_condition_detected(
                    state.session_id,
                    f"status snapshot for unexpected session {session.session_id}; discarded",
                )
                return False
            SessionLifecycleLogger.log_resync_applied(
                state.session_id, state.remaining, session.remaining, session.finished
            )
            state.remaining = max(0, session.remaining)
            state.finished = session.finished
            self._emit(SessionEventType.SYNCED, finished=session.finished)
            return session.finished

        if action == FINISH:
            state.status = SessionStatus.FINISHED
            state.finished = True
            if auto:
                state.remaining = 0
            if previous is SessionStatus.FINISHED:
                return False
            self._log_transition(previous, state.status, "time expired" if auto else "finish requested")
            self._emit(SessionEventType.STATUS_CHANGED, previous=previous.value, auto=auto)
            return True

        if action == RESULT:
            state.result = result
            self._emit(SessionEventType.RESULT_READY, score=result.score, total=result.total)
            return False

        if action == RESET:
            self.state = SessionState(generation=state.generation + 1)
            self._log_transition(previous, self.state.status, "reset")
            self._emit(SessionEventType.RESET, previous=previous.value)
            return False

        raise ValueError(f"Unknown session action: {action}")

    def _log_transition(self, previous: SessionStatus, current: SessionStatus, reason: str) -> None:
        if previous is not current:
            SessionLifecycleLogger.log_state_transition(
                self.state.session_id, previous.value, current.value, reason
            )

    # ------------------------------------------------------------------
    # Operations

    async def initialize(self) -> Optional[Quiz]:
        """
        Load the persisted session id and fetch the quiz descriptor.

        Returns:
            The quiz, or None when it could not be fetched
        """
        self.state.session_id = self.store.load_session_id()
        if self.state.session_id:
            self.logger.info(f"Found persisted session {self.state.session_id}")

        if self.quiz is None:
            try:
                self.quiz = await self.authority.get_quiz()
                self.logger.info(
                    f"Loaded quiz: {len(self.quiz.questions)} questions, "
                    f"{self.quiz.duration_seconds}s"
                )
                self._emit(SessionEventType.QUIZ_LOADED)
            except AuthorityError as e:
                SessionLifecycleLogger.log_request_error(self.state.session_id, "get_quiz", str(e))

        self._initialized = True
        return self.quiz

    async def start_or_resume(self) -> Optional[Session]:
        """
        Start a new session or resume the persisted one.

        Returns:
            The authoritative session, or None if the start call failed and
            the client stays in loading
        """
        if not self._initialized:
            await self.initialize()

        if self.state.status is not SessionStatus.LOADING:
            self.logger.warning(
                f"start_or_resume ignored: session {self.state.session_id} is {self.state.status.value}"
            )
            return None

        generation = self.state.generation
        requested_id = self.state.session_id

        try:
            session = await self.authority.start(requested_id)
        except AuthorityError as e:
            SessionLifecycleLogger.log_request_error(requested_id, "start", str(e))
            return None

        if generation != self.state.generation or self.state.status is not SessionStatus.LOADING:
            SessionLifecycleLogger.log_race_condition_detected(
                requested_id, "start response arrived after the client moved on; discarded"
            )
            return None

        if requested_id and session.session_id != requested_id:
            self.logger.info(
                f"Authority replaced persisted session {requested_id} with {session.session_id}"
            )

        try:
            self.store.save_session_id(session.session_id)
        except SessionStoreError as e:
            self.logger.error(f"Could not persist session id: {e}")

        self._dispatch(STARTED, session=session)

        if self.state.is_finished:
            return session

        if self.state.remaining == 0:
            await self.finish(auto=True)
        else:
            self._timers.arm(session.session_id)

        return session

    async def tick(self) -> None:
        """Advance the local countdown by one second. Never calls the authority."""
        if self._dispatch(TICK):
            self._timers.stop_ticking()
            await self.finish(auto=True)

    async def resync(self) -> Optional[Session]:
        """
        Overwrite the local countdown with the authority's snapshot.

        Returns:
            The applied snapshot, or None if nothing was applied this cycle
        """
        if self.state.status is not SessionStatus.RUNNING or not self.state.session_id:
            return None

        generation = self.state.generation
        session_id = self.state.session_id

        try:
            snapshot = await self.authority.get_session(session_id)
        except AuthorityError as e:
            SessionLifecycleLogger.log_request_error(session_id, "resync", str(e))
            return None

        if generation != self.state.generation:
            SessionLifecycleLogger.log_race_condition_detected(
                session_id, "status snapshot arrived after reset; discarded"
            )
            return None

        if self._dispatch(SNAPSHOT, session=snapshot):
            await self.finish(auto=False)
        return snapshot

    def select_answer(self, question_id: Any, choice_index: int) -> bool:
        """
        Record an answer locally and mirror it to the authority in the background.

        Returns:
            True if the answer was accepted, False if the session is not running

        Raises:
            ValueError: If the question or choice does not exist in the quiz
        """
        if self.state.status is not SessionStatus.RUNNING:
            self.logger.debug(f"Answer for {question_id} ignored: session is {self.state.status.value}")
            return False

        if self.quiz is not None:
            question = self.quiz.get_question(question_id)
            if question is None:
                raise ValueError(f"Unknown question: {question_id}")
            if question.choices and not 0 <= choice_index < len(question.choices):
                raise ValueError(f"Choice {choice_index} out of range for question {question_id}")
            question_id = question.id

        self.state.answers[question_id] = choice_index
        self._emit(SessionEventType.ANSWER_SELECTED, question_id=question_id, choice_index=choice_index)

        self._track(asyncio.ensure_future(
            self._submit_answer(self.state.session_id, question_id, choice_index)
        ))
        return True

    async def _submit_answer(self, session_id: str, question_id: Any, choice_index: int) -> None:
        try:
            await self.authority.submit_answer(session_id, question_id, choice_index)
        except AuthorityError as e:
            SessionLifecycleLogger.log_request_error(session_id, "submit_answer", str(e))

    async def finish(self, auto: bool = False) -> Optional[Result]:
        """
        Mark the session finished and fetch the result.

        Safe to call more than once; a repeated call may re-request the
        result but never moves the session out of finished.

        Args:
            auto: True when triggered by the local countdown expiring

        Returns:
            The result, or the previously known result if the request failed
        """
        self._dispatch(FINISH, auto=auto)
        self._timers.cancel()

        session_id = self.state.session_id
        if not session_id:
            self.logger.warning("finish called without a session id; no result requested")
            return self.state.result

        generation = self.state.generation
        try:
            result = await self.authority.finish(session_id)
        except AuthorityError as e:
            SessionLifecycleLogger.log_request_error(session_id, "finish", str(e))
            return self.state.result

        if generation != self.state.generation:
            SessionLifecycleLogger.log_race_condition_detected(
                session_id, "finish result arrived after reset; discarded"
            )
            return None

        self._dispatch(RESULT, result=result)
        return result

    def reset(self) -> None:
        """
        Forget the current session entirely and return to loading.

        The authority is not told; the session is simply no longer referenced.
        """
        self._timers.cancel()
        try:
            self.store.clear_session_id()
        except SessionStoreError as e:
            self.logger.error(f"Could not clear persisted session id: {e}")
        self._dispatch(RESET)
        self._initialized = False

    # ------------------------------------------------------------------
    # Teardown

    async def wait_for_pending(self) -> None:
        """Wait for background answer writes and listener tasks to settle."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        """Cancel both loops, drain background work and release the HTTP session."""
        if self._closed:
            return
        self._closed = True
        self._timers.cancel()
        await self._timers.wait_closed()
        await self.wait_for_pending()
        if self._owns_authority:
            await self.authority.close()

    async def __aenter__(self) -> "SessionClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
