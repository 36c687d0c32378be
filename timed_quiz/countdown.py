"""
Interval loops driving the local countdown and the periodic resync.
Also hosts the structured lifecycle logger used across the client.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

# Set up logger for timer operations
logger = logging.getLogger(__name__)


class SessionLifecycleLogger:
    """Structured logging for session and loop lifecycle events."""

    @staticmethod
    def log_loop_start(session_id: str, loop_name: str, interval: float) -> None:
        """Log an interval loop being armed."""
        logger.info(
            f"Session lifecycle: LOOP_START - Session {session_id}, Loop {loop_name}, Interval {interval}s",
            extra={
                'event_type': 'loop_start',
                'session_id': session_id,
                'loop_name': loop_name,
                'interval': interval,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_loop_stop(session_id: str, loop_name: str, reason: str, iterations: int) -> None:
        """Log an interval loop ending (cancelled or stopped itself)."""
        logger.info(
            f"Session lifecycle: LOOP_STOP - Session {session_id}, Loop {loop_name}, "
            f"Reason {reason}, Iterations {iterations}",
            extra={
                'event_type': 'loop_stop',
                'session_id': session_id,
                'loop_name': loop_name,
                'reason': reason,
                'iterations': iterations,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_countdown_update(session_id: str, remaining: int) -> None:
        """Log countdown updates (throttled to avoid spam)."""
        if remaining % 10 == 0 or remaining <= 5:
            logger.debug(
                f"Session lifecycle: TICK - Session {session_id}, Remaining {remaining}s",
                extra={
                    'event_type': 'countdown_update',
                    'session_id': session_id,
                    'remaining': remaining,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_state_transition(session_id: str, from_state: str, to_state: str, reason: str = None) -> None:
        """Log session state transitions."""
        logger.info(
            f"Session lifecycle: STATE_TRANSITION - Session {session_id}, {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'state_transition',
                'session_id': session_id,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_resync_applied(session_id: str, local_remaining: Optional[int], authority_remaining: int,
                           finished: bool) -> None:
        """Log an authoritative snapshot overwriting the local countdown."""
        drift = None if local_remaining is None else local_remaining - authority_remaining
        logger.info(
            f"Session lifecycle: RESYNC - Session {session_id}, Local {local_remaining}s, "
            f"Authority {authority_remaining}s, Drift {drift}s, Finished {finished}",
            extra={
                'event_type': 'resync_applied',
                'session_id': session_id,
                'local_remaining': local_remaining,
                'authority_remaining': authority_remaining,
                'drift': drift,
                'finished': finished,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_request_error(session_id: str, operation: str, error_message: str) -> None:
        """Log a failed authority request. These are never fatal."""
        logger.error(
            f"Session lifecycle: REQUEST_ERROR - Session {session_id}, Operation {operation}: {error_message}",
            extra={
                'event_type': 'request_error',
                'session_id': session_id,
                'operation': operation,
                'error_message': error_message,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_race_condition_detected(session_id: str, details: str) -> None:
        """Log race condition detection."""
        logger.warning(
            f"Session lifecycle: RACE_CONDITION - Session {session_id}: {details}",
            extra={
                'event_type': 'race_condition',
                'session_id': session_id,
                'details': details,
                'timestamp': time.time()
            }
        )


class IntervalLoop:
    """Runs an async callback on a fixed interval until cancelled."""

    def __init__(self, name: str, interval: float, callback: Callable[[], Awaitable[Any]],
                 session_id: str = None):
        """
        Initialize the loop.

        Args:
            name: Loop label used in logs ("tick", "resync")
            interval: Seconds to wait before each callback invocation
            callback: Coroutine function invoked once per interval
            session_id: Session the loop belongs to, for logging
        """
        self.name = name
        self.interval = interval
        self._callback = callback
        self._session_id = session_id
        self._task: Optional[asyncio.Task] = None
        self._is_cancelled = False
        self._iterations = 0

    def start(self) -> asyncio.Task:
        """Arm the loop. Restarting an armed loop cancels the previous task first."""
        if self.is_running:
            self.cancel()
        self._is_cancelled = False
        self._iterations = 0
        self._task = asyncio.create_task(self._run(), name=f"{self.name}-loop")
        SessionLifecycleLogger.log_loop_start(self._session_id, self.name, self.interval)
        return self._task

    async def _run(self) -> None:
        try:
            while not self._is_cancelled:
                await asyncio.sleep(self.interval)
                if self._is_cancelled:
                    break
                self._iterations += 1
                try:
                    await self._callback()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    # One failed cycle must not stop the loop
                    logger.exception(f"{self.name} loop callback failed: {e}")
            SessionLifecycleLogger.log_loop_stop(
                self._session_id, self.name, "stopped", self._iterations
            )
        except asyncio.CancelledError:
            SessionLifecycleLogger.log_loop_stop(
                self._session_id, self.name, "cancelled", self._iterations
            )
            raise

    def cancel(self) -> None:
        """
        Stop the loop.

        When called from inside the loop's own callback the task is not
        cancelled; the loop exits once the callback returns, so the
        callback's pending work is not interrupted.
        """
        self._is_cancelled = True
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    @property
    def is_running(self) -> bool:
        """True while the loop is armed and has not been asked to stop."""
        return self._task is not None and not self._task.done() and not self._is_cancelled

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def iterations(self) -> int:
        return self._iterations

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task


class SessionTimers:
    """
    Owns the tick and resync loops of one session and tears them down together.

    Usable as a context manager: leaving the block cancels both loops.
    """

    def __init__(self, tick_interval: float, resync_interval: float,
                 on_tick: Callable[[], Awaitable[Any]],
                 on_resync: Callable[[], Awaitable[Any]]):
        self.tick_interval = tick_interval
        self.resync_interval = resync_interval
        self._on_tick = on_tick
        self._on_resync = on_resync
        self.tick_loop: Optional[IntervalLoop] = None
        self.resync_loop: Optional[IntervalLoop] = None

    def arm(self, session_id: str) -> None:
        """Start both loops for the given session, replacing any armed ones."""
        self.cancel()
        self.tick_loop = IntervalLoop("tick", self.tick_interval, self._on_tick, session_id)
        self.resync_loop = IntervalLoop("resync", self.resync_interval, self._on_resync, session_id)
        self.tick_loop.start()
        self.resync_loop.start()

    def cancel(self) -> None:
        """Cancel both loops. Safe to call repeatedly."""
        for loop in (self.tick_loop, self.resync_loop):
            if loop is not None:
                loop.cancel()

    def stop_ticking(self) -> None:
        """Stop only the local countdown loop."""
        if self.tick_loop is not None:
            self.tick_loop.cancel()

    async def wait_closed(self) -> None:
        """Wait for cancelled loop tasks to unwind."""
        tasks = [
            loop.task for loop in (self.tick_loop, self.resync_loop)
            if loop is not None and loop.task is not None and loop.task is not asyncio.current_task()
        ]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def is_armed(self) -> bool:
        return any(
            loop is not None and loop.is_running
            for loop in (self.tick_loop, self.resync_loop)
        )

    def __enter__(self) -> "SessionTimers":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()
