"""
Test fixtures and sample data for the timed quiz client tests.
"""
import asyncio
import functools
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import Mock, AsyncMock

import discord

from timed_quiz.errors import AuthorityError
from timed_quiz.models import ClientSettings, Question, Quiz, Result, Session
from timed_quiz.session_store import SessionStore


class TestFixtures:
    """Centralized test fixtures for all test modules."""

    @staticmethod
    def create_quiz_payload() -> Dict:
        """Create a quiz descriptor as the authority serves it."""
        return {
            "durationSeconds": 600,
            "questions": [
                {"id": 1, "q": "What is 2+2?", "choices": ["3", "4", "5"]},
                {"id": 2, "q": "Capital of France?", "choices": ["London", "Paris", "Berlin", "Madrid"]},
                {"id": 3, "prompt": "Largest planet?", "choices": ["Earth", "Jupiter"]},
            ]
        }

    @staticmethod
    def create_sample_quiz() -> Quiz:
        """Create the parsed form of create_quiz_payload."""
        return Quiz(
            duration_seconds=600,
            questions=(
                Question(1, "What is 2+2?", ("3", "4", "5")),
                Question(2, "Capital of France?", ("London", "Paris", "Berlin", "Madrid")),
                Question(3, "Largest planet?", ("Earth", "Jupiter")),
            )
        )

    @staticmethod
    def create_fast_settings(temp_dir: str) -> ClientSettings:
        """Settings with long intervals so loops never fire on their own in unit tests."""
        return ClientSettings(
            authority_url="http://authority.test",
            tick_interval=60.0,
            resync_interval=60.0,
            session_file=str(Path(temp_dir) / "session.json"),
        )

    @staticmethod
    def create_store(temp_dir: str, key: str = SessionStore.DEFAULT_KEY) -> SessionStore:
        return SessionStore(str(Path(temp_dir) / "session.json"), key)


class FakeAuthority:
    """
    In-memory stand-in for AuthorityClient.

    Keeps its own session records and counts calls so tests can assert on
    traffic. Set `fail` to a set of operation names to make them raise
    AuthorityError.
    """

    def __init__(self, quiz: Quiz = None, duration: int = 600, new_session_id: str = "abc"):
        self.quiz = quiz or TestFixtures.create_sample_quiz()
        self.duration = duration
        self.new_session_id = new_session_id
        self.sessions: Dict[str, Session] = {}
        self.answers: Dict[str, Dict[Any, int]] = {}
        self.fail = set()
        self.calls: List[tuple] = []
        self.status_gate: Optional[asyncio.Event] = None
        self.closed = False

    def _check(self, operation: str):
        if operation in self.fail:
            raise AuthorityError(f"{operation} unavailable")

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    async def get_quiz(self) -> Quiz:
        self.calls.append(("get_quiz",))
        self._check("get_quiz")
        return self.quiz

    async def start(self, session_id: str = None) -> Session:
        self.calls.append(("start", session_id))
        self._check("start")
        if session_id and session_id in self.sessions:
            stored = self.sessions[session_id]
            return Session(stored.session_id, stored.remaining, stored.finished)
        session = Session(self.new_session_id, self.duration, False)
        self.sessions[session.session_id] = session
        self.answers.setdefault(session.session_id, {})
        return Session(session.session_id, session.remaining, session.finished)

    async def get_session(self, session_id: str) -> Session:
        self.calls.append(("get_session", session_id))
        if self.status_gate is not None:
            await self.status_gate.wait()
        self._check("get_session")
        stored = self.sessions[session_id]
        return Session(stored.session_id, stored.remaining, stored.finished)

    async def submit_answer(self, session_id: str, question_id: Any, choice_index: int) -> None:
        self.calls.append(("submit_answer", session_id, question_id, choice_index))
        self._check("submit_answer")
        self.answers.setdefault(session_id, {})[question_id] = choice_index

    async def finish(self, session_id: str) -> Result:
        self.calls.append(("finish", session_id))
        self._check("finish")
        stored = self.sessions.get(session_id)
        if stored is not None:
            stored.finished = True
        answers = self.answers.get(session_id, {})
        correct = {1: 1, 2: 1, 3: 1}
        score = sum(1 for qid, choice in answers.items() if correct.get(qid) == choice)
        return Result(score=score, total=len(self.quiz.questions),
                      answers={str(k): v for k, v in answers.items()})

    async def close(self) -> None:
        self.closed = True


class MockDiscordObjects:
    """Mock Discord objects for testing bot functionality."""

    @staticmethod
    def create_mock_interaction(channel_id: int = 12345, user_id: int = 67890) -> Mock:
        """Create mock Discord interaction."""
        interaction = Mock(spec=discord.Interaction)
        interaction.channel_id = channel_id
        interaction.user = Mock()
        interaction.user.id = user_id
        interaction.response = Mock()
        interaction.response.is_done.return_value = False
        interaction.response.send_message = AsyncMock()
        interaction.response.defer = AsyncMock()
        interaction.followup = Mock()
        interaction.followup.send = AsyncMock()
        return interaction

    @staticmethod
    def create_mock_channel(channel_id: int = 12345) -> Mock:
        """Create mock Discord channel."""
        channel = Mock(spec=discord.TextChannel)
        channel.id = channel_id
        channel.send = AsyncMock()
        return channel


class AsyncTestHelpers:
    """Helper functions for async testing."""

    @staticmethod
    async def run_with_timeout(coro, timeout: float = 5.0):
        """Run coroutine with timeout."""
        return await asyncio.wait_for(coro, timeout=timeout)

    @staticmethod
    def make_temp_dir() -> str:
        return tempfile.mkdtemp()


def async_test(coro):
    """Decorator to run async test methods on a fresh event loop."""
    @functools.wraps(coro)
    def wrapper(self, *args, **kwargs):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(coro(self, *args, **kwargs))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            asyncio.set_event_loop(None)
    return wrapper
