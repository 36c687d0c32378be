"""
Core data models for the timed quiz client.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class SessionStatus(Enum):
    """Lifecycle states of a quiz session as seen by the client."""
    LOADING = "loading"
    RUNNING = "running"
    FINISHED = "finished"


@dataclass(frozen=True)
class Question:
    """Represents a single quiz question."""
    id: Any
    prompt: str
    choices: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Quiz:
    """Quiz descriptor served by the authority. Never mutated locally."""
    duration_seconds: int
    questions: Tuple[Question, ...] = ()

    def get_question(self, question_id: Any) -> Optional[Question]:
        """Look up a question by id, comparing ids as strings."""
        for question in self.questions:
            if str(question.id) == str(question_id):
                return question
        return None


@dataclass
class Session:
    """Authoritative snapshot of a session record."""
    session_id: str
    remaining: int
    finished: bool


@dataclass
class Result:
    """Final outcome returned by the authority after finishing."""
    score: int
    total: int
    answers: Dict[str, int] = field(default_factory=dict)


@dataclass
class SessionState:
    """
    Mutable projection shared by the countdown and resync loops.

    Only SessionClient._dispatch writes to it.
    """
    session_id: Optional[str] = None
    status: SessionStatus = SessionStatus.LOADING
    remaining: Optional[int] = None
    finished: bool = False
    answers: Dict[Any, int] = field(default_factory=dict)
    result: Optional[Result] = None
    generation: int = 0

    @property
    def is_finished(self) -> bool:
        return self.status is SessionStatus.FINISHED


@dataclass
class ClientSettings:
    """Configuration settings for a session client."""
    authority_url: str = "http://localhost:4000"
    tick_interval: float = 1.0
    resync_interval: float = 10.0
    session_file: str = "./data/session.json"
    session_key: str = "quiz_session_id"


class SessionEventType(Enum):
    """Events a SessionClient publishes to the presentation layer."""
    QUIZ_LOADED = "quiz_loaded"
    STATUS_CHANGED = "status_changed"
    REMAINING_CHANGED = "remaining_changed"
    SYNCED = "synced"
    ANSWER_SELECTED = "answer_selected"
    RESULT_READY = "result_ready"
    RESET = "reset"


@dataclass
class SessionEvent:
    """A lifecycle notification carrying the state at the time it fired."""
    type: SessionEventType
    status: SessionStatus
    remaining: Optional[int]
    session_id: Optional[str]
    data: Dict[str, Any] = field(default_factory=dict)
