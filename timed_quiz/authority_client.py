"""
HTTP client for the remote session authority.
Wraps the five authority endpoints and validates their JSON payloads.
"""
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from .errors import AuthorityError, MalformedResponseError
from .models import Question, Quiz, Result, Session


logger = logging.getLogger(__name__)


def _require(data: Dict[str, Any], key: str, kind, context: str):
    if key not in data:
        raise MalformedResponseError(f"{context} response missing '{key}' field")
    value = data[key]
    # bool is an int subclass; never accept it where a count is expected
    if kind is int and isinstance(value, bool):
        raise MalformedResponseError(f"{context} '{key}' field must be an integer")
    if not isinstance(value, kind):
        raise MalformedResponseError(
            f"{context} '{key}' field must be {getattr(kind, '__name__', kind)}, "
            f"got {type(value).__name__}"
        )
    return value


def parse_quiz(data: Any) -> Quiz:
    """
    Validate and parse a quiz descriptor.

    Expected structure:
    {
        "durationSeconds": int,
        "questions": [
            {"id": ..., "prompt": str, "choices": [str, ...]}
        ]
    }

    The prompt may also be sent under the key "q".

    Raises:
        MalformedResponseError: If the payload does not match the structure
    """
    if not isinstance(data, dict):
        raise MalformedResponseError("Quiz response must be a JSON object")

    duration = _require(data, "durationSeconds", int, "Quiz")
    if duration <= 0:
        raise MalformedResponseError("Quiz 'durationSeconds' must be positive")

    raw_questions = _require(data, "questions", list, "Quiz")
    questions = []
    seen_ids = set()
    for i, item in enumerate(raw_questions):
        if not isinstance(item, dict):
            raise MalformedResponseError(f"Question {i} must be an object")
        if "id" not in item:
            raise MalformedResponseError(f"Question {i} missing 'id' field")

        prompt = item.get("prompt", item.get("q"))
        if not isinstance(prompt, str):
            raise MalformedResponseError(f"Question {i} missing a string prompt")

        choices = item.get("choices", [])
        if not isinstance(choices, list) or not all(isinstance(c, str) for c in choices):
            raise MalformedResponseError(f"Question {i} 'choices' must be an array of strings")

        key = str(item["id"])
        if key in seen_ids:
            raise MalformedResponseError(f"Duplicate question id: {item['id']}")
        seen_ids.add(key)

        questions.append(Question(id=item["id"], prompt=prompt, choices=tuple(choices)))

    return Quiz(duration_seconds=duration, questions=tuple(questions))


def parse_session(data: Any) -> Session:
    """
    Validate and parse a session snapshot.

    When "remaining" is absent the value is derived from
    "durationSeconds" minus "elapsed". Negative values are clamped to 0.
    """
    if not isinstance(data, dict):
        raise MalformedResponseError("Session response must be a JSON object")

    session_id = data.get("sessionId")
    if not isinstance(session_id, (str, int)) or isinstance(session_id, bool) or session_id == "":
        raise MalformedResponseError("Session response missing 'sessionId'")

    if "remaining" in data:
        remaining = _require(data, "remaining", (int, float), "Session")
        if isinstance(remaining, bool):
            raise MalformedResponseError("Session 'remaining' field must be a number")
    elif "durationSeconds" in data:
        duration = _require(data, "durationSeconds", (int, float), "Session")
        elapsed = data.get("elapsed") or 0
        if not isinstance(elapsed, (int, float)) or isinstance(elapsed, bool):
            raise MalformedResponseError("Session 'elapsed' field must be a number")
        remaining = duration - elapsed
    else:
        raise MalformedResponseError("Session response missing 'remaining' field")

    finished = data.get("finished", False)
    if not isinstance(finished, bool):
        raise MalformedResponseError("Session 'finished' field must be a boolean")

    return Session(
        session_id=str(session_id),
        remaining=max(0, int(remaining)),
        finished=finished,
    )


def parse_result(data: Any) -> Result:
    """Validate and parse a finish result."""
    if not isinstance(data, dict):
        raise MalformedResponseError("Finish response must be a JSON object")

    score = _require(data, "score", int, "Finish")
    total = _require(data, "total", int, "Finish")
    answers = data.get("answers") or {}
    if not isinstance(answers, dict):
        raise MalformedResponseError("Finish 'answers' field must be an object")
    for question_id, choice in answers.items():
        if not isinstance(choice, int) or isinstance(choice, bool):
            raise MalformedResponseError(f"Finish answer for question {question_id} must be an integer")

    return Result(
        score=score,
        total=total,
        answers={str(k): v for k, v in answers.items()},
    )


class AuthorityClient:
    """Request/response access to the session authority over HTTP."""

    def __init__(self, base_url: str, http_session: Optional[aiohttp.ClientSession] = None):
        """
        Initialize the authority client.

        Args:
            base_url: Root URL of the authority, e.g. http://localhost:4000
            http_session: Optional externally owned aiohttp session
        """
        self.base_url = base_url.rstrip("/")
        self._http_session = http_session
        self._owns_session = http_session is None

    def _get_http_session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            # Requests are never timed out; a hung call only delays its own cycle
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None)
            )
            self._owns_session = True
        return self._http_session

    async def _request(self, method: str, path: str, payload: Optional[dict] = None,
                       expect_body: bool = True) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug(f"Authority request: {method} {url} payload={payload}")

        try:
            http = self._get_http_session()
            async with http.request(method, url, json=payload) as response:
                body = await response.text()
                if response.status >= 400:
                    raise AuthorityError(
                        f"{method} {path} failed with HTTP {response.status}",
                        status=response.status,
                    )
        except aiohttp.ClientError as e:
            raise AuthorityError(f"{method} {path} failed: {e}") from e

        if not expect_body:
            return None

        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"{method} {path} returned invalid JSON: {e}") from e

    async def get_quiz(self) -> Quiz:
        """Fetch the quiz descriptor."""
        return parse_quiz(await self._request("GET", "/quiz"))

    async def start(self, session_id: Optional[str] = None) -> Session:
        """Start a new session, or resume the given one."""
        payload = {"sessionId": session_id} if session_id else {}
        return parse_session(await self._request("POST", "/start", payload))

    async def get_session(self, session_id: str) -> Session:
        """Read the authoritative snapshot of a session."""
        return parse_session(await self._request("GET", f"/session/{session_id}"))

    async def submit_answer(self, session_id: str, question_id: Any, choice_index: int) -> None:
        """Record an answer. The acknowledgement body is ignored."""
        await self._request(
            "POST",
            "/answer",
            {"sessionId": session_id, "questionId": question_id, "choiceIndex": choice_index},
            expect_body=False,
        )

    async def finish(self, session_id: str) -> Result:
        """Finish a session and obtain its result."""
        return parse_result(await self._request("POST", "/finish", {"sessionId": session_id}))

    async def close(self) -> None:
        """Close the underlying HTTP session if this client created it."""
        if self._owns_session and self._http_session is not None and not self._http_session.closed:
            await self._http_session.close()
