"""Turn dispatcher: send one user message to the inference webhook.

Builds the request payload, performs exactly one POST with httpx, and
unpacks the reply according to the configured :class:`ResponseMode`.
Every failure is classified and turned into a ``TurnResult`` here; nothing
raised below this boundary reaches the state machine.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from halochat.config import settings
from halochat.memory.models import MemoryContext

if TYPE_CHECKING:
    from halochat.session import Session

logger = logging.getLogger(__name__)

GENERIC_ERROR_REPLY = "Sorry, something went wrong."


class ResponseMode(StrEnum):
    """How the endpoint's reply is shaped and how strictly it is checked."""

    SIMPLE = "simple"  # {"message"} out; lenient parse with a fallback reply
    MEMORY = "memory"  # full payload out; strict [{"output", "memory_context"?}] in


# -- Errors --------------------------------------------------------------------


class TurnError(Exception):
    """Base for classified turn failures.

    ``str(exc)`` carries operator detail for logs; ``user_message`` is the
    only text ever shown to the end user.
    """

    kind = "turn_error"
    user_message = GENERIC_ERROR_REPLY


class TransportError(TurnError):
    """Network failure or non-2xx status."""

    kind = "transport"


class EmptyResponseError(TurnError):
    """2xx status with a blank body."""

    kind = "empty_response"
    user_message = "Error: Empty response received"


class MalformedResponseError(TurnError):
    """Body is not JSON, or JSON of the wrong shape."""

    kind = "malformed_response"
    user_message = "Error: Unexpected response format"


# -- Result --------------------------------------------------------------------


@dataclass(frozen=True)
class TurnResult:
    """Outcome of one dispatched turn.

    Exactly one of ``output`` (with optional ``context``) or ``error`` is
    meaningful, as reported by ``success``.
    """

    output: str = ""
    context: MemoryContext | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, output: str, context: MemoryContext | None = None) -> TurnResult:
        return cls(output=output, context=context)

    @classmethod
    def err(cls, exc: TurnError) -> TurnResult:
        return cls(error=exc.user_message, error_kind=exc.kind)


# -- Parsing -------------------------------------------------------------------


def _load_json(body: str) -> Any:
    if not body or not body.strip():
        raise EmptyResponseError("Empty response body")
    try:
        return json.loads(body)
    except ValueError as exc:
        msg = f"Invalid JSON response: {exc}"
        raise MalformedResponseError(msg) from exc


def parse_simple(body: str, fallback: str) -> TurnResult:
    """Lenient parse: ``{"output"}`` or ``[{"output"}, ...]``, else *fallback*."""
    data = _load_json(body)
    output: Any = None
    if isinstance(data, dict):
        output = data.get("output")
    elif isinstance(data, list) and data and isinstance(data[0], dict):
        output = data[0].get("output")
    if not output:
        logger.debug("Reply has no output field, using fallback")
        return TurnResult.ok(fallback)
    return TurnResult.ok(output if isinstance(output, str) else str(output))


def parse_memory(body: str) -> TurnResult:
    """Strict parse: ``[{"output": str, "memory_context"?: {...}}, ...]``."""
    data = _load_json(body)
    if not isinstance(data, list) or not data or not isinstance(data[0], dict):
        msg = f"Expected a non-empty array of objects, got {type(data).__name__}"
        raise MalformedResponseError(msg)
    first = data[0]
    output = first.get("output")
    if not isinstance(output, str) or not output:
        raise MalformedResponseError("First element has no non-empty string output")

    context = None
    raw_context = first.get("memory_context")
    if raw_context is not None:
        try:
            context = MemoryContext.model_validate(raw_context)
        except ValidationError as exc:
            msg = f"Invalid memory_context: {exc}"
            raise MalformedResponseError(msg) from exc
    return TurnResult.ok(output, context)


# -- Dispatcher ----------------------------------------------------------------


class TurnDispatcher:
    """Sends turns to the inference webhook.

    Performs exactly one network call per :meth:`send`; it does not retry,
    de-duplicate, or serialize concurrent calls. Serialization is the
    caller's job.
    """

    def __init__(
        self,
        endpoint_url: str | None = None,
        mode: ResponseMode | str | None = None,
        *,
        timeout: float | None = None,
        fallback_reply: str | None = None,
    ) -> None:
        self._endpoint_url = endpoint_url or settings.chat_endpoint_url
        self._mode = ResponseMode(mode or settings.response_mode)
        self._timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._fallback_reply = fallback_reply or settings.fallback_reply

    @property
    def mode(self) -> ResponseMode:
        return self._mode

    def build_payload(
        self,
        text: str,
        session: Session | None,
        history: list[dict[str, Any]],
    ) -> dict[str, Any]:
        """Request body for *text*; shape depends on the response mode."""
        if self._mode is ResponseMode.SIMPLE:
            return {"message": text}
        return {
            "message": text,
            "session_id": session.id if session else None,
            "conversation_history": list(history),
        }

    def parse(self, body: str) -> TurnResult:
        """Parse a response body. Raises ``TurnError`` subclasses."""
        if self._mode is ResponseMode.SIMPLE:
            return parse_simple(body, self._fallback_reply)
        return parse_memory(body)

    async def send(
        self,
        user_text: str,
        session: Session | None = None,
        history: list[dict[str, Any]] | None = None,
    ) -> TurnResult | None:
        """Dispatch one turn. Returns None (no request) for blank input."""
        text = user_text.strip() if user_text else ""
        if not text:
            return None

        payload = self.build_payload(text, session, history or [])
        try:
            body = await self._post(payload)
            result = self.parse(body)
        except TurnError as exc:
            if isinstance(exc, MalformedResponseError):
                logger.warning("Malformed reply from endpoint: %s", exc)
            else:
                logger.error("Turn failed [%s]: %s", exc.kind, exc)
            return TurnResult.err(exc)

        logger.info(
            "Turn completed (%d chars in, %d chars out, context=%s)",
            len(text),
            len(result.output),
            result.context is not None,
        )
        return result

    async def _post(self, payload: dict[str, Any]) -> str:
        if not self._endpoint_url:
            raise TransportError("CHAT_ENDPOINT_URL is not configured")

        headers = {"Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._endpoint_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            msg = f"Network error: {exc}"
            raise TransportError(msg) from exc

        if not resp.is_success:
            msg = f"HTTP error status={resp.status_code} body={resp.text[:200]}"
            raise TransportError(msg)

        body = resp.text
        logger.debug("Raw response: %s", body[:500])
        return body
