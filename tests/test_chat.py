"""Tests for the conversation state machine."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from halochat.chat import ChatState, Conversation, UIMessage
from halochat.dispatcher import MalformedResponseError, ResponseMode, TurnDispatcher, TurnResult
from halochat.memory.models import MemoryContext

URL = "https://hooks.example.com/webhook/chat"
WINDOW = 30 * 60


def _mock_httpx_client(mock_client_cls: MagicMock, response: httpx.Response) -> AsyncMock:
    """Wire up an AsyncClient context-manager mock that returns *response*."""
    mock_client = AsyncMock()
    mock_client.post.return_value = response
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client
    return mock_client


def _response(text: str, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code=status_code, text=text, request=httpx.Request("POST", URL))


@pytest.fixture
def dispatcher() -> AsyncMock:
    """A stand-in dispatcher that succeeds with "ok" unless told otherwise."""
    d = AsyncMock()
    d.send.return_value = TurnResult.ok("ok")
    return d


@pytest.fixture
def conversation(dispatcher, sessions, memory) -> Conversation:
    return Conversation(dispatcher, sessions, memory)


def _memory_conversation(sessions, memory, mode=ResponseMode.MEMORY) -> Conversation:
    return Conversation(TurnDispatcher(URL, mode), sessions, memory)


# -- Initial state ---------------------------------------------------------------


def test_initial_state(conversation) -> None:
    assert conversation.state is ChatState.IDLE
    assert conversation.transcript == ()
    assert conversation.is_initial_view
    assert not conversation.is_thinking


# -- Blank input ---------------------------------------------------------------


@pytest.mark.parametrize("text", ["", "  ", "\n"])
async def test_blank_submit_is_noop(conversation, dispatcher, text) -> None:
    conversation.set_input(text)
    result = await conversation.submit()

    assert result is None
    assert conversation.transcript == ()
    assert conversation.state is ChatState.IDLE
    dispatcher.send.assert_not_called()


# -- Successful turn -------------------------------------------------------------


async def test_user_message_appended_before_network(conversation, dispatcher) -> None:
    seen: list[tuple] = []

    async def _send(text, session, history):
        seen.append((conversation.state, conversation.transcript, conversation.input))
        return TurnResult.ok("reply")

    dispatcher.send.side_effect = _send
    conversation.set_input("  hello  ")
    await conversation.submit()

    state, transcript, buffer = seen[0]
    assert state is ChatState.SENDING
    assert transcript == (UIMessage(role="user", text="hello"),)
    assert buffer == ""


async def test_success_updates_transcript_and_memory(conversation, dispatcher, memory) -> None:
    result = await conversation.submit("hello")

    assert result.success
    assert conversation.state is ChatState.IDLE
    assert conversation.transcript == (
        UIMessage(role="user", text="hello"),
        UIMessage(role="bot", text="ok"),
    )
    assert [(m.role, m.text) for m in memory.messages] == [("user", "hello"), ("bot", "ok")]


async def test_dispatch_receives_session_and_history(
    conversation, dispatcher, memory, sessions
) -> None:
    memory.append("earlier", "reply", timestamp=1)
    await conversation.submit("hello")

    args = dispatcher.send.call_args.args
    assert args[0] == "hello"
    assert args[1].id == sessions.current.id
    assert args[2] == [
        {"role": "user", "content": "earlier", "timestamp": 1},
        {"role": "bot", "content": "reply", "timestamp": 1},
    ]


async def test_context_replaced_when_supplied(conversation, dispatcher, memory) -> None:
    dispatcher.send.return_value = TurnResult.ok("ok", MemoryContext(last_topic="a"))
    await conversation.submit("one")
    dispatcher.send.return_value = TurnResult.ok("ok")
    await conversation.submit("two")

    assert memory.context.last_topic == "a"


async def test_submit_touches_session(conversation, sessions, clock) -> None:
    before = sessions.current.last_activity
    clock.advance(90)
    await conversation.submit("hello")
    assert sessions.current.last_activity == before + 90_000


# -- Failed turn -------------------------------------------------------------------


async def test_error_shown_but_not_committed(conversation, dispatcher, memory) -> None:
    dispatcher.send.return_value = TurnResult.err(MalformedResponseError("bad"))

    result = await conversation.submit("hello")

    assert not result.success
    assert conversation.state is ChatState.IDLE
    assert conversation.transcript[-1] == UIMessage(
        role="bot", text=MalformedResponseError.user_message
    )
    assert len(memory) == 0


# -- Concurrency policy: reject while sending -------------------------------------


async def test_submit_while_sending_is_rejected(conversation, dispatcher) -> None:
    release = asyncio.Event()

    async def _slow_send(text, session, history):
        await release.wait()
        return TurnResult.ok(f"re: {text}")

    dispatcher.send.side_effect = _slow_send
    first = asyncio.create_task(conversation.submit("first"))
    await asyncio.sleep(0)
    assert conversation.state is ChatState.SENDING

    conversation.set_input("second")
    rejected = await conversation.submit()

    assert rejected is None
    assert conversation.input == "second"
    assert conversation.transcript == (UIMessage(role="user", text="first"),)

    release.set()
    await first
    assert dispatcher.send.await_count == 1
    assert conversation.transcript[-1] == UIMessage(role="bot", text="re: first")

    await conversation.submit()
    assert conversation.transcript[-1] == UIMessage(role="bot", text="re: second")


async def test_reply_after_reset_is_dropped(conversation, dispatcher, memory) -> None:
    release = asyncio.Event()

    async def _slow_send(text, session, history):
        await release.wait()
        return TurnResult.ok("late")

    dispatcher.send.side_effect = _slow_send
    pending = asyncio.create_task(conversation.submit("hello"))
    await asyncio.sleep(0)

    conversation.clear()
    assert conversation.state is ChatState.IDLE

    release.set()
    assert await pending is None
    assert conversation.transcript == ()
    assert len(memory) == 0
    assert conversation.state is ChatState.IDLE


async def test_state_restored_if_dispatch_raises(conversation, dispatcher) -> None:
    dispatcher.send.side_effect = RuntimeError("boom")
    with pytest.raises(RuntimeError):
        await conversation.submit("hello")
    assert conversation.state is ChatState.IDLE


# -- Reset and expiry ----------------------------------------------------------------


async def test_clear_resets_everything(conversation, sessions, memory) -> None:
    await conversation.submit("hello")
    old_id = sessions.current.id

    new = conversation.clear()

    assert new.id != old_id
    assert conversation.transcript == ()
    assert len(memory) == 0
    assert memory.context == MemoryContext()


async def test_inactivity_expiry_resets(conversation, sessions, memory, clock) -> None:
    await conversation.submit("hello")
    old_id = sessions.current.id
    clock.advance(WINDOW + 1)

    assert sessions.check_expiry()
    assert sessions.current.id != old_id
    assert conversation.transcript == ()
    assert len(memory) == 0


async def test_submit_after_idle_starts_fresh(conversation, sessions, memory, clock) -> None:
    await conversation.submit("hello")
    old_id = sessions.current.id
    clock.advance(WINDOW + 1)

    await conversation.submit("again")

    assert sessions.current.id != old_id
    assert conversation.transcript == (
        UIMessage(role="user", text="again"),
        UIMessage(role="bot", text="ok"),
    )
    assert [m.text for m in memory.messages] == ["again", "ok"]


# -- Listeners -------------------------------------------------------------------


async def test_listeners_observe_transitions(conversation) -> None:
    states: list[tuple[ChatState, int]] = []
    conversation.add_listener(lambda c: states.append((c.state, len(c.transcript))))

    await conversation.submit("hello")

    assert states == [(ChatState.SENDING, 1), (ChatState.IDLE, 2)]


# -- End to end through the real dispatcher ------------------------------------------


async def test_memory_mode_round_trip(sessions, memory) -> None:
    conversation = _memory_conversation(sessions, memory)
    with patch("halochat.dispatcher.httpx.AsyncClient") as mock_cls:
        _mock_httpx_client(mock_cls, _response('[{"output": "hi"}]'))
        await conversation.submit("hello")

    assert conversation.transcript[-1] == UIMessage(role="bot", text="hi")
    assert len(memory) == 2
    stamps = [m.timestamp for m in memory.messages]
    assert stamps == sorted(stamps)


async def test_simple_mode_round_trip(sessions, memory) -> None:
    conversation = _memory_conversation(sessions, memory, ResponseMode.SIMPLE)
    with patch("halochat.dispatcher.httpx.AsyncClient") as mock_cls:
        _mock_httpx_client(mock_cls, _response('{"output": "hi"}'))
        await conversation.submit("hello")

    assert conversation.transcript[-1] == UIMessage(role="bot", text="hi")


async def test_not_json_leaves_memory_unchanged(sessions, memory) -> None:
    conversation = _memory_conversation(sessions, memory)
    memory.append("earlier", "reply")
    before = len(memory)

    with patch("halochat.dispatcher.httpx.AsyncClient") as mock_cls:
        _mock_httpx_client(mock_cls, _response("not json"))
        result = await conversation.submit("hello")

    assert not result.success
    assert len(memory) == before


async def test_transport_failure_leaves_memory_unchanged(sessions, memory) -> None:
    conversation = _memory_conversation(sessions, memory)

    with patch("halochat.dispatcher.httpx.AsyncClient") as mock_cls:
        _mock_httpx_client(mock_cls, _response("oops", status_code=502))
        result = await conversation.submit("hello")

    assert result.error_kind == "transport"
    assert len(memory) == 0
    assert conversation.transcript[-1].role == "bot"


async def test_greeting_scenario(sessions, memory) -> None:
    conversation = _memory_conversation(sessions, memory)
    body = (
        '[{"output":"world","memory_context":{"last_topic":"greeting",'
        '"user_interests":[],"conversation_summary":"greeting exchanged"}}]'
    )
    with patch("halochat.dispatcher.httpx.AsyncClient") as mock_cls:
        _mock_httpx_client(mock_cls, _response(body))
        await conversation.submit("hello")

    assert conversation.transcript == (
        UIMessage(role="user", text="hello"),
        UIMessage(role="bot", text="world"),
    )
    assert memory.context.last_topic == "greeting"


async def test_empty_context_clears_previous_context(sessions, memory) -> None:
    conversation = _memory_conversation(sessions, memory)
    memory.set_context(MemoryContext(last_topic="greeting", user_interests=["x"]))

    with patch("halochat.dispatcher.httpx.AsyncClient") as mock_cls:
        _mock_httpx_client(mock_cls, _response('[{"output": "hi", "memory_context": {}}]'))
        await conversation.submit("hello")

    assert memory.context == MemoryContext()
