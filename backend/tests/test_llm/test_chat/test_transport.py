"""Tests for ChatTransport against a mocked gateway."""

import asyncio
import json

import httpx
import pytest

from playground.errors import SessionBusyError, ValidationError
from playground.llm.chat.models import ChatRole
from playground.llm.chat.transport import (
    ChatTransport,
    PendingRequest,
    RequestState,
    create_http_client,
)

GATEWAY = "http://gateway"


def _streaming_handler(fragments: list[str], captured: list | None = None):
    """Gateway stub that streams the given fragments as separate chunks."""

    async def handler(request: httpx.Request) -> httpx.Response:
        if captured is not None:
            captured.append(json.loads(request.content))

        async def body():
            for fragment in fragments:
                yield fragment.encode("utf-8")

        return httpx.Response(200, content=body())

    return handler


def _gated_handler(first: str, gate: asyncio.Event, rest: str = ""):
    """Gateway stub that sends one fragment and then waits for the gate."""

    async def handler(request: httpx.Request) -> httpx.Response:
        async def body():
            yield first.encode("utf-8")
            await gate.wait()
            if rest:
                yield rest.encode("utf-8")

        return httpx.Response(200, content=body())

    return handler


def _transport(store, handler, streaming: bool = True) -> ChatTransport:
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url=GATEWAY
    )
    return ChatTransport(store, http_client, streaming=streaming)


@pytest.fixture
async def session_id(store) -> str:
    """Active session with a credential configured."""
    session = store.active_session
    await store.update_session(session.id, {"credential": "sk-test"})
    return session.id


class Recorder:
    """Collects (state, text) snapshots from on_update."""

    def __init__(self):
        self.updates: list[tuple[RequestState, str]] = []

    def __call__(self, pending: PendingRequest) -> None:
        self.updates.append((pending.state, pending.text))

    @property
    def states(self) -> list[RequestState]:
        return [state for state, _ in self.updates]

    @property
    def streamed(self) -> list[str]:
        return [text for state, text in self.updates if state == RequestState.STREAMING]


class TestStreaming:
    """Tests for streamed responses."""

    @pytest.mark.asyncio
    async def test_reconstructs_full_text(self, store, session_id):
        transport = _transport(store, _streaming_handler(["Hel", "lo, ", "world!"]))

        pending = await transport.submit(session_id, "Say hello")

        assert pending.state == RequestState.COMPLETED
        assert pending.text == "Hello, world!"
        messages = store.get_session(session_id).messages
        assert [(m.role, m.content) for m in messages] == [
            (ChatRole.USER, "Say hello"),
            (ChatRole.ASSISTANT, "Hello, world!"),
        ]

    @pytest.mark.asyncio
    async def test_buffer_grows_by_prefix(self, store, session_id):
        transport = _transport(store, _streaming_handler(["Hel", "lo, ", "world!"]))
        recorder = Recorder()

        await transport.submit(session_id, "Say hello", on_update=recorder)

        assert recorder.streamed == ["Hel", "Hello, ", "Hello, world!"]
        assert recorder.states[0] == RequestState.SENDING
        assert recorder.states[-1] == RequestState.COMPLETED

    @pytest.mark.asyncio
    async def test_empty_stream_commits_empty_message(self, store, session_id):
        transport = _transport(store, _streaming_handler([]))

        pending = await transport.submit(session_id, "Anything?")

        assert pending.state == RequestState.COMPLETED
        last = store.get_session(session_id).messages[-1]
        assert last.role == ChatRole.ASSISTANT
        assert last.content == ""

    @pytest.mark.asyncio
    async def test_sends_session_configuration(self, store, session_id):
        captured: list[dict] = []
        await store.update_session(session_id, {"system_prompt": "Be terse."})
        transport = _transport(store, _streaming_handler(["ok"], captured))

        await transport.submit(session_id, "Hi")

        payload = captured[0]
        assert payload["apiKey"] == "sk-test"
        assert payload["systemPrompt"] == "Be terse."
        assert payload["stream"] is True
        assert payload["messages"] == [{"role": "user", "content": "Hi"}]

    @pytest.mark.asyncio
    async def test_title_derived_from_first_message(self, store, session_id):
        transport = _transport(store, _streaming_handler(["ok"]))

        await transport.submit(session_id, "Explain quantum computing in simple terms please")

        assert store.get_session(session_id).title == "Explain quantum computing in s..."

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_request(self, store, session_id):
        transport = _transport(store, _streaming_handler(["a", "b"]))

        def broken(pending):
            raise RuntimeError("ui crashed")

        pending = await transport.submit(session_id, "Hi", on_update=broken)

        assert pending.state == RequestState.COMPLETED
        assert pending.text == "ab"


class TestExchange:
    """Tests for the non-streaming mode."""

    @pytest.mark.asyncio
    async def test_commits_full_text(self, store, session_id):
        captured: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(json.loads(request.content))
            return httpx.Response(200, json={"text": "Complete answer"})

        transport = _transport(store, handler, streaming=False)
        recorder = Recorder()

        pending = await transport.submit(session_id, "Question", on_update=recorder)

        assert pending.state == RequestState.COMPLETED
        assert captured[0]["stream"] is False
        assert store.get_session(session_id).messages[-1].content == "Complete answer"
        assert RequestState.STREAMING not in recorder.states


class TestFailures:
    """Tests for gateway and network errors."""

    @pytest.mark.asyncio
    async def test_error_status_commits_error_message(self, store, session_id):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": "Invalid API key"})

        transport = _transport(store, handler)

        pending = await transport.submit(session_id, "Hi")

        assert pending.state == RequestState.FAILED
        assert pending.error == "Invalid API key"
        messages = store.get_session(session_id).messages
        assert [(m.role, m.content) for m in messages] == [
            (ChatRole.USER, "Hi"),
            (ChatRole.ASSISTANT, "Error: Invalid API key"),
        ]
        assert not transport.is_busy(session_id)

    @pytest.mark.asyncio
    async def test_error_without_body_uses_generic_message(self, store, session_id):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="Bad Gateway")

        transport = _transport(store, handler)

        pending = await transport.submit(session_id, "Hi")

        assert pending.state == RequestState.FAILED
        assert pending.error == "Failed to get response from API"

    @pytest.mark.asyncio
    async def test_network_error(self, store, session_id):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused")

        transport = _transport(store, handler)

        pending = await transport.submit(session_id, "Hi")

        assert pending.state == RequestState.FAILED
        assert store.get_session(session_id).messages[-1].content == "Error: Connection refused"

    @pytest.mark.asyncio
    async def test_non_streaming_error(self, store, session_id):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "Upstream down"})

        transport = _transport(store, handler, streaming=False)

        pending = await transport.submit(session_id, "Hi")

        assert pending.state == RequestState.FAILED
        assert store.get_session(session_id).messages[-1].content == "Error: Upstream down"


class TestValidation:
    """Tests for requests rejected before sending."""

    @pytest.mark.asyncio
    async def test_unknown_session(self, store):
        transport = _transport(store, _streaming_handler(["x"]))
        with pytest.raises(ValidationError):
            await transport.submit("missing", "Hi")

    @pytest.mark.asyncio
    async def test_blank_text(self, store, session_id):
        transport = _transport(store, _streaming_handler(["x"]))
        with pytest.raises(ValidationError):
            await transport.submit(session_id, "   ")
        assert store.get_session(session_id).messages == []

    @pytest.mark.asyncio
    async def test_missing_credential(self, store):
        transport = _transport(store, _streaming_handler(["x"]))
        session = store.active_session
        with pytest.raises(ValidationError):
            await transport.submit(session.id, "Hi")
        assert store.get_session(session.id).messages == []


class TestConcurrency:
    """Tests for per-session exclusivity and cancellation."""

    @pytest.mark.asyncio
    async def test_second_submit_rejected_while_busy(self, store, session_id):
        gate = asyncio.Event()
        first_fragment = asyncio.Event()
        transport = _transport(store, _gated_handler("Hel", gate, rest="lo"))

        def on_update(pending):
            if pending.state == RequestState.STREAMING:
                first_fragment.set()

        task = asyncio.create_task(transport.submit(session_id, "One", on_update=on_update))
        await asyncio.wait_for(first_fragment.wait(), timeout=2)

        assert transport.is_busy(session_id)
        with pytest.raises(SessionBusyError):
            await transport.submit(session_id, "Two")

        gate.set()
        pending = await asyncio.wait_for(task, timeout=2)

        assert pending.state == RequestState.COMPLETED
        contents = [m.content for m in store.get_session(session_id).messages]
        assert contents == ["One", "Hello"]
        assert not transport.is_busy(session_id)

    @pytest.mark.asyncio
    async def test_other_sessions_are_independent(self, store, session_id):
        other = await store.create_session({"credential": "sk-other"})
        gate = asyncio.Event()
        first_fragment = asyncio.Event()
        transport = _transport(store, _gated_handler("x", gate))

        def on_update(pending):
            if pending.state == RequestState.STREAMING:
                first_fragment.set()

        first = asyncio.create_task(transport.submit(session_id, "A", on_update=on_update))
        await asyncio.wait_for(first_fragment.wait(), timeout=2)
        second = asyncio.create_task(transport.submit(other.id, "B"))
        await asyncio.sleep(0)

        assert transport.is_busy(other.id)

        gate.set()
        results = await asyncio.wait_for(asyncio.gather(first, second), timeout=2)

        assert [p.state for p in results] == [RequestState.COMPLETED] * 2

    @pytest.mark.asyncio
    async def test_cancel_mid_stream_discards_partial_text(self, store, session_id):
        gate = asyncio.Event()
        first_fragment = asyncio.Event()
        transport = _transport(store, _gated_handler("Partial", gate, rest=" answer"))
        recorder = Recorder()

        def on_update(pending):
            recorder(pending)
            if pending.state == RequestState.STREAMING:
                first_fragment.set()

        task = asyncio.create_task(transport.submit(session_id, "Hi", on_update=on_update))
        await asyncio.wait_for(first_fragment.wait(), timeout=2)

        assert transport.cancel(session_id) is True
        pending = await asyncio.wait_for(task, timeout=2)

        assert pending.state == RequestState.CANCELLED
        assert pending.text == ""
        assert recorder.states[-1] == RequestState.CANCELLED
        messages = store.get_session(session_id).messages
        assert [(m.role, m.content) for m in messages] == [(ChatRole.USER, "Hi")]
        assert not transport.is_busy(session_id)

        # A new request is accepted once the cancelled one has finished
        gate.set()
        follow_up = await asyncio.wait_for(transport.submit(session_id, "Retry"), timeout=2)
        assert follow_up.state == RequestState.COMPLETED
        assert store.get_session(session_id).messages[-1].content == "Partial answer"

    @pytest.mark.asyncio
    async def test_cancel_while_committing_is_refused(self, store, session_id, monkeypatch):
        committing = asyncio.Event()
        release = asyncio.Event()
        append_message = store.append_message

        async def slow_append(sid, message):
            if message.role == ChatRole.ASSISTANT:
                committing.set()
                await release.wait()
            await append_message(sid, message)

        monkeypatch.setattr(store, "append_message", slow_append)
        transport = _transport(store, _streaming_handler(["done"]))

        task = asyncio.create_task(transport.submit(session_id, "Hi"))
        await asyncio.wait_for(committing.wait(), timeout=2)

        assert transport.is_busy(session_id)
        assert transport.cancel(session_id) is False

        release.set()
        pending = await asyncio.wait_for(task, timeout=2)

        assert pending.state == RequestState.COMPLETED
        contents = [m.content for m in store.get_session(session_id).messages]
        assert contents == ["Hi", "done"]

    @pytest.mark.asyncio
    async def test_cancel_while_committing_error_is_refused(
        self, store, session_id, monkeypatch
    ):
        committing = asyncio.Event()
        release = asyncio.Event()
        append_message = store.append_message

        async def slow_append(sid, message):
            if message.role == ChatRole.ASSISTANT:
                committing.set()
                await release.wait()
            await append_message(sid, message)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "Upstream down"})

        monkeypatch.setattr(store, "append_message", slow_append)
        transport = _transport(store, handler)

        task = asyncio.create_task(transport.submit(session_id, "Hi"))
        await asyncio.wait_for(committing.wait(), timeout=2)

        assert transport.cancel(session_id) is False

        release.set()
        pending = await asyncio.wait_for(task, timeout=2)

        assert pending.state == RequestState.FAILED
        assert store.get_session(session_id).messages[-1].content == "Error: Upstream down"

    @pytest.mark.asyncio
    async def test_cancel_without_request_is_noop(self, store, session_id):
        transport = _transport(store, _streaming_handler(["x"]))
        assert transport.cancel(session_id) is False

    @pytest.mark.asyncio
    async def test_cancel_twice(self, store, session_id):
        gate = asyncio.Event()
        first_fragment = asyncio.Event()
        transport = _transport(store, _gated_handler("x", gate))

        def on_update(pending):
            if pending.state == RequestState.STREAMING:
                first_fragment.set()

        task = asyncio.create_task(transport.submit(session_id, "Hi", on_update=on_update))
        await asyncio.wait_for(first_fragment.wait(), timeout=2)

        assert transport.cancel(session_id) is True
        assert transport.cancel(session_id) is False
        pending = await asyncio.wait_for(task, timeout=2)

        assert pending.state == RequestState.CANCELLED
        assert transport.cancel(session_id) is False


class TestHttpClient:
    """Tests for gateway client configuration."""

    @pytest.mark.asyncio
    async def test_base_url_from_environment(self, monkeypatch):
        monkeypatch.setenv("GATEWAY_URL", "http://gateway.internal:9000")
        monkeypatch.setenv("GATEWAY_TIMEOUT", "5")

        async with create_http_client() as client:
            assert str(client.base_url).startswith("http://gateway.internal:9000")
            assert client.timeout.read == 5.0

    @pytest.mark.asyncio
    async def test_explicit_base_url_wins(self, monkeypatch):
        monkeypatch.setenv("GATEWAY_URL", "http://ignored")

        async with create_http_client("http://localhost:1234") as client:
            assert str(client.base_url).startswith("http://localhost:1234")
