"""ChatTransport runs gateway requests for sessions and commits the results."""

import logging
import os
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from playground.errors import (
    CancellationError,
    SessionBusyError,
    TransportError,
    ValidationError,
)
from playground.llm.chat.cancellation import CancellationToken
from playground.llm.chat.models import ChatRequest, ChatRole, Message
from playground.llm.chat.request_builder import build_request_for_session
from playground.llm.chat.store import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 120.0  # seconds
CHAT_PATH = "/api/chat"

_END = object()


class RequestState(str, Enum):
    """Lifecycle of one request."""

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {RequestState.COMPLETED, RequestState.CANCELLED, RequestState.FAILED}
)


@dataclass
class PendingRequest:
    """Transient state of an in-flight request. Never persisted."""

    session_id: str
    token: CancellationToken = field(default_factory=CancellationToken)
    state: RequestState = RequestState.IDLE
    text: str = ""
    error: str | None = None
    # Set once the outcome is being written to the store; cancel no longer applies
    committing: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


UpdateCallback = Callable[[PendingRequest], None]


def create_http_client(base_url: str | None = None) -> httpx.AsyncClient:
    """HTTP client for the gateway.

    Args:
        base_url: Gateway root. Defaults to GATEWAY_URL.
    """
    timeout = float(os.getenv("GATEWAY_TIMEOUT", DEFAULT_TIMEOUT))
    return httpx.AsyncClient(
        base_url=base_url or os.getenv("GATEWAY_URL", DEFAULT_GATEWAY_URL),
        timeout=httpx.Timeout(timeout, connect=10.0),
    )


def _error_from_response(response: httpx.Response) -> TransportError:
    """Build a TransportError from a gateway error response."""
    message = "Failed to get response from API"
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        message = str(body["error"])
    return TransportError(message, status_code=response.status_code)


class ChatTransport:
    """Executes at most one gateway request per session at a time.

    A submit moves a request through sending -> streaming -> one of
    completed, cancelled or failed. Completion commits exactly one assistant
    message with the full text; failure commits one error message; a
    cancelled request leaves no trace in the history.
    """

    def __init__(
        self,
        store: SessionStore,
        http_client: httpx.AsyncClient,
        streaming: bool = True,
        chat_path: str = CHAT_PATH,
    ):
        """Initialize the transport.

        Args:
            store: Session store that receives committed messages.
            http_client: Client whose base URL points at the gateway.
            streaming: Stream fragments (True) or wait for the full text.
            chat_path: Gateway chat endpoint.
        """
        self._store = store
        self._http = http_client
        self._chat_path = chat_path
        self.streaming = streaming
        self._pending: dict[str, PendingRequest] = {}

    def is_busy(self, session_id: str) -> bool:
        """Whether a request is in flight for the session."""
        return session_id in self._pending

    def get_pending(self, session_id: str) -> PendingRequest | None:
        return self._pending.get(session_id)

    def cancel(self, session_id: str) -> bool:
        """Cancel the in-flight request for a session.

        Returns:
            True if a running request was cancelled, False if there was
            nothing to cancel or its outcome is already being committed.
        """
        pending = self._pending.get(session_id)
        if pending is None or pending.is_terminal or pending.committing:
            return False
        cancelled = pending.token.cancel()
        if cancelled:
            logger.info(f"Cancellation requested for session {session_id}")
        return cancelled

    async def submit(
        self,
        session_id: str,
        text: str,
        on_update: UpdateCallback | None = None,
    ) -> PendingRequest:
        """Send a user turn and wait for the request to reach a terminal state.

        Args:
            session_id: Target session.
            text: The user's message.
            on_update: Called after every state change and every fragment.

        Returns:
            The finished PendingRequest.

        Raises:
            SessionBusyError: If the session already has a request in flight.
            ValidationError: If the session is unknown, the text is blank or
                no credential is configured.
        """
        session = self._store.get_session(session_id)
        if session is None:
            raise ValidationError(f"Unknown session {session_id}")
        if not text.strip():
            raise ValidationError("Message is empty")
        if not session.credential:
            raise ValidationError("No API key configured for this session")
        if self.is_busy(session_id):
            raise SessionBusyError(session_id)

        # Registered before the first await so a second submit is rejected
        pending = PendingRequest(session_id=session_id)
        self._pending[session_id] = pending

        try:
            request = build_request_for_session(session, text, stream=self.streaming)
            await self._store.append_message(
                session_id, Message(role=ChatRole.USER, content=text)
            )
            self._transition(pending, RequestState.SENDING, on_update)

            if self.streaming:
                final_text = await self._run_streaming(pending, request, on_update)
            else:
                final_text = await self._run_exchange(pending, request)

            pending.token.raise_if_cancelled()
            pending.committing = True
            await self._store.append_message(
                session_id, Message(role=ChatRole.ASSISTANT, content=final_text)
            )
            self._transition(pending, RequestState.COMPLETED, on_update)
            logger.info(
                f"Request for session {session_id} completed ({len(final_text)} chars)"
            )

        except CancellationError:
            pending.text = ""
            self._transition(pending, RequestState.CANCELLED, on_update)
            logger.info(f"Request for session {session_id} was cancelled")

        except Exception as e:
            if pending.token.cancelled:
                pending.text = ""
                self._transition(pending, RequestState.CANCELLED, on_update)
                logger.info(f"Request for session {session_id} was cancelled")
            else:
                logger.error(f"Error sending message for session {session_id}: {e}")
                pending.error = str(e) or "Failed to get response"
                pending.text = ""
                pending.committing = True
                await self._store.append_message(
                    session_id,
                    Message(role=ChatRole.ASSISTANT, content=f"Error: {pending.error}"),
                )
                self._transition(pending, RequestState.FAILED, on_update)

        finally:
            if self._pending.get(session_id) is pending:
                del self._pending[session_id]

        return pending

    async def _run_streaming(
        self,
        pending: PendingRequest,
        request: ChatRequest,
        on_update: UpdateCallback | None,
    ) -> str:
        """Stream fragments into the pending buffer and return the full text."""
        token = pending.token
        http_request = self._http.build_request(
            "POST", self._chat_path, json=request.to_payload()
        )

        response = await token.guard(self._http.send(http_request, stream=True))
        try:
            if response.is_error:
                await token.guard(response.aread())
                raise _error_from_response(response)

            fragments = response.aiter_text()
            while True:
                fragment = await token.guard(_next_fragment(fragments))
                if fragment is _END:
                    break
                if token.cancelled:
                    # Late data after a cancel is ignored
                    break
                if not fragment:
                    continue

                if pending.state == RequestState.SENDING:
                    pending.state = RequestState.STREAMING
                pending.text += fragment
                self._notify(pending, on_update)
        finally:
            # Closing the response aborts the connection if still open
            await response.aclose()

        return pending.text

    async def _run_exchange(self, pending: PendingRequest, request: ChatRequest) -> str:
        """Single request/response exchange; nothing partial is exposed."""
        response = await pending.token.guard(
            self._http.post(self._chat_path, json=request.to_payload())
        )
        if response.is_error:
            raise _error_from_response(response)

        body = response.json()
        return str(body.get("text") or "")

    def _transition(
        self,
        pending: PendingRequest,
        state: RequestState,
        on_update: UpdateCallback | None,
    ) -> None:
        pending.state = state
        self._notify(pending, on_update)

    def _notify(self, pending: PendingRequest, on_update: UpdateCallback | None) -> None:
        if on_update is None:
            return
        try:
            on_update(pending)
        except Exception as e:
            logger.exception(f"Update callback failed for session {pending.session_id}: {e}")


async def _next_fragment(fragments: AsyncIterator[str]) -> Any:
    """Next decoded fragment, or _END when the body is exhausted."""
    return await anext(fragments, _END)
