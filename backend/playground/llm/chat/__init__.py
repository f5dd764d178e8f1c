"""Chat client core: session store, request builder and streaming transport.

This module provides the client-side abstractions for multi-session chat:
- SessionStore: Owns the session set and persists it after every mutation
- build_chat_request: Turns session state into a provider-neutral request
- ChatTransport: Runs one gateway request per session with cancellation
"""

from playground.llm.chat.models import (
    ChatRequest,
    ChatRole,
    HeaderEntry,
    Message,
    ModelConfig,
    ModelRef,
    OutputFormat,
    PersistedState,
    Provider,
    Session,
)
from playground.llm.chat.catalog import MODELS, ModelCapabilities, get_capabilities, get_model
from playground.llm.chat.request_builder import (
    build_chat_request,
    clamp_max_tokens,
    normalize_headers,
)
from playground.llm.chat.cancellation import CancellationToken
from playground.llm.chat.store import (
    SessionStore,
    get_session_store,
    init_session_store,
    shutdown_session_store,
)
from playground.llm.chat.transport import (
    ChatTransport,
    PendingRequest,
    RequestState,
    create_http_client,
)

__all__ = [
    "MODELS",
    "CancellationToken",
    "ChatRequest",
    "ChatRole",
    "ChatTransport",
    "HeaderEntry",
    "Message",
    "ModelCapabilities",
    "ModelConfig",
    "ModelRef",
    "OutputFormat",
    "PendingRequest",
    "PersistedState",
    "Provider",
    "RequestState",
    "Session",
    "SessionStore",
    "build_chat_request",
    "clamp_max_tokens",
    "create_http_client",
    "get_capabilities",
    "get_model",
    "get_session_store",
    "init_session_store",
    "normalize_headers",
    "shutdown_session_store",
]
