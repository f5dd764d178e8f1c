"""Pydantic models for chat sessions and gateway requests."""

import uuid
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_TITLE = "New Chat"


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys (wire and storage format)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


class ChatRole(str, Enum):
    """Role of a chat message sender."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Provider(str, Enum):
    """Supported LLM backends."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class Message(CamelModel):
    """A single message in a chat session."""

    role: ChatRole
    content: str


class ModelRef(CamelModel):
    """Catalog entry identifying a provider model."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        frozen=True,
    )

    id: str
    display_name: str = Field(default="", alias="name")
    provider: Provider


class HeaderEntry(CamelModel):
    """One user-supplied custom header. Keys need not be unique."""

    key: str = ""
    value: str = ""


class OutputFormat(CamelModel):
    """Constraint on the shape of the model output."""

    type: Literal["text", "json_object", "json_schema"] = "text"
    json_schema: str | None = Field(default=None, alias="schema")


class ModelConfig(CamelModel):
    """Sampling parameters and request options for a session."""

    temperature: float = Field(default=0.7, ge=0, le=1)
    top_p: float = Field(default=1, ge=0, le=1)
    top_k: int = Field(default=40, ge=1, le=100)  # anthropic only
    max_tokens: int = Field(default=1000, ge=1)
    headers: list[HeaderEntry] = Field(default_factory=list)
    output_format: OutputFormat | None = None
    tools: dict[str, dict[str, Any]] | None = None


class Session(CamelModel):
    """One persisted conversation with its own configuration."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str = DEFAULT_TITLE
    description: str | None = None
    messages: list[Message] = Field(default_factory=list)
    system_prompt: str = ""
    model: ModelRef
    config: ModelConfig = Field(default_factory=ModelConfig, alias="modelConfig")
    credential: str = Field(default="", alias="apiKey")

    @property
    def has_user_messages(self) -> bool:
        return any(m.role == ChatRole.USER for m in self.messages)


class PersistedState(CamelModel):
    """The whole session set as written to durable storage."""

    sessions: list[Session] = Field(default_factory=list)
    active_session_id: str | None = None


class ChatRequest(CamelModel):
    """Provider-neutral request body accepted by the gateway."""

    messages: list[Message]
    model: ModelRef
    api_key: str
    system_prompt: str = ""
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_tokens: int = 1000
    headers: list[HeaderEntry] = Field(default_factory=list)
    output_format: OutputFormat | None = None
    stream: bool = True

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the wire, omitting unset optional parameters."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
