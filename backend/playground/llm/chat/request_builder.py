"""Turn session state into a provider-neutral gateway request."""

from playground.llm.chat.catalog import get_capabilities
from playground.llm.chat.models import (
    ChatRequest,
    ChatRole,
    HeaderEntry,
    Message,
    ModelConfig,
    ModelRef,
    OutputFormat,
    Session,
)


def clamp_max_tokens(model: ModelRef, max_tokens: int) -> int:
    """Cap max_tokens at the model's output ceiling.

    The ceiling is a safety limit against provider rejections and always
    applies, whatever the user configured.
    """
    return min(max_tokens, get_capabilities(model).max_output_tokens)


def normalize_headers(entries: list[HeaderEntry]) -> dict[str, str]:
    """Build a header mapping, dropping blank keys or values.

    On duplicate keys the last occurrence wins.
    """
    headers: dict[str, str] = {}
    for entry in entries:
        if entry.key and entry.value:
            headers[entry.key] = entry.value
    return headers


def normalize_output_format(
    model: ModelRef, output_format: OutputFormat | None
) -> OutputFormat | None:
    """Keep an output constraint only if the model can honour it."""
    if output_format is None or output_format.type == "text":
        return None
    if not get_capabilities(model).supports_json_mode:
        return None
    if output_format.type == "json_schema" and not output_format.json_schema:
        return OutputFormat(type="json_object")
    return output_format


def build_chat_request(
    history: list[Message],
    new_user_text: str,
    system_prompt: str,
    model: ModelRef,
    model_config: ModelConfig,
    credential: str,
    stream: bool = True,
) -> ChatRequest:
    """Compose the gateway request for a new user turn.

    Args:
        history: Session messages before the new turn.
        new_user_text: The text being submitted.
        system_prompt: Session system prompt (may be empty).
        model: Target model.
        model_config: Session sampling parameters and options.
        credential: Provider API key.
        stream: Whether the gateway should stream fragments.

    Returns:
        A ChatRequest with the new user turn appended, max_tokens clamped,
        headers normalized and provider-specific fields filtered.
    """
    capabilities = get_capabilities(model)
    messages = [m.model_copy() for m in history]
    messages.append(Message(role=ChatRole.USER, content=new_user_text))

    headers = [
        HeaderEntry(key=key, value=value)
        for key, value in normalize_headers(model_config.headers).items()
    ]

    return ChatRequest(
        messages=messages,
        model=model,
        api_key=credential,
        system_prompt=system_prompt,
        temperature=model_config.temperature,
        top_p=model_config.top_p,
        top_k=model_config.top_k if capabilities.supports_top_k else None,
        max_tokens=clamp_max_tokens(model, model_config.max_tokens),
        headers=headers,
        output_format=normalize_output_format(model, model_config.output_format),
        stream=stream,
    )


def build_request_for_session(
    session: Session,
    new_user_text: str,
    stream: bool = True,
) -> ChatRequest:
    """build_chat_request using the session's own history and configuration."""
    return build_chat_request(
        history=session.messages,
        new_user_text=new_user_text,
        system_prompt=session.system_prompt,
        model=session.model,
        model_config=session.config,
        credential=session.credential,
        stream=stream,
    )
