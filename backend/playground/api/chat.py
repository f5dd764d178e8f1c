"""Provider gateway endpoints."""

import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import ValidationError

from playground.llm.chat.catalog import MODELS, get_capabilities
from playground.llm.chat.models import ChatRequest
from playground.llm.client import get_provider_client, prepare_request

logger = logging.getLogger(__name__)

router = APIRouter()

REQUIRED_FIELDS = ("messages", "model", "apiKey")


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _is_missing(value: Any) -> bool:
    # Empty lists and objects count as present
    return value is None or value == "" or value is False


@router.post("/chat")
async def chat(request: Request) -> Response:
    """Dispatch a chat request to its provider.

    Request body (camelCase):
    {
        "messages": [{"role": "user", "content": "..."}],
        "model": {"id": "gpt-4o", "provider": "openai"},
        "apiKey": "...",
        "systemPrompt": "optional",
        "temperature": 0.7, "topP": 1, "topK": 40, "maxTokens": 1000,
        "headers": [{"key": "...", "value": "..."}],
        "outputFormat": {"type": "json_object"},
        "stream": true
    }

    Streaming responses are raw UTF-8 text fragments with no framing; the
    end of the body is the end of the stream. Non-streaming responses are
    {"text": "..."}. Errors are {"error": "..."}.
    """
    try:
        payload = await request.json()
    except ValueError as e:
        logger.warning(f"Rejected chat request with unreadable body: {e}")
        return _error("Request body must be valid JSON", 400)
    if not isinstance(payload, dict):
        return _error("Request body must be a JSON object", 400)

    if any(_is_missing(payload.get(name)) for name in REQUIRED_FIELDS):
        return _error("Missing required fields", 400)

    try:
        chat_request = prepare_request(ChatRequest.model_validate(payload))
        client = get_provider_client(
            chat_request.model.provider,
            api_key=chat_request.api_key,
            headers={h.key: h.value for h in chat_request.headers},
        )
        client.build_params(chat_request)
    except (ValidationError, ValueError) as e:
        logger.warning(f"Rejected chat request: {e}")
        return _error(str(e), 400)

    logger.info(
        f"Chat request for {chat_request.model.id} "
        f"({len(chat_request.messages)} messages, stream={chat_request.stream})"
    )

    if not chat_request.stream:
        try:
            text = await client.generate_text(chat_request)
        except Exception as e:
            logger.error(f"Error in chat API: {e}")
            return _error(str(e) or "Internal server error", 500)
        return JSONResponse(content={"text": text})

    fragments = client.stream_text(chat_request)

    # Errors before the first fragment still get a proper error response
    try:
        first = await anext(fragments, None)
    except Exception as e:
        logger.error(f"Error in chat API: {e}")
        return _error(str(e) or "Internal server error", 500)

    async def body() -> AsyncIterator[bytes]:
        try:
            if first is not None:
                yield first.encode("utf-8")
            async for fragment in fragments:
                if await request.is_disconnected():
                    logger.info("Stream was canceled by the client")
                    break
                yield fragment.encode("utf-8")
        except Exception as e:
            logger.error(f"Error while streaming chat response: {e}")
            raise
        finally:
            await fragments.aclose()

    return StreamingResponse(
        body(),
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/models")
async def list_models() -> list[dict[str, Any]]:
    """Model catalog with the capabilities used for request normalization."""
    models = []
    for model in MODELS:
        capabilities = get_capabilities(model)
        models.append({
            **model.model_dump(by_alias=True),
            "maxOutputTokens": capabilities.max_output_tokens,
            "supportsTopK": capabilities.supports_top_k,
            "supportsJsonMode": capabilities.supports_json_mode,
        })
    return models
