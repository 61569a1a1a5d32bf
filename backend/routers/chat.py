import json
import logging
from typing import Any, Dict, List, Tuple

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError as PydanticValidationError

from models.errors import ChatError, ConfigError, ValidationError
from models.schemas import ChatRequest, ChatResponse, ChatTurn
from services.completion import CompletionClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

completion_client = CompletionClient()

UPSTREAM_FAILURE = "Failed to get response from OpenAI"


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(content={"error": message}, status_code=status_code)


def _failure_response(error: ChatError) -> JSONResponse:
    if isinstance(error, (ValidationError, ConfigError)):
        return _error(error.message, error.status_code)
    logger.warning("Completion failed: %s", error.message)
    return _error(UPSTREAM_FAILURE, 500)


async def _parse_request(request: Request) -> Tuple[List[ChatTurn], Dict[str, Any]]:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be JSON")
    if not isinstance(body, dict) or not isinstance(body.get("messages"), list) or not body["messages"]:
        raise ValidationError("Messages array is required")

    try:
        chat_request = ChatRequest.model_validate(body)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(f"Invalid request at {location}: {first.get('msg')}")

    turns = [m.to_turn() for m in chat_request.messages]
    options = {
        k: v for k, v in
        {"model": chat_request.model, "max_tokens": chat_request.max_tokens, "temperature": chat_request.temperature}.items()
        if v is not None
    }
    return turns, options


@router.post("")
async def chat_completion(request: Request):
    """Batched completion: `{messages}` in, `{message}` out."""
    try:
        turns, options = await _parse_request(request)
        reply = await completion_client.complete(turns, **options)
    except ChatError as e:
        return _failure_response(e)
    return ChatResponse(message=reply)


@router.post("/stream")
async def chat_completion_stream(request: Request):
    """Streaming completion as server-sent events of `{content}` frames closed by `[DONE]`."""
    try:
        turns, options = await _parse_request(request)
        completion_client.require_api_key()
    except ChatError as e:
        return _failure_response(e)

    async def event_stream():
        try:
            async for fragment in completion_client.stream(turns, **options):
                yield f"data: {json.dumps({'content': fragment})}\n\n"
        except ChatError as e:
            logger.warning("Stream failed: %s", e.message)
            message = e.message if isinstance(e, ConfigError) else UPSTREAM_FAILURE
            yield f"data: {json.dumps({'error': message})}\n\n"
            return
        yield "data: [DONE]\n\n"

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
