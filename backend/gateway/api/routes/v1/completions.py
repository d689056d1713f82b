"""
OpenAI-compatible /v1/chat/completions endpoint

Supports:
- Streaming and non-streaming responses
- OpenAI model names mapped onto the upstream provider's models
- Usage synthesis when the upstream omits token counts
- Per-request usage accounting
"""
import asyncio
import json
import logging
import time
import uuid
from typing import Any, AsyncGenerator, Dict, List, Optional, Union

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from gateway.api.dependencies import ApiKeyAuth, metered
from gateway.api.errors import GatewayError, InternalError
from gateway.services.model_catalog import map_to_upstream_model, max_tokens_for
from gateway.services.upstream import UpstreamClient, get_upstream_client
from gateway.services.usage import (
    UsageRecorder, get_usage_recorder, estimate_tokens, calculate_token_cost,
)

logger = logging.getLogger(__name__)

router = APIRouter()

ENDPOINT = "chat/completions"
DEFAULT_TEMPERATURE = 0.7
# Recorded when the client goes away before the stream ends
CLIENT_CLOSED_REQUEST = 499


# === Schemas (OpenAI-compatible) ===

class ChatMessage(BaseModel):
    """A message in the conversation"""
    role: str = Field(..., description="Role: system, user, assistant, or tool")
    content: Optional[str] = None
    name: Optional[str] = None


class ChatCompletionRequest(BaseModel):
    """OpenAI-compatible chat completion request"""
    model: str = Field(..., min_length=1)
    messages: List[ChatMessage] = Field(..., min_length=1)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    top_p: Optional[float] = Field(default=None, ge=0, le=1)
    n: Optional[int] = Field(default=1, ge=1, le=10)
    stream: Optional[bool] = False
    stop: Optional[Union[str, List[str]]] = None
    max_tokens: Optional[int] = Field(default=None, ge=1)
    presence_penalty: Optional[float] = Field(default=None, ge=-2, le=2)
    frequency_penalty: Optional[float] = Field(default=None, ge=-2, le=2)
    user: Optional[str] = None


class ChatCompletionChoice(BaseModel):
    """A completion choice"""
    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


class ChatCompletionUsage(BaseModel):
    """Token usage information"""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ChatCompletionResponse(BaseModel):
    """OpenAI-compatible chat completion response"""
    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: List[ChatCompletionChoice]
    usage: ChatCompletionUsage
    system_fingerprint: Optional[str] = None


class ChatCompletionChunkDelta(BaseModel):
    """Delta content in streaming response"""
    role: Optional[str] = None
    content: Optional[str] = None


class ChatCompletionChunkChoice(BaseModel):
    """A chunk choice in streaming"""
    index: int
    delta: ChatCompletionChunkDelta
    finish_reason: Optional[str] = None


class ChatCompletionChunk(BaseModel):
    """OpenAI-compatible streaming chunk"""
    id: str
    object: str = "chat.completion.chunk"
    created: int
    model: str
    choices: List[ChatCompletionChunkChoice]


# === Helper Functions ===

def format_sse_message(data: dict) -> str:
    """Format data as SSE message."""
    return f"data: {json.dumps(data)}\n\n"


def upstream_params(request: ChatCompletionRequest) -> Dict[str, Any]:
    """Sampling parameters forwarded upstream; unset optional ones are left out"""
    params: Dict[str, Any] = {
        "temperature": request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE,
        "max_tokens": request.max_tokens or max_tokens_for(request.model),
    }
    for name in ("top_p", "frequency_penalty", "presence_penalty", "stop"):
        value = getattr(request, name)
        if value is not None:
            params[name] = value
    return params


def upstream_messages(request: ChatCompletionRequest) -> List[Dict[str, Any]]:
    return [
        {"role": m.role, "content": m.content or "", **({"name": m.name} if m.name else {})}
        for m in request.messages
    ]


def prompt_token_estimate(request: ChatCompletionRequest) -> int:
    serialized = json.dumps(
        [m.model_dump(exclude_none=True) for m in request.messages],
        separators=(",", ":"),
    )
    return estimate_tokens(serialized)


def shape_completion(
    request: ChatCompletionRequest,
    completion: Dict[str, Any],
) -> ChatCompletionResponse:
    """
    Translate an upstream completion into the OpenAI response shape.

    Missing id, created, role, finish_reason and usage are synthesised;
    `model` always echoes the name the client asked for.
    """
    choices = []
    for index, choice in enumerate(completion.get("choices") or []):
        message = choice.get("message") or {}
        choices.append(ChatCompletionChoice(
            index=index,
            message=ChatMessage(
                role=message.get("role") or "assistant",
                content=message.get("content") or "",
            ),
            finish_reason=choice.get("finish_reason") or "stop",
        ))

    usage = completion.get("usage") or {}
    prompt_tokens = usage.get("prompt_tokens") or prompt_token_estimate(request)
    first_content = choices[0].message.content if choices else ""
    completion_tokens = usage.get("completion_tokens") or estimate_tokens(first_content)
    total_tokens = usage.get("total_tokens") or prompt_tokens + completion_tokens

    return ChatCompletionResponse(
        id=completion.get("id") or f"chatcmpl-{uuid.uuid4()}",
        created=completion.get("created") or int(time.time()),
        model=request.model,
        choices=choices,
        usage=ChatCompletionUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
        ),
        system_fingerprint=completion.get("system_fingerprint"),
    )


def _create_streaming_response(
    request: ChatCompletionRequest,
    chunks: AsyncGenerator[Dict[str, Any], None],
    auth: ApiKeyAuth,
    recorder: UsageRecorder,
) -> AsyncGenerator[str, None]:
    """Relay upstream chunks as chat.completion.chunk events"""

    async def generate():
        completion_id = f"chatcmpl-{uuid.uuid4()}"
        created = int(time.time())
        content_parts: List[str] = []
        finish_reason = "stop"
        upstream_usage: Dict[str, Any] = {}
        status_code = 200
        error_message = None

        def chunk(delta: ChatCompletionChunkDelta, finish: Optional[str] = None) -> str:
            return format_sse_message(
                ChatCompletionChunk(
                    id=completion_id,
                    created=created,
                    model=request.model,
                    choices=[ChatCompletionChunkChoice(index=0, delta=delta, finish_reason=finish)],
                ).model_dump()
            )

        try:
            # First chunk with role
            yield chunk(ChatCompletionChunkDelta(role="assistant"))

            async for upstream_chunk in chunks:
                if upstream_chunk.get("usage"):
                    upstream_usage = upstream_chunk["usage"]
                for choice in upstream_chunk.get("choices") or []:
                    content = (choice.get("delta") or {}).get("content")
                    if content:
                        content_parts.append(content)
                        yield chunk(ChatCompletionChunkDelta(content=content))
                    if choice.get("finish_reason"):
                        finish_reason = choice["finish_reason"]

            # Final chunk with finish reason
            yield chunk(ChatCompletionChunkDelta(), finish_reason)

        except GatewayError as e:
            status_code, error_message = e.status_code, e.message
            yield format_sse_message(e.to_dict())
        except Exception as e:
            logger.error(f"Streaming error: {e}")
            error = InternalError("Internal server error")
            status_code, error_message = error.status_code, str(e)
            yield format_sse_message(error.to_dict())
        except (asyncio.CancelledError, GeneratorExit):
            status_code, error_message = CLIENT_CLOSED_REQUEST, "Client closed the stream"
            raise
        finally:
            await chunks.aclose()

            prompt_tokens = upstream_usage.get("prompt_tokens") or prompt_token_estimate(request)
            completion_tokens = upstream_usage.get("completion_tokens") or estimate_tokens("".join(content_parts))
            total_tokens = upstream_usage.get("total_tokens") or prompt_tokens + completion_tokens

            await recorder.record(auth.usage_record(
                ENDPOINT,
                status_code,
                model=request.model,
                tokens_used=total_tokens,
                cost=calculate_token_cost(request.model, total_tokens),
                error=error_message,
            ))

        yield "data: [DONE]\n\n"

    return generate()


# === Endpoints ===

@router.post("/chat/completions")
async def create_chat_completion(
    body: ChatCompletionRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    auth: ApiKeyAuth = Depends(metered(ENDPOINT)),
    upstream: UpstreamClient = Depends(get_upstream_client),
    recorder: UsageRecorder = Depends(get_usage_recorder),
):
    """
    Create a chat completion.

    Compatible with OpenAI's /v1/chat/completions endpoint. The model name
    is mapped to an upstream model and echoed back unchanged.
    """
    request.state.usage_model = body.model
    upstream_model = map_to_upstream_model(body.model)

    if body.stream:
        chunks = await upstream.stream_chat_completion(
            upstream_model,
            upstream_messages(body),
            **upstream_params(body),
        )
        return StreamingResponse(
            _create_streaming_response(body, chunks, auth, recorder),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
                **auth.headers,
            },
        )

    completion = await upstream.chat_completion(
        upstream_model,
        upstream_messages(body),
        **upstream_params(body),
    )
    result = shape_completion(body, completion)

    tokens = result.usage.total_tokens
    background_tasks.add_task(
        recorder.record,
        auth.usage_record(
            ENDPOINT,
            200,
            model=body.model,
            tokens_used=tokens,
            cost=calculate_token_cost(body.model, tokens),
        ),
    )

    return result
