"""
Upstream provider client

Thin wrapper around the `openai` SDK pointed at the vendor's
OpenAI-compatible base URL. Responses are returned as plain dicts so the
route layer can shape them without depending on SDK types.

SDK failures are translated into gateway errors:
- openai.APITimeoutError -> UpstreamTimeoutError (408)
- any other SDK or transport error -> UpstreamError (500)
"""
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional, Union

import openai
from openai import AsyncOpenAI

from gateway.core.config import settings
from gateway.core.logging import get_logger, log_duration
from gateway.api.errors import UpstreamError, UpstreamTimeoutError

upstream_logger = get_logger("upstream")


@asynccontextmanager
async def _translate_errors(operation: str):
    try:
        yield
    except openai.APITimeoutError as e:
        upstream_logger.warning("Upstream timeout", operation=operation, error=str(e))
        raise UpstreamTimeoutError(f"Upstream request timed out during {operation}") from e
    except openai.APIStatusError as e:
        upstream_logger.error(
            "Upstream returned an error",
            operation=operation,
            status_code=e.status_code,
            error=str(e),
        )
        raise UpstreamError(f"Upstream {operation} failed: {e.message}") from e
    except openai.OpenAIError as e:
        upstream_logger.error("Upstream call failed", operation=operation, error=str(e))
        raise UpstreamError(f"Upstream {operation} failed: {e}") from e


def _as_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    return obj.model_dump(exclude_none=True)


class UpstreamClient:
    """Calls the vendor API on behalf of gateway requests"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.base_url = base_url or settings.UPSTREAM_API_BASE_URL
        self.api_key = api_key or settings.UPSTREAM_API_KEY
        self.timeout = timeout or settings.UPSTREAM_TIMEOUT

        # Retries are disabled; a failed call is reported straight to the caller
        self.client = AsyncOpenAI(
            base_url=self.base_url,
            api_key=self.api_key,
            timeout=self.timeout,
            max_retries=0,
        )

    async def chat_completion(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        **params,
    ) -> Dict[str, Any]:
        """Non-streaming chat completion"""
        async with _translate_errors("chat completion"):
            with log_duration("upstream_chat_completion", logger=upstream_logger, model=model):
                response = await self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    stream=False,
                    **params,
                )
        return _as_dict(response)

    async def stream_chat_completion(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        **params,
    ) -> AsyncGenerator[Dict[str, Any], None]:
        """
        Open a streaming chat completion.

        The upstream request is made before this returns, so connection and
        status errors surface here rather than after the response has
        started. The returned generator yields one dict per upstream chunk.
        """
        async with _translate_errors("chat completion"):
            stream = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                stream=True,
                **params,
            )
        return self._iterate_stream(stream)

    @staticmethod
    async def _iterate_stream(stream) -> AsyncGenerator[Dict[str, Any], None]:
        try:
            async with _translate_errors("chat completion stream"):
                async for chunk in stream:
                    yield _as_dict(chunk)
        finally:
            # Releases the upstream connection when the relay stops early
            await stream.close()

    async def generate_image(
        self,
        model: str,
        prompt: str,
        size: str,
        quality: Optional[str] = None,
        style: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Generate a single image.

        Returns the first item of the upstream `data` list, which carries
        either `b64_json` or `url`.
        """
        params: Dict[str, Any] = {"model": model, "prompt": prompt, "size": size, "n": 1}
        if quality:
            params["quality"] = quality
        if style:
            params["style"] = style

        async with _translate_errors("image generation"):
            with log_duration("upstream_image_generation", logger=upstream_logger, model=model, size=size):
                response = await self.client.images.generate(**params)

        data = _as_dict(response).get("data") or []
        if not data:
            raise UpstreamError("Upstream image generation returned no data")
        return data[0]

    async def create_embeddings(
        self,
        model: str,
        input: Union[str, List[str]],
        dimensions: Optional[int] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"model": model, "input": input}
        if dimensions:
            params["dimensions"] = dimensions

        async with _translate_errors("embeddings"):
            with log_duration("upstream_embeddings", logger=upstream_logger, model=model):
                response = await self.client.embeddings.create(**params)
        return _as_dict(response)

    async def moderate(
        self,
        model: str,
        input: Union[str, List[str]],
    ) -> Dict[str, Any]:
        async with _translate_errors("moderation"):
            with log_duration("upstream_moderation", logger=upstream_logger, model=model):
                response = await self.client.moderations.create(model=model, input=input)
        return _as_dict(response)


_upstream_client: Optional[UpstreamClient] = None


def get_upstream_client() -> UpstreamClient:
    """FastAPI dependency returning the shared upstream client"""
    global _upstream_client
    if _upstream_client is None:
        _upstream_client = UpstreamClient()
    return _upstream_client
