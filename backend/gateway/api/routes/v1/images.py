"""
OpenAI-compatible /v1/images/generations endpoint

Images are requested from the upstream one at a time. A failed image is
skipped as long as at least one image succeeds.
"""
import logging
import time
from typing import List, Optional, Literal

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import BaseModel, Field

from gateway.api.dependencies import ApiKeyAuth, metered
from gateway.api.errors import GatewayError, InvalidRequestError, UpstreamError
from gateway.services.model_catalog import image_sizes_for, max_images_for, map_to_upstream_model
from gateway.services.upstream import UpstreamClient, get_upstream_client
from gateway.services.usage import UsageRecorder, get_usage_recorder, calculate_image_cost

logger = logging.getLogger(__name__)

router = APIRouter()

ENDPOINT = "images/generations"


# === Schemas (OpenAI-compatible) ===

class ImageGenerationRequest(BaseModel):
    """OpenAI-compatible image generation request"""
    prompt: str = Field(..., min_length=1, description="Description of the desired image")
    model: str = "dall-e-3"
    n: int = 1
    size: str = "1024x1024"
    response_format: Literal["url", "b64_json"] = "url"
    quality: Optional[str] = None
    style: Optional[str] = None
    user: Optional[str] = None


class ImageData(BaseModel):
    """Single generated image"""
    url: Optional[str] = None
    b64_json: Optional[str] = None
    revised_prompt: Optional[str] = None


class ImageGenerationResponse(BaseModel):
    """OpenAI-compatible image generation response"""
    created: int
    data: List[ImageData]


# === Helper Functions ===

def validate_image_request(request: ImageGenerationRequest) -> None:
    valid_sizes = image_sizes_for(request.model)
    if request.size not in valid_sizes:
        raise InvalidRequestError(
            f"Invalid size: {request.size}. Supported sizes for {request.model}: {', '.join(valid_sizes)}"
        )

    max_images = max_images_for(request.model)
    if request.n < 1 or request.n > max_images:
        raise InvalidRequestError(
            f"Invalid n: {request.n}. For {request.model}, n must be between 1 and {max_images}"
        )


def shape_image(request: ImageGenerationRequest, item: dict) -> ImageData:
    """
    Convert one upstream image into the requested response format.

    Base64 output is returned as `b64_json`, or as a data URL for the `url`
    format. A plain upstream URL is passed through for the `url` format.
    """
    b64 = item.get("b64_json") or item.get("base64")
    revised_prompt = item.get("revised_prompt") or request.prompt

    if request.response_format == "b64_json":
        if not b64:
            raise UpstreamError("Upstream returned no base64 image data")
        return ImageData(b64_json=b64, revised_prompt=revised_prompt)

    if b64:
        return ImageData(url=f"data:image/png;base64,{b64}", revised_prompt=revised_prompt)
    if item.get("url"):
        return ImageData(url=item["url"], revised_prompt=revised_prompt)
    raise UpstreamError("Upstream returned no image data")


# === Endpoints ===

@router.post(
    "/images/generations",
    response_model=ImageGenerationResponse,
    response_model_exclude_none=True,
)
async def create_image(
    body: ImageGenerationRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    auth: ApiKeyAuth = Depends(metered(ENDPOINT)),
    upstream: UpstreamClient = Depends(get_upstream_client),
    recorder: UsageRecorder = Depends(get_usage_recorder),
):
    """
    Generate images from a prompt.

    Compatible with OpenAI's /v1/images/generations endpoint.

    **Sizes:**
    - dall-e-3: 1024x1024, 1024x1792, 1792x1024 (n = 1)
    - other models: 256x256, 512x512, 1024x1024 (n <= 10)
    """
    request.state.usage_model = body.model
    validate_image_request(body)

    upstream_model = map_to_upstream_model(body.model, "image")
    images: List[ImageData] = []
    last_error: Optional[GatewayError] = None

    for i in range(body.n):
        try:
            item = await upstream.generate_image(
                upstream_model,
                body.prompt,
                body.size,
                quality=body.quality,
                style=body.style,
            )
            images.append(shape_image(body, item))
        except GatewayError as e:
            logger.warning(f"Image generation {i + 1}/{body.n} failed: {e.message}")
            last_error = e

    if not images:
        raise last_error or UpstreamError("Failed to generate any images")

    background_tasks.add_task(
        recorder.record,
        auth.usage_record(
            ENDPOINT,
            200,
            model=body.model,
            cost=calculate_image_cost(body.model, body.size) * len(images),
        ),
    )

    return ImageGenerationResponse(created=int(time.time()), data=images)
