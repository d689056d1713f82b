"""
Model catalog

Maps the OpenAI model names clients send to the models served by the
upstream provider, and lists the models advertised on /v1/models.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from gateway.core.config import settings


@dataclass(frozen=True)
class ModelConfig:
    id: str
    display_name: str
    type: str  # chat, image, embedding, moderation
    created: int
    owned_by: str = "openai"
    max_tokens: Optional[int] = None
    image_sizes: List[str] = field(default_factory=list)
    max_images: int = 1

    @property
    def upstream_model(self) -> str:
        return upstream_model_for_type(self.type)


def upstream_model_for_type(model_type: str) -> str:
    if model_type == "image":
        return settings.UPSTREAM_IMAGE_MODEL
    if model_type == "embedding":
        return settings.UPSTREAM_EMBEDDING_MODEL
    if model_type == "moderation":
        return settings.UPSTREAM_MODERATION_MODEL
    return settings.UPSTREAM_DEFAULT_MODEL


_DALLE3_SIZES = ["1024x1024", "1024x1792", "1792x1024"]
_DALLE2_SIZES = ["256x256", "512x512", "1024x1024"]

MODEL_CONFIGS: Dict[str, ModelConfig] = {
    m.id: m for m in [
        ModelConfig("gpt-3.5-turbo", "GPT-3.5 Turbo", "chat", 1677610602, max_tokens=4096),
        ModelConfig("gpt-3.5-turbo-16k", "GPT-3.5 Turbo 16K", "chat", 1677610602, max_tokens=16384),
        ModelConfig("gpt-4", "GPT-4", "chat", 1687882410, max_tokens=8192),
        ModelConfig("gpt-4-32k", "GPT-4 32K", "chat", 1687882410, max_tokens=32768),
        ModelConfig("gpt-4-turbo", "GPT-4 Turbo", "chat", 1712361441, max_tokens=128000),
        ModelConfig("gpt-4o", "GPT-4o", "chat", 1715367049, max_tokens=128000),
        ModelConfig("gpt-4o-mini", "GPT-4o Mini", "chat", 1715367049, max_tokens=128000),
        ModelConfig("text-davinci-003", "Davinci 003", "chat", 1677610602, max_tokens=4096),
        ModelConfig("text-curie-001", "Curie 001", "chat", 1677610602, max_tokens=2048),
        ModelConfig("dall-e-3", "DALL-E 3", "image", 1698798177, image_sizes=_DALLE3_SIZES, max_images=1),
        ModelConfig("dall-e-2", "DALL-E 2", "image", 1677610602, image_sizes=_DALLE2_SIZES, max_images=10),
        ModelConfig("text-embedding-ada-002", "Ada Embeddings v2", "embedding", 1671217299),
        ModelConfig("text-embedding-3-small", "Embeddings v3 Small", "embedding", 1705948997),
        ModelConfig("text-embedding-3-large", "Embeddings v3 Large", "embedding", 1705953180),
        ModelConfig("text-moderation-latest", "Moderation (latest)", "moderation", 1677610602),
        ModelConfig("text-moderation-stable", "Moderation (stable)", "moderation", 1677610602),
    ]
}

DEFAULT_CHAT_MODEL = "gpt-3.5-turbo"
DEFAULT_MAX_TOKENS = 8192


def get_model_config(model: str) -> Optional[ModelConfig]:
    return MODEL_CONFIGS.get(model)


def map_to_upstream_model(model: str, model_type: str = "chat") -> str:
    """
    Upstream model for an OpenAI model name.

    Unknown names fall back to the upstream model serving `model_type`, the
    kind of model the calling endpoint expects.
    """
    config = MODEL_CONFIGS.get(model)
    if config is None:
        return upstream_model_for_type(model_type)
    return config.upstream_model


def max_tokens_for(model: str) -> int:
    config = MODEL_CONFIGS.get(model)
    if config and config.max_tokens:
        return config.max_tokens
    return DEFAULT_MAX_TOKENS


def image_sizes_for(model: str) -> List[str]:
    """Sizes accepted for an image model; non dall-e-3 models use the dall-e-2 list"""
    if model == "dall-e-3":
        return _DALLE3_SIZES
    return _DALLE2_SIZES


def max_images_for(model: str) -> int:
    return 1 if model == "dall-e-3" else 10


def list_models() -> List[ModelConfig]:
    return list(MODEL_CONFIGS.values())
