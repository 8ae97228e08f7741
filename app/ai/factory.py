from functools import lru_cache

from app.ai.config import load_ai_config
from app.ai.types import AIClient, AIProviderError

from app.ai.providers.openai_provider import OpenAIProvider


@lru_cache(maxsize=1)
def _cached_client() -> AIClient:
    cfg = load_ai_config()

    if cfg.provider == "openai":
        return OpenAIProvider(model=cfg.model, transcribe_model=cfg.transcribe_model)

    raise AIProviderError(f"Unsupported AI_PROVIDER='{cfg.provider}'", code="llm_misconfigured")


def get_ai_client() -> AIClient:
    return _cached_client()
