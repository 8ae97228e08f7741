import os
from dataclasses import dataclass


@dataclass(frozen=True)
class AIConfig:
    provider: str
    model: str
    analysis_model: str
    transcribe_model: str


def load_ai_config() -> AIConfig:
    provider = os.getenv("AI_PROVIDER", "openai").strip().lower()
    model = os.getenv("AI_MODEL", "gpt-4o").strip()
    analysis_model = os.getenv("AI_ANALYSIS_MODEL", "gpt-4o-mini").strip()
    transcribe_model = os.getenv("OPENAI_TRANSCRIBE_MODEL", "whisper-1").strip()
    return AIConfig(
        provider=provider,
        model=model,
        analysis_model=analysis_model,
        transcribe_model=transcribe_model,
    )
