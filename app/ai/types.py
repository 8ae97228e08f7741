from dataclasses import dataclass
from typing import Any, Literal, Protocol, Sequence

from app.core.errors import ExternalServiceError


Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class ChatMessage:
    role: Role
    content: str


class AIProviderError(ExternalServiceError):
    default_code = "llm_unavailable"


class AIClient(Protocol):
    async def complete_json(
        self,
        messages: Sequence[ChatMessage],
        *,
        model: str | None = None,
        temperature: float = 0.2,
        max_output_tokens: int = 1500,
    ) -> dict[str, Any]: ...

    async def transcribe(self, *, content: bytes, filename: str) -> str: ...
