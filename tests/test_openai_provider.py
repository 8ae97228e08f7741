import os
import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import support  # noqa: F401

from openai import OpenAIError

from app.ai.providers.openai_provider import OpenAIProvider
from app.ai.types import AIProviderError, ChatMessage


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class OpenAIProviderTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.provider = OpenAIProvider(model="gpt-4o", transcribe_model="whisper-1", api_key="sk-test")
        self.create = AsyncMock()
        self.transcriptions = AsyncMock()
        self.provider._client = SimpleNamespace(
            chat=SimpleNamespace(completions=SimpleNamespace(create=self.create)),
            audio=SimpleNamespace(transcriptions=SimpleNamespace(create=self.transcriptions)),
        )
        self.messages = [ChatMessage(role="system", content="sys"), ChatMessage(role="user", content="hi")]

    def test_missing_key_disables_provider(self):
        with patch.dict(os.environ, {"OPENAI_API_KEY": ""}):
            with self.assertRaises(AIProviderError) as ctx:
                OpenAIProvider(model="gpt-4o")
        self.assertEqual(ctx.exception.code, "llm_disabled")

    def test_placeholder_key_rejected(self):
        with self.assertRaises(AIProviderError):
            OpenAIProvider(model="gpt-4o", api_key="your_openai_key")

    async def test_complete_json_parses_object(self):
        self.create.return_value = _completion('{"summary": "ok"}')
        result = await self.provider.complete_json(self.messages, model="gpt-4o-mini", max_output_tokens=99)

        self.assertEqual(result, {"summary": "ok"})
        kwargs = self.create.await_args.kwargs
        self.assertEqual(kwargs["model"], "gpt-4o-mini")
        self.assertEqual(kwargs["response_format"], {"type": "json_object"})
        self.assertEqual(kwargs["max_tokens"], 99)
        self.assertEqual(kwargs["messages"][0], {"role": "system", "content": "sys"})

    async def test_complete_json_rejects_bad_payloads(self):
        for content, code in (("", "llm_empty"), ("not json", "llm_invalid"), ("[1, 2]", "llm_invalid")):
            self.create.return_value = _completion(content)
            with self.assertRaises(AIProviderError) as ctx:
                await self.provider.complete_json(self.messages)
            self.assertEqual(ctx.exception.code, code)

    async def test_provider_error_message_is_kept(self):
        self.create.side_effect = OpenAIError("Rate limit reached for gpt-4o")
        with self.assertRaises(AIProviderError) as ctx:
            await self.provider.complete_json(self.messages)
        self.assertEqual(ctx.exception.message, "Rate limit reached for gpt-4o")
        self.assertEqual(ctx.exception.status_code, 502)

    async def test_transcribe_sends_named_file(self):
        self.transcriptions.return_value = SimpleNamespace(text="  hello there ")
        transcript = await self.provider.transcribe(content=b"ID3audio", filename="call.mp3")

        self.assertEqual(transcript, "hello there")
        kwargs = self.transcriptions.await_args.kwargs
        self.assertEqual(kwargs["model"], "whisper-1")
        self.assertEqual(kwargs["file"].name, "call.mp3")
        self.assertEqual(kwargs["file"].read(), b"ID3audio")

    async def test_transcribe_failure(self):
        self.transcriptions.side_effect = OpenAIError("Transcription failed")
        with self.assertRaises(AIProviderError) as ctx:
            await self.provider.transcribe(content=b"ID3audio", filename="call.mp3")
        self.assertEqual(ctx.exception.message, "Transcription failed")
        self.assertEqual(ctx.exception.code, "asr_unavailable")


if __name__ == "__main__":
    unittest.main()
