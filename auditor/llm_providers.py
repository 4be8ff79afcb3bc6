from __future__ import annotations

from typing import Optional

import groq
import httpx
from groq import AsyncGroq

from auditor.config import Settings


class LLMUnavailableError(RuntimeError):
    pass


class Provider:
    """One text-generation backend.

    ``generate`` returns the raw reply text or raises ``LLMUnavailableError``.
    A provider without a credential is disabled and never called.
    """

    name = "provider"

    def __init__(self, api_key: str, model: str):
        self.api_key = (api_key or "").strip()
        self.model = model

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: int = 500,
        temperature: float = 0.2,
        timeout: float = 10.0,
    ) -> str:
        raise NotImplementedError


class ChatCompletionsProvider(Provider):
    base_url = "https://api.openai.com/v1"

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, model)
        self.base_url = (base_url or self.base_url).rstrip("/")
        self._transport = transport

    async def generate(self, system_prompt, user_prompt, *, max_tokens=500, temperature=0.2, timeout=10.0) -> str:
        if not self.api_key:
            raise LLMUnavailableError(f"{self.name} API key is missing")
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": self.model,
                        "temperature": temperature,
                        "max_tokens": max_tokens,
                        "messages": [
                            {"role": "system", "content": system_prompt},
                            {"role": "user", "content": user_prompt},
                        ],
                    },
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise LLMUnavailableError(f"{self.name} request returned status {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise LLMUnavailableError(f"{self.name} request failed: {type(exc).__name__}") from exc

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise LLMUnavailableError(f"{self.name} response parsing failed") from exc
        return str(content or "").strip()


class OpenAIProvider(ChatCompletionsProvider):
    name = "openai"
    base_url = "https://api.openai.com/v1"


class DeepSeekProvider(ChatCompletionsProvider):
    name = "deepseek"
    base_url = "https://api.deepseek.com"


class GeminiProvider(Provider):
    name = "gemini"
    base_url = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(self, api_key: str, model: str, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(api_key, model)
        self._transport = transport

    async def generate(self, system_prompt, user_prompt, *, max_tokens=500, temperature=0.2, timeout=10.0) -> str:
        if not self.api_key:
            raise LLMUnavailableError("gemini API key is missing")
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/models/{self.model}:generateContent",
                    headers={"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
                    json={
                        "systemInstruction": {"parts": [{"text": system_prompt}]},
                        "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
                        "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
                    },
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise LLMUnavailableError(f"gemini request returned status {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise LLMUnavailableError(f"gemini request failed: {type(exc).__name__}") from exc

        try:
            parts = response.json()["candidates"][0]["content"]["parts"]
            text = "".join(str(part.get("text") or "") for part in parts)
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as exc:
            raise LLMUnavailableError("gemini response parsing failed") from exc
        return text.strip()


class GroqProvider(Provider):
    name = "groq"

    async def generate(self, system_prompt, user_prompt, *, max_tokens=500, temperature=0.2, timeout=10.0) -> str:
        if not self.api_key:
            raise LLMUnavailableError("GROQ_API_KEY is missing")
        client = AsyncGroq(api_key=self.api_key, timeout=timeout, max_retries=0)
        try:
            completion = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except groq.GroqError as exc:
            raise LLMUnavailableError(f"groq request failed: {type(exc).__name__}") from exc
        finally:
            await client.close()

        try:
            return (completion.choices[0].message.content or "").strip()
        except (IndexError, AttributeError) as exc:
            raise LLMUnavailableError("groq response parsing failed") from exc


def build_providers(settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> list[Provider]:
    available: dict[str, Provider] = {
        "openai": OpenAIProvider(settings.openai_api_key, settings.openai_model, transport=transport),
        "gemini": GeminiProvider(settings.gemini_api_key, settings.gemini_model, transport=transport),
        "deepseek": DeepSeekProvider(settings.deepseek_api_key, settings.deepseek_model, transport=transport),
        "groq": GroqProvider(settings.groq_api_key, settings.groq_model),
    }
    return [available[name] for name in settings.provider_order if name in available]
