"""
LLM 调用接口 - 音频风格标注用的短文本补全

支持 OpenAI-compatible / Ollama 两种后端, 主后端失败可切换到备用后端。
aiohttp.ClientSession 在后端生命周期内复用。
"""

import asyncio
import logging
import random
import re
from abc import ABC, abstractmethod
from typing import Dict, Optional

import aiohttp

from gram_trends.config.settings import settings

logger = logging.getLogger(__name__)

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)


def clean_llm_response(text: str) -> str:
    """Strip thinking blocks and surrounding whitespace."""
    if not text:
        return ""
    return _THINK_RE.sub("", text).strip()


class LLMCallError(RuntimeError):
    def __init__(self, message: str, *, retryable: bool = False, fallback_eligible: bool = False):
        super().__init__(message)
        self.retryable = retryable
        self.fallback_eligible = fallback_eligible


class LLMBackend(ABC):
    """LLM 后端抽象基类"""

    name: str = ""

    def __init__(self):
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=settings.llm.timeout_seconds),
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    @abstractmethod
    async def complete(self, prompt: str, max_tokens: int, temperature: float) -> str:
        ...

    async def _post_json(self, url: str, payload: Dict, headers: Optional[Dict[str, str]] = None) -> Dict:
        session = await self._get_session()
        try:
            async with session.post(url, json=payload, headers=headers) as resp:
                if resp.status >= 400:
                    detail = await resp.text()
                    raise LLMCallError(
                        f"{self.name} error status={resp.status}: {detail[:300]}",
                        retryable=resp.status >= 500 or resp.status == 429,
                        fallback_eligible=resp.status != 400,
                    )
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise LLMCallError(
                f"{self.name} transport error: {e}", retryable=True, fallback_eligible=True,
            ) from e


class OpenAIBackend(LLMBackend):
    """OpenAI-compatible Chat Completions 后端"""

    name = "openai"

    def __init__(self, base_url: str, api_key: str, model: str):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key.strip()
        self.model = model

    async def complete(self, prompt: str, max_tokens: int, temperature: float) -> str:
        if not self.api_key:
            raise LLMCallError("openai api key missing", retryable=False, fallback_eligible=True)
        data = await self._post_json(
            f"{self.base_url}/chat/completions",
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        choices = data.get("choices") or []
        if not choices:
            return ""
        content = choices[0].get("message", {}).get("content", "")
        return content if isinstance(content, str) else ""


class OllamaBackend(LLMBackend):
    """Ollama 本地模型后端"""

    name = "ollama"

    def __init__(self, base_url: str, model: str):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.model = model

    async def complete(self, prompt: str, max_tokens: int, temperature: float) -> str:
        data = await self._post_json(
            f"{self.base_url}/api/generate",
            {
                "model": self.model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": temperature, "num_predict": max_tokens},
            },
        )
        return data.get("response", "") or ""


def build_backend(backend_type: str) -> LLMBackend:
    backend_type = (backend_type or "openai").strip().lower()
    if backend_type == "ollama":
        return OllamaBackend(base_url=settings.llm.ollama_base_url, model=settings.llm.ollama_model)
    if backend_type != "openai":
        logger.warning("Unknown backend type %s, using openai", backend_type)
    return OpenAIBackend(
        base_url=settings.llm.openai_base_url,
        api_key=settings.llm.openai_api_key,
        model=settings.llm.openai_model,
    )


class LLMServiceClient:
    """
    统一 LLM 调用入口 - 可重试错误指数退避, 主后端放弃后尝试备用后端
    """

    def __init__(self, backend: Optional[LLMBackend] = None, fallback: Optional[LLMBackend] = None):
        self.backend = backend or build_backend(settings.llm.primary_backend)
        self._fallback = fallback
        if self._fallback is None and settings.llm.fallback_enabled:
            self._fallback = build_backend(settings.llm.fallback_backend)
        self._retry_max = max(1, settings.llm.retry_max_attempts)
        self._retry_delay = max(0.0, settings.llm.retry_base_delay_seconds)

    async def generate(self, prompt: str, max_tokens: Optional[int] = None, temperature: Optional[float] = None) -> str:
        max_tokens = max_tokens or settings.llm.max_tokens
        temperature = settings.llm.temperature if temperature is None else temperature

        last_error: Optional[LLMCallError] = None
        for attempt in range(1, self._retry_max + 1):
            try:
                result = await self.backend.complete(prompt, max_tokens, temperature)
                return clean_llm_response(result)
            except LLMCallError as e:
                last_error = e
                if e.retryable and attempt < self._retry_max:
                    delay = self._retry_delay * (2 ** (attempt - 1)) + random.uniform(0, 0.3)
                    await asyncio.sleep(delay)
                    continue
                break

        if self._fallback and last_error is not None and last_error.fallback_eligible:
            logger.warning("Primary LLM failed, trying fallback: %s", last_error)
            result = await self._fallback.complete(prompt, max_tokens, temperature)
            return clean_llm_response(result)

        raise last_error or LLMCallError("LLM generation failed")

    async def close(self):
        await self.backend.close()
        if self._fallback:
            await self._fallback.close()
