"""
Ollama chat integration backing the AI advisor / tutor endpoints.
"""
import asyncio
import time
from typing import Any, Dict, List, Optional

import aiohttp

from app.config import OLLAMA_SETTINGS
from app.utils import get_logger, log_performance

logger = get_logger(__name__)


class OllamaError(RuntimeError):
    """Ollama was unreachable or returned an unusable response."""


class OllamaClient:
    """Thin async client for Ollama's ``/api/chat`` endpoint."""

    def __init__(self, settings: Optional[Dict[str, Any]] = None):
        cfg = dict(settings if settings is not None else OLLAMA_SETTINGS)
        self.base_url = str(cfg.get("base_url", "http://localhost:11434")).rstrip("/")
        self.model = str(cfg.get("model", "llama3.1:8b"))
        self.temperature = float(cfg.get("temperature", 0.7))
        self.max_tokens = int(cfg.get("max_tokens", 2000))
        self.timeout_seconds = float(cfg.get("timeout_seconds", 120))

    @staticmethod
    def build_messages(
        prompt: str,
        history: Optional[List[Dict[str, str]]] = None,
        system_prompt: Optional[str] = None,
    ) -> List[Dict[str, str]]:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        for item in history or []:
            role = item.get("role")
            content = item.get("content")
            if role in ("user", "assistant") and content:
                messages.append({"role": role, "content": content})
        messages.append({"role": "user", "content": prompt})
        return messages

    async def chat(
        self,
        prompt: str,
        history: Optional[List[Dict[str, str]]] = None,
        system_prompt: Optional[str] = None,
    ) -> str:
        """
        Generate a reply for ``prompt`` given previous turns.

        Raises:
            OllamaError: on timeout, transport failure, non-200 status or a
                response without message content
        """
        body = {
            "model": self.model,
            "messages": self.build_messages(prompt, history, system_prompt),
            "stream": False,
            "options": {"temperature": self.temperature, "num_predict": self.max_tokens},
        }
        url = f"{self.base_url}/api/chat"
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        started = time.perf_counter()

        logger.debug("Calling Ollama chat API", url=url, model=self.model)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=body) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error("Ollama API error", status_code=response.status, body=error_text[:500])
                        raise OllamaError(f"Ollama API returned status {response.status}")
                    data = await response.json()
        except asyncio.TimeoutError:
            logger.error("Ollama request timed out", timeout_seconds=self.timeout_seconds)
            raise OllamaError("Ollama request timed out") from None
        except aiohttp.ClientError as e:
            logger.error("Ollama request failed", error=str(e))
            raise OllamaError(f"Ollama request failed: {e}") from e

        content = ((data or {}).get("message") or {}).get("content")
        if not content:
            raise OllamaError("Invalid response from Ollama API")

        log_performance("ollama_chat", (time.perf_counter() - started) * 1000, {"model": self.model, "chars": len(content)})
        return content.strip()

    async def check_health(self) -> bool:
        try:
            timeout = aiohttp.ClientTimeout(total=3)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(f"{self.base_url}/api/tags") as response:
                    return response.status == 200
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            logger.warning("Ollama health check failed", error=str(e))
            return False


__all__ = ["OllamaClient", "OllamaError"]
