import asyncio
import logging
from typing import Optional, Protocol

from google import genai
from google.genai import types

from config import settings
from services.errors import GenerationError

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    async def generate(self, prompt: str, max_tokens: int, timeout: float) -> str:
        """Return generated text or raise GenerationError."""
        ...


class GeminiTextGenerator:
    """TextGenerator backed by Gemini. The SDK call is synchronous, so it runs in the default executor."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        system_instruction: Optional[str] = None,
    ):
        self._client = genai.Client(api_key=api_key or settings.gemini_api_key)
        self._model = model or settings.gemini_model
        self._temperature = settings.gemini_temperature if temperature is None else temperature
        self._system_instruction = system_instruction

    def _generate_sync(self, prompt: str, max_tokens: int) -> str:
        response = self._client.models.generate_content(
            model=self._model,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=self._system_instruction,
                max_output_tokens=min(max_tokens, settings.gemini_max_output_tokens),
                temperature=self._temperature,
                response_mime_type="application/json",
            ),
        )
        return (response.text or "").strip()

    async def generate(self, prompt: str, max_tokens: int, timeout: float) -> str:
        loop = asyncio.get_running_loop()
        try:
            text = await asyncio.wait_for(
                loop.run_in_executor(None, self._generate_sync, prompt, max_tokens),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise
        except Exception as e:
            logger.warning(f"Gemini call failed: {e}")
            raise GenerationError(str(e)) from e

        if not text:
            raise GenerationError("empty response")
        return text
