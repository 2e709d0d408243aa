"""
Thin async seam over the Google GenAI SDK
Translates SDK failures into the pipeline's provider errors
"""
import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from narrative.ai_pipeline.errors import ProviderError, provider_error_for_status

logger = logging.getLogger(__name__)

SAFETY_CATEGORIES = [
    types.HarmCategory.HARM_CATEGORY_HARASSMENT,
    types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
]


def build_safety_settings(threshold=types.HarmBlockThreshold.BLOCK_NONE) -> List[types.SafetySetting]:
    return [types.SafetySetting(category=category, threshold=threshold) for category in SAFETY_CATEGORIES]


class GeminiClient:
    """One genai.Client per (credential, timeout), created lazily"""

    def __init__(self):
        self._clients: Dict[Tuple[str, int], genai.Client] = {}

    def _client(self, api_key: str, timeout: int) -> genai.Client:
        cache_key = (api_key, timeout)
        if cache_key not in self._clients:
            self._clients[cache_key] = genai.Client(
                api_key=api_key,
                http_options=types.HttpOptions(timeout=timeout * 1000),
            )
        return self._clients[cache_key]

    async def generate(
        self,
        api_key: str,
        model: str,
        prompt: str,
        temperature: float = 0.2,
        max_output_tokens: Optional[int] = None,
        timeout: int = 60,
        safety_settings: Optional[List[types.SafetySetting]] = None,
    ) -> types.GenerateContentResponse:
        """Single JSON-mode generate call. Raises ProviderError subclasses."""
        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            safety_settings=safety_settings,
        )
        client = self._client(api_key, timeout)

        try:
            return await asyncio.wait_for(
                client.aio.models.generate_content(model=model, contents=prompt, config=config),
                timeout=timeout,
            )
        except genai_errors.APIError as e:
            raise provider_error_for_status(
                f"Gemini API request failed with HTTP status {e.code}: {e.message}", e.code
            ) from e
        except asyncio.TimeoutError as e:
            raise ProviderError(f"Gemini API request timed out after {timeout}s") from e

    async def embed(self, api_key: str, model: str, text: str, timeout: int = 20) -> Optional[List[float]]:
        client = self._client(api_key, timeout)

        try:
            response = await asyncio.wait_for(
                client.aio.models.embed_content(model=model, contents=text),
                timeout=timeout,
            )
        except genai_errors.APIError as e:
            raise provider_error_for_status(
                f"Gemini embedding request failed with HTTP status {e.code}: {e.message}", e.code
            ) from e
        except asyncio.TimeoutError as e:
            raise ProviderError(f"Gemini embedding request timed out after {timeout}s") from e

        if getattr(response, "embeddings", None):
            return list(response.embeddings[0].values)

        logger.warning("Unexpected embedding response format")
        return None
