"""
Narrative Embedding Service
Gemini text embeddings for the vector clustering tiers
"""
import logging
from typing import List, Optional

import numpy as np

from narrative.ai_pipeline.errors import PipelineError
from narrative.ai_pipeline.gemini_client import GeminiClient
from narrative.ai_pipeline.key_rotation import KeyRotationController
from narrative.ai_pipeline.text_utils import clean_text
from narrative.config import AI_MODEL_EMBEDDING, EMBEDDING_TIMEOUT_SECONDS, GEMINI_PROVIDER

logger = logging.getLogger(__name__)

MAX_EMBEDDING_CHARS = 2000


def embedding_text(title: str, description: str) -> str:
    return clean_text(f"{title or ''}. {description or ''}")[:MAX_EMBEDDING_CHARS]


class EmbeddingService:
    def __init__(self, controller: KeyRotationController, gemini: Optional[GeminiClient] = None):
        self.controller = controller
        self.gemini = gemini or GeminiClient()

    async def compute_embedding(self, text: str) -> Optional[List[float]]:
        """Embedding for the text, or None so callers skip the vector tiers"""
        if not text or not text.strip():
            return None

        async def call(api_key: str):
            return await self.gemini.embed(api_key, AI_MODEL_EMBEDDING, text, timeout=EMBEDDING_TIMEOUT_SECONDS)

        try:
            values = await self.controller.execute_with_retry(GEMINI_PROVIDER, call, context=text)
        except PipelineError as e:
            logger.error(f"Embedding Error: {e}")
            return None

        if not values:
            return None

        vector = np.asarray(values, dtype=float)
        if not np.all(np.isfinite(vector)) or np.linalg.norm(vector) == 0:
            logger.warning("Discarding degenerate embedding")
            return None
        return vector.tolist()

    async def embed_article(self, title: str, description: str) -> Optional[List[float]]:
        return await self.compute_embedding(embedding_text(title, description))
