"""
Narrative Analysis Orchestrator
Runs the analysis call through the key controller and validates the result
"""
import logging
from typing import Optional

from narrative.ai_pipeline.errors import (
    NoCredentialsError, ProviderCallFailed, ResponseBlocked, ResponseMalformed,
)
from narrative.ai_pipeline.gemini_client import GeminiClient, build_safety_settings
from narrative.ai_pipeline.key_rotation import KeyRotationController
from narrative.ai_pipeline.prompts import basic_analysis_prompt, full_analysis_prompt
from narrative.ai_pipeline.response_parser import parse_analysis_response
from narrative.ai_pipeline.text_utils import truncate
from narrative.config import (
    AI_MODEL_FAST, AI_MODEL_PRO, ANALYSIS_TIMEOUT_SECONDS, GEMINI_PROVIDER, MAX_ANALYSIS_ATTEMPTS,
)
from narrative.models.analysis import AnalysisDepth, AnalysisOutcome, OutcomeStatus
from narrative.models.article import CandidateArticle

logger = logging.getLogger(__name__)

MAX_OUTPUT_TOKENS = 8192
TEMPERATURE = 0.2


class AnalysisOrchestrator:
    def __init__(
        self,
        controller: KeyRotationController,
        gemini: Optional[GeminiClient] = None,
        max_attempts: int = MAX_ANALYSIS_ATTEMPTS,
    ):
        self.controller = controller
        self.gemini = gemini or GeminiClient()
        self.max_attempts = max_attempts
        self.safety_settings = build_safety_settings()

    def _request_for(self, article: CandidateArticle, depth: AnalysisDepth):
        if depth == AnalysisDepth.DEEP:
            return AI_MODEL_PRO, full_analysis_prompt(article)
        return AI_MODEL_FAST, basic_analysis_prompt(article)

    async def analyze(self, article: CandidateArticle, depth: AnalysisDepth = AnalysisDepth.DEEP) -> AnalysisOutcome:
        """
        Analyze one article.

        Returns an AnalysisOutcome instead of raising: JUNK when the model flags
        the content, DEFAULTED when some fields had to fall back to neutral
        values, FAILED when nothing usable came back.
        """
        model, prompt = self._request_for(article, depth)
        shallow = depth == AnalysisDepth.SHALLOW

        async def call(api_key: str):
            return await self.gemini.generate(
                api_key,
                model,
                prompt,
                temperature=TEMPERATURE,
                max_output_tokens=MAX_OUTPUT_TOKENS,
                timeout=ANALYSIS_TIMEOUT_SECONDS,
                safety_settings=self.safety_settings,
            )

        try:
            response = await self.controller.execute_with_retry(
                GEMINI_PROVIDER, call, context=article.title, max_attempts=self.max_attempts
            )
        except (ProviderCallFailed, NoCredentialsError) as e:
            logger.error(f"Analysis call failed for \"{truncate(article.title)}\": {e}")
            return AnalysisOutcome(status=OutcomeStatus.FAILED, error=str(e))

        try:
            analysis, defaulted = parse_analysis_response(response, shallow=shallow)
        except (ResponseBlocked, ResponseMalformed) as e:
            logger.error(f"Unusable analysis response for \"{truncate(article.title)}\": {e}")
            return AnalysisOutcome(status=OutcomeStatus.FAILED, error=str(e))

        if analysis.is_junk:
            return AnalysisOutcome(status=OutcomeStatus.JUNK, analysis=analysis)

        if defaulted:
            logger.warning(f"Defaulted fields for \"{truncate(article.title)}\": {', '.join(defaulted)}")
            return AnalysisOutcome(status=OutcomeStatus.DEFAULTED, analysis=analysis, defaulted_fields=defaulted)

        return AnalysisOutcome(status=OutcomeStatus.SUCCEEDED, analysis=analysis)
