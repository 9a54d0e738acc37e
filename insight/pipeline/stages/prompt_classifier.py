"""
Stage: Prompt Classification
Decides whether a message asks for business data and extracts intent/entities
"""
import logging
from typing import Optional

from insight.core.config import settings
from insight.dtos import PromptAnalysisResult
from insight.pipeline.llm.client import LLMClient
from insight.pipeline.llm.prompts import DEFAULT_SUGGESTIONS, build_classification_prompt
from insight.pipeline.llm.parsers import parse_json, as_str_list, as_confidence
from insight.pipeline.llm.pricing import UsageLedger

logger = logging.getLogger(__name__)

_INTENTS = {"query", "report", "statistics", "general"}


def default_analysis() -> PromptAnalysisResult:
    """Safe result used whenever classification fails"""
    return PromptAnalysisResult(
        is_data_related=False,
        intent="general",
        entities=[],
        suggested_queries=list(DEFAULT_SUGGESTIONS),
        confidence=0.0
    )


def analysis_from_json(data: dict) -> PromptAnalysisResult:
    intent = data.get("intent")
    return PromptAnalysisResult(
        is_data_related=bool(data.get("isDataRelated", False)),
        intent=intent if intent in _INTENTS else "general",
        entities=as_str_list(data.get("entities")),
        suggested_queries=as_str_list(data.get("suggestedQueries")),
        confidence=as_confidence(data.get("confidence"))
    )


class PromptClassifier:
    """
    Single low-temperature JSON call

    Never raises: any call or parse failure returns default_analysis().
    """

    def __init__(self, llm: LLMClient, model: Optional[str] = None, temperature: Optional[float] = None):
        self.llm = llm
        self.model = model or settings.LLM_FAST_MODEL
        self.temperature = settings.CLASSIFIER_TEMPERATURE if temperature is None else temperature

    async def analyze(self, message: str, ledger: Optional[UsageLedger] = None) -> PromptAnalysisResult:
        system, user = build_classification_prompt(message)

        try:
            completion = await self.llm.complete_json(system, user, self.temperature, model=self.model)
            if ledger is not None:
                ledger.record(completion.usage, completion.model)
            analysis = analysis_from_json(parse_json(completion.content))
        except Exception as e:
            logger.warning(f"Prompt classification failed, using default: {e}")
            return default_analysis()

        logger.info(
            f"Prompt analysis for '{message[:50]}': data_related={analysis.is_data_related}, "
            f"intent={analysis.intent}, confidence={analysis.confidence:.2f}"
        )

        return analysis
