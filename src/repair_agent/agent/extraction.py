"""Extraction stage: one structured completion per turn."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from repair_agent.agent.catalog import CleanedInput
from repair_agent.agent.completion import CompletionService
from repair_agent.agent.prompts import EXTRACTION_SYSTEM_PROMPT, build_extraction_prompt
from repair_agent.agent.retry import RetryPolicy
from repair_agent.types import ConversationTurn

logger = logging.getLogger(__name__)


class ExtractedQuery(CleanedInput):
    manufacturer: str | None = None
    equipment_name: str | None = None
    error_code: str | None = None
    symptom: str | None = None
    asset_tag: str | None = None
    department: str | None = None
    needs_clarification: bool = False
    clarification_message: str | None = None
    is_non_medical: bool = False


class QueryExtractor:
    """Turns the latest technician message into an `ExtractedQuery`.

    Returns None only when the completion yields no parseable object. A valid
    object with every field empty is still returned as-is.
    """

    def __init__(self, completion: CompletionService, retry_policy: RetryPolicy) -> None:
        self.completion = completion
        self.retry_policy = retry_policy

    async def extract(
        self, history: Sequence[ConversationTurn], current_text: str
    ) -> ExtractedQuery | None:
        result = await self.retry_policy.call(
            lambda: self.completion.complete(
                EXTRACTION_SYSTEM_PROMPT,
                history,
                build_extraction_prompt(current_text),
                ExtractedQuery,
            ),
            label="extraction",
        )
        extracted = result.structured_output
        if not isinstance(extracted, ExtractedQuery):
            logger.warning("Extraction returned no structured output")
            return None
        logger.info(
            "Extracted: manufacturer=%s equipment=%s error=%s symptom=%s asset=%s",
            extracted.manufacturer,
            extracted.equipment_name,
            extracted.error_code,
            extracted.symptom,
            extracted.asset_tag,
        )
        return extracted
