"""Extraction and scoring oracles backed by the Claude API."""

import asyncio
import json
import logging
from typing import Optional

from pydantic import ValidationError

from dealflow.config import settings
from dealflow.errors import OracleError
from dealflow.models import (
    BUYER_MERGEABLE_FIELDS,
    DEAL_MERGEABLE_FIELDS,
    BuyerProfile,
    DealProfile,
    FieldSource,
)
from .base import ExtractionOracle, ExtractionResult, ScoringOracle, ScoringResult

logger = logging.getLogger(__name__)


def parse_json_response(text: str) -> dict:
    """Parse a JSON object from a model reply, tolerating markdown fences."""
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0]
    elif "```" in text:
        text = text.split("```")[1].split("```")[0]

    try:
        data = json.loads(text.strip())
    except json.JSONDecodeError as e:
        raise OracleError("Failed to parse LLM response as JSON", context={"error": str(e)}) from e
    if not isinstance(data, dict):
        raise OracleError("LLM response is not a JSON object", context={"type": type(data).__name__})
    return data


class ClaudeClient:
    """Lazy Anthropic client shared by the Claude oracles."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client=None):
        self.api_key = api_key or settings.anthropic_api_key
        self.model = model or settings.llm_model
        self._client = client

    @property
    def client(self):
        """Lazy-load Anthropic client."""
        if self._client is None:
            if not self.api_key:
                raise OracleError("ANTHROPIC_API_KEY not configured")
            import anthropic
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    async def complete_json(self, prompt: str) -> dict:
        # Sync SDK call moved off the event loop
        return await asyncio.to_thread(self._call_api, prompt)

    def _call_api(self, prompt: str) -> dict:
        """Call Claude API synchronously."""
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=settings.llm_max_tokens,
                messages=[
                    {"role": "user", "content": prompt}
                ],
            )
            text = response.content[0].text
        except OracleError:
            raise
        except Exception as e:
            logger.error(f"Claude API call failed: {e}")
            raise OracleError(f"Claude API call failed: {e}") from e

        return parse_json_response(text)


class ClaudeExtractionOracle(ExtractionOracle):
    """Pull profile fields out of transcripts, notes and website copy."""

    name = "claude"

    EXTRACTION_PROMPT = """Extract structured {entity_kind} profile data from this {source_type}.

Content:
---
{content}
---

Allowed fields: {fields}

Return JSON in this shape:
{{
    "fields": {{"<field name>": <value>}},
    "evidence": {{"<field name>": "short verbatim quote supporting the value"}},
    "confidence": {{"<field name>": 0.0-1.0}}
}}

Dollar amounts are plain numbers in millions. List fields are JSON arrays of strings.
Only include fields the content actually states. Do not guess.
Return only valid JSON, no other text."""

    def __init__(self, client: Optional[ClaudeClient] = None, max_content_length: int = 12000):
        self.client = client or ClaudeClient()
        self.max_content_length = max_content_length

    async def extract(
        self,
        source_text: str,
        source_type: FieldSource,
        entity_kind: str = "buyer",
    ) -> ExtractionResult:
        content = source_text
        if len(content) > self.max_content_length:
            content = content[:self.max_content_length] + "...[truncated]"

        allowed = BUYER_MERGEABLE_FIELDS if entity_kind == "buyer" else DEAL_MERGEABLE_FIELDS
        prompt = self.EXTRACTION_PROMPT.format(
            entity_kind=entity_kind,
            source_type=source_type.value,
            content=content,
            fields=", ".join(sorted(allowed)),
        )

        data = await self.client.complete_json(prompt)
        try:
            return ExtractionResult.model_validate(data)
        except ValidationError as e:
            raise OracleError("Extraction response has the wrong shape", context={"error": str(e)}) from e


class ClaudeScoringOracle(ScoringOracle):
    """Score a buyer against a deal on geography, services, size and owner goals."""

    name = "claude"

    SCORING_PROMPT = """Score how well this acquirer fits this acquisition opportunity.

Buyer:
{buyer}

Deal:
{deal}

For each dimension (geography, services, size, owner_goals) give a score 0-100,
whether it disqualifies the buyer, a one-sentence reason, and confidence
(high|medium|low) based on how much data backs it. Omit a dimension when there
is no data for it. thesis_bonus is 0-20 for an explicit thesis match.

Return JSON:
{{
    "geography": {{"score": 0-100, "is_disqualified": false, "reason": "...", "confidence": "high"}},
    "services": {{...}},
    "size": {{...}},
    "owner_goals": {{...}},
    "thesis_bonus": 0
}}

Return only valid JSON, no other text."""

    def __init__(self, client: Optional[ClaudeClient] = None):
        self.client = client or ClaudeClient()

    async def score(self, buyer: BuyerProfile, deal: DealProfile) -> ScoringResult:
        prompt = self.SCORING_PROMPT.format(
            buyer=self._describe(buyer),
            deal=self._describe(deal),
        )
        data = await self.client.complete_json(prompt)
        try:
            return ScoringResult.model_validate(data)
        except ValidationError as e:
            raise OracleError(
                f"Scoring response for buyer {buyer.id} has the wrong shape",
                context={"error": str(e)},
            ) from e

    @staticmethod
    def _describe(record) -> str:
        lines = []
        if isinstance(record, BuyerProfile):
            lines.append(f"name: {record.display_name} (PE firm: {record.pe_firm_name})")
        elif isinstance(record, DealProfile):
            lines.append(f"name: {record.deal_name}")
        for name in record.populated_fields():
            value = getattr(record, name)
            if isinstance(value, list):
                value = ", ".join(str(v) for v in value)
            lines.append(f"{name}: {value}")
        return "\n".join(lines)
