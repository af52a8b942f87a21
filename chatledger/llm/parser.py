import json

from loguru import logger
from openai import AsyncOpenAI
from pydantic import ValidationError

from chatledger.llm.prompts import SYSTEM_PROMPT
from chatledger.models.schemas import LLMTransaction, ParsedTransaction


class LLMTransactionParser:
    """Last-resort parser backed by an OpenAI-compatible chat completion API.

    Only consulted when the heuristic parser finds no amount. Any doubt about
    the answer (transport error, bad JSON, schema violation, low confidence)
    yields ``None`` rather than a guess.
    """

    def __init__(self, api_key: str, model: str, min_confidence: float = 0.6, client=None):
        self.client = client or AsyncOpenAI(
            base_url="https://openrouter.ai/api/v1",
            api_key=api_key,
        )
        self.model = model
        self.min_confidence = min_confidence

    async def parse(self, user_message: str) -> ParsedTransaction | None:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_message},
        ]

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0.1,
            )
            raw = (response.choices[0].message.content or "").strip()
        except Exception as e:
            logger.error("LLM request failed: {}", e)
            return None

        logger.debug("LLM raw response: {}", raw)

        # Strip markdown code fences if present
        if raw.startswith("```"):
            lines = raw.split("\n")
            lines = [l for l in lines if not l.startswith("```")]
            raw = "\n".join(lines)

        try:
            candidate = LLMTransaction.model_validate(json.loads(raw))
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse LLM response as JSON: {}", e)
            return None
        except ValidationError as e:
            logger.warning("LLM response failed validation: {}", e.errors())
            return None

        if candidate.confidence < self.min_confidence:
            logger.info(
                "Discarding LLM parse with confidence {} < {}",
                candidate.confidence,
                self.min_confidence,
            )
            return None

        return ParsedTransaction(
            amount=candidate.amount,
            category=candidate.category.strip().lower(),
            description=candidate.description,
            kind=candidate.kind,
            date=candidate.date,
        )
