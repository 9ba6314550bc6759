import os
import logging
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError, UnexpectedModelBehavior
from pydantic_ai.models.anthropic import AnthropicModel

from kelly.agents.prompts import schema_contract
from kelly.core.config import settings, get_anthropic_api_key
from kelly.core.errors import GenerationFailure

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=BaseModel)


def classify_generation_error(exc: Exception) -> GenerationFailure:
    """Map a content-service exception to a user-facing failure category"""
    if isinstance(exc, GenerationFailure):
        return exc

    text = str(exc)
    status_code = getattr(exc, "status_code", None) if isinstance(exc, ModelHTTPError) else None

    if status_code == 429 or "quota" in text.lower() or "RESOURCE_EXHAUSTED" in text:
        return GenerationFailure(GenerationFailure.QUOTA, detail=text)
    if status_code in (401, 403) or "API key" in text:
        return GenerationFailure(GenerationFailure.AUTH, detail=text)
    if isinstance(exc, UnexpectedModelBehavior):
        return GenerationFailure(GenerationFailure.MALFORMED, detail=text)
    return GenerationFailure(GenerationFailure.UNAVAILABLE, detail=text)


def parse_structured_output(output: str, schema: Type[S]) -> S:
    """Validate a JSON answer (optionally fenced in ```json) against ``schema``"""
    text = (output or "").strip()

    # Extract JSON from the response
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    if not text:
        raise GenerationFailure(GenerationFailure.MALFORMED, detail="empty response")

    try:
        return schema.model_validate_json(text)
    except ValidationError as e:
        logger.warning(f"Rejected {schema.__name__} answer: {e.error_count()} validation error(s)")
        raise GenerationFailure(GenerationFailure.MALFORMED, detail=str(e)) from e


class ContentGenerator:
    """Single-shot access to the generative content service.

    Every call is one model request; nothing is retried. Failures come out
    as ``GenerationFailure`` with a category the caller can show as-is.
    """

    def __init__(self, model_name: Optional[str] = None, temperature: Optional[float] = None):
        self.model_name = model_name or settings.ANTHROPIC_STRUCTURING_MODEL
        self.temperature = settings.GENERATION_TEMPERATURE if temperature is None else temperature

    def _build_agent(self, system_prompt: Optional[str] = None) -> Agent:
        # Set environment variable for Anthropic API key
        api_key = get_anthropic_api_key()
        if api_key:
            os.environ["ANTHROPIC_API_KEY"] = api_key
        else:
            logger.error("No Anthropic API key found")

        model = AnthropicModel(self.model_name)
        return Agent(model=model, system_prompt=system_prompt or (), retries=0)

    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """Send one prompt, return the raw text answer"""
        try:
            agent = self._build_agent(system_prompt)
            result = await agent.run(prompt, model_settings={"temperature": self.temperature})
        except Exception as e:
            failure = classify_generation_error(e)
            logger.error(f"Content generation failed ({failure.reason}): {e}")
            raise failure from e
        return result.output

    async def generate(self, prompt: str, schema: Type[S], system_prompt: Optional[str] = None) -> S:
        """Send a prompt carrying ``schema``'s JSON contract and validate the answer"""
        output = await self.complete(f"{prompt}\n\n{schema_contract(schema)}", system_prompt=system_prompt)
        return parse_structured_output(output, schema)
