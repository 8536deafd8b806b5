import asyncio
import json
from typing import Literal

from loguru import logger
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError as PydanticValidationError, field_validator

from kincare.interpret.patterns import DIASTOLIC_RANGE, GLUCOSE_RANGE, PULSE_RANGE, SYSTOLIC_RANGE
from kincare.interpret.prompts import SYSTEM_PROMPT, build_user_message
from kincare.models.schemas import (
    BloodPressure,
    Glucose,
    HelpRequest,
    MealContext,
    Severity,
    StatusQuery,
    StructuredReading,
    Symptom,
    Unrecognized,
)


class GenerativeReply(BaseModel):
    """Shape the model is instructed to return (see prompts.SYSTEM_PROMPT)."""

    kind: Literal[
        "blood_pressure", "glucose", "symptom", "status_query", "help_request", "unrecognized"
    ] = "unrecognized"
    confidence: float = 0.0
    systolic: int | None = None
    diastolic: int | None = None
    pulse: int | None = None
    glucose_value: int | None = None
    meal_context: MealContext | None = None
    symptom: str | None = None
    severity: Severity | None = None
    interpretation: str | None = None

    @field_validator("confidence")
    @classmethod
    def _clamp(cls, value: float) -> float:
        return min(max(value, 0.0), 1.0)


def _within(value: int | None, bounds: tuple[int, int]) -> bool:
    return value is not None and bounds[0] <= value <= bounds[1]


def reply_to_reading(reply: GenerativeReply, source_text: str) -> StructuredReading:
    """Normalize a model reply into the canonical reading shape.

    Replies that claim a kind but lack (or garble) the fields that kind needs
    are downgraded to Unrecognized.
    """
    common = {
        "confidence": reply.confidence,
        "source_text": source_text,
        "interpretation_note": reply.interpretation,
        "interpreter": "generative",
    }

    if reply.kind == "blood_pressure":
        if not (_within(reply.systolic, SYSTOLIC_RANGE) and _within(reply.diastolic, DIASTOLIC_RANGE)):
            return Unrecognized(source_text=source_text, interpreter="generative")
        pulse = reply.pulse if _within(reply.pulse, PULSE_RANGE) else None
        return BloodPressure(systolic=reply.systolic, diastolic=reply.diastolic, pulse=pulse, **common)

    if reply.kind == "glucose":
        if not _within(reply.glucose_value, GLUCOSE_RANGE):
            return Unrecognized(source_text=source_text, interpreter="generative")
        return Glucose(value=reply.glucose_value, meal_context=reply.meal_context or "fasting", **common)

    if reply.kind == "symptom":
        if not reply.symptom:
            return Unrecognized(source_text=source_text, interpreter="generative")
        return Symptom(symptom=reply.symptom, severity=reply.severity or "moderate", **common)

    if reply.kind == "status_query":
        return StatusQuery(**common)
    if reply.kind == "help_request":
        return HelpRequest(**common)

    return Unrecognized(
        source_text=source_text,
        interpretation_note=reply.interpretation,
        interpreter="generative",
    )


class GenerativeInterpreter:
    def __init__(self, client: AsyncOpenAI | None, model: str, timeout: float = 8.0):
        self.client = client
        self.model = model
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "GenerativeInterpreter":
        client = None
        if settings.openrouter_api_key:
            client = AsyncOpenAI(base_url=settings.llm_base_url, api_key=settings.openrouter_api_key)
        return cls(client, model=settings.llm_model, timeout=settings.llm_timeout_seconds)

    @property
    def available(self) -> bool:
        return self.client is not None

    async def _complete(self, text: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_message(text)},
            ],
            response_format={"type": "json_object"},
            temperature=0.1,
        )
        return (response.choices[0].message.content or "").strip()

    async def interpret(self, text: str) -> StructuredReading:
        """Ask the model for a reading. Every fault degrades to Unrecognized at 0."""
        fallback = Unrecognized(source_text=text, interpreter="generative")

        if self.client is None:
            logger.warning("Generative interpreter not configured, skipping")
            return fallback

        try:
            raw = await asyncio.wait_for(self._complete(text), timeout=self.timeout)
            logger.debug("LLM raw response: {}", raw)

            # Strip markdown code fences if present
            if raw.startswith("```"):
                lines = raw.split("\n")
                lines = [l for l in lines if not l.startswith("```")]
                raw = "\n".join(lines)

            reply = GenerativeReply.model_validate(json.loads(raw))
            return reply_to_reading(reply, text)

        except asyncio.TimeoutError:
            logger.warning("LLM request timed out after {}s", self.timeout)
            return fallback
        except json.JSONDecodeError as e:
            logger.error("Failed to parse LLM response as JSON: {}", e)
            return fallback
        except PydanticValidationError as e:
            logger.error("LLM response did not match the reading schema: {}", e)
            return fallback
        except Exception as e:
            logger.error("LLM request failed: {}", e)
            return fallback
