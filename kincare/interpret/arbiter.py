import asyncio

from loguru import logger

from kincare.errors import ValidationError
from kincare.interpret.generative import GenerativeInterpreter
from kincare.interpret.patterns import PatternMatcher
from kincare.models.schemas import StructuredReading

HIGH_CONFIDENCE_THRESHOLD = 0.85


class InterpretationArbiter:
    """Two-stage cascade: rules first, the paid model only when rules are unsure."""

    def __init__(
        self,
        matcher: PatternMatcher,
        generative: GenerativeInterpreter | None = None,
        threshold: float = HIGH_CONFIDENCE_THRESHOLD,
    ):
        self.matcher = matcher
        self.generative = generative
        self.threshold = threshold

    async def interpret_message(self, text: str) -> StructuredReading:
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Message text is empty")

        local = self.matcher.match(text)
        if local.confidence >= self.threshold:
            logger.info("Pattern match {} ({:.2f})", local.kind, local.confidence)
            return local

        if self.generative is None or not self.generative.available:
            logger.info("Generative interpreter unavailable, keeping pattern result {}", local.kind)
            return local

        try:
            remote = await self.generative.interpret(text)
        except (asyncio.CancelledError, Exception) as e:
            # Cancellation counts as unavailable too.
            logger.warning("Generative interpreter failed ({}), keeping pattern result", type(e).__name__)
            return local

        # Ties go to the pattern result.
        if remote.confidence > local.confidence:
            logger.info(
                "Generative result {} ({:.2f}) beats pattern {} ({:.2f})",
                remote.kind, remote.confidence, local.kind, local.confidence,
            )
            return remote

        logger.info("Keeping pattern result {} ({:.2f})", local.kind, local.confidence)
        return local
