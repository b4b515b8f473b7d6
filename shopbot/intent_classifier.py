from __future__ import annotations

import logging

from .gemini_client import GeminiClient, user_content
from .intents import Intent
from .models import IntentResult
from .prompts import INTENT_CLASSIFICATION, PromptLibrary
from .utils import clamp, safe_json_loads

logger = logging.getLogger("shopbot.intent")

FALLBACK_INTENT = Intent.GENERAL_QUESTION
FALLBACK_CONFIDENCE = 0.5


def fallback_intent() -> IntentResult:
    return IntentResult(intent=FALLBACK_INTENT.value, confidence=FALLBACK_CONFIDENCE, degraded=True)


def parse_intent_output(raw: str) -> IntentResult:
    """Purpose: Parse the classifier's JSON reply into an IntentResult.
    Inputs/Outputs: Input is raw model text; output is an IntentResult.
    Side Effects / State: None; pure function.
    Dependencies: Uses safe_json_loads, Intent.parse, and clamp.
    Failure Modes: Raises ValueError when no JSON object or intent field is present;
        non-numeric confidence raises ValueError or TypeError.
    If Removed: Classification results cannot be validated before dispatch.
    Testing Notes: Unknown labels map to general_question; confidence is clamped to [0, 1].
    """
    data = safe_json_loads(raw)
    if data is None or not data.get("intent"):
        raise ValueError(f"classifier returned no intent: {raw[:200]!r}")
    intent = Intent.parse(data.get("intent"))
    confidence = clamp(float(data.get("confidence", FALLBACK_CONFIDENCE)))
    return IntentResult(intent=intent.value, confidence=confidence)


class IntentClassifier:
    """Classifies a customer message into the closed intent set via the completion service."""

    def __init__(self, gemini: GeminiClient, prompts: PromptLibrary) -> None:
        self._gemini = gemini
        self._prompts = prompts

    def classify(self, message: str) -> IntentResult:
        """Purpose: Classify the intent of a single customer message.
        Inputs/Outputs: Input is the raw message; output is an IntentResult.
        Side Effects / State: One completion request; logs the decision.
        Dependencies: Uses GeminiClient in JSON mode and the intent classification prompt.
        Failure Modes: Any transport, service, or parsing error returns the degraded
            general_question result; this method never raises.
        If Removed: The orchestrator cannot route messages to intent handlers.
        Testing Notes: Simulate a client error and assert degraded=True.
        """
        try:
            raw = self._gemini.generate_content(
                [user_content(message)],
                system_instruction=self._prompts.get(INTENT_CLASSIFICATION),
                json_mode=True,
                temperature=0.0,
                max_output_tokens=256,
            )
            result = parse_intent_output(raw)
        except Exception as exc:
            logger.warning("intent classification failed, using fallback: %s", exc)
            return fallback_intent()
        logger.info("intent=%s confidence=%.2f", result.intent, result.confidence)
        return result
