from __future__ import annotations

import logging
from typing import Dict, List, Optional, Union

from pydantic import ValidationError

from .gemini_client import GeminiClient, user_content
from .intents import Intent
from .models import ConversationState, ProductRecommendation, RecommendationResult
from .prompts import PRODUCT_RECOMMENDATION, RECOMMENDATION_FORMAT, PromptLibrary
from .utils import safe_json_loads

logger = logging.getLogger("shopbot.recommendation")

OFFER_THRESHOLDS: Dict[str, int] = {"early": 2, "balanced": 3}
DEFAULT_OFFER_THRESHOLD = 5
CONTEXT_WINDOW = 5


def offer_threshold(offer_timing: Optional[str]) -> int:
    """Message count at which recommendations start for an offer timing mode."""
    return OFFER_THRESHOLDS.get((offer_timing or "").strip().lower(), DEFAULT_OFFER_THRESHOLD)


def should_recommend(
    intent: Union[Intent, str, None], state: ConversationState, offer_timing: Optional[str]
) -> bool:
    """Purpose: Decide whether this turn should include product recommendations.
    Inputs/Outputs: Inputs are the classified intent, state, and timing mode; output is a bool.
    Side Effects / State: None; pure function.
    Dependencies: Uses offer_threshold.
    Failure Modes: None; unknown timing modes use the late threshold of 5.
    If Removed: Recommendations are either never or always shown.
    Testing Notes: product_inquiry is always True; "early" flips at message_count 2.
    """
    if Intent.parse(intent) is Intent.PRODUCT_INQUIRY:
        return True
    return state.message_count >= offer_threshold(offer_timing)


class RecommendationPolicy:
    """Offer timing policy bound to one configured timing mode."""

    def __init__(self, offer_timing: Optional[str] = None) -> None:
        self.offer_timing = offer_timing

    @property
    def threshold(self) -> int:
        return offer_threshold(self.offer_timing)

    def should_recommend(self, intent: Union[Intent, str, None], state: ConversationState) -> bool:
        return should_recommend(intent, state, self.offer_timing)


def build_recommendation_context(message: str, state: ConversationState, window: int = CONTEXT_WINDOW) -> str:
    """Purpose: Build the user-side prompt for a recommendation request.
    Inputs/Outputs: Inputs are the raw message, state, and history window; output is text.
    Side Effects / State: None; pure function.
    Dependencies: Reads state.preferences and state.conversation_history.
    Failure Modes: None; empty sections are rendered as empty blocks.
    If Removed: The recommender gets no customer context.
    Testing Notes: Only the last `window` history entries may appear.
    """
    preferences = "\n".join(f"- {key}: {value}" for key, value in state.preferences.items())
    recent = state.conversation_history[-window:] if window > 0 else []
    history = "\n".join(f"{entry.role}: {entry.content}" for entry in recent)
    return f"User message: {message}\n\nUser preferences:\n{preferences}\n\nConversation history:\n{history}\n"


def parse_recommendations(raw: str) -> List[ProductRecommendation]:
    """Parse the recommender's JSON reply; raises ValueError if it is not a JSON object.

    Items that are not objects or fail validation are dropped individually.
    """
    data = safe_json_loads(raw)
    if data is None:
        raise ValueError(f"recommender returned no JSON object: {raw[:200]!r}")
    items = data.get("recommendations") or []
    if not isinstance(items, list):
        raise ValueError("recommendations is not a list")
    products: List[ProductRecommendation] = []
    for item in items:
        if isinstance(item, dict):
            if item.get("id") is not None:
                item = {**item, "id": str(item["id"])}
            try:
                products.append(ProductRecommendation.model_validate(item))
            except ValidationError as exc:
                logger.warning("recommendation skipped: %s", exc)
    return products


class RecommendationGenerator:
    """Requests ranked product suggestions from the completion service."""

    def __init__(self, gemini: GeminiClient, prompts: PromptLibrary, window: int = CONTEXT_WINDOW) -> None:
        self._gemini = gemini
        self._prompts = prompts
        self._window = window

    def recommend(self, message: str, state: ConversationState) -> RecommendationResult:
        """Purpose: Produce product recommendations for the current turn.
        Inputs/Outputs: Inputs are the raw message and state; output is a RecommendationResult.
        Side Effects / State: One completion request; logs the outcome.
        Dependencies: Uses GeminiClient in JSON mode, build_recommendation_context,
            and parse_recommendations.
        Failure Modes: Any error returns an empty, degraded result; never raises.
        If Removed: Product cards are never offered to the customer.
        Testing Notes: Simulate malformed JSON and assert an empty degraded result.
        """
        system_instruction = (
            f"{self._prompts.get(PRODUCT_RECOMMENDATION)}\n\n{self._prompts.get(RECOMMENDATION_FORMAT)}"
        )
        try:
            raw = self._gemini.generate_content(
                [user_content(build_recommendation_context(message, state, self._window))],
                system_instruction=system_instruction,
                json_mode=True,
                temperature=0.3,
            )
            products = parse_recommendations(raw)
        except Exception as exc:
            logger.warning("product recommendation failed: %s", exc)
            return RecommendationResult(products=[], degraded=True)
        logger.info("recommendations=%d", len(products))
        return RecommendationResult(products=products)
