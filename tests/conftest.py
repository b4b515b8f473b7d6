import json
from typing import Any, Dict, List, Optional, Sequence, Union

import pytest

from shopbot.handlers import HandlerTable
from shopbot.intent_classifier import IntentClassifier
from shopbot.models import BotConfig
from shopbot.orchestrator import ConversationOrchestrator
from shopbot.prompts import PromptLibrary
from shopbot.recommendation import RecommendationGenerator, RecommendationPolicy
from shopbot.state_store import ConversationStateStore


class FakeGemini:
    """Scripted stand-in for GeminiClient that routes on the system instruction."""

    def __init__(
        self,
        intent: Union[str, Sequence[str]] = "general_question",
        confidence: float = 0.9,
        reply: str = "Sure, happy to help with that.",
        recommendations: Optional[List[Dict[str, Any]]] = None,
        fail: Sequence[str] = (),
        raw: Optional[Dict[str, str]] = None,
    ) -> None:
        self._intents = [intent] if isinstance(intent, str) else list(intent)
        self.confidence = confidence
        self.reply = reply
        self.recommendations = recommendations or []
        self.fail = set(fail)
        self.raw = raw or {}
        self.calls: List[Dict[str, Any]] = []

    @staticmethod
    def kind_of(system_instruction: Optional[str]) -> str:
        text = system_instruction or ""
        if text.startswith("Analyze the customer message"):
            return "classify"
        if '"recommendations"' in text:
            return "recommend"
        return "reply"

    def calls_of(self, kind: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["kind"] == kind]

    def generate_content(
        self,
        contents,
        model=None,
        system_instruction=None,
        json_mode=False,
        temperature=0.2,
        max_output_tokens=2048,
    ) -> str:
        kind = self.kind_of(system_instruction)
        self.calls.append(
            {
                "kind": kind,
                "contents": contents,
                "system_instruction": system_instruction,
                "json_mode": json_mode,
            }
        )
        if kind in self.fail:
            raise ConnectionError(f"simulated {kind} outage")
        if kind in self.raw:
            return self.raw[kind]
        if kind == "classify":
            intent = self._intents.pop(0) if len(self._intents) > 1 else self._intents[0]
            return json.dumps({"intent": intent, "confidence": self.confidence})
        if kind == "recommend":
            return json.dumps({"recommendations": self.recommendations})
        return self.reply


def build_orchestrator(
    gemini: FakeGemini,
    offer_timing: Optional[str] = "balanced",
    store: Optional[ConversationStateStore] = None,
    bot_config: Optional[BotConfig] = None,
) -> ConversationOrchestrator:
    prompts = PromptLibrary(bot_config=bot_config)
    return ConversationOrchestrator(
        store=store or ConversationStateStore(),
        classifier=IntentClassifier(gemini, prompts),
        handlers=HandlerTable.default(gemini, prompts),
        policy=RecommendationPolicy(offer_timing),
        recommender=RecommendationGenerator(gemini, prompts),
    )


SAMPLE_PRODUCT = {
    "id": "sku-101",
    "name": "Trail Runner 2",
    "description": "Lightweight trail shoe with a grippy outsole.",
    "price": "$129.00",
    "url": "https://shop.example.com/p/trail-runner-2",
}


@pytest.fixture
def prompts() -> PromptLibrary:
    return PromptLibrary()


@pytest.fixture
def store() -> ConversationStateStore:
    return ConversationStateStore()


@pytest.fixture
def sample_product() -> Dict[str, Any]:
    return dict(SAMPLE_PRODUCT)
