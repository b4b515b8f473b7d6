import pytest

from conftest import FakeGemini
from shopbot.models import ChatMessage, ConversationState
from shopbot.recommendation import (
    RecommendationGenerator,
    RecommendationPolicy,
    build_recommendation_context,
    offer_threshold,
    parse_recommendations,
    should_recommend,
)


@pytest.mark.parametrize(
    "timing,threshold",
    [("early", 2), ("balanced", 3), ("late", 5), ("", 5), (None, 5), ("BALANCED", 3)],
)
def test_offer_threshold(timing, threshold):
    assert offer_threshold(timing) == threshold


@pytest.mark.parametrize("timing", ["early", "balanced", "late", None])
@pytest.mark.parametrize("count", [0, 1, 4])
def test_product_inquiry_always_recommends(timing, count):
    assert should_recommend("product_inquiry", ConversationState(message_count=count), timing)


def test_early_timing_flips_at_two():
    assert not should_recommend("greeting", ConversationState(message_count=1), "early")
    assert should_recommend("greeting", ConversationState(message_count=2), "early")


def test_unset_timing_waits_for_five():
    policy = RecommendationPolicy()

    assert policy.threshold == 5
    assert not policy.should_recommend("general_question", ConversationState(message_count=4))
    assert policy.should_recommend("general_question", ConversationState(message_count=5))


def test_context_uses_last_five_history_entries():
    history = [ChatMessage(role="user" if i % 2 == 0 else "assistant", content=f"m{i}") for i in range(8)]
    state = ConversationState(conversation_history=history, preferences={"budget": "under $150"})

    context = build_recommendation_context("running shoes?", state)

    assert context.startswith("User message: running shoes?")
    assert "- budget: under $150" in context
    for i in range(3):
        assert f"m{i}" not in context
    for i in range(3, 8):
        assert f"m{i}" in context


def test_generator_returns_products(prompts, sample_product):
    gemini = FakeGemini(recommendations=[sample_product])
    state = ConversationState(message_count=3)

    result = RecommendationGenerator(gemini, prompts).recommend("something for trails", state)

    assert result.degraded is False
    assert [product.name for product in result.products] == ["Trail Runner 2"]
    call = gemini.calls_of("recommend")[0]
    assert call["json_mode"] is True
    assert "User message: something for trails" in call["contents"][0]["parts"][0]["text"]


def test_generator_swallows_errors(prompts):
    gemini = FakeGemini(fail=["recommend"])

    result = RecommendationGenerator(gemini, prompts).recommend("anything", ConversationState())

    assert result.products == []
    assert result.degraded is True


def test_generator_handles_malformed_json(prompts):
    gemini = FakeGemini(raw={"recommend": "Here are some shoes you may like."})

    result = RecommendationGenerator(gemini, prompts).recommend("anything", ConversationState())

    assert result.products == []
    assert result.degraded is True


def test_parse_keeps_extra_fields_and_stringifies_ids():
    products = parse_recommendations('{"recommendations": [{"id": 7, "name": "Mug", "color": "red"}]}')

    assert products[0].id == "7"
    assert products[0].model_dump()["color"] == "red"


def test_parse_missing_key_is_empty():
    assert parse_recommendations('{"items": []}') == []


def test_parse_keeps_products_with_null_fields():
    raw = (
        '{"recommendations": ['
        '{"id": "p1", "name": "Good", "description": "Sturdy mug", "price": 12},'
        '{"name": null, "description": null, "price": 5}'
        "]}"
    )

    products = parse_recommendations(raw)

    assert [product.name for product in products] == ["Good", None]
    assert products[1].price == 5


def test_parse_drops_only_invalid_items():
    raw = '{"recommendations": [{"name": "Good"}, {"name": "Bad", "url": ["not", "a", "url"]}, "junk"]}'

    assert [product.name for product in parse_recommendations(raw)] == ["Good"]


def test_generator_keeps_valid_products_next_to_invalid_ones(prompts, sample_product):
    gemini = FakeGemini(recommendations=[sample_product, {"name": None, "url": {"bad": True}}])
    generator = RecommendationGenerator(gemini, prompts)

    result = generator.recommend("any boots?", ConversationState(message_count=3))

    assert result.degraded is False
    assert [product.name for product in result.products] == ["Trail Runner 2"]
