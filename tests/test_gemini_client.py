from dataclasses import replace
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from shopbot.config import Settings
from shopbot.gemini_client import JSON_MIME_TYPE, GeminiClient, history_contents
from shopbot.models import ChatMessage

SETTINGS = Settings(
    gemini_api_key="test-key",
    gemini_model="models/gemini-2.5-flash",
    prompts_dir=Path("."),
    offer_timing="balanced",
    bot_config_path=None,
    state_path=None,
    max_conversations=None,
    history_window=5,
    request_timeout=12.0,
)


def test_missing_api_key_raises():
    with pytest.raises(ValueError):
        GeminiClient(replace(SETTINGS, gemini_api_key=""))


@patch("shopbot.gemini_client.genai")
def test_json_mode_sets_mime_type_and_timeout(mock_genai):
    model = MagicMock()
    model.generate_content.return_value = MagicMock(text='  {"intent": "greeting"}  ')
    mock_genai.GenerativeModel.return_value = model

    client = GeminiClient(SETTINGS)
    text = client.generate_content(
        [{"role": "user", "parts": [{"text": "hi"}]}],
        system_instruction="classify",
        json_mode=True,
    )

    assert text == '{"intent": "greeting"}'
    mock_genai.configure.assert_called_once_with(api_key="test-key")
    mock_genai.GenerativeModel.assert_called_once_with("gemini-2.5-flash", system_instruction="classify")
    kwargs = model.generate_content.call_args.kwargs
    assert kwargs["generation_config"]["response_mime_type"] == JSON_MIME_TYPE
    assert kwargs["request_options"] == {"timeout": 12.0}


@patch("shopbot.gemini_client.genai")
def test_models_are_cached_per_instruction(mock_genai):
    mock_genai.GenerativeModel.return_value.generate_content.return_value = MagicMock(text="ok")
    client = GeminiClient(SETTINGS)

    client.generate_content([], system_instruction="a")
    client.generate_content([], system_instruction="a")
    client.generate_content([], system_instruction="b")

    assert mock_genai.GenerativeModel.call_count == 2
    config = mock_genai.GenerativeModel.return_value.generate_content.call_args.kwargs["generation_config"]
    assert "response_mime_type" not in config


@patch("shopbot.gemini_client.genai")
def test_errors_propagate(mock_genai):
    mock_genai.GenerativeModel.return_value.generate_content.side_effect = TimeoutError("deadline")
    client = GeminiClient(SETTINGS)

    with pytest.raises(TimeoutError):
        client.generate_content([])


def test_history_contents_maps_roles_and_skips_empty():
    history = [
        ChatMessage(role="user", content="hi"),
        ChatMessage(role="assistant", content=""),
        ChatMessage(role="assistant", content="hello!"),
    ]

    assert history_contents(history) == [
        {"role": "user", "parts": [{"text": "hi"}]},
        {"role": "model", "parts": [{"text": "hello!"}]},
    ]
