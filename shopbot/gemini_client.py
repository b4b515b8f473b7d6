from __future__ import annotations

from typing import Any, Dict, List, Optional

import google.generativeai as genai
from google.generativeai import types as genai_types

from .config import Settings

DEFAULT_SAFETY_SETTINGS = [
    {
        "category": genai_types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
    },
    {
        "category": genai_types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
    },
    {
        "category": genai_types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
    },
    {
        "category": genai_types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
        "threshold": genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
    },
]

JSON_MIME_TYPE = "application/json"


class GeminiClient:
    """Thin wrapper around the Gemini SDK with model caching and JSON output mode."""

    def __init__(self, settings: Settings) -> None:
        """Purpose: Configure the Gemini SDK and initialize the model cache.
        Inputs/Outputs: Input is Settings; no return value.
        Side Effects / State: Configures the SDK global API key and caches model instances.
        Dependencies: Uses google.generativeai and Settings from config.
        Failure Modes: Raises ValueError if the API key or model name is missing.
        If Removed: Classification, handler replies, and recommendations cannot call the LLM.
        Testing Notes: Validate that a missing key raises ValueError.
        """
        # Configure API key and seed the default model cache.
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        self._default_model = _normalize_model_name(settings.gemini_model)
        if not self._default_model:
            raise ValueError("Gemini model name is required")
        self._timeout = settings.request_timeout
        genai.configure(api_key=settings.gemini_api_key)
        self._models: Dict[str, genai.GenerativeModel] = {}

    def _model(self, model_name: str, system_instruction: Optional[str]) -> genai.GenerativeModel:
        # System instructions are bound at model construction, so cache per (model, instruction).
        key = f"{model_name}\x00{system_instruction or ''}"
        if key not in self._models:
            self._models[key] = genai.GenerativeModel(model_name, system_instruction=system_instruction or None)
        return self._models[key]

    def generate_content(
        self,
        contents: List[Dict[str, Any]],
        model: Optional[str] = None,
        system_instruction: Optional[str] = None,
        json_mode: bool = False,
        temperature: float = 0.2,
        max_output_tokens: int = 2048,
    ) -> str:
        """Purpose: Generate a response from role-tagged chat contents.
        Inputs/Outputs: Input is a list of content entries plus optional system prompt and
            JSON flag; returns the generated text.
        Side Effects / State: May add a model to the internal cache; performs a network call.
        Dependencies: Uses genai.GenerativeModel.generate_content.
        Failure Modes: SDK transport, quota, and safety errors propagate to the caller.
        If Removed: Every LLM-backed step in the conversation engine stops working.
        Testing Notes: Mock GenerativeModel and assert response_mime_type in JSON mode.
        """
        # Resolve model name and build the generation config.
        model_name = _normalize_model_name(model) if model else self._default_model
        generation_config: Dict[str, Any] = {
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        }
        if json_mode:
            generation_config["response_mime_type"] = JSON_MIME_TYPE

        response = self._model(model_name, system_instruction).generate_content(
            contents,
            generation_config=generation_config,
            safety_settings=DEFAULT_SAFETY_SETTINGS,
            request_options={"timeout": self._timeout},
        )
        text: Optional[str] = getattr(response, "text", None)
        return (text or "").strip()


def user_content(text: str) -> Dict[str, Any]:
    return {"role": "user", "parts": [{"text": text}]}


def history_contents(history: List[Any]) -> List[Dict[str, Any]]:
    """Purpose: Convert stored chat messages into Gemini role-tagged contents.
    Inputs/Outputs: Input is a list of ChatMessage-like objects; output is a content list.
    Side Effects / State: None; pure function.
    Dependencies: Used by prompted handlers to replay recent history.
    Failure Modes: Entries with empty content are skipped.
    If Removed: Handler replies lose multi-turn context.
    Testing Notes: Assistant entries must map to the "model" role.
    """
    contents: List[Dict[str, Any]] = []
    for message in history:
        content = getattr(message, "content", "")
        if not content:
            continue
        role = "user" if getattr(message, "role", "") == "user" else "model"
        contents.append({"role": role, "parts": [{"text": content}]})
    return contents


def _normalize_model_name(name: Optional[str]) -> str:
    """Strip the "models/" prefix and whitespace from a model name."""
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
