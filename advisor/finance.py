# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================
"""Forwards finance questions to a hosted chat model and returns advice text."""

import logging
from typing import Callable, Dict, List, Optional, Sequence

import requests
from google import genai
from google.genai import types

from advisor import prompts
from backend.config import AIModel, Settings, get_settings

logger = logging.getLogger(__name__)

OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"
DEEPSEEK_API_URL = "https://api.deepseek.com/v1/chat/completions"
REQUEST_TIMEOUT = 30  # seconds
MAX_OUTPUT_TOKENS = 500
TEMPERATURE = 0.7


class AdvisorAPIException(Exception):
    pass


def build_messages(user_message: str, chat_history: Sequence[str]) -> List[dict]:
    """
    Builds a chat-completions message list.

    Args:
        user_message (str): The new question from the user.
        chat_history (Sequence[str]): Earlier turns, oldest first, alternating
            user and assistant text starting with the user.

    Returns:
        List[dict]: The system prompt, the history and the new message.
    """
    messages = [{"role": "system", "content": prompts.SYSTEM_PROMPT}]
    for index, text in enumerate(chat_history):
        role = "user" if index % 2 == 0 else "assistant"
        messages.append({"role": role, "content": text})
    messages.append({"role": "user", "content": user_message})
    return messages


def _without_key(
    provider: str, env_var: str, user_message: str, settings: Settings
) -> str:
    if settings.ai_offline_fallback:
        logger.info("%s is not set; answering offline", env_var)
        return generate_local_finance_response(user_message)
    return prompts.missing_key_response(provider, env_var)


def _post_chat_completion(
    url: str, api_key: str, model: str, messages: List[dict], provider: str
) -> str:
    response = requests.post(
        url,
        json={
            "model": model,
            "messages": messages,
            "temperature": TEMPERATURE,
            "max_tokens": MAX_OUTPUT_TOKENS,
        },
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        },
        timeout=REQUEST_TIMEOUT,
    )
    if not response.ok:
        raise AdvisorAPIException(
            f"{provider} API error: {response.status_code} - {response.text}"
        )
    choices = response.json().get("choices") or []
    if choices and choices[0].get("message"):
        return choices[0]["message"].get("content") or prompts.CONNECTION_TROUBLE_RESPONSE
    return prompts.CONNECTION_TROUBLE_RESPONSE


def call_openai(user_message: str, chat_history: Sequence[str], settings: Settings) -> str:
    if not settings.openai_api_key:
        return _without_key("OpenAI", "OPENAI_API_KEY", user_message, settings)
    return _post_chat_completion(
        OPENAI_API_URL,
        settings.openai_api_key,
        settings.openai_model,
        build_messages(user_message, chat_history),
        "OpenAI",
    )


def call_deepseek(
    user_message: str, chat_history: Sequence[str], settings: Settings
) -> str:
    if not settings.deepseek_api_key:
        return _without_key("Deepseek", "DEEPSEEK_API_KEY", user_message, settings)
    return _post_chat_completion(
        DEEPSEEK_API_URL,
        settings.deepseek_api_key,
        settings.deepseek_model,
        build_messages(user_message, chat_history),
        "Deepseek",
    )


def call_gemini(user_message: str, chat_history: Sequence[str], settings: Settings) -> str:
    """Calls Gemini; the system prompt goes in as a system instruction."""
    if not settings.gemini_api_key:
        return _without_key("Gemini", "GEMINI_API_KEY", user_message, settings)

    client = genai.Client(api_key=settings.gemini_api_key)
    contents = [
        types.Content(
            role="user" if index % 2 == 0 else "model",
            parts=[types.Part(text=text)],
        )
        for index, text in enumerate(chat_history)
    ]
    contents.append(types.Content(role="user", parts=[types.Part(text=user_message)]))
    response = client.models.generate_content(
        model=settings.gemini_model,
        contents=contents,
        config=types.GenerateContentConfig(
            system_instruction=prompts.SYSTEM_PROMPT,
            temperature=TEMPERATURE,
            max_output_tokens=MAX_OUTPUT_TOKENS,
        ),
    )
    return response.text or prompts.CONNECTION_TROUBLE_RESPONSE


PROVIDERS: Dict[str, Callable[[str, Sequence[str], Settings], str]] = {
    "openai": call_openai,
    "deepseek": call_deepseek,
    "gemini": call_gemini,
}


def generate_finance_response(
    user_message: str,
    chat_history: Sequence[str] = (),
    model: AIModel = "openai",
    settings: Optional[Settings] = None,
) -> str:
    """
    Generates a reply to a finance question with the chosen model.

    Provider failures (missing key, transport errors, non-2xx responses) come
    back as user-facing text instead of an exception. With
    ``settings.ai_offline_fallback`` set, they come back as canned keyword
    advice from ``generate_local_finance_response`` instead.

    Raises:
        ValueError: If ``model`` names no known provider.
    """
    provider = PROVIDERS.get(model)
    if provider is None:
        raise ValueError(f"Unknown AI model: {model}")
    settings = settings or get_settings()

    try:
        return provider(user_message, chat_history, settings)
    except Exception as e:
        logger.exception("Error generating AI response with %s", model)
        if settings.ai_offline_fallback:
            return generate_local_finance_response(user_message)
        if "API key" in str(e):
            return prompts.API_KEY_ERROR_RESPONSE
        return prompts.error_response(str(e) or type(e).__name__)


def generate_local_finance_response(user_message: str) -> str:
    """Canned advice picked by keyword, for when no model is reachable."""
    message = user_message.lower()
    for keywords, response in prompts.LOCAL_RESPONSES:
        if any(keyword in message for keyword in keywords):
            return response
    return prompts.LOCAL_DEFAULT_RESPONSE
