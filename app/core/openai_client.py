"""OpenAI client for chat, embeddings and audio transcription (api_key from config)."""
import logging
from typing import Any, Optional

from openai import OpenAI

from app.core.config import settings
from app.utils.retry import with_retry

logger = logging.getLogger(__name__)

_openai_client: Any = None


def get_openai_client() -> OpenAI:
    """Return a singleton OpenAI client configured with api_key from settings.
    Why available: Single place to get the client so the vector store, chat answerer, and transcriber share one config."""
    global _openai_client
    if _openai_client is None:
        _openai_client = OpenAI(api_key=settings.openai_api_key)
    return _openai_client


def llm_available() -> bool:
    """True when a chat model can be called (an API key is configured)."""
    return bool(settings.openai_api_key)


def complete(prompt: str, *, system: Optional[str] = None, temperature: Optional[float] = None) -> str:
    """Send one prompt to the chat model and return the text reply (with retry).
    Why available: The language-model collaborator used for chat answers and meeting summaries."""
    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    oc = get_openai_client()
    resp = with_retry(
        lambda: oc.chat.completions.create(
            model=settings.chat_model,
            messages=messages,
            temperature=settings.chat_temperature if temperature is None else temperature,
        ),
        operation="chat_completion",
    )
    return (resp.choices[0].message.content or "").strip()
