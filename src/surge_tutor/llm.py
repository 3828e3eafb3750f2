"""Thin wrapper over the OpenAI chat completions API."""
import json
import logging
from dataclasses import dataclass
from typing import Iterator, Optional

from openai import OpenAI, OpenAIError

from surge_tutor.config import Settings
from surge_tutor.errors import LLMError

logger = logging.getLogger(__name__)


@dataclass
class StreamEvent:
    type: str  # "text", "done" or "error"
    content: str = ""
    error: str = ""


def get_client(settings: Settings) -> OpenAI:
    return OpenAI(api_key=settings.require_api_key(), base_url=settings.openai_base_url)


def extract_output_text(completion) -> str:
    """First choice's message text, or "" when the response carries none."""
    choices = getattr(completion, "choices", None) or []
    if not choices:
        return ""
    content = getattr(choices[0].message, "content", None)
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = []
        for segment in content:
            if isinstance(segment, str):
                parts.append(segment)
            elif isinstance(segment, dict) and isinstance(segment.get("text"), str):
                parts.append(segment["text"])
        return "".join(parts).strip()
    return ""


def complete(settings: Settings, system: str, user: str, *, model: Optional[str] = None,
             temperature: float = 0.4, max_tokens: Optional[int] = None, json_mode: bool = False,
             client: Optional[OpenAI] = None) -> str:
    client = client or get_client(settings)
    kwargs = {
        "model": model or settings.model,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
        "temperature": temperature,
    }
    if max_tokens:
        kwargs["max_tokens"] = max_tokens
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    try:
        completion = client.chat.completions.create(**kwargs)
    except OpenAIError as e:
        raise LLMError(f"Model request failed: {e}") from e
    text = extract_output_text(completion)
    if not text:
        raise LLMError("Model returned empty content")
    return text


def parse_json_object(text: str) -> dict:
    """Parse a JSON object, retrying on the outermost braces; {} if hopeless."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start < 0 or end <= start:
            return {}
        try:
            data = json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            return {}
    return data if isinstance(data, dict) else {}


def complete_json(settings: Settings, system: str, user: str, **kwargs) -> dict:
    return parse_json_object(complete(settings, system, user, json_mode=True, **kwargs))


def stream_chat(settings: Settings, messages: list[dict], *, model: Optional[str] = None,
                temperature: float = 0.3, max_tokens: Optional[int] = None,
                client: Optional[OpenAI] = None) -> Iterator[StreamEvent]:
    """Yield text deltas, then a single done or error event."""
    try:
        client = client or get_client(settings)
        kwargs = {
            "model": model or settings.model,
            "messages": messages,
            "temperature": temperature,
            "stream": True,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        stream = client.chat.completions.create(**kwargs)
        for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content or ""
            if delta:
                yield StreamEvent(type="text", content=delta)
    except OpenAIError as e:
        logger.error("Streaming failed: %s", e)
        yield StreamEvent(type="error", error=str(e) or "Streaming failed")
        return
    yield StreamEvent(type="done")
