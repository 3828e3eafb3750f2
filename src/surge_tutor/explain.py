"""Explain a single word of a lesson in a couple of sentences."""
import re
from typing import Optional

from surge_tutor import api
from surge_tutor.config import Settings
from surge_tutor.prompts import course_language

CONTEXT_RADIUS = 120
WORD_APOSTROPHES = "’'-"
_WORD_RE = re.compile(r"[^\W_]+(?:-[^\W_]+)*")


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch in WORD_APOSTROPHES


def find_word_at(text: str, offset: int) -> Optional[tuple[str, int, int]]:
    """The word touching ``offset``, as ``(word, start, end)``, or None."""
    idx = max(0, min(offset, len(text)))
    start = idx
    while start > 0 and _is_word_char(text[start - 1]):
        start -= 1
    end = idx
    while end < len(text) and _is_word_char(text[end]):
        end += 1
    word = text[start:end].strip()
    if not word:
        return None
    return word, start, end


def local_context(parent_text: str, word: str) -> str:
    idx = parent_text.find(word)
    if idx < 0:
        return parent_text[:CONTEXT_RADIUS * 2]
    return parent_text[max(0, idx - CONTEXT_RADIUS):idx + len(word) + CONTEXT_RADIUS]


def lesson_words(text: str) -> list[tuple[int, str]]:
    """Words of a lesson with their offsets, for picking one by number."""
    return [(m.start(), m.group(0)) for m in _WORD_RE.finditer(text)]


def paragraph_at(text: str, offset: int) -> str:
    """The blank-line separated block containing ``offset``."""
    start = text.rfind("\n\n", 0, offset)
    end = text.find("\n\n", offset)
    return text[0 if start < 0 else start + 2:len(text) if end < 0 else end].strip()


def explain_word(settings: Settings, data: Optional[dict], slug: str, topic: str, word: str,
                 parent_text: str, client=None) -> str:
    data = data or {}
    course_topics = [t.get("name") for t in data.get("topics") or [] if isinstance(t, dict) and t.get("name")]
    result = api.quick_explain(
        settings,
        subject=data.get("subject") or slug,
        topic=topic,
        word=word,
        local_context=local_context(parent_text, word),
        course_topics=course_topics,
        language_name=course_language(data) or "",
        client=client,
    )
    return result["content"]
