"""Lesson flashcards: generation, collection across a course, and stars."""
import logging
from typing import Optional

from surge_tutor import api
from surge_tutor.config import Settings
from surge_tutor.errors import LLMError, ValidationError
from surge_tutor.prompts import course_language
from surge_tutor.storage import (
    load_starred_flashcards,
    load_subject_data,
    toggle_starred_flashcard,
    upsert_node_content_synced,
)

logger = logging.getLogger(__name__)


def flashcard_id(slug: str, topic: str, lesson_title: str, index: int, prompt: str) -> str:
    return f"{slug}:{topic}:{lesson_title}:{index}:{prompt}"


def get_lesson(data: Optional[dict], topic: str, lesson_index: int) -> Optional[dict]:
    node = ((data or {}).get("nodes") or {}).get(topic)
    if not isinstance(node, dict):
        return None
    lessons = node.get("lessons") or []
    if 0 <= lesson_index < len(lessons) and isinstance(lessons[lesson_index], dict):
        return lessons[lesson_index]
    return None


def collect_flashcards(db_path: str, slug: str) -> list[dict]:
    """Every saved lesson flashcard in the course, each tagged with its id."""
    data = load_subject_data(db_path, slug)
    cards = []
    for topic, node in ((data or {}).get("nodes") or {}).items():
        if not isinstance(node, dict):
            continue
        for lesson in node.get("lessons") or []:
            if not isinstance(lesson, dict):
                continue
            title = lesson.get("title") or ""
            for idx, card in enumerate(lesson.get("flashcards") or []):
                if not isinstance(card, dict):
                    continue
                cards.append({
                    "id": flashcard_id(slug, topic, title, idx, card.get("prompt", "")),
                    "topic": topic,
                    "lessonTitle": title,
                    "prompt": card.get("prompt", ""),
                    "answer": card.get("answer", ""),
                })
    return cards


def get_starred_cards(db_path: str, slug: str) -> list[dict]:
    starred = load_starred_flashcards(db_path, slug)
    return [c for c in collect_flashcards(db_path, slug) if c["id"] in starred]


def toggle_star(db_path: str, slug: str, card: dict) -> bool:
    return toggle_starred_flashcard(db_path, slug, card["id"])


def generate_lesson_flashcards(db_path: str, settings: Settings, slug: str, topic: str,
                               lesson_index: int, count: int = api.DEFAULT_FLASHCARD_COUNT,
                               client=None) -> list[dict]:
    """Generate flashcards for a lesson and save them onto it."""
    data = load_subject_data(db_path, slug)
    lesson = get_lesson(data, topic, lesson_index)
    if not lesson or not lesson.get("body"):
        raise ValidationError("Generate the lesson first before creating flashcards.")

    result = api.lesson_flashcards(
        settings,
        lesson_body=lesson["body"],
        subject=data.get("subject") or slug,
        topic=topic,
        lesson_title=lesson.get("title") or "",
        course_context=data.get("course_context") or "",
        language_name=course_language(data) or "",
        count=count,
        client=client,
    )
    cards = result["flashcards"]
    if not cards:
        raise LLMError("No flashcards were returned. Please try again.")

    node = data["nodes"][topic]
    lessons = list(node["lessons"])
    lessons[lesson_index] = {**lessons[lesson_index], "flashcards": cards}
    upsert_node_content_synced(db_path, slug, topic, {**node, "lessons": lessons}, settings)
    logger.info("Saved %d flashcards for %s lesson %d", len(cards), topic, lesson_index)
    return cards
