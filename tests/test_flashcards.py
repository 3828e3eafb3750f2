"""Tests for lesson flashcard generation, collection and stars."""
import json

import pytest

from surge_tutor.errors import LLMError, ValidationError
from surge_tutor.flashcards import (
    collect_flashcards, flashcard_id, generate_lesson_flashcards, get_lesson, get_starred_cards, toggle_star,
)
from surge_tutor.storage import load_subject_data, new_subject_data, save_subject_data

CARDS = {"flashcards": [
    {"prompt": "What is a limit?", "answer": "The value f approaches."},
    {"prompt": "What is continuity?", "answer": "No jumps or holes."},
]}


def _seed(db):
    data = new_subject_data("calc", subject="Calculus", course_context="First-year calculus")
    data["nodes"] = {"Limits": {
        "overview": "",
        "lessons": [{"title": "Intro", "body": "Limits describe approach."}, {"title": "Empty"}],
        "lessonsMeta": [{"type": "Concept", "title": "Intro"}, {"type": "Concept", "title": "Empty"}],
    }}
    save_subject_data(db, "calc", data).join()


def test_flashcard_id():
    assert flashcard_id("calc", "Limits", "Intro", 0, "Q?") == "calc:Limits:Intro:0:Q?"


def test_get_lesson():
    data = {"nodes": {"Limits": {"lessons": [{"title": "Intro"}]}}}
    assert get_lesson(data, "Limits", 0) == {"title": "Intro"}
    assert get_lesson(data, "Limits", 1) is None
    assert get_lesson(data, "Other", 0) is None
    assert get_lesson(None, "Limits", 0) is None


def test_generate_saves_onto_lesson(db, settings, fake_llm):
    _seed(db)
    client = fake_llm([json.dumps(CARDS)])
    cards = generate_lesson_flashcards(db, settings, "calc", "Limits", 0, count=3, client=client)
    assert len(cards) == 2
    assert "Create exactly 3 flashcards" in client.user_prompt()
    lesson = load_subject_data(db, "calc")["nodes"]["Limits"]["lessons"][0]
    assert lesson["flashcards"] == CARDS["flashcards"]
    assert lesson["body"] == "Limits describe approach."


def test_generate_requires_lesson_body(db, settings, fake_llm):
    _seed(db)
    with pytest.raises(ValidationError):
        generate_lesson_flashcards(db, settings, "calc", "Limits", 1, client=fake_llm([]))
    with pytest.raises(ValidationError):
        generate_lesson_flashcards(db, settings, "calc", "Missing", 0, client=fake_llm([]))


def test_generate_with_no_cards_raises(db, settings, fake_llm):
    _seed(db)
    with pytest.raises(LLMError):
        generate_lesson_flashcards(db, settings, "calc", "Limits", 0, client=fake_llm(['{"flashcards": []}']))


def test_collect_and_star(db, settings, fake_llm):
    _seed(db)
    generate_lesson_flashcards(db, settings, "calc", "Limits", 0, client=fake_llm([json.dumps(CARDS)]))
    cards = collect_flashcards(db, "calc")
    assert [c["id"] for c in cards] == [
        "calc:Limits:Intro:0:What is a limit?",
        "calc:Limits:Intro:1:What is continuity?",
    ]
    assert get_starred_cards(db, "calc") == []
    assert toggle_star(db, "calc", cards[1]) is True
    assert [c["prompt"] for c in get_starred_cards(db, "calc")] == ["What is continuity?"]
    assert toggle_star(db, "calc", cards[1]) is False
    assert get_starred_cards(db, "calc") == []


def test_collect_without_document(db):
    assert collect_flashcards(db, "none") == []
